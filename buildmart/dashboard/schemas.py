from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel

TimeRange = Literal["7d", "30d", "90d", "1y"]


class KeyMetric(BaseModel):
    title: str
    value: str
    change: str
    trend: Literal["up", "down"]


class RevenuePoint(BaseModel):
    month: str
    revenue: Decimal
    quotations: int


class PipelineStage(BaseModel):
    status: str
    count: int
    value: Decimal


class SourceCount(BaseModel):
    source: str
    count: int


class RecentActivity(BaseModel):
    id: UUID
    action: str
    description: str | None
    user_name: str | None
    created_at: datetime


class DashboardRead(BaseModel):
    time_range: TimeRange
    key_metrics: list[KeyMetric]
    revenue_data: list[RevenuePoint]
    sales_pipeline: list[PipelineStage]
    inquiry_sources: list[SourceCount]
    recent_activity: list[RecentActivity]
