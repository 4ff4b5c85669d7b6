from __future__ import annotations

import uuid
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict


class FacebookPostRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    fb_post_id: str
    post_type: str
    content: str
    media_url: str | None
    likes: int
    comments: int
    shares: int
    reach: int
    impressions: int
    engagement_rate: float = 0.0
    created_at: datetime
    updated_at: datetime


class PageMetricRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    metric_date: date
    follower_count: int
    page_views: int
    page_impressions: int
    page_reach: int
    engagement: int
    fetched_at: datetime


class HistoricalMetric(BaseModel):
    date: date
    engagement_rate: float
    follower_count: int
    impressions: int


class FacebookOverview(BaseModel):
    posts: list[FacebookPostRead]
    page_metrics: list[PageMetricRead]
    latest_metric: PageMetricRead | None
    historical_metrics: list[HistoricalMetric]


class SyncResult(BaseModel):
    success: bool = True
    message: str
    posts_synced: int
    metric_stored: bool
