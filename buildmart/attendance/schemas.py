from __future__ import annotations

from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

AttendanceStatusValue = Literal["PRESENT", "LATE", "ON_BREAK", "LOGGED_OUT"]


class ClockOutRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=2000)


class BreakLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    start_time: datetime
    end_time: datetime | None
    duration: float | None


class AttendanceUser(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str
    is_ojt: bool


class AttendanceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    work_date: date
    time_in: datetime
    time_out: datetime | None
    status: str
    total_hours: float | None
    notes: str | None
    ip_address: str | None
    break_logs: list[BreakLogRead]


class AttendanceWithUserRead(AttendanceRead):
    user: AttendanceUser


class DtrSettingsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    work_start_time: str
    late_threshold: int
    allow_remote_login: bool
    auto_reminders_active: bool


class DtrSettingsUpdate(BaseModel):
    work_start_time: str = Field(pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    late_threshold: int = Field(ge=0, le=24 * 60)
    allow_remote_login: bool
    auto_reminders_active: bool = False


class AllowedIpCreate(BaseModel):
    user_id: UUID | None = None
    ip_address: str | None = Field(default=None, max_length=64)
    description: str | None = Field(default=None, max_length=255)


class AllowedIpRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    ip_address: str
    description: str | None
    created_at: datetime
