from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from buildmart.attendance.schemas import (
    AllowedIpCreate,
    AllowedIpRead,
    AttendanceRead,
    AttendanceStatusValue,
    AttendanceWithUserRead,
    ClockOutRequest,
    DtrSettingsRead,
    DtrSettingsUpdate,
)
from buildmart.attendance.service import attendance_service
from buildmart.core.auth import AuthUser
from buildmart.core.context import resolve_client_ip
from buildmart.core.database import get_db
from buildmart.core.rbac import require_permissions

router = APIRouter(prefix="/api/attendance", tags=["attendance"])


@router.post("/clock-in", response_model=AttendanceRead, status_code=status.HTTP_201_CREATED)
def clock_in(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("log:attendance")),
) -> AttendanceRead:
    return attendance_service.clock_in(db, user.id, ip_address=resolve_client_ip(request))


@router.post("/clock-out", response_model=AttendanceRead)
def clock_out(
    dto: ClockOutRequest | None = None,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("log:attendance")),
) -> AttendanceRead:
    return attendance_service.clock_out(db, user.id, dto or ClockOutRequest())


@router.post("/break/start", response_model=AttendanceRead)
def start_break(
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("log:attendance")),
) -> AttendanceRead:
    return attendance_service.start_break(db, user.id)


@router.post("/break/end", response_model=AttendanceRead)
def end_break(
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("log:attendance")),
) -> AttendanceRead:
    return attendance_service.end_break(db, user.id)


@router.get("/my-attendance", response_model=list[AttendanceRead])
def my_attendance(
    start_date: date | None = Query(default=None, alias="startDate"),
    end_date: date | None = Query(default=None, alias="endDate"),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("read:own_attendance", "log:attendance")),
) -> list[AttendanceRead]:
    return attendance_service.list_user_attendance(db, user.id, start_date=start_date, end_date=end_date)


@router.get("/all", response_model=list[AttendanceWithUserRead])
def all_attendance(
    work_date: date | None = Query(default=None, alias="date"),
    role: str | None = Query(default=None),
    status_filter: AttendanceStatusValue | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:all_attendance")),
) -> list[AttendanceWithUserRead]:
    return attendance_service.list_all_attendance(db, work_date=work_date, role=role, status=status_filter)


@router.get("/user/{user_id}", response_model=list[AttendanceRead])
def user_attendance(
    user_id: uuid.UUID,
    start_date: date | None = Query(default=None, alias="startDate"),
    end_date: date | None = Query(default=None, alias="endDate"),
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:all_attendance")),
) -> list[AttendanceRead]:
    return attendance_service.list_user_attendance(db, user_id, start_date=start_date, end_date=end_date)


@router.get("/settings", response_model=DtrSettingsRead)
def read_settings(
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("manage:dtr_settings", "read:all_attendance")),
) -> DtrSettingsRead:
    return attendance_service.read_settings(db)


@router.put("/settings", response_model=DtrSettingsRead)
def update_settings(
    dto: DtrSettingsUpdate,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("manage:dtr_settings")),
) -> DtrSettingsRead:
    return attendance_service.update_settings(db, dto)


@router.get("/allowed-ips", response_model=list[AllowedIpRead])
def list_allowed_ips(
    user_id: uuid.UUID | None = Query(default=None, alias="userId"),
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("manage:allowed_ips")),
) -> list[AllowedIpRead]:
    return attendance_service.list_allowed_ips(db, user_id)


@router.post("/allowed-ips", response_model=AllowedIpRead, status_code=status.HTTP_201_CREATED)
def add_allowed_ip(
    dto: AllowedIpCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("manage:allowed_ips")),
) -> AllowedIpRead:
    return attendance_service.add_allowed_ip(db, user.id, dto, request_ip=resolve_client_ip(request))


@router.delete("/allowed-ips/{allowed_ip_id}")
def remove_allowed_ip(
    allowed_ip_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("manage:allowed_ips")),
) -> dict[str, str]:
    attendance_service.remove_allowed_ip(db, allowed_ip_id)
    return {"message": "IP address removed from allowed list"}
