from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from buildmart.attendance.models import AllowedIp, Attendance, BreakLog, DtrSettings
from buildmart.attendance.schemas import (
    AllowedIpCreate,
    AllowedIpRead,
    AttendanceRead,
    AttendanceWithUserRead,
    ClockOutRequest,
    DtrSettingsRead,
    DtrSettingsUpdate,
)
from buildmart.core.config import Settings, get_settings
from buildmart.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationFailedError
from buildmart.users.models import Role, User, utcnow


logger = logging.getLogger("buildmart.attendance")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _hours_between(start: datetime, end: datetime) -> float:
    return (_as_utc(end) - _as_utc(start)).total_seconds() / 3600


def parse_work_start(value: str) -> time:
    hours, _, minutes = value.partition(":")
    return time(int(hours), int(minutes or 0))


def local_work_date(moment: datetime, tz: ZoneInfo) -> date:
    return _as_utc(moment).astimezone(tz).date()


def minutes_late(time_in: datetime, work_start: str, tz: ZoneInfo) -> float:
    local_in = _as_utc(time_in).astimezone(tz)
    start = datetime.combine(local_in.date(), parse_work_start(work_start), tzinfo=tz)
    return (local_in - start).total_seconds() / 60


def compute_total_hours(time_in: datetime, time_out: datetime, break_hours: list[float]) -> float:
    """Worked hours net of breaks, rounded to two decimals and never negative."""
    gross = _hours_between(time_in, time_out)
    return max(0.0, round(gross - sum(break_hours), 2))


@dataclass
class AttendanceService:
    settings: Settings | None = None

    def _settings(self) -> Settings:
        return self.settings or get_settings()

    def _tz(self) -> ZoneInfo:
        return ZoneInfo(self._settings().attendance_timezone)

    def get_dtr_settings(self, session: Session) -> DtrSettings:
        settings_row = session.scalar(select(DtrSettings).order_by(DtrSettings.id.asc()).limit(1))
        if settings_row is None:
            config = self._settings()
            settings_row = DtrSettings(
                work_start_time=config.attendance_work_start_time,
                late_threshold=config.attendance_late_threshold_minutes,
                allow_remote_login=config.attendance_allow_remote_login,
                auto_reminders_active=False,
            )
            session.add(settings_row)
            session.flush()
        return settings_row

    def clock_in(
        self,
        session: Session,
        user_id: uuid.UUID,
        *,
        ip_address: str | None,
        now: datetime | None = None,
    ) -> AttendanceRead:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("user not found")
        dtr = self.get_dtr_settings(session)

        if user.is_ojt and not dtr.allow_remote_login:
            allowed = session.scalar(
                select(AllowedIp.id).where(AllowedIp.user_id == user_id, AllowedIp.ip_address == (ip_address or ""))
            )
            if allowed is None:
                raise ForbiddenError(
                    "unauthorized location. OJT users must clock in from an approved location",
                    details={"ip_address": ip_address},
                )

        now = now or utcnow()
        tz = self._tz()
        work_date = local_work_date(now, tz)
        existing = session.scalar(
            select(Attendance.id).where(Attendance.user_id == user_id, Attendance.work_date == work_date)
        )
        if existing is not None:
            raise ConflictError("already clocked in today")

        late_by = minutes_late(now, dtr.work_start_time, tz)
        record = Attendance(
            user_id=user_id,
            work_date=work_date,
            time_in=now,
            status="LATE" if late_by > dtr.late_threshold else "PRESENT",
            ip_address=ip_address,
        )
        session.add(record)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError("already clocked in today")

        logger.info(
            "attendance.clock_in",
            extra={"attendance_id": str(record.id), "user_id": str(user_id), "new_status": record.status},
        )
        return self._read(session, record.id)

    def start_break(self, session: Session, user_id: uuid.UUID, *, now: datetime | None = None) -> AttendanceRead:
        now = now or utcnow()
        record = self._open_record(session, user_id, now)
        if any(item.end_time is None for item in record.break_logs):
            raise ConflictError("already on break")

        session.add(BreakLog(attendance_id=record.id, start_time=now))
        record.status = "ON_BREAK"
        session.commit()
        logger.info("attendance.break_started", extra={"attendance_id": str(record.id)})
        return self._read(session, record.id)

    def end_break(self, session: Session, user_id: uuid.UUID, *, now: datetime | None = None) -> AttendanceRead:
        now = now or utcnow()
        work_date = local_work_date(now, self._tz())
        record = session.scalar(
            select(Attendance)
            .options(selectinload(Attendance.break_logs))
            .where(
                Attendance.user_id == user_id,
                Attendance.work_date == work_date,
                Attendance.status == "ON_BREAK",
            )
        )
        if record is None:
            raise NotFoundError("no active break found")
        active = next((item for item in record.break_logs if item.end_time is None), None)
        if active is None:
            raise NotFoundError("no active break found")

        active.end_time = now
        active.duration = round(_hours_between(active.start_time, now), 2)
        record.status = "PRESENT"
        session.commit()
        logger.info("attendance.break_ended", extra={"attendance_id": str(record.id)})
        return self._read(session, record.id)

    def clock_out(
        self,
        session: Session,
        user_id: uuid.UUID,
        dto: ClockOutRequest,
        *,
        now: datetime | None = None,
    ) -> AttendanceRead:
        now = now or utcnow()
        record = self._open_record(session, user_id, now)

        break_hours: list[float] = []
        for item in record.break_logs:
            if item.end_time is None:
                item.end_time = now
                item.duration = round(_hours_between(item.start_time, now), 2)
            break_hours.append(item.duration or 0.0)

        record.time_out = now
        record.total_hours = compute_total_hours(record.time_in, now, break_hours)
        record.status = "LOGGED_OUT"
        record.notes = dto.notes or None
        session.commit()
        logger.info(
            "attendance.clock_out",
            extra={"attendance_id": str(record.id), "user_id": str(user_id), "count": len(break_hours)},
        )
        return self._read(session, record.id)

    def list_user_attendance(
        self,
        session: Session,
        user_id: uuid.UUID,
        *,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[AttendanceRead]:
        stmt = select(Attendance).options(selectinload(Attendance.break_logs)).where(Attendance.user_id == user_id)
        if start_date is not None:
            stmt = stmt.where(Attendance.work_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(Attendance.work_date <= end_date)
        rows = session.scalars(stmt.order_by(Attendance.work_date.desc())).all()
        return [AttendanceRead.model_validate(row) for row in rows]

    def list_all_attendance(
        self,
        session: Session,
        *,
        work_date: date | None = None,
        role: str | None = None,
        status: str | None = None,
    ) -> list[AttendanceWithUserRead]:
        stmt = select(Attendance).options(selectinload(Attendance.break_logs), selectinload(Attendance.user))
        if work_date is not None:
            stmt = stmt.where(Attendance.work_date == work_date)
        if role:
            stmt = stmt.where(
                Attendance.user_id.in_(select(User.id).join(Role, Role.id == User.role_id).where(Role.name == role))
            )
        if status:
            stmt = stmt.where(Attendance.status == status)
        rows = session.scalars(stmt.order_by(Attendance.work_date.desc(), Attendance.time_in.desc())).all()
        return [AttendanceWithUserRead.model_validate(row) for row in rows]

    def read_settings(self, session: Session) -> DtrSettingsRead:
        row = self.get_dtr_settings(session)
        session.commit()
        return DtrSettingsRead.model_validate(row)

    def update_settings(self, session: Session, dto: DtrSettingsUpdate) -> DtrSettingsRead:
        row = self.get_dtr_settings(session)
        row.work_start_time = dto.work_start_time
        row.late_threshold = dto.late_threshold
        row.allow_remote_login = dto.allow_remote_login
        row.auto_reminders_active = dto.auto_reminders_active
        session.commit()
        session.refresh(row)
        logger.info("attendance.settings_updated")
        return DtrSettingsRead.model_validate(row)

    def list_allowed_ips(self, session: Session, user_id: uuid.UUID | None = None) -> list[AllowedIpRead]:
        stmt = select(AllowedIp)
        if user_id is not None:
            stmt = stmt.where(AllowedIp.user_id == user_id)
        rows = session.scalars(stmt.order_by(AllowedIp.created_at.desc())).all()
        return [AllowedIpRead.model_validate(row) for row in rows]

    def add_allowed_ip(
        self,
        session: Session,
        actor_user_id: uuid.UUID,
        dto: AllowedIpCreate,
        *,
        request_ip: str | None,
    ) -> AllowedIpRead:
        user_id = dto.user_id or actor_user_id
        ip_address = (dto.ip_address or request_ip or "").strip()
        if not ip_address:
            raise ValidationFailedError("ip address could not be determined")

        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("user not found")
        if not user.is_ojt:
            raise ValidationFailedError("IP restrictions only apply to OJT users")

        existing = session.scalar(
            select(AllowedIp.id).where(AllowedIp.user_id == user_id, AllowedIp.ip_address == ip_address)
        )
        if existing is not None:
            raise ConflictError("IP address already allowed for this user")

        row = AllowedIp(user_id=user_id, ip_address=ip_address, description=dto.description)
        session.add(row)
        session.commit()
        session.refresh(row)
        logger.info("attendance.allowed_ip_added", extra={"user_id": str(user_id), "client_ip": ip_address})
        return AllowedIpRead.model_validate(row)

    def remove_allowed_ip(self, session: Session, allowed_ip_id: uuid.UUID) -> None:
        row = session.get(AllowedIp, allowed_ip_id)
        if row is None:
            raise NotFoundError("allowed ip not found")
        user_id = row.user_id
        session.delete(row)
        session.commit()
        logger.info("attendance.allowed_ip_removed", extra={"user_id": str(user_id)})

    def _open_record(self, session: Session, user_id: uuid.UUID, now: datetime) -> Attendance:
        work_date = local_work_date(now, self._tz())
        record = session.scalar(
            select(Attendance)
            .options(selectinload(Attendance.break_logs))
            .where(
                Attendance.user_id == user_id,
                Attendance.work_date == work_date,
                Attendance.time_out.is_(None),
            )
        )
        if record is None:
            raise NotFoundError("no active clock-in record found for today")
        return record

    def _read(self, session: Session, attendance_id: uuid.UUID) -> AttendanceRead:
        record = session.scalar(
            select(Attendance).options(selectinload(Attendance.break_logs)).where(Attendance.id == attendance_id)
        )
        if record is None:
            raise NotFoundError("attendance record not found")
        return AttendanceRead.model_validate(record)


attendance_service = AttendanceService()
