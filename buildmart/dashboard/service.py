from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from buildmart.core.config import get_settings
from buildmart.core.money import ZERO, to_money
from buildmart.crm.models import ActivityLog, Client, Lead
from buildmart.dashboard.schemas import (
    DashboardRead,
    KeyMetric,
    PipelineStage,
    RecentActivity,
    RevenuePoint,
    SourceCount,
)
from buildmart.inquiries.lifecycle import LEAD_STATUSES
from buildmart.inquiries.models import Inquiry
from buildmart.quotations.models import Quotation
from buildmart.users.models import utcnow

RANGE_DAYS = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}
REVENUE_STATUSES = ("Accepted", "Converted")
ACTIVE_LEAD_STATUSES = ("New", "Contacted", "Qualified", "Proposal", "Negotiation")
PENDING_QUOTATION_STATUSES = ("Draft", "Sent")


def percent_change(current: Decimal | int, previous: Decimal | int) -> str:
    if previous == 0:
        return "+100%" if current > 0 else "0%"
    change = (current - previous) / previous * 100
    return f"{'+' if change >= 0 else ''}{change:.1f}%"


def _metric(title: str, value: str, current: Decimal | int, previous: Decimal | int) -> KeyMetric:
    return KeyMetric(
        title=title,
        value=value,
        change=percent_change(current, previous),
        trend="up" if current >= previous else "down",
    )


def _last_months(now: datetime, count: int) -> list[tuple[int, int]]:
    months: list[tuple[int, int]] = []
    year, month = now.year, now.month
    for _ in range(count):
        months.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    months.reverse()
    return months


class DashboardService:
    def overview(self, session: Session, time_range: str = "7d", *, now: datetime | None = None) -> DashboardRead:
        now = now or utcnow()
        return DashboardRead(
            time_range=time_range,
            key_metrics=self.key_metrics(session, time_range, now=now),
            revenue_data=self.revenue_by_month(session, now=now),
            sales_pipeline=self.sales_pipeline(session),
            inquiry_sources=self.inquiry_sources(session, time_range, now=now),
            recent_activity=self.recent_activity(session),
        )

    def key_metrics(self, session: Session, time_range: str, *, now: datetime) -> list[KeyMetric]:
        days = RANGE_DAYS.get(time_range, 7)
        end = now
        start = (now - timedelta(days=days)).replace(hour=0, minute=0, second=0, microsecond=0)
        period = end - start
        prev_start, prev_end = start - period, start

        def revenue(lower: datetime, upper: datetime) -> Decimal:
            total = session.scalar(
                select(func.coalesce(func.sum(Quotation.total), 0)).where(
                    Quotation.status.in_(REVENUE_STATUSES),
                    Quotation.created_at >= lower,
                    Quotation.created_at < upper,
                )
            )
            return to_money(total)

        def count(model, *criteria) -> int:  # type: ignore[no-untyped-def]
            return int(session.scalar(select(func.count(model.id)).where(*criteria)) or 0)

        current_revenue, previous_revenue = revenue(start, end), revenue(prev_start, prev_end)
        current_leads = count(Lead, Lead.is_active.is_(True), Lead.status.in_(ACTIVE_LEAD_STATUSES), Lead.created_at >= start, Lead.created_at < end)
        previous_leads = count(Lead, Lead.is_active.is_(True), Lead.status.in_(ACTIVE_LEAD_STATUSES), Lead.created_at >= prev_start, Lead.created_at < prev_end)
        current_clients = count(Client, Client.is_active.is_(True), Client.created_at >= start, Client.created_at < end)
        previous_clients = count(Client, Client.is_active.is_(True), Client.created_at >= prev_start, Client.created_at < prev_end)
        current_pending = count(Quotation, Quotation.status.in_(PENDING_QUOTATION_STATUSES), Quotation.created_at >= start, Quotation.created_at < end)
        previous_pending = count(Quotation, Quotation.status.in_(PENDING_QUOTATION_STATUSES), Quotation.created_at >= prev_start, Quotation.created_at < prev_end)

        symbol = get_settings().currency_symbol
        return [
            _metric("Total Revenue", f"{symbol} {current_revenue:,.2f}", current_revenue, previous_revenue),
            _metric("Active Leads", str(current_leads), current_leads, previous_leads),
            _metric("New Clients", str(current_clients), current_clients, previous_clients),
            _metric("Pending Quotations", str(current_pending), current_pending, previous_pending),
        ]

    def revenue_by_month(self, session: Session, *, now: datetime) -> list[RevenuePoint]:
        months = _last_months(now, 6)
        first_year, first_month = months[0]
        start = now.replace(year=first_year, month=first_month, day=1, hour=0, minute=0, second=0, microsecond=0)
        rows = session.execute(
            select(Quotation.created_at, Quotation.total).where(
                Quotation.status.in_(REVENUE_STATUSES),
                Quotation.created_at >= start,
            )
        ).all()

        revenue: dict[tuple[int, int], Decimal] = defaultdict(lambda: ZERO)
        counts: dict[tuple[int, int], int] = defaultdict(int)
        for created_at, total in rows:
            key = (created_at.year, created_at.month)
            revenue[key] += to_money(total)
            counts[key] += 1
        return [
            RevenuePoint(
                month=datetime(year, month, 1).strftime("%b"),
                revenue=revenue[(year, month)],
                quotations=counts[(year, month)],
            )
            for year, month in months
        ]

    def sales_pipeline(self, session: Session) -> list[PipelineStage]:
        rows = session.execute(
            select(Lead.status, func.count(Lead.id), func.coalesce(func.sum(Lead.estimated_value), 0))
            .where(Lead.is_active.is_(True))
            .group_by(Lead.status)
        ).all()
        by_status = {status: (int(count), to_money(value)) for status, count, value in rows}
        return [
            PipelineStage(status=status, count=by_status.get(status, (0, ZERO))[0], value=by_status.get(status, (0, ZERO))[1])
            for status in LEAD_STATUSES
        ]

    def inquiry_sources(self, session: Session, time_range: str, *, now: datetime) -> list[SourceCount]:
        start = now - timedelta(days=RANGE_DAYS.get(time_range, 7))
        rows = session.execute(
            select(Inquiry.reference_source, func.count(Inquiry.id))
            .where(Inquiry.created_at >= start)
            .group_by(Inquiry.reference_source)
            .order_by(func.count(Inquiry.id).desc())
        ).all()
        return [SourceCount(source=source, count=int(count)) for source, count in rows]

    def recent_activity(self, session: Session, limit: int = 10) -> list[RecentActivity]:
        rows = session.scalars(
            select(ActivityLog)
            .options(selectinload(ActivityLog.user))
            .order_by(ActivityLog.created_at.desc())
            .limit(limit)
        ).all()
        return [
            RecentActivity(
                id=row.id,
                action=row.action,
                description=row.description,
                user_name=row.user.name if row.user is not None else None,
                created_at=row.created_at,
            )
            for row in rows
        ]


dashboard_service = DashboardService()
