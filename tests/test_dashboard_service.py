from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from buildmart.core.config import get_settings
from buildmart.core.database import Base
from buildmart.crm.models import ActivityLog, Lead
from buildmart.dashboard.service import dashboard_service, percent_change
from buildmart.inquiries.models import Inquiry
from buildmart.quotations.models import Quotation
from buildmart.users.models import User

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_settings() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def _quotation(session: Session, status: str, total: float, created_at: datetime) -> None:
    session.add(
        Quotation(
            quotation_number=f"QTN-{created_at.year}-{uuid.uuid4().hex[:6]}",
            status=status,
            issue_date=created_at,
            valid_until=created_at + timedelta(days=30),
            subtotal=total,
            total=total,
            created_at=created_at,
        )
    )


def _inquiry(session: Session, source: str, created_at: datetime) -> None:
    session.add(
        Inquiry(
            customer_name="Walk-in",
            phone_number="0917",
            product_type="Aggregates",
            quantity=1,
            delivery_method="Pickup",
            reference_source=source,
            created_at=created_at,
        )
    )


@pytest.mark.parametrize(
    ("current", "previous", "expected"),
    [
        (150, 100, "+50.0%"),
        (50, 100, "-50.0%"),
        (100, 100, "+0.0%"),
        (5, 0, "+100%"),
        (0, 0, "0%"),
    ],
)
def test_percent_change(current: float, previous: float, expected: str) -> None:
    assert percent_change(current, previous) == expected


def test_key_metrics_compare_current_and_previous_period(db_session: Session) -> None:
    _quotation(db_session, "Accepted", 1000, datetime(2026, 10, 15, tzinfo=timezone.utc))
    _quotation(db_session, "Accepted", 500, datetime(2026, 10, 8, tzinfo=timezone.utc))
    _quotation(db_session, "Rejected", 9999, datetime(2026, 10, 15, tzinfo=timezone.utc))
    _quotation(db_session, "Draft", 300, datetime(2026, 10, 18, tzinfo=timezone.utc))
    db_session.add(Lead(name="Fresh", status="New", estimated_value=2000, created_at=datetime(2026, 10, 16, tzinfo=timezone.utc)))
    db_session.add(Lead(name="Gone", status="Lost", created_at=datetime(2026, 10, 16, tzinfo=timezone.utc)))
    db_session.commit()

    metrics = {item.title: item for item in dashboard_service.key_metrics(db_session, "7d", now=NOW)}

    assert metrics["Total Revenue"].value == "PHP 1,000.00"
    assert metrics["Total Revenue"].change == "+100.0%"
    assert metrics["Total Revenue"].trend == "up"
    assert metrics["Active Leads"].value == "1"
    assert metrics["Active Leads"].change == "+100%"
    assert metrics["New Clients"].value == "0"
    assert metrics["New Clients"].change == "0%"
    assert metrics["Pending Quotations"].value == "1"


def test_overview_builds_every_section(db_session: Session) -> None:
    user = User(name="Ana Reyes", email="ana@buildmart.ph", password_hash="x")
    db_session.add(user)
    db_session.flush()
    _quotation(db_session, "Accepted", 1000, datetime(2026, 10, 15, tzinfo=timezone.utc))
    _quotation(db_session, "Converted", 250, datetime(2026, 8, 3, tzinfo=timezone.utc))
    _quotation(db_session, "Accepted", 777, datetime(2026, 1, 3, tzinfo=timezone.utc))
    db_session.add(Lead(name="Fresh", status="New", estimated_value=2000))
    db_session.add(Lead(name="Hot", status="Negotiation", estimated_value=5000))
    db_session.add(Lead(name="Archived", status="New", estimated_value=100, is_active=False))
    _inquiry(db_session, "Facebook", NOW - timedelta(days=1))
    _inquiry(db_session, "Facebook", NOW - timedelta(days=2))
    _inquiry(db_session, "Referral", NOW - timedelta(days=3))
    _inquiry(db_session, "Website", NOW - timedelta(days=40))
    db_session.add(ActivityLog(action="Created", description="Lead created", user_id=user.id))
    db_session.commit()

    overview = dashboard_service.overview(db_session, "30d", now=NOW)

    assert overview.time_range == "30d"
    assert [point.month for point in overview.revenue_data] == ["May", "Jun", "Jul", "Aug", "Sep", "Oct"]
    assert [point.revenue for point in overview.revenue_data] == [0, 0, 0, 250, 0, 1000]
    pipeline = {stage.status: stage for stage in overview.sales_pipeline}
    assert list(pipeline) == ["New", "Contacted", "Qualified", "Proposal", "Negotiation", "Converted", "Lost"]
    assert (pipeline["New"].count, pipeline["New"].value) == (1, 2000)
    assert (pipeline["Negotiation"].count, pipeline["Negotiation"].value) == (1, 5000)
    assert [(item.source, item.count) for item in overview.inquiry_sources] == [("Facebook", 2), ("Referral", 1)]
    assert [(item.action, item.user_name) for item in overview.recent_activity] == [("Created", "Ana Reyes")]
