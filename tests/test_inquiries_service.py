from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from buildmart import events
from buildmart.core.database import Base
from buildmart.core.errors import ConflictError
from buildmart.crm.models import ActivityLog, Company, ContactHistory, Lead
from buildmart.inquiries.schemas import (
    CustomerCheckRequest,
    DueDateUpdate,
    InquiryCreate,
    QuoteRequest,
    ScheduleRequest,
)
from buildmart.inquiries.service import inquiry_service
from buildmart.users.models import User


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
def clear_events() -> Generator[None, None, None]:
    events.published_events.clear()
    yield
    events.published_events.clear()


@pytest.fixture()
def actor(db_session: Session) -> User:
    user = User(name="Sales Agent", email="agent@buildmart.ph", password_hash="x")
    db_session.add(user)
    db_session.commit()
    return user


def _lead(session: Session, *, status: str, email: str = "juan@example.com", phone: str = "09170000000") -> Lead:
    lead = Lead(name="Juan Dela Cruz", email=email, phone=phone, status=status)
    session.add(lead)
    session.commit()
    return lead


def _inquiry_payload(**overrides) -> InquiryCreate:  # type: ignore[no-untyped-def]
    payload = {
        "customer_name": "Juan Dela Cruz",
        "phone_number": "09179999999",
        "email": "juan@example.com",
        "product_type": "AGGREGATE",
        "quantity": 10,
        "delivery_method": "Pickup",
        "reference_source": "Facebook",
    }
    payload.update(overrides)
    return InquiryCreate(**payload)


def _count(session: Session, model, lead_id: uuid.UUID) -> int:  # type: ignore[no-untyped-def]
    return int(session.scalar(select(func.count(model.id)).where(model.lead_id == lead_id)) or 0)


def test_inquiry_for_contacted_lead_keeps_status_and_records_contact(db_session: Session, actor: User) -> None:
    lead = _lead(db_session, status="Contacted")

    inquiry = inquiry_service.create_inquiry(db_session, actor.id, _inquiry_payload())

    db_session.refresh(lead)
    assert inquiry.related_lead_id == lead.id
    assert inquiry.status == "New"
    assert lead.status == "Contacted"
    assert _count(db_session, ContactHistory, lead.id) == 1
    assert _count(db_session, ActivityLog, lead.id) == 0

    contact = db_session.scalar(select(ContactHistory).where(ContactHistory.lead_id == lead.id))
    assert contact is not None
    assert contact.method == "Inquiry Form"
    assert contact.summary == "New inquiry for AGGREGATE, quantity: 10"
    assert [event["event_type"] for event in events.published_events] == ["inquiry.created"]


def test_quote_promotes_contacted_lead_to_proposal(db_session: Session, actor: User) -> None:
    lead = _lead(db_session, status="Contacted")
    inquiry = inquiry_service.create_inquiry(db_session, actor.id, _inquiry_payload())

    quoted = inquiry_service.create_quote(db_session, actor.id, inquiry.id, QuoteRequest(total_price=5000))

    db_session.refresh(lead)
    assert quoted.status == "Quoted"
    assert quoted.quoted_price == 5000
    assert quoted.quoted_by == "Sales Agent"
    assert lead.status == "Proposal"
    assert lead.estimated_value == 5000

    activities = db_session.scalars(select(ActivityLog).where(ActivityLog.lead_id == lead.id)).all()
    assert len(activities) == 1
    assert activities[0].action == "QUOTE_CREATED"
    assert (activities[0].old_status, activities[0].new_status) == ("Contacted", "Proposal")
    assert activities[0].details["inquiry_id"] == str(inquiry.id)


def test_quote_does_not_regress_negotiation_lead(db_session: Session, actor: User) -> None:
    lead = _lead(db_session, status="Negotiation")
    inquiry = inquiry_service.create_inquiry(db_session, actor.id, _inquiry_payload())

    inquiry_service.create_quote(db_session, actor.id, inquiry.id, QuoteRequest(total_price=7500))

    db_session.refresh(lead)
    assert lead.status == "Negotiation"
    assert lead.estimated_value is None
    assert _count(db_session, ActivityLog, lead.id) == 0


def test_approve_then_fulfill_walks_lead_to_converted(db_session: Session, actor: User) -> None:
    lead = _lead(db_session, status="Proposal")
    inquiry = inquiry_service.create_inquiry(db_session, actor.id, _inquiry_payload())

    inquiry_service.approve(db_session, actor.id, inquiry.id)
    db_session.refresh(lead)
    assert lead.status == "Negotiation"

    inquiry_service.approve(db_session, actor.id, inquiry.id)
    db_session.refresh(lead)
    assert lead.status == "Negotiation"
    assert _count(db_session, ActivityLog, lead.id) == 1

    fulfilled = inquiry_service.fulfill(db_session, actor.id, inquiry.id)
    db_session.refresh(lead)
    assert fulfilled.status == "Fulfilled"
    assert lead.status == "Converted"


def test_schedule_sets_preferred_date_and_always_records_contact(db_session: Session, actor: User) -> None:
    lead = _lead(db_session, status="Negotiation")
    inquiry = inquiry_service.create_inquiry(db_session, actor.id, _inquiry_payload())
    when = datetime(2026, 11, 3, 9, 0, tzinfo=timezone.utc)

    scheduled = inquiry_service.schedule(db_session, actor.id, inquiry.id, ScheduleRequest(scheduled_date=when))

    assert scheduled.status == "Scheduled"
    assert scheduled.preferred_date.replace(tzinfo=timezone.utc) == when
    contacts = db_session.scalars(
        select(ContactHistory).where(ContactHistory.lead_id == lead.id).order_by(ContactHistory.timestamp)
    ).all()
    assert [contact.summary for contact in contacts][-1] == "Delivery scheduled for 2026-11-03"
    assert _count(db_session, ActivityLog, lead.id) == 0


def test_inquiry_without_matching_lead_is_unlinked(db_session: Session, actor: User) -> None:
    inquiry = inquiry_service.create_inquiry(
        db_session,
        actor.id,
        _inquiry_payload(email="new@example.com", phone_number="09990000000"),
    )

    assert inquiry.related_lead_id is None
    approved = inquiry_service.approve(db_session, actor.id, inquiry.id)
    assert approved.status == "Approved"


def test_convert_to_lead_creates_company_and_links_inquiry(db_session: Session, actor: User) -> None:
    inquiry = inquiry_service.create_inquiry(
        db_session,
        actor.id,
        _inquiry_payload(email="maria@example.com", phone_number="09181111111", customer_name="Maria Santos"),
    )
    inquiry_service.create_quote(db_session, actor.id, inquiry.id, QuoteRequest(total_price=12000))

    lead = inquiry_service.convert_to_lead(db_session, actor.id, inquiry.id)

    assert lead.status == "Proposal"
    assert lead.source == "Inquiry"
    assert lead.sub_source == "Facebook"
    assert lead.estimated_value == 12000
    assert lead.assigned_to_id == actor.id
    assert lead.follow_up_date is not None
    company = db_session.get(Company, lead.company_id)
    assert company is not None and company.name == "Maria Santos's Company"

    refreshed = inquiry_service.get_inquiry(db_session, inquiry.id)
    assert refreshed.related_lead_id == lead.id
    assert refreshed.status == "Quoted"
    assert _count(db_session, ContactHistory, lead.id) == 1


def test_convert_to_lead_rejects_already_linked_inquiry(db_session: Session, actor: User) -> None:
    _lead(db_session, status="New")
    inquiry = inquiry_service.create_inquiry(db_session, actor.id, _inquiry_payload())

    with pytest.raises(ConflictError):
        inquiry_service.convert_to_lead(db_session, actor.id, inquiry.id)


@pytest.mark.parametrize(
    ("final_status", "expected_lead_status"),
    [("Fulfilled", "Converted"), ("Cancelled", "New")],
)
def test_convert_to_lead_keeps_inquiry_status(
    db_session: Session, actor: User, final_status: str, expected_lead_status: str
) -> None:
    inquiry = inquiry_service.create_inquiry(
        db_session,
        actor.id,
        _inquiry_payload(email="walkin@example.com", phone_number="09185555555", customer_name="Walk In"),
    )
    assert inquiry.related_lead_id is None
    if final_status == "Fulfilled":
        inquiry_service.fulfill(db_session, actor.id, inquiry.id)
    else:
        inquiry_service.cancel(db_session, actor.id, inquiry.id)

    lead = inquiry_service.convert_to_lead(db_session, actor.id, inquiry.id)

    assert lead.status == expected_lead_status
    refreshed = inquiry_service.get_inquiry(db_session, inquiry.id)
    assert refreshed.related_lead_id == lead.id
    assert refreshed.status == final_status


def test_cancel_twice_is_a_conflict(db_session: Session, actor: User) -> None:
    inquiry = inquiry_service.create_inquiry(db_session, actor.id, _inquiry_payload(email="x@example.com", phone_number="1"))
    inquiry_service.cancel(db_session, actor.id, inquiry.id)

    with pytest.raises(ConflictError):
        inquiry_service.cancel(db_session, actor.id, inquiry.id)


def test_check_customer_matches_company_by_name(db_session: Session) -> None:
    db_session.add(Company(name="Acme Builders"))
    db_session.commit()

    result = inquiry_service.check_customer_exists(db_session, CustomerCheckRequest(company_name="Acme Builders"))
    assert result.exists is True
    assert result.company is not None and result.company.name == "Acme Builders"

    missing = inquiry_service.check_customer_exists(db_session, CustomerCheckRequest(email="nobody@example.com"))
    assert missing.exists is False
    assert missing.lead is None


def test_statistics_counts_conversion_rate(db_session: Session, actor: User) -> None:
    first = inquiry_service.create_inquiry(db_session, actor.id, _inquiry_payload(email="a@example.com", phone_number="1"))
    inquiry_service.create_inquiry(db_session, actor.id, _inquiry_payload(email="b@example.com", phone_number="2"))
    inquiry_service.approve(db_session, actor.id, first.id)

    stats = inquiry_service.statistics(db_session)

    assert stats.total_inquiries == 2
    assert stats.conversion_rate == 50.0
    status_counts = {row.key: row.count for row in stats.by_status}
    assert status_counts["Approved"] == 1
    assert status_counts["New"] == 1
    assert status_counts["Cancelled"] == 0
    assert len(stats.monthly_trends) == 6
    assert stats.monthly_trends[-1].count == 2


def test_due_date_in_past_is_stored(db_session: Session, actor: User) -> None:
    inquiry = inquiry_service.create_inquiry(db_session, actor.id, _inquiry_payload(email="c@example.com", phone_number="3"))
    due = datetime.now(timezone.utc) - timedelta(days=1)

    updated = inquiry_service.update_due_date(db_session, inquiry.id, DueDateUpdate(due_date=due))
    assert updated.due_date is not None
