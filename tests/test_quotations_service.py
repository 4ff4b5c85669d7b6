from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from buildmart import events
from buildmart.core.config import Settings
from buildmart.core.database import Base
from buildmart.core.errors import ConflictError, ValidationFailedError
from buildmart.core.sequence import format_quotation_number
from buildmart.crm.models import Client, Lead
from buildmart.integrations.email import LogMailer
from buildmart.quotations.models import Quotation
from buildmart.quotations.pdf import build_customer_view
from buildmart.quotations.schemas import QuotationCreate, QuotationItemCreate, QuotationUpdate
from buildmart.quotations.service import QuotationService


class MemoryStorage:
    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, str]] = {}

    def put(self, key: str, content: bytes, content_type: str) -> str:
        self.objects[key] = (content, content_type)
        return f"https://files.buildmart.ph/{key}"

    def get(self, key: str) -> bytes:
        return self.objects[key][0]

    def delete(self, key: str) -> None:
        self.objects.pop(key, None)


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
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture()
def mailer() -> LogMailer:
    return LogMailer()


@pytest.fixture()
def service(storage: MemoryStorage, mailer: LogMailer) -> QuotationService:
    settings = Settings(app_env="local", email_dev_recipient="dev@buildmart.ph", company_name="BuildMart")
    return QuotationService(storage=storage, mailer=mailer, settings=settings)


@pytest.fixture()
def client_row(db_session: Session) -> Client:
    row = Client(
        client_name="Acme Builders",
        account_number="CL-000001",
        primary_email="buyer@acme.ph",
        billing_address_city="Lipa",
    )
    db_session.add(row)
    db_session.commit()
    return row


def _create(service: QuotationService, session: Session, **overrides) -> object:  # type: ignore[no-untyped-def]
    payload = {
        "valid_until": datetime.now(timezone.utc) + timedelta(days=30),
        "discount": 100,
        "tax": 50,
        "items": [
            QuotationItemCreate(description="Washed sand", quantity=10, unit_price=250),
            QuotationItemCreate(description="Delivery", quantity=1, unit_price=500, line_total=450),
        ],
    }
    payload.update(overrides)
    return service.create_quotation(session, uuid.uuid4(), QuotationCreate(**payload))


def test_create_quotation_computes_totals_and_number(
    db_session: Session, service: QuotationService, client_row: Client
) -> None:
    quotation = _create(service, db_session, client_id=client_row.id)

    year = datetime.now(timezone.utc).year
    assert quotation.quotation_number == format_quotation_number(year, 1)
    assert quotation.quotation_number == f"QTN-{year}-0001"
    assert quotation.status == "Draft"
    assert quotation.subtotal == 2950
    assert quotation.total == 2900
    assert [item.line_total for item in quotation.items] == [2500, 450]


def test_half_centavo_line_total_rounds_half_up(
    db_session: Session, service: QuotationService, client_row: Client
) -> None:
    quotation = _create(
        service,
        db_session,
        client_id=client_row.id,
        discount=0,
        tax=0,
        items=[QuotationItemCreate(description="Tie wire per meter", quantity=1, unit_price=1.005)],
    )

    item = quotation.items[0]
    assert item.unit_price == Decimal("1.0050")
    assert item.line_total == Decimal("1.01")
    assert quotation.subtotal == Decimal("1.01")
    assert quotation.total == Decimal("1.01")


def test_quotation_numbers_are_sequential(db_session: Session, service: QuotationService, client_row: Client) -> None:
    first = _create(service, db_session, client_id=client_row.id)
    second = _create(service, db_session, client_id=client_row.id)

    assert first.quotation_number.endswith("-0001")
    assert second.quotation_number.endswith("-0002")


def test_quotation_requires_exactly_one_customer() -> None:
    with pytest.raises(ValueError):
        QuotationCreate(
            valid_until=datetime.now(timezone.utc) + timedelta(days=1),
            items=[QuotationItemCreate(description="Sand", quantity=1, unit_price=1)],
        )


def test_valid_until_in_the_past_is_rejected(db_session: Session, service: QuotationService, client_row: Client) -> None:
    with pytest.raises(ValidationFailedError):
        _create(service, db_session, client_id=client_row.id, valid_until=datetime.now(timezone.utc) - timedelta(days=1))


def test_customer_view_prefers_client_then_lead(db_session: Session, client_row: Client) -> None:
    lead = Lead(name="Walk-in Buyer", email="walkin@example.com", phone="0917", status="New")
    db_session.add(lead)
    db_session.commit()

    with_client = Quotation(client=client_row, client_id=client_row.id, lead=lead, lead_id=lead.id)
    with_lead = Quotation(lead=lead, lead_id=lead.id)
    orphan = Quotation(id=uuid.uuid4())

    assert build_customer_view(with_client).name == "Acme Builders"
    assert build_customer_view(with_client).city == "Lipa"
    assert build_customer_view(with_lead).email == "walkin@example.com"
    with pytest.raises(ValidationFailedError):
        build_customer_view(orphan)


def test_render_pdf_returns_pdf_bytes(db_session: Session, service: QuotationService, client_row: Client) -> None:
    quotation = _create(service, db_session, client_id=client_row.id, notes_to_customer="Prices valid for 30 days")

    filename, content = service.render_pdf(db_session, quotation.id)

    assert filename == f"{quotation.quotation_number}.pdf"
    assert content.startswith(b"%PDF")


def test_send_quotation_stores_pdf_and_mails_dev_recipient(
    db_session: Session,
    service: QuotationService,
    storage: MemoryStorage,
    mailer: LogMailer,
    client_row: Client,
) -> None:
    quotation = _create(service, db_session, client_id=client_row.id)

    sent = service.send_quotation(db_session, uuid.uuid4(), quotation.id)

    key = f"quotations/pdfs/{quotation.quotation_number}.pdf"
    assert sent.status == "Sent"
    assert sent.pdf_url == f"https://files.buildmart.ph/{key}"
    assert storage.objects[key][1] == "application/pdf"
    assert len(mailer.sent) == 1
    assert mailer.sent[0].to == "dev@buildmart.ph"
    assert mailer.sent[0].attachments[0].filename == f"{quotation.quotation_number}.pdf"
    assert events.published_events[-1]["event_type"] == "quotation.sent"

    with pytest.raises(ConflictError):
        service.send_quotation(db_session, uuid.uuid4(), quotation.id)


def test_send_without_email_is_rejected(db_session: Session, service: QuotationService) -> None:
    lead = Lead(name="No Email", phone="0917", status="New")
    db_session.add(lead)
    db_session.commit()
    quotation = _create(service, db_session, lead_id=lead.id)

    with pytest.raises(ValidationFailedError):
        service.send_quotation(db_session, uuid.uuid4(), quotation.id)


def test_only_drafts_can_be_edited(db_session: Session, service: QuotationService, client_row: Client) -> None:
    quotation = _create(service, db_session, client_id=client_row.id)

    updated = service.update_quotation(db_session, quotation.id, QuotationUpdate(discount=0))
    assert updated.total == 3000

    service.accept(db_session, quotation.id)
    with pytest.raises(ConflictError):
        service.update_quotation(db_session, quotation.id, QuotationUpdate(tax=0))


def test_reject_after_accept_is_a_conflict(db_session: Session, service: QuotationService, client_row: Client) -> None:
    quotation = _create(service, db_session, client_id=client_row.id)
    service.accept(db_session, quotation.id)

    with pytest.raises(ConflictError):
        service.reject(db_session, quotation.id)
