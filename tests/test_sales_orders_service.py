from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from buildmart import events
from buildmart.core.database import Base
from buildmart.core.errors import ConflictError, ValidationFailedError
from buildmart.crm.models import Client, Lead
from buildmart.products.models import Product, StockMovement
from buildmart.quotations.models import Quotation, QuotationItem
from buildmart.sales_orders.schemas import SalesOrderFromQuotation, SalesOrderStatusUpdate
from buildmart.sales_orders.service import sales_order_service


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


def _product(session: Session, sku: str, quantity: int) -> Product:
    product = Product(sku=sku, category="Aggregates", name=f"Product {sku}", quantity_on_hand=quantity)
    session.add(product)
    session.flush()
    return product


def _quotation(
    session: Session,
    *,
    status: str = "Accepted",
    client: Client | None = None,
    lead: Lead | None = None,
    items: list[tuple[Product | None, int]],
) -> Quotation:
    now = datetime.now(timezone.utc)
    quotation = Quotation(
        quotation_number=f"QTN-{now.year}-{uuid.uuid4().hex[:4]}",
        status=status,
        client_id=client.id if client else None,
        lead_id=lead.id if lead else None,
        issue_date=now,
        valid_until=now + timedelta(days=30),
        subtotal=0,
        discount=0,
        tax=0,
        total=0,
        items=[
            QuotationItem(
                product_id=product.id if product else None,
                position=position,
                description=product.name if product else "Custom item",
                quantity=quantity,
                unit_price=100,
                line_total=quantity * 100,
            )
            for position, (product, quantity) in enumerate(items)
        ],
    )
    session.add(quotation)
    session.commit()
    return quotation


@pytest.fixture()
def client_row(db_session: Session) -> Client:
    row = Client(client_name="Acme Builders", account_number="CL-000001", primary_email="buyer@acme.ph")
    db_session.add(row)
    db_session.commit()
    return row


def test_accepted_quotation_becomes_order_and_draws_down_stock(db_session: Session, client_row: Client) -> None:
    sand = _product(db_session, "AGG-SAND", 50)
    gravel = _product(db_session, "AGG-GRVL", 3)
    quotation = _quotation(db_session, client=client_row, items=[(sand, 10), (gravel, 5)])

    order = sales_order_service.create_from_quotation(
        db_session,
        uuid.uuid4(),
        quotation.id,
        SalesOrderFromQuotation(delivery_address="Lipa City", payment_terms="Net 30"),
    )

    assert order.status == "Pending"
    assert order.client_id == client_row.id
    assert order.quote_reference_id == quotation.id
    assert len(order.items) == 2

    db_session.refresh(sand)
    db_session.refresh(gravel)
    db_session.refresh(quotation)
    assert sand.quantity_on_hand == 40
    assert gravel.quantity_on_hand == -2
    assert quotation.status == "Converted"

    movements = db_session.scalars(select(StockMovement).order_by(StockMovement.quantity)).all()
    assert [(m.type, m.quantity) for m in movements] == [("OUT", 5), ("OUT", 10)]
    assert {m.reason for m in movements} == {f"Sales Order {order.id}"}
    assert events.published_events[-1]["event_type"] == "sales_order.created"


def test_only_accepted_quotations_convert(db_session: Session, client_row: Client) -> None:
    sand = _product(db_session, "AGG-SAND", 50)
    quotation = _quotation(db_session, status="Sent", client=client_row, items=[(sand, 1)])

    with pytest.raises(ConflictError):
        sales_order_service.create_from_quotation(db_session, uuid.uuid4(), quotation.id, SalesOrderFromQuotation())


def test_quotation_without_client_is_rejected(db_session: Session) -> None:
    lead = Lead(name="Walk-in", status="Proposal")
    db_session.add(lead)
    sand = _product(db_session, "AGG-SAND", 50)
    quotation = _quotation(db_session, lead=lead, items=[(sand, 1)])

    with pytest.raises(ValidationFailedError):
        sales_order_service.create_from_quotation(db_session, uuid.uuid4(), quotation.id, SalesOrderFromQuotation())

    db_session.refresh(sand)
    assert sand.quantity_on_hand == 50


def test_items_without_product_are_rejected(db_session: Session, client_row: Client) -> None:
    quotation = _quotation(db_session, client=client_row, items=[(None, 2)])

    with pytest.raises(ValidationFailedError):
        sales_order_service.create_from_quotation(db_session, uuid.uuid4(), quotation.id, SalesOrderFromQuotation())


def test_status_update_and_search(db_session: Session, client_row: Client) -> None:
    sand = _product(db_session, "AGG-SAND", 50)
    quotation = _quotation(db_session, client=client_row, items=[(sand, 1)])
    order = sales_order_service.create_from_quotation(db_session, uuid.uuid4(), quotation.id, SalesOrderFromQuotation())

    updated = sales_order_service.update_status(db_session, order.id, SalesOrderStatusUpdate(status="Shipped"))
    assert updated.status == "Shipped"

    found = sales_order_service.list_sales_orders(db_session, search="acme")
    assert found.total == 1
    assert sales_order_service.list_sales_orders(db_session, search="nobody").total == 0
    assert sales_order_service.list_sales_orders(db_session, search=str(order.id)).total == 1
