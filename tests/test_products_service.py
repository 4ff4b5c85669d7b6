from __future__ import annotations

import re
import uuid
from collections.abc import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from buildmart.core.database import Base
from buildmart.core.errors import ValidationFailedError
from buildmart.products.schemas import ProductCreate, ProductUpdate, StockAdjustment
from buildmart.products.service import generate_sku, product_service


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


def _gravel(session: Session, quantity: int = 100):  # type: ignore[no-untyped-def]
    return product_service.create_product(
        session,
        uuid.uuid4(),
        ProductCreate(
            category="Aggregates",
            name="Washed Gravel 3/4",
            unit="cubic meter",
            pick_up_price=1200,
            delivery_price=1500,
            quantity_on_hand=quantity,
            source="Batangas Quarry",
            grade="ignored for aggregates",
        ),
    )


def test_generate_sku_uses_category_prefix() -> None:
    assert re.fullmatch(r"AGG-[A-Z0-9]{4}", generate_sku("Aggregates"))
    assert re.fullmatch(r"HEQ-[A-Z0-9]{4}", generate_sku("HeavyEquipment"))
    assert re.fullmatch(r"STE-[A-Z0-9]{4}", generate_sku("Steel"))
    assert generate_sku("Unknown").startswith("PRD-")


def test_create_product_drops_foreign_attributes_and_records_initial_stock(db_session: Session) -> None:
    product = _gravel(db_session)

    assert product.sku.startswith("AGG-")
    assert product.source == "Batangas Quarry"
    assert product.grade is None
    movements = product_service.list_movements(db_session, product.id)
    assert [(m.type, m.quantity, m.reason) for m in movements] == [("IN", 100, "Initial stock")]


def test_update_rejects_attribute_of_another_category(db_session: Session) -> None:
    product = _gravel(db_session)

    with pytest.raises(ValidationFailedError):
        product_service.update_product(db_session, product.id, ProductUpdate(grade="Grade 60"))


def test_adjust_stock_in_out_and_absolute(db_session: Session) -> None:
    product = _gravel(db_session, quantity=10)
    actor = uuid.uuid4()

    assert product_service.adjust_stock(db_session, actor, product.id, StockAdjustment(type="IN", quantity=5)).quantity_on_hand == 15
    assert product_service.adjust_stock(db_session, actor, product.id, StockAdjustment(type="OUT", quantity=3)).quantity_on_hand == 12
    assert (
        product_service.adjust_stock(db_session, actor, product.id, StockAdjustment(type="ADJUSTMENT", quantity=40)).quantity_on_hand
        == 40
    )
    assert len(product_service.list_movements(db_session, product.id)) == 4


def test_adjust_stock_out_below_zero_is_rejected(db_session: Session) -> None:
    product = _gravel(db_session, quantity=2)

    with pytest.raises(ValidationFailedError):
        product_service.adjust_stock(db_session, uuid.uuid4(), product.id, StockAdjustment(type="OUT", quantity=3))


def test_delete_is_soft_and_hides_from_listing(db_session: Session) -> None:
    product = _gravel(db_session)

    deleted = product_service.delete_product(db_session, product.id)

    assert deleted.is_active is False
    assert product_service.list_products(db_session) == []
    assert product_service.get_product(db_session, product.id).id == product.id


def test_list_by_unknown_category_is_rejected(db_session: Session) -> None:
    with pytest.raises(ValidationFailedError):
        product_service.list_by_category(db_session, "Lumber")


def test_search_matches_name(db_session: Session) -> None:
    _gravel(db_session)

    assert [p.name for p in product_service.search_products(db_session, "gravel")] == ["Washed Gravel 3/4"]
