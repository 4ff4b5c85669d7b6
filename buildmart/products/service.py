from __future__ import annotations

import logging
import random
import string
import uuid

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from buildmart.core.errors import ConflictError, NotFoundError, ValidationFailedError
from buildmart.metrics import observe_stock_movement
from buildmart.products.models import Product, StockMovement
from buildmart.products.schemas import (
    ProductCreate,
    ProductRead,
    ProductUpdate,
    StockAdjustment,
    StockMovementRead,
)


logger = logging.getLogger("buildmart.products")

SKU_PREFIXES = {"Aggregates": "AGG", "HeavyEquipment": "HEQ", "Steel": "STE"}
CATEGORY_ATTRIBUTES = {
    "Aggregates": ("source",),
    "HeavyEquipment": ("equipment_type",),
    "Steel": ("grade", "length"),
}
_SKU_ALPHABET = string.ascii_uppercase + string.digits
_SKU_ATTEMPTS = 5


def generate_sku(category: str) -> str:
    suffix = "".join(random.choices(_SKU_ALPHABET, k=4))
    return f"{SKU_PREFIXES.get(category, 'PRD')}-{suffix}"


def record_stock_movement(
    session: Session,
    product: Product,
    *,
    movement_type: str,
    quantity: int,
    reason: str | None,
    user_id: uuid.UUID | None,
) -> StockMovement:
    movement = StockMovement(
        product_id=product.id,
        type=movement_type,
        quantity=quantity,
        reason=reason,
        created_by_id=user_id,
    )
    session.add(movement)
    return movement


class ProductService:
    def list_products(self, session: Session) -> list[ProductRead]:
        rows = session.scalars(
            select(Product).where(Product.is_active.is_(True)).order_by(Product.category.asc(), Product.name.asc())
        ).all()
        return [ProductRead.model_validate(row) for row in rows]

    def list_by_category(self, session: Session, category: str) -> list[ProductRead]:
        if category not in SKU_PREFIXES:
            raise ValidationFailedError("invalid category", details={"category": category})
        rows = session.scalars(
            select(Product)
            .where(Product.category == category, Product.is_active.is_(True))
            .order_by(Product.name.asc())
        ).all()
        return [ProductRead.model_validate(row) for row in rows]

    def search_products(self, session: Session, query: str) -> list[ProductRead]:
        term = query.strip()
        if not term:
            raise ValidationFailedError("search query is required")
        pattern = f"%{term}%"
        rows = session.scalars(
            select(Product)
            .where(
                Product.is_active.is_(True),
                or_(Product.name.ilike(pattern), Product.sku.ilike(pattern), Product.description.ilike(pattern)),
            )
            .order_by(Product.name.asc())
        ).all()
        return [ProductRead.model_validate(row) for row in rows]

    def get_product(self, session: Session, product_id: uuid.UUID) -> ProductRead:
        return ProductRead.model_validate(self._get_product(session, product_id))

    def create_product(self, session: Session, actor_user_id: uuid.UUID, dto: ProductCreate) -> ProductRead:
        payload = dto.model_dump()
        allowed = CATEGORY_ATTRIBUTES[dto.category]
        for attributes in CATEGORY_ATTRIBUTES.values():
            for attribute in attributes:
                if attribute not in allowed:
                    payload[attribute] = None

        for _ in range(_SKU_ATTEMPTS):
            sku = generate_sku(dto.category)
            if session.scalar(select(Product.id).where(Product.sku == sku)) is None:
                break
        else:
            raise ConflictError("could not allocate a unique sku")

        product = Product(sku=sku, **payload)
        session.add(product)
        try:
            session.flush()
        except IntegrityError:
            session.rollback()
            raise ConflictError("product already exists")

        if product.quantity_on_hand:
            record_stock_movement(
                session,
                product,
                movement_type="IN",
                quantity=product.quantity_on_hand,
                reason="Initial stock",
                user_id=actor_user_id,
            )
            observe_stock_movement("IN")
        session.commit()
        session.refresh(product)
        logger.info("product.created", extra={"entity_id": str(product.id)})
        return ProductRead.model_validate(product)

    def update_product(self, session: Session, product_id: uuid.UUID, dto: ProductUpdate) -> ProductRead:
        product = self._get_product(session, product_id)
        allowed = CATEGORY_ATTRIBUTES.get(product.category, ())
        for key, value in dto.model_dump(exclude_unset=True).items():
            if key in {"name", "pricing_model"} and value is None:
                continue
            if key in {"source", "equipment_type", "grade", "length"} and key not in allowed:
                raise ValidationFailedError(
                    f"{key} does not apply to {product.category} products",
                    details={"field": key, "category": product.category},
                )
            setattr(product, key, value)
        session.commit()
        session.refresh(product)
        return ProductRead.model_validate(product)

    def delete_product(self, session: Session, product_id: uuid.UUID) -> ProductRead:
        product = self._get_product(session, product_id)
        product.is_active = False
        session.commit()
        session.refresh(product)
        logger.info("product.deactivated", extra={"entity_id": str(product.id)})
        return ProductRead.model_validate(product)

    def adjust_stock(
        self,
        session: Session,
        actor_user_id: uuid.UUID,
        product_id: uuid.UUID,
        dto: StockAdjustment,
    ) -> ProductRead:
        product = self._get_product(session, product_id)
        if dto.type == "ADJUSTMENT":
            delta = dto.quantity - product.quantity_on_hand
            product.quantity_on_hand = dto.quantity
        else:
            if dto.quantity == 0:
                raise ValidationFailedError("quantity must be greater than zero")
            delta = dto.quantity if dto.type == "IN" else -dto.quantity
            if product.quantity_on_hand + delta < 0:
                raise ValidationFailedError(
                    "insufficient stock",
                    details={"quantity_on_hand": product.quantity_on_hand, "requested": dto.quantity},
                )
            product.quantity_on_hand += delta

        record_stock_movement(
            session,
            product,
            movement_type=dto.type,
            quantity=dto.quantity,
            reason=dto.reason,
            user_id=actor_user_id,
        )
        session.commit()
        session.refresh(product)
        observe_stock_movement(dto.type)
        logger.info("product.stock_adjusted", extra={"entity_id": str(product.id), "count": delta})
        return ProductRead.model_validate(product)

    def list_movements(self, session: Session, product_id: uuid.UUID) -> list[StockMovementRead]:
        self._get_product(session, product_id)
        rows = session.scalars(
            select(StockMovement)
            .where(StockMovement.product_id == product_id)
            .order_by(StockMovement.created_at.desc())
        ).all()
        return [StockMovementRead.model_validate(row) for row in rows]

    def _get_product(self, session: Session, product_id: uuid.UUID) -> Product:
        product = session.get(Product, product_id)
        if product is None:
            raise NotFoundError("product not found")
        return product


product_service = ProductService()
