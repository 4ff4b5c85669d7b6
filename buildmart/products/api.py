from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from buildmart.core.auth import AuthUser
from buildmart.core.database import get_db
from buildmart.core.rbac import require_permissions
from buildmart.products.schemas import ProductCreate, ProductRead, ProductUpdate, StockAdjustment, StockMovementRead
from buildmart.products.service import product_service

router = APIRouter(prefix="/api/products", tags=["products"])


@router.get("", response_model=list[ProductRead])
def list_products(
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:products", "manage:products")),
) -> list[ProductRead]:
    return product_service.list_products(db)


@router.get("/category/{category}", response_model=list[ProductRead])
def list_products_by_category(
    category: str,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:products", "manage:products")),
) -> list[ProductRead]:
    return product_service.list_by_category(db, category)


@router.get("/search", response_model=list[ProductRead])
def search_products(
    q: str = Query(min_length=1),
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:products", "manage:products")),
) -> list[ProductRead]:
    return product_service.search_products(db, q)


@router.post("", response_model=ProductRead, status_code=status.HTTP_201_CREATED)
def create_product(
    dto: ProductCreate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("manage:products")),
) -> ProductRead:
    return product_service.create_product(db, user.id, dto)


@router.get("/{product_id}", response_model=ProductRead)
def get_product(
    product_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:products", "manage:products")),
) -> ProductRead:
    return product_service.get_product(db, product_id)


@router.put("/{product_id}", response_model=ProductRead)
def update_product(
    product_id: uuid.UUID,
    dto: ProductUpdate,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("manage:products")),
) -> ProductRead:
    return product_service.update_product(db, product_id, dto)


@router.delete("/{product_id}", response_model=ProductRead)
def delete_product(
    product_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("manage:products")),
) -> ProductRead:
    return product_service.delete_product(db, product_id)


@router.post("/{product_id}/stock", response_model=ProductRead)
def adjust_product_stock(
    product_id: uuid.UUID,
    dto: StockAdjustment,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("manage:products")),
) -> ProductRead:
    return product_service.adjust_stock(db, user.id, product_id, dto)


@router.get("/{product_id}/movements", response_model=list[StockMovementRead])
def list_stock_movements(
    product_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:products", "manage:products")),
) -> list[StockMovementRead]:
    return product_service.list_movements(db, product_id)
