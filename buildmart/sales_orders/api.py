from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from buildmart.core.auth import AuthUser
from buildmart.core.database import get_db
from buildmart.core.rbac import require_permissions
from buildmart.sales_orders.schemas import (
    SalesOrderCreate,
    SalesOrderListResponse,
    SalesOrderRead,
    SalesOrderSortField,
    SalesOrderStatusUpdate,
    SalesOrderStatusValue,
)
from buildmart.sales_orders.service import sales_order_service

router = APIRouter(prefix="/api/sales-orders", tags=["sales-orders"])


@router.post("", response_model=SalesOrderRead, status_code=status.HTTP_201_CREATED)
def create_sales_order(
    dto: SalesOrderCreate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("manage:sales_orders", "convert:quotation_to_order")),
) -> SalesOrderRead:
    return sales_order_service.create_from_quotation(db, user.id, dto.quotation_id, dto)


@router.get("", response_model=SalesOrderListResponse)
def list_sales_orders(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=200),
    search: str | None = Query(default=None),
    status_filter: SalesOrderStatusValue | None = Query(default=None, alias="status"),
    sort_by: SalesOrderSortField = Query(default="createdAt", alias="sortBy"),
    sort_order: str = Query(default="desc", alias="sortOrder", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:sales_orders", "manage:sales_orders")),
) -> SalesOrderListResponse:
    return sales_order_service.list_sales_orders(
        db,
        page=page,
        limit=limit,
        search=search,
        status=status_filter,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@router.get("/{sales_order_id}", response_model=SalesOrderRead)
def get_sales_order(
    sales_order_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:sales_orders", "manage:sales_orders")),
) -> SalesOrderRead:
    return sales_order_service.get_sales_order(db, sales_order_id)


@router.patch("/{sales_order_id}", response_model=SalesOrderRead)
def update_sales_order_status(
    sales_order_id: uuid.UUID,
    dto: SalesOrderStatusUpdate,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("manage:sales_orders")),
) -> SalesOrderRead:
    return sales_order_service.update_status(db, sales_order_id, dto)
