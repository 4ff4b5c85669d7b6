from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

SalesOrderStatusValue = Literal["Pending", "Processing", "Shipped", "Delivered", "Cancelled"]
SalesOrderSortField = Literal["createdAt", "updatedAt", "status", "deliveryDate", "client"]


class SalesOrderFromQuotation(BaseModel):
    delivery_date: datetime | None = None
    delivery_address: str | None = None
    payment_terms: str | None = Field(default=None, max_length=255)


class SalesOrderCreate(SalesOrderFromQuotation):
    quotation_id: UUID


class SalesOrderStatusUpdate(BaseModel):
    status: SalesOrderStatusValue


class SalesOrderClientSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    client_name: str
    account_number: str


class SalesOrderItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class SalesOrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    client_id: UUID
    client: SalesOrderClientSummary | None
    quote_reference_id: UUID | None
    status: str
    delivery_date: datetime | None
    delivery_address: str | None
    payment_terms: str | None
    created_by_id: UUID | None
    items: list[SalesOrderItemRead]
    created_at: datetime
    updated_at: datetime


class SalesOrderListResponse(BaseModel):
    orders: list[SalesOrderRead]
    total: int
    page: int
    total_pages: int
