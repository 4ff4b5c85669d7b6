from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

QuotationStatusValue = Literal["Draft", "Sent", "Accepted", "Rejected", "Expired", "Converted"]


class QuotationItemCreate(BaseModel):
    product_id: UUID | None = None
    description: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    line_total: Decimal | None = Field(default=None, ge=0)


class QuotationCreate(BaseModel):
    lead_id: UUID | None = None
    client_id: UUID | None = None
    valid_until: datetime
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    tax: Decimal = Field(default=Decimal("0"), ge=0)
    notes_to_customer: str | None = None
    internal_notes: str | None = None
    items: list[QuotationItemCreate] = Field(min_length=1)

    @model_validator(mode="after")
    def _single_customer(self) -> "QuotationCreate":
        if (self.lead_id is None) == (self.client_id is None):
            raise ValueError("exactly one of lead_id or client_id is required")
        return self


class QuotationUpdate(BaseModel):
    valid_until: datetime | None = None
    discount: Decimal | None = Field(default=None, ge=0)
    tax: Decimal | None = Field(default=None, ge=0)
    notes_to_customer: str | None = None
    internal_notes: str | None = None
    items: list[QuotationItemCreate] | None = Field(default=None, min_length=1)


class QuotationItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID | None
    description: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class QuotationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    quotation_number: str
    status: str
    lead_id: UUID | None
    client_id: UUID | None
    issue_date: datetime
    valid_until: datetime
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal
    notes_to_customer: str | None
    internal_notes: str | None
    pdf_url: str | None
    created_by_id: UUID | None
    items: list[QuotationItemRead]
    created_at: datetime
    updated_at: datetime


class QuotationListMeta(BaseModel):
    total: int
    page: int
    page_size: int
    total_pages: int


class QuotationListResponse(BaseModel):
    data: list[QuotationRead]
    meta: QuotationListMeta
