from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

ProductCategory = Literal["Aggregates", "HeavyEquipment", "Steel"]
PricingModel = Literal["PerHour", "PerDay", "PerUnit"]
StockMovementType = Literal["IN", "OUT", "ADJUSTMENT"]


class ProductCreate(BaseModel):
    category: ProductCategory
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    pricing_model: PricingModel = "PerUnit"
    unit: str | None = None
    pick_up_price: Decimal | None = Field(default=None, ge=0)
    delivery_price: Decimal | None = Field(default=None, ge=0)
    quantity_on_hand: int = Field(default=0, ge=0)
    source: str | None = None
    equipment_type: str | None = None
    grade: str | None = None
    length: str | None = None


class ProductUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    pricing_model: PricingModel | None = None
    unit: str | None = None
    pick_up_price: Decimal | None = Field(default=None, ge=0)
    delivery_price: Decimal | None = Field(default=None, ge=0)
    source: str | None = None
    equipment_type: str | None = None
    grade: str | None = None
    length: str | None = None


class StockAdjustment(BaseModel):
    type: StockMovementType
    quantity: int = Field(ge=0)
    reason: str | None = Field(default=None, max_length=255)


class ProductRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sku: str
    category: str
    name: str
    description: str | None
    pricing_model: str
    unit: str | None
    pick_up_price: Decimal | None
    delivery_price: Decimal | None
    quantity_on_hand: int
    source: str | None
    equipment_type: str | None
    grade: str | None
    length: str | None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class StockMovementRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    type: str
    quantity: int
    reason: str | None
    created_by_id: UUID | None
    created_at: datetime
