from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from buildmart.crm.schemas import CompanyRead, LeadRead, UserSummary

InquiryStatusValue = Literal["New", "Quoted", "Approved", "Scheduled", "Fulfilled", "Cancelled"]
ProductTypeValue = Literal["AGGREGATE", "HEAVY_EQUIPMENT", "STEEL"]
DeliveryMethodValue = Literal["Pickup", "Delivery"]
ReferenceSourceValue = Literal["Facebook", "Website", "Referral", "WalkIn", "Phone", "Email", "Other"]
PriorityValue = Literal["Low", "Medium", "High"]
InquiryTypeValue = Literal["PricingRequest", "ProductAvailability", "TechnicalQuestion", "DeliveryInquiry", "Other"]
InquirySortField = Literal["createdAt", "updatedAt", "customerName", "status", "priority", "dueDate", "preferredDate"]


class InquiryCreate(BaseModel):
    customer_name: str = Field(min_length=1)
    phone_number: str = Field(min_length=1)
    email: EmailStr | None = None
    is_company: bool = False
    company_name: str | None = None
    company_address: str | None = None
    product_type: ProductTypeValue
    quantity: int = Field(gt=0)
    delivery_method: DeliveryMethodValue
    delivery_location: str | None = None
    preferred_date: datetime | None = None
    reference_source: ReferenceSourceValue
    remarks: str | None = None
    priority: PriorityValue = "Medium"
    due_date: datetime | None = None
    inquiry_type: InquiryTypeValue = "PricingRequest"
    assigned_to_id: UUID | None = None

    @model_validator(mode="after")
    def _company_details(self) -> "InquiryCreate":
        if self.is_company and not (self.company_name and self.company_name.strip()):
            raise ValueError("company_name is required when is_company is true")
        if self.delivery_method == "Delivery" and not (self.delivery_location and self.delivery_location.strip()):
            raise ValueError("delivery_location is required for delivery")
        return self


class InquiryUpdate(BaseModel):
    customer_name: str | None = Field(default=None, min_length=1)
    phone_number: str | None = Field(default=None, min_length=1)
    email: EmailStr | None = None
    is_company: bool | None = None
    company_name: str | None = None
    company_address: str | None = None
    product_type: ProductTypeValue | None = None
    quantity: int | None = Field(default=None, gt=0)
    delivery_method: DeliveryMethodValue | None = None
    delivery_location: str | None = None
    preferred_date: datetime | None = None
    reference_source: ReferenceSourceValue | None = None
    remarks: str | None = None
    inquiry_type: InquiryTypeValue | None = None


class CustomerCheckRequest(BaseModel):
    email: EmailStr | None = None
    phone_number: str | None = None
    company_name: str | None = None


class CustomerCheckResponse(BaseModel):
    exists: bool
    lead: LeadRead | None
    company: CompanyRead | None


class QuoteRequest(BaseModel):
    total_price: Decimal = Field(gt=0)
    notes: str | None = None


class ScheduleRequest(BaseModel):
    scheduled_date: datetime


class PriorityUpdate(BaseModel):
    priority: PriorityValue


class DueDateUpdate(BaseModel):
    due_date: datetime


class InquiryAssign(BaseModel):
    assigned_to_id: UUID | None = None


class InquiryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_name: str
    phone_number: str
    email: str | None
    is_company: bool
    company_name: str | None
    company_address: str | None
    product_type: str
    quantity: int
    delivery_method: str
    delivery_location: str | None
    preferred_date: datetime | None
    reference_source: str
    remarks: str | None
    priority: str
    due_date: datetime | None
    inquiry_type: str
    status: str
    related_lead_id: UUID | None
    quoted_price: Decimal | None
    quoted_by: str | None
    quoted_at: datetime | None
    created_by: UserSummary | None
    assigned_to: UserSummary | None
    created_at: datetime
    updated_at: datetime


class PaginationMeta(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class InquiryListResponse(BaseModel):
    data: list[InquiryRead]
    meta: PaginationMeta


class CountByKey(BaseModel):
    key: str
    count: int


class MonthlyTrend(BaseModel):
    month: str
    count: int
    converted: int
    cancelled: int


class InquiryStatistics(BaseModel):
    total_inquiries: int
    conversion_rate: float
    by_status: list[CountByKey]
    by_reference_source: list[CountByKey]
    by_product_type: list[CountByKey]
    by_priority: list[CountByKey]
    by_delivery_method: list[CountByKey]
    monthly_trends: list[MonthlyTrend]
    active_inquiries: int
