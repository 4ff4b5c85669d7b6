from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

LeadStatusValue = Literal["New", "Contacted", "Qualified", "Proposal", "Negotiation", "Converted", "Lost"]
ClientStatusValue = Literal["Active", "Inactive", "OnHold"]
ContactMethod = Literal["Call", "Email", "Meeting", "SMS", "In-Person"]
ContactOutcome = Literal[
    "Successful",
    "No Answer",
    "Left Voicemail",
    "Follow-up Needed",
    "Next Steps Defined",
    "Not Interested",
]
LeadSortField = Literal[
    "createdAt",
    "companyName",
    "assignedTo",
    "contactPerson",
    "status",
    "lastContactDate",
    "followUpDate",
    "leadScore",
    "estimatedValue",
]


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str


class CompanyRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str | None
    phone: str | None
    industry: str | None
    region: str | None
    address: str | None
    is_active: bool
    created_at: datetime


class LeadCreate(BaseModel):
    name: str = Field(min_length=1)
    company_id: UUID | None = None
    company_name: str | None = None
    contact_person: str | None = None
    email: EmailStr
    phone: str | None = None
    source: str | None = None
    sub_source: str | None = None
    assigned_to_id: UUID | None = None
    notes: str | None = None
    estimated_value: Decimal | None = Field(default=None, ge=0)
    lead_score: int | None = Field(default=None, ge=0, le=100)
    status: LeadStatusValue = "New"
    follow_up_date: datetime | None = None


class LeadUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    company_id: UUID | None = None
    company_name: str | None = None
    contact_person: str | None = None
    email: EmailStr | None = None
    phone: str | None = None
    source: str | None = None
    sub_source: str | None = None
    assigned_to_id: UUID | None = None
    notes: str | None = None
    estimated_value: Decimal | None = Field(default=None, ge=0)
    lead_score: int | None = Field(default=None, ge=0, le=100)
    follow_up_date: datetime | None = None


class LeadStatusUpdate(BaseModel):
    status: LeadStatusValue
    notes: str | None = None
    method: str | None = None


class LeadAssign(BaseModel):
    assigned_to_id: str = Field(min_length=1, description="user id, or 'unassigned'")
    notes: str | None = None


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    company_id: UUID | None
    company: CompanyRead | None
    contact_person: str | None
    email: str | None
    phone: str | None
    status: str
    source: str | None
    sub_source: str | None
    assigned_to_id: UUID | None
    assigned_to: UserSummary | None
    created_by_id: UUID | None
    estimated_value: Decimal | None
    lead_score: int | None
    follow_up_date: datetime | None
    last_contact_date: datetime | None
    notes: str | None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class LeadListResponse(BaseModel):
    items: list[LeadRead]
    total: int
    page: int
    page_size: int


class ActivityLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    lead_id: UUID | None
    client_id: UUID | None
    user_id: UUID | None
    user: UserSummary | None
    action: str
    description: str | None
    old_status: str | None
    new_status: str | None
    details: Any = Field(default=None, serialization_alias="metadata")
    created_at: datetime


class ContactHistoryCreate(BaseModel):
    method: ContactMethod
    summary: str = Field(min_length=1, max_length=1000)
    outcome: ContactOutcome | None = None
    timestamp: datetime | None = None


class ContactHistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    lead_id: UUID | None
    client_id: UUID | None
    user: UserSummary | None
    method: str
    summary: str
    outcome: str | None
    timestamp: datetime


class ClientCreate(BaseModel):
    company_id: UUID | None = None
    client_name: str = Field(min_length=1)
    primary_email: EmailStr | None = None
    primary_phone: str | None = None
    billing_address_street: str | None = None
    billing_address_city: str | None = None
    billing_address_region: str | None = None
    billing_address_postal_code: str | None = None
    billing_address_country: str | None = None
    shipping_address_street: str | None = None
    shipping_address_city: str | None = None
    shipping_address_region: str | None = None
    shipping_address_postal_code: str | None = None
    shipping_address_country: str | None = None
    status: ClientStatusValue = "Active"
    notes: str | None = None
    converted_from_lead_id: UUID | None = None


class ClientUpdate(BaseModel):
    company_id: UUID | None = None
    client_name: str | None = Field(default=None, min_length=1)
    primary_email: EmailStr | None = None
    primary_phone: str | None = None
    billing_address_street: str | None = None
    billing_address_city: str | None = None
    billing_address_region: str | None = None
    billing_address_postal_code: str | None = None
    billing_address_country: str | None = None
    shipping_address_street: str | None = None
    shipping_address_city: str | None = None
    shipping_address_region: str | None = None
    shipping_address_postal_code: str | None = None
    shipping_address_country: str | None = None
    status: ClientStatusValue | None = None
    notes: str | None = None


class ClientRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    company_id: UUID | None
    client_name: str
    account_number: str
    primary_email: str | None
    primary_phone: str | None
    billing_address_street: str | None
    billing_address_city: str | None
    billing_address_region: str | None
    billing_address_postal_code: str | None
    billing_address_country: str | None
    shipping_address_street: str | None
    shipping_address_city: str | None
    shipping_address_region: str | None
    shipping_address_postal_code: str | None
    shipping_address_country: str | None
    status: str
    notes: str | None
    converted_from_lead_id: UUID | None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class ClientDetailRead(ClientRead):
    activities: list[ActivityLogRead] = Field(default_factory=list)
