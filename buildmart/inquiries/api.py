from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from buildmart.core.auth import AuthUser
from buildmart.core.database import get_db
from buildmart.core.rbac import require_permissions
from buildmart.crm.schemas import LeadRead
from buildmart.inquiries.schemas import (
    CustomerCheckRequest,
    CustomerCheckResponse,
    DueDateUpdate,
    InquiryAssign,
    InquiryCreate,
    InquiryListResponse,
    InquiryRead,
    InquirySortField,
    InquiryStatistics,
    InquiryUpdate,
    PriorityUpdate,
    ProductTypeValue,
    QuoteRequest,
    ReferenceSourceValue,
    ScheduleRequest,
)
from buildmart.inquiries.service import inquiry_service

router = APIRouter(prefix="/api/inquiries", tags=["inquiries"])


@router.post("", response_model=InquiryRead, status_code=status.HTTP_201_CREATED)
def create_inquiry(
    dto: InquiryCreate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("create:inquiry")),
) -> InquiryRead:
    return inquiry_service.create_inquiry(db, user.id, dto)


@router.post("/check-customer", response_model=CustomerCheckResponse)
def check_customer(
    dto: CustomerCheckRequest,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("create:inquiry", "read:all_inquiries")),
) -> CustomerCheckResponse:
    return inquiry_service.check_customer_exists(db, dto)


@router.get("", response_model=InquiryListResponse)
def list_inquiries(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=200),
    status_filter: str | None = Query(default=None, alias="status"),
    reference_source: ReferenceSourceValue | None = Query(default=None, alias="referenceSource"),
    product_type: ProductTypeValue | None = Query(default=None, alias="productType"),
    search: str | None = Query(default=None),
    sort_by: InquirySortField | None = Query(default=None, alias="sortBy"),
    sort_order: str = Query(default="desc", alias="sortOrder", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:all_inquiries")),
) -> InquiryListResponse:
    return inquiry_service.list_inquiries(
        db,
        page=page,
        limit=limit,
        status=status_filter,
        reference_source=reference_source,
        product_type=product_type,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@router.get("/stats/overview", response_model=InquiryStatistics)
def inquiry_statistics(
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:all_inquiries")),
) -> InquiryStatistics:
    return inquiry_service.statistics(db)


@router.get("/{inquiry_id}", response_model=InquiryRead)
def get_inquiry(
    inquiry_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:all_inquiries")),
) -> InquiryRead:
    return inquiry_service.get_inquiry(db, inquiry_id)


@router.put("/{inquiry_id}", response_model=InquiryRead)
def update_inquiry(
    inquiry_id: uuid.UUID,
    dto: InquiryUpdate,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("update:all_inquiries")),
) -> InquiryRead:
    return inquiry_service.update_inquiry(db, inquiry_id, dto)


@router.delete("/{inquiry_id}")
def delete_inquiry(
    inquiry_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("delete:all_inquiries")),
) -> dict[str, str]:
    inquiry_service.delete_inquiry(db, inquiry_id)
    return {"status": "deleted"}


@router.post("/{inquiry_id}/quote", response_model=InquiryRead)
def create_quote(
    inquiry_id: uuid.UUID,
    dto: QuoteRequest,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("quote:inquiry")),
) -> InquiryRead:
    return inquiry_service.create_quote(db, user.id, inquiry_id, dto)


@router.post("/{inquiry_id}/approve", response_model=InquiryRead)
def approve_inquiry(
    inquiry_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("update:all_inquiries")),
) -> InquiryRead:
    return inquiry_service.approve(db, user.id, inquiry_id)


@router.post("/{inquiry_id}/schedule", response_model=InquiryRead)
def schedule_inquiry(
    inquiry_id: uuid.UUID,
    dto: ScheduleRequest,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("update:all_inquiries")),
) -> InquiryRead:
    return inquiry_service.schedule(db, user.id, inquiry_id, dto)


@router.post("/{inquiry_id}/fulfill", response_model=InquiryRead)
def fulfill_inquiry(
    inquiry_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("update:all_inquiries")),
) -> InquiryRead:
    return inquiry_service.fulfill(db, user.id, inquiry_id)


@router.post("/{inquiry_id}/cancel", response_model=InquiryRead)
def cancel_inquiry(
    inquiry_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("update:all_inquiries")),
) -> InquiryRead:
    return inquiry_service.cancel(db, user.id, inquiry_id)


@router.post("/{inquiry_id}/convert-to-lead", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def convert_inquiry_to_lead(
    inquiry_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("update:all_inquiries", "create:lead")),
) -> LeadRead:
    return inquiry_service.convert_to_lead(db, user.id, inquiry_id)


@router.patch("/{inquiry_id}/priority", response_model=InquiryRead)
def update_inquiry_priority(
    inquiry_id: uuid.UUID,
    dto: PriorityUpdate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("update:all_inquiries")),
) -> InquiryRead:
    return inquiry_service.update_priority(db, user.id, inquiry_id, dto)


@router.patch("/{inquiry_id}/due-date", response_model=InquiryRead)
def update_inquiry_due_date(
    inquiry_id: uuid.UUID,
    dto: DueDateUpdate,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("update:all_inquiries")),
) -> InquiryRead:
    return inquiry_service.update_due_date(db, inquiry_id, dto)


@router.patch("/{inquiry_id}/assign", response_model=InquiryRead)
def assign_inquiry(
    inquiry_id: uuid.UUID,
    dto: InquiryAssign,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("assign:inquiries")),
) -> InquiryRead:
    return inquiry_service.assign(db, inquiry_id, dto)
