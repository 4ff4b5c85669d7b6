from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from buildmart.core.auth import AuthUser
from buildmart.core.database import get_db
from buildmart.core.rbac import require_permissions
from buildmart.quotations.schemas import (
    QuotationCreate,
    QuotationListResponse,
    QuotationRead,
    QuotationStatusValue,
    QuotationUpdate,
)
from buildmart.quotations.service import QuotationService, get_quotation_service
from buildmart.sales_orders.schemas import SalesOrderFromQuotation, SalesOrderRead
from buildmart.sales_orders.service import sales_order_service

router = APIRouter(prefix="/api/quotations", tags=["quotations"])


@router.post("", response_model=QuotationRead, status_code=status.HTTP_201_CREATED)
def create_quotation(
    dto: QuotationCreate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("create:quotation")),
    service: QuotationService = Depends(get_quotation_service),
) -> QuotationRead:
    return service.create_quotation(db, user.id, dto)


@router.get("", response_model=QuotationListResponse)
def list_quotations(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=200, alias="pageSize"),
    lead_id: uuid.UUID | None = Query(default=None, alias="leadId"),
    client_id: uuid.UUID | None = Query(default=None, alias="clientId"),
    status_filter: QuotationStatusValue | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None),
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:all_quotations")),
    service: QuotationService = Depends(get_quotation_service),
) -> QuotationListResponse:
    return service.list_quotations(
        db,
        page=page,
        page_size=page_size,
        lead_id=lead_id,
        client_id=client_id,
        status=status_filter,
        search=search,
    )


@router.get("/{quotation_id}", response_model=QuotationRead)
def get_quotation(
    quotation_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:all_quotations")),
    service: QuotationService = Depends(get_quotation_service),
) -> QuotationRead:
    return service.get_quotation(db, quotation_id)


@router.get("/{quotation_id}/pdf")
def get_quotation_pdf(
    quotation_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:all_quotations")),
    service: QuotationService = Depends(get_quotation_service),
) -> Response:
    filename, content = service.render_pdf(db, quotation_id)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{filename}"'},
    )


@router.post("/{quotation_id}/send", response_model=QuotationRead)
def send_quotation(
    quotation_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("send:quotation")),
    service: QuotationService = Depends(get_quotation_service),
) -> QuotationRead:
    return service.send_quotation(db, user.id, quotation_id)


@router.patch("/{quotation_id}", response_model=QuotationRead)
def update_quotation(
    quotation_id: uuid.UUID,
    dto: QuotationUpdate,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("update:all_quotations")),
    service: QuotationService = Depends(get_quotation_service),
) -> QuotationRead:
    return service.update_quotation(db, quotation_id, dto)


@router.post("/{quotation_id}/accept", response_model=QuotationRead)
def accept_quotation(
    quotation_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("approve:quotation")),
    service: QuotationService = Depends(get_quotation_service),
) -> QuotationRead:
    return service.accept(db, quotation_id)


@router.post("/{quotation_id}/reject", response_model=QuotationRead)
def reject_quotation(
    quotation_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("approve:quotation")),
    service: QuotationService = Depends(get_quotation_service),
) -> QuotationRead:
    return service.reject(db, quotation_id)


@router.post("/{quotation_id}/convert", response_model=SalesOrderRead, status_code=status.HTTP_201_CREATED)
def convert_quotation_to_sales_order(
    quotation_id: uuid.UUID,
    dto: SalesOrderFromQuotation | None = None,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("convert:quotation_to_order")),
) -> SalesOrderRead:
    return sales_order_service.create_from_quotation(db, user.id, quotation_id, dto or SalesOrderFromQuotation())


@router.delete("/{quotation_id}")
def delete_quotation(
    quotation_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("delete:all_quotations")),
    service: QuotationService = Depends(get_quotation_service),
) -> dict[str, str]:
    service.delete_quotation(db, quotation_id)
    return {"status": "deleted"}
