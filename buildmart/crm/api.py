from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from buildmart.core.auth import AuthUser, get_current_user
from buildmart.core.database import get_db
from buildmart.core.rbac import require_permissions
from buildmart.crm.schemas import (
    ActivityLogRead,
    ClientCreate,
    ClientDetailRead,
    ClientRead,
    ClientUpdate,
    CompanyRead,
    ContactHistoryCreate,
    ContactHistoryRead,
    LeadAssign,
    LeadCreate,
    LeadListResponse,
    LeadRead,
    LeadSortField,
    LeadStatusUpdate,
    LeadStatusValue,
    LeadUpdate,
)
from buildmart.crm.service import client_service, company_service, lead_service

leads_router = APIRouter(prefix="/api/leads", tags=["leads"])
clients_router = APIRouter(prefix="/api/clients", tags=["clients"])


@leads_router.get("/companies", response_model=list[CompanyRead])
def list_companies(
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(get_current_user),
) -> list[CompanyRead]:
    return company_service.list_companies(db)


@leads_router.post("", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    dto: LeadCreate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("create:lead")),
) -> LeadRead:
    return lead_service.create_lead(db, user.id, dto)


@leads_router.get("", response_model=LeadListResponse)
def list_leads(
    search: str | None = Query(default=None),
    status_filter: LeadStatusValue | None = Query(default=None, alias="status"),
    assigned_to: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=200),
    sort_by: LeadSortField | None = Query(default=None),
    sort_order: str = Query(default="desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:all_leads")),
) -> LeadListResponse:
    return lead_service.list_leads(
        db,
        search=search,
        status=status_filter,
        assigned_to=assigned_to,
        page=page,
        page_size=page_size,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@leads_router.get("/{lead_id}", response_model=LeadRead)
def get_lead(
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:all_leads")),
) -> LeadRead:
    return lead_service.get_lead(db, lead_id)


@leads_router.put("/{lead_id}", response_model=LeadRead)
def update_lead(
    lead_id: uuid.UUID,
    dto: LeadUpdate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("update:all_leads")),
) -> LeadRead:
    return lead_service.update_lead(db, user.id, lead_id, dto)


@leads_router.patch("/{lead_id}/status", response_model=LeadRead)
def update_lead_status(
    lead_id: uuid.UUID,
    dto: LeadStatusUpdate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("update:all_leads")),
) -> LeadRead:
    return lead_service.change_status(db, user.id, lead_id, dto)


@leads_router.post("/{lead_id}/assign", response_model=LeadRead)
def assign_lead(
    lead_id: uuid.UUID,
    dto: LeadAssign,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("assign:leads")),
) -> LeadRead:
    return lead_service.assign_lead(db, user.id, lead_id, dto)


@leads_router.post("/{lead_id}/convert-to-client", response_model=ClientRead, status_code=status.HTTP_201_CREATED)
def convert_lead_to_client(
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("update:all_leads", "manage:clients")),
) -> ClientRead:
    return lead_service.convert_to_client(db, user.id, lead_id)


@leads_router.delete("/{lead_id}", status_code=status.HTTP_200_OK)
def delete_lead(
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("delete:all_leads")),
) -> dict[str, str]:
    lead_service.delete_lead(db, lead_id)
    return {"status": "deleted"}


@leads_router.get("/{lead_id}/activities", response_model=list[ActivityLogRead])
def list_lead_activities(
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:all_leads")),
) -> list[ActivityLogRead]:
    return lead_service.list_activities(db, lead_id)


@leads_router.get("/{lead_id}/contact-history", response_model=list[ContactHistoryRead])
def list_lead_contact_history(
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:all_leads")),
) -> list[ContactHistoryRead]:
    return lead_service.list_contact_history(db, lead_id)


@leads_router.post("/{lead_id}/contact-history", response_model=ContactHistoryRead, status_code=status.HTTP_201_CREATED)
def add_lead_contact_history(
    lead_id: uuid.UUID,
    dto: ContactHistoryCreate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("update:all_leads")),
) -> ContactHistoryRead:
    return lead_service.add_contact_history(db, user.id, lead_id, dto)


@clients_router.post("", response_model=ClientRead, status_code=status.HTTP_201_CREATED)
def create_client(
    dto: ClientCreate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("manage:clients")),
) -> ClientRead:
    return client_service.create_client(db, user.id, dto)


@clients_router.get("", response_model=list[ClientRead])
def list_clients(
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:clients", "manage:clients")),
) -> list[ClientRead]:
    return client_service.list_clients(db)


@clients_router.get("/{client_id}", response_model=ClientDetailRead)
def get_client(
    client_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:clients", "manage:clients")),
) -> ClientDetailRead:
    return client_service.get_client(db, client_id)


@clients_router.patch("/{client_id}", response_model=ClientRead)
def update_client(
    client_id: uuid.UUID,
    dto: ClientUpdate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("manage:clients")),
) -> ClientRead:
    return client_service.update_client(db, user.id, client_id, dto)


@clients_router.delete("/{client_id}", response_model=ClientRead)
def delete_client(
    client_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("manage:clients")),
) -> ClientRead:
    return client_service.delete_client(db, user.id, client_id)


@clients_router.post("/{client_id}/restore", response_model=ClientRead)
def restore_client(
    client_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("manage:clients")),
) -> ClientRead:
    return client_service.restore_client(db, user.id, client_id)


@clients_router.get("/{client_id}/activity-log", response_model=list[ActivityLogRead])
def list_client_activities(
    client_id: uuid.UUID,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=200),
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:clients", "manage:clients")),
) -> list[ActivityLogRead]:
    return client_service.list_activities(db, client_id, page=page, limit=limit)


@clients_router.get("/{client_id}/contact-history", response_model=list[ContactHistoryRead])
def list_client_contact_history(
    client_id: uuid.UUID,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=200),
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:clients", "manage:clients")),
) -> list[ContactHistoryRead]:
    return client_service.list_contact_history(db, client_id, page=page, limit=limit)


@clients_router.post("/{client_id}/contact-history", response_model=ContactHistoryRead, status_code=status.HTTP_201_CREATED)
def add_client_contact_history(
    client_id: uuid.UUID,
    dto: ContactHistoryCreate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("manage:clients")),
) -> ContactHistoryRead:
    return client_service.add_contact_history(db, user.id, client_id, dto)
