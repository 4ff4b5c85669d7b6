from __future__ import annotations

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import Select, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from buildmart import events
from buildmart.core.errors import ConflictError, NotFoundError, ValidationFailedError
from buildmart.core.sequence import CLIENT_SEQUENCE, format_account_number, next_sequence_value
from buildmart.crm.models import ActivityLog, Client, Company, ContactHistory, Lead
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
    LeadStatusUpdate,
    LeadUpdate,
)
from buildmart.metrics import observe_lead_status_transition
from buildmart.users.models import User, utcnow


logger = logging.getLogger("buildmart.crm")

LAST_CONTACT_STATUSES = {"Contacted", "Qualified", "Proposal", "Negotiation", "Converted"}


def record_activity(
    session: Session,
    *,
    action: str,
    description: str | None,
    user_id: uuid.UUID | None,
    lead_id: uuid.UUID | None = None,
    client_id: uuid.UUID | None = None,
    old_status: str | None = None,
    new_status: str | None = None,
    details: Any = None,
) -> ActivityLog:
    entry = ActivityLog(
        lead_id=lead_id,
        client_id=client_id,
        user_id=user_id,
        action=action,
        description=description,
        old_status=old_status,
        new_status=new_status,
        details=details,
    )
    session.add(entry)
    return entry


def record_contact(
    session: Session,
    *,
    method: str,
    summary: str,
    outcome: str | None,
    user_id: uuid.UUID | None,
    lead_id: uuid.UUID | None = None,
    client_id: uuid.UUID | None = None,
    timestamp: datetime | None = None,
) -> ContactHistory:
    entry = ContactHistory(
        lead_id=lead_id,
        client_id=client_id,
        user_id=user_id,
        method=method,
        summary=summary,
        outcome=outcome,
        timestamp=timestamp or utcnow(),
    )
    session.add(entry)
    return entry


def find_or_create_company(session: Session, name: str, **fields: Any) -> Company:
    normalized = name.strip()
    company = session.scalar(select(Company).where(Company.name == normalized))
    if company is not None:
        return company
    company = Company(name=normalized, **fields)
    session.add(company)
    session.flush()
    return company


def ensure_user_exists(session: Session, user_id: uuid.UUID, *, message: str = "assigned user not found") -> User:
    user = session.get(User, user_id)
    if user is None:
        raise ValidationFailedError(message, details={"user_id": str(user_id)})
    return user


class CompanyService:
    def list_companies(self, session: Session) -> list[CompanyRead]:
        rows = session.scalars(select(Company).order_by(Company.name.asc())).all()
        return [CompanyRead.model_validate(row) for row in rows]


class LeadService:
    sortable_columns = {
        "createdAt": Lead.created_at,
        "contactPerson": Lead.contact_person,
        "status": Lead.status,
        "lastContactDate": Lead.last_contact_date,
        "followUpDate": Lead.follow_up_date,
        "leadScore": Lead.lead_score,
        "estimatedValue": Lead.estimated_value,
    }

    def create_lead(self, session: Session, actor_user_id: uuid.UUID, dto: LeadCreate) -> LeadRead:
        company: Company | None = None
        if dto.company_id is not None:
            company = session.get(Company, dto.company_id)
            if company is None:
                raise ValidationFailedError("invalid company id: no company found")
        elif dto.company_name and dto.company_name.strip():
            company = find_or_create_company(
                session,
                dto.company_name,
                email=str(dto.email) if dto.email else None,
                phone=dto.phone,
            )

        if dto.assigned_to_id is not None:
            ensure_user_exists(session, dto.assigned_to_id)

        lead = Lead(
            name=dto.name.strip(),
            company_id=company.id if company is not None else None,
            contact_person=dto.contact_person,
            email=str(dto.email),
            phone=dto.phone,
            status=dto.status,
            source=dto.source,
            sub_source=dto.sub_source,
            assigned_to_id=dto.assigned_to_id,
            created_by_id=actor_user_id,
            estimated_value=dto.estimated_value,
            lead_score=dto.lead_score,
            follow_up_date=dto.follow_up_date,
            notes=dto.notes,
        )
        session.add(lead)
        session.flush()

        record_activity(
            session,
            action="Created",
            description=f"Lead created at {utcnow().isoformat()}",
            user_id=actor_user_id,
            lead_id=lead.id,
            details={"notes": lead.notes},
        )
        session.commit()

        logger.info("lead.created", extra={"lead_id": str(lead.id)})
        events.publish("lead.created", {"lead_id": str(lead.id), "status": lead.status}, actor_user_id=str(actor_user_id))
        return self.get_lead(session, lead.id)

    def list_leads(
        self,
        session: Session,
        *,
        search: str | None = None,
        status: str | None = None,
        assigned_to: str | None = None,
        page: int = 1,
        page_size: int = 20,
        sort_by: str | None = None,
        sort_order: str = "desc",
    ) -> LeadListResponse:
        stmt: Select[tuple[Lead]] = select(Lead)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(
                or_(
                    Lead.contact_person.ilike(pattern),
                    Lead.email.ilike(pattern),
                    Lead.name.ilike(pattern),
                    Lead.company_id.in_(select(Company.id).where(Company.name.ilike(pattern))),
                )
            )
        if status:
            stmt = stmt.where(Lead.status == status)
        if assigned_to:
            if assigned_to == "unassigned":
                stmt = stmt.where(Lead.assigned_to_id.is_(None))
            else:
                try:
                    stmt = stmt.where(Lead.assigned_to_id == uuid.UUID(assigned_to))
                except ValueError:
                    raise ValidationFailedError("assigned_to must be a user id or 'unassigned'")

        total = session.scalar(select(func.count()).select_from(stmt.subquery())) or 0

        ordered = self._apply_sort(stmt, sort_by, sort_order)
        rows = session.scalars(
            ordered.options(selectinload(Lead.company), selectinload(Lead.assigned_to))
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return LeadListResponse(
            items=[LeadRead.model_validate(row) for row in rows],
            total=int(total),
            page=page,
            page_size=page_size,
        )

    def get_lead(self, session: Session, lead_id: uuid.UUID) -> LeadRead:
        return LeadRead.model_validate(self._get_lead(session, lead_id))

    def update_lead(self, session: Session, actor_user_id: uuid.UUID, lead_id: uuid.UUID, dto: LeadUpdate) -> LeadRead:
        lead = self._get_lead(session, lead_id)
        payload = dto.model_dump(exclude_unset=True)
        company_name = payload.pop("company_name", None)

        before = {
            "name": lead.name,
            "contact_person": lead.contact_person,
            "email": lead.email,
            "phone": lead.phone,
            "estimated_value": lead.estimated_value,
            "lead_score": lead.lead_score,
            "source": lead.source,
            "notes": lead.notes,
            "company": lead.company.name if lead.company is not None else None,
            "assigned_to": lead.assigned_to.name if lead.assigned_to is not None else None,
        }

        if "company_id" in payload:
            if payload["company_id"] is not None and session.get(Company, payload["company_id"]) is None:
                raise ValidationFailedError("invalid company id: no company found")
        elif company_name and company_name.strip():
            payload["company_id"] = find_or_create_company(session, company_name).id

        if payload.get("assigned_to_id") is not None:
            ensure_user_exists(session, payload["assigned_to_id"])
        if payload.get("email") is not None:
            payload["email"] = str(payload["email"])

        for key, value in payload.items():
            if key == "name" and value is None:
                continue
            setattr(lead, key, value)
        session.flush()
        session.refresh(lead)

        after = {
            "name": lead.name,
            "contact_person": lead.contact_person,
            "email": lead.email,
            "phone": lead.phone,
            "estimated_value": lead.estimated_value,
            "lead_score": lead.lead_score,
            "source": lead.source,
            "notes": lead.notes,
            "company": lead.company.name if lead.company is not None else None,
            "assigned_to": lead.assigned_to.name if lead.assigned_to is not None else None,
        }
        changes = [
            {"field": field, "old": _jsonable(before[field]), "new": _jsonable(after[field])}
            for field in before
            if before[field] != after[field]
        ]
        if changes:
            description = ", ".join(
                f"{change['field']} changed from '{change['old'] or 'N/A'}' to '{change['new'] or 'N/A'}'"
                for change in changes
            )
            record_activity(
                session,
                action="LEAD_UPDATED",
                description=f"Lead updated: {description}",
                user_id=actor_user_id,
                lead_id=lead.id,
                details=changes,
            )
        session.commit()
        return self.get_lead(session, lead.id)

    def change_status(
        self,
        session: Session,
        actor_user_id: uuid.UUID,
        lead_id: uuid.UUID,
        dto: LeadStatusUpdate,
    ) -> LeadRead:
        lead = self._get_lead(session, lead_id)
        old_status = lead.status

        record_activity(
            session,
            action="Status Change",
            description=f"Lead status changed from {old_status} to {dto.status}",
            user_id=actor_user_id,
            lead_id=lead.id,
            old_status=old_status,
            new_status=dto.status,
            details={"notes": dto.notes},
        )
        lead.status = dto.status
        if dto.status in LAST_CONTACT_STATUSES:
            lead.last_contact_date = utcnow()
        if dto.notes:
            record_contact(
                session,
                method=dto.method or "Follow-up",
                summary=dto.notes,
                outcome=dto.status,
                user_id=actor_user_id,
                lead_id=lead.id,
            )
        session.commit()

        if old_status != dto.status:
            observe_lead_status_transition("manual", dto.status)
        logger.info(
            "lead.status_changed",
            extra={"lead_id": str(lead.id), "old_status": old_status, "new_status": dto.status},
        )
        return self.get_lead(session, lead.id)

    def assign_lead(self, session: Session, actor_user_id: uuid.UUID, lead_id: uuid.UUID, dto: LeadAssign) -> LeadRead:
        lead = self._get_lead(session, lead_id)

        assigned_to_id: uuid.UUID | None = None
        if dto.assigned_to_id != "unassigned":
            try:
                assigned_to_id = uuid.UUID(dto.assigned_to_id)
            except ValueError:
                raise ValidationFailedError("assigned_to_id must be a user id or 'unassigned'")

        if lead.assigned_to_id == assigned_to_id:
            raise ConflictError("lead is already assigned to this user or unassigned")
        if assigned_to_id is not None:
            ensure_user_exists(session, assigned_to_id)

        record_activity(
            session,
            action="Reassignment" if assigned_to_id else "Unassignment",
            description="Lead reassigned to a new owner" if assigned_to_id else "Lead unassigned",
            user_id=actor_user_id,
            lead_id=lead.id,
            details={
                "previous_assignee": str(lead.assigned_to_id) if lead.assigned_to_id else None,
                "new_assignee": str(assigned_to_id) if assigned_to_id else None,
                "notes": dto.notes,
            },
        )
        lead.assigned_to_id = assigned_to_id
        lead.last_contact_date = utcnow()
        session.commit()
        return self.get_lead(session, lead.id)

    def convert_to_client(self, session: Session, actor_user_id: uuid.UUID, lead_id: uuid.UUID) -> ClientRead:
        lead = self._get_lead(session, lead_id)
        if lead.status != "Converted":
            raise ValidationFailedError(
                f"cannot convert a lead that has not been won. Current status: {lead.status}",
                details={"status": lead.status},
            )
        existing = session.scalar(select(Client).where(Client.converted_from_lead_id == lead.id))
        if existing is not None:
            raise ConflictError("lead has already been converted to a client")

        client_name = (
            (lead.company.name if lead.company is not None else None)
            or lead.contact_person
            or f"Client from Lead {str(lead.id)[:8]}"
        )
        client = Client(
            client_name=client_name,
            account_number=format_account_number(next_sequence_value(session, CLIENT_SEQUENCE)),
            primary_email=lead.email,
            primary_phone=lead.phone,
            status="Active",
            notes=f"Converted from Lead ID: {lead.id}. Original lead name: {lead.name}.",
            converted_from_lead_id=lead.id,
            company_id=lead.company_id,
        )
        session.add(client)
        session.flush()

        lead.is_active = False
        session.execute(
            update(ContactHistory)
            .where(ContactHistory.lead_id == lead.id)
            .values(client_id=client.id, lead_id=None)
            .execution_options(synchronize_session=False)
        )
        session.execute(
            update(ActivityLog)
            .where(ActivityLog.lead_id == lead.id)
            .values(client_id=client.id, lead_id=None)
            .execution_options(synchronize_session=False)
        )
        record_activity(
            session,
            action="LEAD_CONVERTED_TO_CLIENT",
            description=(
                f'Lead "{lead.name}" (ID: {lead.id}) converted to Client "{client.client_name}" (ID: {client.id}).'
            ),
            user_id=actor_user_id,
            lead_id=lead.id,
            client_id=client.id,
            details={
                "lead_id": str(lead.id),
                "client_id": str(client.id),
                "old_lead_status": lead.status,
                "new_lead_status": "ConvertedToClient",
            },
        )
        session.commit()

        logger.info("lead.converted_to_client", extra={"lead_id": str(lead.id), "entity_id": str(client.id)})
        events.publish(
            "lead.converted_to_client",
            {"lead_id": str(lead.id), "client_id": str(client.id)},
            actor_user_id=str(actor_user_id),
        )
        session.refresh(client)
        return ClientRead.model_validate(client)

    def delete_lead(self, session: Session, lead_id: uuid.UUID) -> None:
        lead = self._get_lead(session, lead_id)
        session.delete(lead)
        session.commit()
        logger.info("lead.deleted", extra={"lead_id": str(lead_id)})

    def list_activities(self, session: Session, lead_id: uuid.UUID) -> list[ActivityLogRead]:
        self._get_lead(session, lead_id)
        rows = session.scalars(
            select(ActivityLog)
            .options(selectinload(ActivityLog.user))
            .where(ActivityLog.lead_id == lead_id)
            .order_by(ActivityLog.created_at.desc())
        ).all()
        return [ActivityLogRead.model_validate(row) for row in rows]

    def list_contact_history(self, session: Session, lead_id: uuid.UUID) -> list[ContactHistoryRead]:
        self._get_lead(session, lead_id)
        rows = session.scalars(
            select(ContactHistory)
            .options(selectinload(ContactHistory.user))
            .where(ContactHistory.lead_id == lead_id)
            .order_by(ContactHistory.timestamp.desc())
        ).all()
        return [ContactHistoryRead.model_validate(row) for row in rows]

    def add_contact_history(
        self,
        session: Session,
        actor_user_id: uuid.UUID,
        lead_id: uuid.UUID,
        dto: ContactHistoryCreate,
    ) -> ContactHistoryRead:
        self._get_lead(session, lead_id)
        entry = record_contact(
            session,
            method=dto.method,
            summary=dto.summary,
            outcome=dto.outcome,
            user_id=actor_user_id,
            lead_id=lead_id,
            timestamp=dto.timestamp,
        )
        session.commit()
        session.refresh(entry)
        return ContactHistoryRead.model_validate(entry)

    def _get_lead(self, session: Session, lead_id: uuid.UUID) -> Lead:
        lead = session.scalar(
            select(Lead)
            .options(selectinload(Lead.company), selectinload(Lead.assigned_to))
            .where(Lead.id == lead_id)
        )
        if lead is None:
            raise NotFoundError("lead not found")
        return lead

    def _apply_sort(self, stmt: Select[tuple[Lead]], sort_by: str | None, sort_order: str) -> Select[tuple[Lead]]:
        descending = sort_order.lower() != "asc"
        if sort_by == "companyName":
            column = Company.name
            stmt = stmt.outerjoin(Company, Company.id == Lead.company_id)
        elif sort_by == "assignedTo":
            column = User.name
            stmt = stmt.outerjoin(User, User.id == Lead.assigned_to_id)
        elif sort_by in self.sortable_columns:
            column = self.sortable_columns[sort_by]
        else:
            return stmt.order_by(Lead.created_at.desc())
        return stmt.order_by(column.desc() if descending else column.asc(), Lead.created_at.desc())


class ClientService:
    def create_client(self, session: Session, actor_user_id: uuid.UUID, dto: ClientCreate) -> ClientRead:
        name = dto.client_name.strip()
        if session.scalar(select(Client.id).where(Client.client_name == name)) is not None:
            raise ConflictError("client already exists")
        if dto.company_id is not None and session.get(Company, dto.company_id) is None:
            raise ValidationFailedError("invalid company id: no company found")

        payload = dto.model_dump()
        payload["client_name"] = name
        if payload.get("primary_email") is not None:
            payload["primary_email"] = str(payload["primary_email"])
        client = Client(
            **payload,
            account_number=format_account_number(next_sequence_value(session, CLIENT_SEQUENCE)),
        )
        session.add(client)
        try:
            session.flush()
        except IntegrityError:
            session.rollback()
            raise ConflictError("client already exists")

        record_activity(
            session,
            action="Created",
            description=f'Client "{client.client_name}" was created',
            user_id=actor_user_id,
            client_id=client.id,
            details={
                "client_name": client.client_name,
                "account_number": client.account_number,
                "status": client.status,
            },
        )
        session.commit()
        session.refresh(client)
        logger.info("client.created", extra={"entity_id": str(client.id)})
        return ClientRead.model_validate(client)

    def list_clients(self, session: Session) -> list[ClientRead]:
        rows = session.scalars(
            select(Client).where(Client.is_active.is_(True)).order_by(Client.created_at.desc())
        ).all()
        return [ClientRead.model_validate(row) for row in rows]

    def get_client(self, session: Session, client_id: uuid.UUID) -> ClientDetailRead:
        client = self._get_client(session, client_id)
        activities = session.scalars(
            select(ActivityLog)
            .options(selectinload(ActivityLog.user))
            .where(ActivityLog.client_id == client.id)
            .order_by(ActivityLog.created_at.desc())
            .limit(10)
        ).all()
        read = ClientRead.model_validate(client)
        return ClientDetailRead(
            **read.model_dump(),
            activities=[ActivityLogRead.model_validate(item) for item in activities],
        )

    def update_client(
        self,
        session: Session,
        actor_user_id: uuid.UUID,
        client_id: uuid.UUID,
        dto: ClientUpdate,
    ) -> ClientRead:
        client = self._get_client(session, client_id)
        payload = dto.model_dump(exclude_unset=True)
        if payload.get("primary_email") is not None:
            payload["primary_email"] = str(payload["primary_email"])
        if payload.get("company_id") is not None and session.get(Company, payload["company_id"]) is None:
            raise ValidationFailedError("invalid company id: no company found")

        changed: dict[str, dict[str, Any]] = {}
        for key, value in payload.items():
            if key in {"client_name", "status"} and value is None:
                continue
            old_value = getattr(client, key)
            if old_value != value:
                changed[key] = {"old": old_value, "new": value}
                setattr(client, key, value)

        if changed:
            record_activity(
                session,
                action="Updated",
                description=f'Client "{client.client_name}" was updated. Changed fields: {", ".join(changed)}',
                user_id=actor_user_id,
                client_id=client.id,
                details={
                    "client_name": client.client_name,
                    "changed_fields": {key: {k: _jsonable(v) for k, v in item.items()} for key, item in changed.items()},
                },
            )
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError("client already exists")
        session.refresh(client)
        return ClientRead.model_validate(client)

    def delete_client(self, session: Session, actor_user_id: uuid.UUID, client_id: uuid.UUID) -> ClientRead:
        client = self._get_client(session, client_id)
        client.is_active = False
        record_activity(
            session,
            action="Deleted",
            description=f'Client "{client.client_name}" was deactivated/deleted',
            user_id=actor_user_id,
            client_id=client.id,
            details={
                "client_name": client.client_name,
                "account_number": client.account_number,
                "deletion_type": "soft_delete",
            },
        )
        session.commit()
        session.refresh(client)
        return ClientRead.model_validate(client)

    def restore_client(self, session: Session, actor_user_id: uuid.UUID, client_id: uuid.UUID) -> ClientRead:
        client = self._get_client(session, client_id)
        if client.is_active:
            raise ConflictError("client is already active")
        client.is_active = True
        record_activity(
            session,
            action="Restored",
            description=f'Client "{client.client_name}" was restored/reactivated',
            user_id=actor_user_id,
            client_id=client.id,
            details={"client_name": client.client_name, "account_number": client.account_number},
        )
        session.commit()
        session.refresh(client)
        return ClientRead.model_validate(client)

    def list_activities(self, session: Session, client_id: uuid.UUID, *, page: int = 1, limit: int = 20) -> list[ActivityLogRead]:
        self._get_client(session, client_id)
        rows = session.scalars(
            select(ActivityLog)
            .options(selectinload(ActivityLog.user))
            .where(ActivityLog.client_id == client_id)
            .order_by(ActivityLog.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return [ActivityLogRead.model_validate(row) for row in rows]

    def list_contact_history(
        self,
        session: Session,
        client_id: uuid.UUID,
        *,
        page: int = 1,
        limit: int = 20,
    ) -> list[ContactHistoryRead]:
        self._get_client(session, client_id)
        rows = session.scalars(
            select(ContactHistory)
            .options(selectinload(ContactHistory.user))
            .where(ContactHistory.client_id == client_id)
            .order_by(ContactHistory.timestamp.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return [ContactHistoryRead.model_validate(row) for row in rows]

    def add_contact_history(
        self,
        session: Session,
        actor_user_id: uuid.UUID,
        client_id: uuid.UUID,
        dto: ContactHistoryCreate,
    ) -> ContactHistoryRead:
        self._get_client(session, client_id)
        entry = record_contact(
            session,
            method=dto.method,
            summary=dto.summary,
            outcome=dto.outcome,
            user_id=actor_user_id,
            client_id=client_id,
            timestamp=dto.timestamp,
        )
        session.commit()
        session.refresh(entry)
        return ContactHistoryRead.model_validate(entry)

    def _get_client(self, session: Session, client_id: uuid.UUID) -> Client:
        client = session.get(Client, client_id)
        if client is None:
            raise NotFoundError("client not found")
        return client


def _jsonable(value: Any) -> Any:
    if isinstance(value, (uuid.UUID, datetime, Decimal)):
        return str(value)
    return value


company_service = CompanyService()
lead_service = LeadService()
client_service = ClientService()
