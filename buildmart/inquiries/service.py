from __future__ import annotations

import logging
import math
import uuid
from collections import Counter
from datetime import timedelta
from typing import Any

from sqlalchemy import Select, func, or_, select
from sqlalchemy.orm import Session, selectinload

from buildmart import events
from buildmart.core.errors import ConflictError, NotFoundError, ValidationFailedError
from buildmart.core.money import to_money
from buildmart.crm.models import Company, Lead
from buildmart.crm.schemas import CompanyRead, LeadRead
from buildmart.crm.service import ensure_user_exists, find_or_create_company, record_activity, record_contact
from buildmart.inquiries.lifecycle import INQUIRY_STATUSES, next_lead_status
from buildmart.inquiries.models import Inquiry
from buildmart.inquiries.schemas import (
    CountByKey,
    CustomerCheckRequest,
    CustomerCheckResponse,
    DueDateUpdate,
    InquiryAssign,
    InquiryCreate,
    InquiryListResponse,
    InquiryRead,
    InquiryStatistics,
    InquiryUpdate,
    MonthlyTrend,
    PaginationMeta,
    PriorityUpdate,
    QuoteRequest,
    ScheduleRequest,
)
from buildmart.metrics import observe_lead_status_transition
from buildmart.users.models import User, utcnow


logger = logging.getLogger("buildmart.inquiries")

CONVERTED_INQUIRY_STATUSES = ("Approved", "Scheduled", "Fulfilled")
FOLLOW_UP_DAYS = 7


class InquiryService:
    sortable_columns = {
        "createdAt": Inquiry.created_at,
        "updatedAt": Inquiry.updated_at,
        "customerName": Inquiry.customer_name,
        "status": Inquiry.status,
        "priority": Inquiry.priority,
        "dueDate": Inquiry.due_date,
        "preferredDate": Inquiry.preferred_date,
    }

    def check_customer_exists(self, session: Session, dto: CustomerCheckRequest) -> CustomerCheckResponse:
        company, lead = self._find_customer(
            session,
            email=str(dto.email) if dto.email else None,
            phone_number=dto.phone_number,
            company_name=dto.company_name,
        )
        return CustomerCheckResponse(
            exists=company is not None or lead is not None,
            lead=LeadRead.model_validate(lead) if lead is not None else None,
            company=CompanyRead.model_validate(company) if company is not None else None,
        )

    def create_inquiry(self, session: Session, actor_user_id: uuid.UUID, dto: InquiryCreate) -> InquiryRead:
        if dto.assigned_to_id is not None:
            ensure_user_exists(session, dto.assigned_to_id)

        email = str(dto.email) if dto.email else None
        _, lead = self._find_customer(
            session,
            email=email,
            phone_number=dto.phone_number,
            company_name=dto.company_name if dto.is_company else None,
        )

        payload = dto.model_dump()
        payload["email"] = email
        inquiry = Inquiry(
            **payload,
            status="New",
            related_lead_id=lead.id if lead is not None else None,
            created_by_id=actor_user_id,
        )
        session.add(inquiry)
        session.flush()

        if lead is not None:
            old_status = lead.status
            new_status = next_lead_status("New", old_status)
            if new_status != old_status:
                lead.status = new_status
                lead.last_contact_date = utcnow()
                record_activity(
                    session,
                    action="STATUS_CHANGE",
                    description="Lead status updated due to new inquiry",
                    user_id=actor_user_id,
                    lead_id=lead.id,
                    old_status=old_status,
                    new_status=new_status,
                    details={"inquiry_id": str(inquiry.id)},
                )
            record_contact(
                session,
                method="Inquiry Form",
                summary=f"New inquiry for {inquiry.product_type}, quantity: {inquiry.quantity}",
                outcome="New inquiry created",
                user_id=actor_user_id,
                lead_id=lead.id,
            )
        session.commit()

        logger.info(
            "inquiry.created",
            extra={"inquiry_id": str(inquiry.id), "lead_id": str(lead.id) if lead is not None else None},
        )
        events.publish(
            "inquiry.created",
            {"inquiry_id": str(inquiry.id), "related_lead_id": str(lead.id) if lead is not None else None},
            actor_user_id=str(actor_user_id),
        )
        return self.get_inquiry(session, inquiry.id)

    def list_inquiries(
        self,
        session: Session,
        *,
        page: int = 1,
        limit: int = 10,
        status: str | None = None,
        reference_source: str | None = None,
        product_type: str | None = None,
        search: str | None = None,
        sort_by: str | None = None,
        sort_order: str = "desc",
    ) -> InquiryListResponse:
        stmt: Select[tuple[Inquiry]] = select(Inquiry)
        if status and status != "all":
            stmt = stmt.where(Inquiry.status == status)
        if reference_source:
            stmt = stmt.where(Inquiry.reference_source == reference_source)
        if product_type:
            stmt = stmt.where(Inquiry.product_type == product_type)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(
                or_(
                    Inquiry.customer_name.ilike(pattern),
                    Inquiry.email.ilike(pattern),
                    Inquiry.phone_number.ilike(pattern),
                    Inquiry.company_name.ilike(pattern),
                )
            )

        total = int(session.scalar(select(func.count()).select_from(stmt.subquery())) or 0)

        column = self.sortable_columns.get(sort_by or "createdAt", Inquiry.created_at)
        ordering = column.asc() if sort_order.lower() == "asc" else column.desc()
        rows = session.scalars(
            stmt.options(selectinload(Inquiry.created_by), selectinload(Inquiry.assigned_to))
            .order_by(ordering)
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return InquiryListResponse(
            data=[InquiryRead.model_validate(row) for row in rows],
            meta=PaginationMeta(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit) if limit else 0),
        )

    def get_inquiry(self, session: Session, inquiry_id: uuid.UUID) -> InquiryRead:
        return InquiryRead.model_validate(self._get_inquiry(session, inquiry_id))

    def update_inquiry(self, session: Session, inquiry_id: uuid.UUID, dto: InquiryUpdate) -> InquiryRead:
        inquiry = self._get_inquiry(session, inquiry_id)
        payload = dto.model_dump(exclude_unset=True)
        if payload.get("email") is not None:
            payload["email"] = str(payload["email"])
        for key, value in payload.items():
            if value is None and key in {"customer_name", "phone_number", "product_type", "quantity", "delivery_method", "reference_source", "inquiry_type", "is_company"}:
                continue
            setattr(inquiry, key, value)
        if inquiry.is_company and not (inquiry.company_name and inquiry.company_name.strip()):
            raise ValidationFailedError("company_name is required when is_company is true")
        session.commit()
        return self.get_inquiry(session, inquiry.id)

    def create_quote(
        self,
        session: Session,
        actor_user_id: uuid.UUID,
        inquiry_id: uuid.UUID,
        dto: QuoteRequest,
    ) -> InquiryRead:
        inquiry = self._get_inquiry(session, inquiry_id)
        actor = session.get(User, actor_user_id)

        inquiry.status = "Quoted"
        quoted_price = to_money(dto.total_price)
        inquiry.quoted_price = quoted_price
        inquiry.quoted_by = actor.name if actor is not None else str(actor_user_id)
        inquiry.quoted_at = utcnow()

        lead = inquiry.related_lead
        if lead is not None:
            old_status = lead.status
            new_status = next_lead_status("Quoted", old_status)
            if new_status != old_status:
                lead.status = new_status
                lead.estimated_value = quoted_price
                lead.last_contact_date = utcnow()
                record_activity(
                    session,
                    action="QUOTE_CREATED",
                    description=f"Quote of {quoted_price:,.2f} created for inquiry; lead moved from {old_status} to {new_status}",
                    user_id=actor_user_id,
                    lead_id=lead.id,
                    old_status=old_status,
                    new_status=new_status,
                    details={
                        "inquiry_id": str(inquiry.id),
                        "quote": {"total_price": str(quoted_price), "notes": dto.notes},
                    },
                )
                record_contact(
                    session,
                    method="Quote",
                    summary=f"Quote sent for {inquiry.product_type}: {quoted_price:,.2f}",
                    outcome="Awaiting customer response",
                    user_id=actor_user_id,
                    lead_id=lead.id,
                )
                observe_lead_status_transition("inquiry", new_status)
        session.commit()

        logger.info("inquiry.quoted", extra={"inquiry_id": str(inquiry.id)})
        events.publish(
            "inquiry.quoted",
            {"inquiry_id": str(inquiry.id), "total_price": str(quoted_price)},
            actor_user_id=str(actor_user_id),
        )
        return self.get_inquiry(session, inquiry.id)

    def approve(self, session: Session, actor_user_id: uuid.UUID, inquiry_id: uuid.UUID) -> InquiryRead:
        return self._transition(session, actor_user_id, inquiry_id, "Approved", outcome="Quote accepted by customer")

    def fulfill(self, session: Session, actor_user_id: uuid.UUID, inquiry_id: uuid.UUID) -> InquiryRead:
        return self._transition(session, actor_user_id, inquiry_id, "Fulfilled", outcome="Order successfully fulfilled")

    def schedule(
        self,
        session: Session,
        actor_user_id: uuid.UUID,
        inquiry_id: uuid.UUID,
        dto: ScheduleRequest,
    ) -> InquiryRead:
        inquiry = self._get_inquiry(session, inquiry_id)
        inquiry.status = "Scheduled"
        inquiry.preferred_date = dto.scheduled_date
        day = dto.scheduled_date.date().isoformat()

        lead = inquiry.related_lead
        if lead is not None:
            old_status = lead.status
            new_status = next_lead_status("Scheduled", old_status)
            if new_status != old_status:
                lead.status = new_status
                lead.follow_up_date = dto.scheduled_date
                lead.last_contact_date = utcnow()
                record_activity(
                    session,
                    action="DELIVERY_SCHEDULED",
                    description=f"Delivery scheduled for {day}",
                    user_id=actor_user_id,
                    lead_id=lead.id,
                    old_status=old_status,
                    new_status=new_status,
                    details={"inquiry_id": str(inquiry.id), "scheduled_date": dto.scheduled_date.isoformat()},
                )
                observe_lead_status_transition("inquiry", new_status)
            record_contact(
                session,
                method="System Update",
                summary=f"Delivery scheduled for {day}",
                outcome="Awaiting delivery",
                user_id=actor_user_id,
                lead_id=lead.id,
            )
        else:
            logger.warning("inquiry.scheduled_without_lead", extra={"inquiry_id": str(inquiry.id)})
        session.commit()
        return self.get_inquiry(session, inquiry.id)

    def cancel(self, session: Session, actor_user_id: uuid.UUID, inquiry_id: uuid.UUID) -> InquiryRead:
        inquiry = self._get_inquiry(session, inquiry_id)
        if inquiry.status == "Cancelled":
            raise ConflictError("inquiry is already cancelled")
        inquiry.status = "Cancelled"
        session.commit()
        logger.info("inquiry.cancelled", extra={"inquiry_id": str(inquiry.id)})
        events.publish("inquiry.cancelled", {"inquiry_id": str(inquiry.id)}, actor_user_id=str(actor_user_id))
        return self.get_inquiry(session, inquiry.id)

    def convert_to_lead(self, session: Session, actor_user_id: uuid.UUID, inquiry_id: uuid.UUID) -> LeadRead:
        inquiry = self._get_inquiry(session, inquiry_id)
        if inquiry.related_lead_id is not None:
            raise ConflictError(
                "inquiry is already linked to a lead",
                details={"lead_id": str(inquiry.related_lead_id)},
            )

        if inquiry.is_company and inquiry.company_name and inquiry.company_name.strip():
            company = find_or_create_company(
                session,
                inquiry.company_name,
                email=inquiry.email,
                phone=inquiry.phone_number,
                address=inquiry.company_address,
            )
        else:
            company = find_or_create_company(
                session,
                f"{inquiry.customer_name}'s Company",
                email=inquiry.email,
                phone=inquiry.phone_number,
            )

        lead = Lead(
            name=inquiry.customer_name,
            company_id=company.id,
            contact_person=inquiry.customer_name,
            email=inquiry.email,
            phone=inquiry.phone_number,
            status=next_lead_status(inquiry.status, "New"),
            source="Inquiry",
            sub_source=inquiry.reference_source,
            assigned_to_id=actor_user_id,
            created_by_id=actor_user_id,
            estimated_value=inquiry.quoted_price,
            follow_up_date=utcnow() + timedelta(days=FOLLOW_UP_DAYS),
            notes=inquiry.remarks,
        )
        session.add(lead)
        session.flush()

        record_contact(
            session,
            method="Inquiry Form",
            summary="Initial inquiry submitted through inquiry form",
            outcome="Converted to lead",
            user_id=actor_user_id,
            lead_id=lead.id,
        )
        inquiry.related_lead_id = lead.id
        session.commit()

        logger.info("inquiry.converted_to_lead", extra={"inquiry_id": str(inquiry.id), "lead_id": str(lead.id)})
        events.publish(
            "inquiry.converted_to_lead",
            {"inquiry_id": str(inquiry.id), "lead_id": str(lead.id)},
            actor_user_id=str(actor_user_id),
        )
        session.refresh(lead)
        return LeadRead.model_validate(lead)

    def update_priority(
        self,
        session: Session,
        actor_user_id: uuid.UUID,
        inquiry_id: uuid.UUID,
        dto: PriorityUpdate,
    ) -> InquiryRead:
        inquiry = self._get_inquiry(session, inquiry_id)
        old_priority = inquiry.priority
        inquiry.priority = dto.priority
        if inquiry.related_lead_id is not None and old_priority != dto.priority:
            record_activity(
                session,
                action="PRIORITY_CHANGE",
                description=f"Inquiry priority changed from {old_priority} to {dto.priority}",
                user_id=actor_user_id,
                lead_id=inquiry.related_lead_id,
                details={"inquiry_id": str(inquiry.id), "old_priority": old_priority, "new_priority": dto.priority},
            )
        session.commit()
        return self.get_inquiry(session, inquiry.id)

    def update_due_date(self, session: Session, inquiry_id: uuid.UUID, dto: DueDateUpdate) -> InquiryRead:
        inquiry = self._get_inquiry(session, inquiry_id)
        inquiry.due_date = dto.due_date
        session.commit()
        return self.get_inquiry(session, inquiry.id)

    def assign(self, session: Session, inquiry_id: uuid.UUID, dto: InquiryAssign) -> InquiryRead:
        inquiry = self._get_inquiry(session, inquiry_id)
        if dto.assigned_to_id is not None:
            ensure_user_exists(session, dto.assigned_to_id)
        inquiry.assigned_to_id = dto.assigned_to_id
        session.commit()
        return self.get_inquiry(session, inquiry.id)

    def delete_inquiry(self, session: Session, inquiry_id: uuid.UUID) -> None:
        inquiry = self._get_inquiry(session, inquiry_id)
        session.delete(inquiry)
        session.commit()
        logger.info("inquiry.deleted", extra={"inquiry_id": str(inquiry_id)})

    def statistics(self, session: Session) -> InquiryStatistics:
        total = int(session.scalar(select(func.count(Inquiry.id))) or 0)
        by_status = self._count_by(session, Inquiry.status)
        status_counts = {item.key: item.count for item in by_status}
        converted = sum(status_counts.get(name, 0) for name in CONVERTED_INQUIRY_STATUSES)
        active = sum(status_counts.get(name, 0) for name in ("New", "Quoted", "Approved", "Scheduled"))

        return InquiryStatistics(
            total_inquiries=total,
            conversion_rate=round(converted / total * 100, 2) if total else 0.0,
            by_status=[CountByKey(key=name, count=status_counts.get(name, 0)) for name in INQUIRY_STATUSES],
            by_reference_source=self._count_by(session, Inquiry.reference_source),
            by_product_type=self._count_by(session, Inquiry.product_type),
            by_priority=self._count_by(session, Inquiry.priority),
            by_delivery_method=self._count_by(session, Inquiry.delivery_method),
            monthly_trends=self._monthly_trends(session),
            active_inquiries=active,
        )

    def _transition(
        self,
        session: Session,
        actor_user_id: uuid.UUID,
        inquiry_id: uuid.UUID,
        inquiry_status: str,
        *,
        outcome: str,
    ) -> InquiryRead:
        inquiry = self._get_inquiry(session, inquiry_id)
        inquiry.status = inquiry_status

        lead = inquiry.related_lead
        if lead is not None:
            old_status = lead.status
            new_status = next_lead_status(inquiry_status, old_status)
            if new_status != old_status:
                lead.status = new_status
                lead.last_contact_date = utcnow()
                record_activity(
                    session,
                    action="STATUS_CHANGE",
                    description=(
                        f"Lead status updated from {old_status} to {new_status} "
                        f"due to inquiry status change to {inquiry_status}"
                    ),
                    user_id=actor_user_id,
                    lead_id=lead.id,
                    old_status=old_status,
                    new_status=new_status,
                    details={"inquiry_id": str(inquiry.id), "new_inquiry_status": inquiry_status},
                )
                record_contact(
                    session,
                    method="System Update",
                    summary=f"Inquiry status changed to {inquiry_status}. Lead status changed to {new_status}.",
                    outcome=outcome,
                    user_id=actor_user_id,
                    lead_id=lead.id,
                )
                observe_lead_status_transition("inquiry", new_status)
        else:
            logger.warning(
                "inquiry.status_changed_without_lead",
                extra={"inquiry_id": str(inquiry.id), "new_status": inquiry_status},
            )
        session.commit()
        logger.info("inquiry.status_changed", extra={"inquiry_id": str(inquiry.id), "new_status": inquiry_status})
        return self.get_inquiry(session, inquiry.id)

    def _find_customer(
        self,
        session: Session,
        *,
        email: str | None,
        phone_number: str | None,
        company_name: str | None,
    ) -> tuple[Company | None, Lead | None]:
        company: Company | None = None
        if company_name:
            company = session.scalar(select(Company).where(Company.name == company_name.strip()))

        predicates: list[Any] = []
        if email:
            predicates.append(Lead.email == email)
        if phone_number:
            predicates.append(Lead.phone == phone_number)
        if company is not None:
            predicates.append(Lead.company_id == company.id)
        if not predicates:
            return company, None

        lead = session.scalar(
            select(Lead)
            .options(selectinload(Lead.company), selectinload(Lead.assigned_to))
            .where(or_(*predicates))
            .order_by(Lead.updated_at.desc(), Lead.created_at.desc())
            .limit(1)
        )
        return company, lead

    def _get_inquiry(self, session: Session, inquiry_id: uuid.UUID) -> Inquiry:
        inquiry = session.scalar(
            select(Inquiry)
            .options(
                selectinload(Inquiry.related_lead),
                selectinload(Inquiry.created_by),
                selectinload(Inquiry.assigned_to),
            )
            .where(Inquiry.id == inquiry_id)
        )
        if inquiry is None:
            raise NotFoundError("inquiry not found")
        return inquiry

    def _count_by(self, session: Session, column: Any) -> list[CountByKey]:
        rows = session.execute(select(column, func.count(Inquiry.id)).group_by(column).order_by(column)).all()
        return [CountByKey(key=str(key), count=int(count)) for key, count in rows]

    def _monthly_trends(self, session: Session) -> list[MonthlyTrend]:
        now = utcnow()
        months: list[tuple[int, int]] = []
        year, month = now.year, now.month
        for _ in range(6):
            months.append((year, month))
            month -= 1
            if month == 0:
                year, month = year - 1, 12
        months.reverse()

        start_year, start_month = months[0]
        start = now.replace(year=start_year, month=start_month, day=1, hour=0, minute=0, second=0, microsecond=0)
        rows = session.execute(
            select(Inquiry.created_at, Inquiry.status).where(Inquiry.created_at >= start)
        ).all()

        counts: Counter[tuple[int, int]] = Counter()
        converted: Counter[tuple[int, int]] = Counter()
        cancelled: Counter[tuple[int, int]] = Counter()
        for created_at, status in rows:
            key = (created_at.year, created_at.month)
            counts[key] += 1
            if status in CONVERTED_INQUIRY_STATUSES:
                converted[key] += 1
            elif status == "Cancelled":
                cancelled[key] += 1

        return [
            MonthlyTrend(
                month=f"{year:04d}-{month:02d}",
                count=counts[(year, month)],
                converted=converted[(year, month)],
                cancelled=cancelled[(year, month)],
            )
            for year, month in months
        ]


inquiry_service = InquiryService()
