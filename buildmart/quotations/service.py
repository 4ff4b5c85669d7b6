from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session, selectinload

from buildmart import events
from buildmart.core.config import Settings, get_settings
from buildmart.core.errors import ConflictError, NotFoundError, ValidationFailedError
from buildmart.core.money import ZERO, to_money, to_unit_price
from buildmart.core.sequence import QUOTATION_SEQUENCE, format_quotation_number, next_sequence_value
from buildmart.crm.models import Client, Lead
from buildmart.integrations.email import EmailAttachment, Mailer, OutgoingEmail, build_mailer, resolve_recipient
from buildmart.integrations.storage import BlobStorage, build_blob_storage
from buildmart.metrics import observe_quotation_sent
from buildmart.products.models import Product
from buildmart.quotations.models import Quotation, QuotationItem
from buildmart.quotations.pdf import build_customer_view, render_quotation_pdf
from buildmart.quotations.schemas import (
    QuotationCreate,
    QuotationItemCreate,
    QuotationListMeta,
    QuotationListResponse,
    QuotationRead,
    QuotationUpdate,
)
from buildmart.users.models import utcnow


logger = logging.getLogger("buildmart.quotations")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _build_items(session: Session, items: list[QuotationItemCreate]) -> tuple[list[QuotationItem], Decimal]:
    rows: list[QuotationItem] = []
    subtotal = ZERO
    for position, item in enumerate(items):
        if item.product_id is not None and session.get(Product, item.product_id) is None:
            raise ValidationFailedError("product not found", details={"product_id": str(item.product_id)})
        unit_price = to_unit_price(item.unit_price)
        line_total = to_money(item.line_total if item.line_total is not None else item.quantity * unit_price)
        subtotal += line_total
        rows.append(
            QuotationItem(
                product_id=item.product_id,
                position=position,
                description=item.description,
                quantity=item.quantity,
                unit_price=unit_price,
                line_total=line_total,
            )
        )
    return rows, subtotal


def compute_total(subtotal: Decimal, discount: Decimal, tax: Decimal) -> Decimal:
    return to_money(max(subtotal - to_money(discount), ZERO) + to_money(tax))


@dataclass
class QuotationService:
    storage: BlobStorage | None = None
    mailer: Mailer | None = None
    settings: Settings | None = None

    def _storage(self) -> BlobStorage:
        if self.storage is None:
            self.storage = build_blob_storage(self._settings())
        return self.storage

    def _mailer(self) -> Mailer:
        if self.mailer is None:
            self.mailer = build_mailer(self._settings())
        return self.mailer

    def _settings(self) -> Settings:
        return self.settings or get_settings()

    def create_quotation(self, session: Session, actor_user_id: uuid.UUID, dto: QuotationCreate) -> QuotationRead:
        if _as_utc(dto.valid_until) <= utcnow():
            raise ValidationFailedError("valid_until must be in the future")
        if dto.lead_id is not None and session.get(Lead, dto.lead_id) is None:
            raise ValidationFailedError("lead not found", details={"lead_id": str(dto.lead_id)})
        if dto.client_id is not None and session.get(Client, dto.client_id) is None:
            raise ValidationFailedError("client not found", details={"client_id": str(dto.client_id)})

        items, subtotal = _build_items(session, dto.items)
        now = utcnow()
        quotation = Quotation(
            quotation_number=format_quotation_number(now.year, next_sequence_value(session, QUOTATION_SEQUENCE)),
            status="Draft",
            lead_id=dto.lead_id,
            client_id=dto.client_id,
            issue_date=now,
            valid_until=dto.valid_until,
            subtotal=subtotal,
            discount=to_money(dto.discount),
            tax=to_money(dto.tax),
            total=compute_total(subtotal, dto.discount, dto.tax),
            notes_to_customer=dto.notes_to_customer,
            internal_notes=dto.internal_notes,
            created_by_id=actor_user_id,
            items=items,
        )
        session.add(quotation)
        session.commit()

        logger.info(
            "quotation.created",
            extra={"quotation_id": str(quotation.id), "quotation_number": quotation.quotation_number},
        )
        events.publish(
            "quotation.created",
            {"quotation_id": str(quotation.id), "quotation_number": quotation.quotation_number},
            actor_user_id=str(actor_user_id),
        )
        return self.get_quotation(session, quotation.id)

    def list_quotations(
        self,
        session: Session,
        *,
        page: int = 1,
        page_size: int = 20,
        lead_id: uuid.UUID | None = None,
        client_id: uuid.UUID | None = None,
        status: str | None = None,
        search: str | None = None,
    ) -> QuotationListResponse:
        stmt: Select[tuple[Quotation]] = select(Quotation)
        if lead_id is not None:
            stmt = stmt.where(Quotation.lead_id == lead_id)
        if client_id is not None:
            stmt = stmt.where(Quotation.client_id == client_id)
        if status:
            stmt = stmt.where(Quotation.status == status)
        if search:
            stmt = stmt.where(Quotation.quotation_number.ilike(f"%{search.strip()}%"))

        total = int(session.scalar(select(func.count()).select_from(stmt.subquery())) or 0)
        rows = session.scalars(
            stmt.options(selectinload(Quotation.items))
            .order_by(Quotation.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return QuotationListResponse(
            data=[QuotationRead.model_validate(row) for row in rows],
            meta=QuotationListMeta(
                total=total,
                page=page,
                page_size=page_size,
                total_pages=math.ceil(total / page_size) if page_size else 0,
            ),
        )

    def get_quotation(self, session: Session, quotation_id: uuid.UUID) -> QuotationRead:
        return QuotationRead.model_validate(self._get_quotation(session, quotation_id))

    def update_quotation(self, session: Session, quotation_id: uuid.UUID, dto: QuotationUpdate) -> QuotationRead:
        quotation = self._get_quotation(session, quotation_id)
        if quotation.status != "Draft":
            raise ConflictError(
                "only draft quotations can be edited",
                details={"status": quotation.status},
            )
        payload = dto.model_dump(exclude_unset=True)
        items = payload.pop("items", None)

        if payload.get("valid_until") is not None and _as_utc(payload["valid_until"]) <= utcnow():
            raise ValidationFailedError("valid_until must be in the future")
        for key, value in payload.items():
            if key in {"valid_until", "discount", "tax"} and value is None:
                continue
            if key in {"discount", "tax"}:
                value = to_money(value)
            setattr(quotation, key, value)

        if items is not None:
            rows, subtotal = _build_items(session, dto.items or [])
            quotation.items = rows
            quotation.subtotal = subtotal
        quotation.total = compute_total(quotation.subtotal, quotation.discount, quotation.tax)
        session.commit()
        return self.get_quotation(session, quotation.id)

    def delete_quotation(self, session: Session, quotation_id: uuid.UUID) -> None:
        quotation = self._get_quotation(session, quotation_id)
        if quotation.status == "Converted":
            raise ConflictError("converted quotations cannot be deleted")
        session.delete(quotation)
        session.commit()
        logger.info("quotation.deleted", extra={"quotation_id": str(quotation_id)})

    def render_pdf(self, session: Session, quotation_id: uuid.UUID) -> tuple[str, bytes]:
        quotation = self._get_quotation(session, quotation_id)
        return f"{quotation.quotation_number}.pdf", render_quotation_pdf(quotation, self._settings())

    def send_quotation(self, session: Session, actor_user_id: uuid.UUID, quotation_id: uuid.UUID) -> QuotationRead:
        quotation = self._get_quotation(session, quotation_id)
        if quotation.status == "Sent":
            raise ConflictError("quotation already sent")

        customer = build_customer_view(quotation)
        if not customer.email:
            raise ValidationFailedError("client or lead has no email address")

        settings = self._settings()
        pdf_bytes = render_quotation_pdf(quotation, settings)
        filename = f"{quotation.quotation_number}.pdf"
        public_url = self._storage().put(f"quotations/pdfs/{filename}", pdf_bytes, "application/pdf")

        self._mailer().send(
            OutgoingEmail(
                to=resolve_recipient(customer.email, settings),
                subject=f"Quotation {quotation.quotation_number} from {settings.company_name}",
                body=(
                    f"Dear {customer.name},\n\n"
                    f"Please find attached quotation {quotation.quotation_number}.\n"
                    f"You can also view it online: {public_url}\n\n"
                    f"{settings.company_name}"
                ),
                attachments=[EmailAttachment(filename=filename, content=pdf_bytes)],
            )
        )

        quotation.status = "Sent"
        quotation.issue_date = utcnow()
        quotation.pdf_url = public_url
        session.commit()

        observe_quotation_sent()
        logger.info(
            "quotation.sent",
            extra={"quotation_id": str(quotation.id), "quotation_number": quotation.quotation_number},
        )
        events.publish(
            "quotation.sent",
            {"quotation_id": str(quotation.id), "pdf_url": public_url},
            actor_user_id=str(actor_user_id),
        )
        return self.get_quotation(session, quotation.id)

    def accept(self, session: Session, quotation_id: uuid.UUID) -> QuotationRead:
        return self._set_status(session, quotation_id, "Accepted", allowed_from={"Draft", "Sent"})

    def reject(self, session: Session, quotation_id: uuid.UUID) -> QuotationRead:
        return self._set_status(session, quotation_id, "Rejected", allowed_from={"Draft", "Sent"})

    def _set_status(
        self,
        session: Session,
        quotation_id: uuid.UUID,
        new_status: str,
        *,
        allowed_from: set[str],
    ) -> QuotationRead:
        quotation = self._get_quotation(session, quotation_id)
        if quotation.status not in allowed_from:
            raise ConflictError(
                f"cannot mark a {quotation.status} quotation as {new_status}",
                details={"status": quotation.status},
            )
        old_status = quotation.status
        quotation.status = new_status
        session.commit()
        logger.info(
            "quotation.status_changed",
            extra={"quotation_id": str(quotation.id), "old_status": old_status, "new_status": new_status},
        )
        return self.get_quotation(session, quotation.id)

    def _get_quotation(self, session: Session, quotation_id: uuid.UUID) -> Quotation:
        quotation = session.scalar(
            select(Quotation)
            .options(
                selectinload(Quotation.items),
                selectinload(Quotation.client),
                selectinload(Quotation.lead),
            )
            .where(Quotation.id == quotation_id)
        )
        if quotation is None:
            raise NotFoundError("quotation not found")
        return quotation


quotation_service = QuotationService()


def get_quotation_service() -> QuotationService:
    return quotation_service
