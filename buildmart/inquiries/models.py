from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from buildmart.core.database import Base
from buildmart.crm.models import Lead
from buildmart.users.models import User, utcnow


class Inquiry(Base):
    __tablename__ = "inquiry"
    __table_args__ = (
        Index("ix_inquiry_status", "status"),
        Index("ix_inquiry_created_at", "created_at"),
        Index("ix_inquiry_related_lead_id", "related_lead_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(64), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    is_company: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    company_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    product_type: Mapped[str] = mapped_column(String(32), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    delivery_method: Mapped[str] = mapped_column(String(32), nullable=False)
    delivery_location: Mapped[str | None] = mapped_column(Text, nullable=True)
    preferred_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reference_source: Mapped[str] = mapped_column(String(32), nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="Medium")
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    inquiry_type: Mapped[str] = mapped_column(String(32), nullable=False, default="PricingRequest")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="New")
    related_lead_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("lead.id", ondelete="SET NULL"),
        nullable=True,
    )
    quoted_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    quoted_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    quoted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("app_user.id", ondelete="SET NULL"),
        nullable=True,
    )
    assigned_to_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("app_user.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    related_lead: Mapped[Lead | None] = relationship("Lead")
    created_by: Mapped[User | None] = relationship("User", foreign_keys=[created_by_id])
    assigned_to: Mapped[User | None] = relationship("User", foreign_keys=[assigned_to_id])
