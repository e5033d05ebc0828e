from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agencycrm.core.database import Base
from agencycrm.crm.models import Client

VALID_POLICY_STATUSES = ("Active", "Expired", "Cancelled")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_policy_id() -> str:
    return str(uuid.uuid4())


class LegacyPolicy(Base):
    """Denormalized pre-migration row: one per (client, policy) pairing."""

    __tablename__ = "policy"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_policy_id)
    policy_number: Mapped[str] = mapped_column(String(128), nullable=False)
    policy_type: Mapped[str] = mapped_column(String(128), nullable=False)
    provider: Mapped[str] = mapped_column(String(255), nullable=False)
    premium_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    commission_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="Active", server_default="Active")
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expiry_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # No FK: legacy rows may reference clients that no longer exist.
    client_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    __table_args__ = (
        Index("ix_policy_created_order", "created_at", "id"),
        Index("ix_policy_client", "client_id"),
    )


class PolicyTemplate(Base):
    __tablename__ = "policy_template"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    policy_number: Mapped[str] = mapped_column(String(128), nullable=False)
    policy_type: Mapped[str] = mapped_column(String(128), nullable=False)
    provider: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    instances: Mapped[list[PolicyInstance]] = relationship(
        "PolicyInstance",
        back_populates="template",
        passive_deletes=True,
    )

    # Deliberately not unique: duplicate keys are reported by the integrity verifier.
    __table_args__ = (
        Index("ix_policy_template_dedup_key", "policy_number", "policy_type", "provider"),
    )


class PolicyInstance(Base):
    __tablename__ = "policy_instance"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    policy_template_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("policy_template.id", ondelete="CASCADE"),
        nullable=False,
    )
    client_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("crm_client.id", ondelete="RESTRICT"),
        nullable=False,
    )
    premium_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    commission_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="Active", server_default="Active")
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expiry_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    template: Mapped[PolicyTemplate] = relationship("PolicyTemplate", back_populates="instances")
    client: Mapped[Client] = relationship("Client", back_populates="policy_instances")

    __table_args__ = (
        Index("ix_policy_instance_template_client", "policy_template_id", "client_id"),
        Index("ix_policy_instance_client", "client_id"),
    )
