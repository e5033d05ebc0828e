from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agencycrm.core.database import Base

if TYPE_CHECKING:
    from agencycrm.policies.models import PolicyInstance


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_client_id() -> str:
    return str(uuid.uuid4())


class Client(Base):
    __tablename__ = "crm_client"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_client_id)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    policy_instances: Mapped[list[PolicyInstance]] = relationship(
        "PolicyInstance",
        back_populates="client",
    )
