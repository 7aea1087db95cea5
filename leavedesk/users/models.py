"""User ORM model — the profile row behind an authenticated identity."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leavedesk.common.constants import UserRole
from leavedesk.database import Base, utcnow


class User(Base):
    __tablename__ = "users"

    # Same id as the identity provider's subject claim
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    organization_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("organizations.id"), index=True
    )
    email: Mapped[str] = mapped_column(sa.String(255), unique=True, nullable=False)
    full_name: Mapped[Optional[str]] = mapped_column(sa.String(200))
    designation: Mapped[Optional[str]] = mapped_column(sa.String(200))
    role: Mapped[UserRole] = mapped_column(
        sa.Enum(UserRole, name="user_role", native_enum=False, length=20),
        nullable=False,
        default=UserRole.USER,
        server_default=UserRole.USER.value,
    )
    balance_casual: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, default=Decimal("0"), server_default=sa.text("0")
    )
    balance_medical: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, default=Decimal("0"), server_default=sa.text("0")
    )
    # Cached counter; the authoritative figure is recomputed from user_comp_offs
    balance_compoff: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, default=Decimal("0"), server_default=sa.text("0")
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=sa.func.now()
    )

    # Relationships
    organization: Mapped[Optional["Organization"]] = relationship(
        back_populates="users"
    )

    def __repr__(self) -> str:
        return f"<User {self.email} {self.role.value}>"
