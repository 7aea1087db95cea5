"""Comp-off ORM models: CompOff (the award) and UserCompOff (one row per recipient)."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leavedesk.database import Base, utcnow


class CompOff(Base):
    __tablename__ = "comp_offs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("organizations.id"), nullable=False
    )
    title: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    work_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    days: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, default=Decimal("1"), server_default=sa.text("1")
    )
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id")
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=sa.func.now()
    )

    # Relationships
    recipients: Mapped[list[UserCompOff]] = relationship(
        back_populates="comp_off", cascade="all, delete-orphan"
    )


class UserCompOff(Base):
    __tablename__ = "user_comp_offs"
    __table_args__ = (
        sa.UniqueConstraint("comp_off_id", "user_id", name="uq_user_comp_off"),
        sa.Index("ix_user_comp_offs_user_consumed", "user_id", "is_consumed"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    comp_off_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("comp_offs.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False
    )
    is_consumed: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.false()
    )
    consumed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    consumed_leave_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leaves.id", ondelete="SET NULL")
    )
    # Set when year-end settlement forfeits an unconsumed grant
    forfeited_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=sa.func.now()
    )

    # Relationships
    comp_off: Mapped[CompOff] = relationship(back_populates="recipients")
