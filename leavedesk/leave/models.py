"""Leave request ORM model."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leavedesk.common.constants import HalfDaySlot, LeaveStatus, LeaveType
from leavedesk.database import Base, utcnow


class Leave(Base):
    __tablename__ = "leaves"
    __table_args__ = (
        sa.CheckConstraint("end_date >= start_date", name="ck_leave_date_range"),
        sa.Index("ix_leaves_user_start", "user_id", "start_date"),
        sa.Index("ix_leaves_status_group", "status", "assigned_group_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False
    )
    leave_type: Mapped[LeaveType] = mapped_column(
        "type",
        sa.Enum(LeaveType, name="leave_type", native_enum=False, length=20),
        nullable=False,
    )
    status: Mapped[LeaveStatus] = mapped_column(
        sa.Enum(LeaveStatus, name="leave_status", native_enum=False, length=20),
        nullable=False,
        default=LeaveStatus.PENDING,
        server_default=LeaveStatus.PENDING.value,
    )
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    is_half_day: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.false()
    )
    half_day_slot: Mapped[Optional[HalfDaySlot]] = mapped_column(
        sa.Enum(HalfDaySlot, name="half_day_slot", native_enum=False, length=20)
    )
    days_count: Mapped[Decimal] = mapped_column(sa.Numeric(5, 1), nullable=False)
    # Amount the ledger actually moved on approval (debit may be clamped at 0,
    # comp-off consumption is whole grants); reversed exactly on cancel/edit.
    ledger_days: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, default=Decimal("0"), server_default=sa.text("0")
    )
    reason: Mapped[str] = mapped_column(sa.Text, nullable=False)
    assigned_group_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("groups.id", ondelete="SET NULL")
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id")
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    is_archived: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.false()
    )
    archived_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=sa.func.now()
    )

    # Relationships
    user: Mapped["User"] = relationship(foreign_keys=[user_id])
    approver: Mapped[Optional["User"]] = relationship(foreign_keys=[approved_by])
