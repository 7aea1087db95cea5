"""Year-end archive ORM model."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leavedesk.database import Base, utcnow


def _days_column() -> Mapped[Decimal]:
    return mapped_column(
        sa.Numeric(5, 1), nullable=False, default=Decimal("0"), server_default=sa.text("0")
    )


def _count_column() -> Mapped[int]:
    return mapped_column(sa.Integer, nullable=False, default=0, server_default=sa.text("0"))


class LeaveArchive(Base):
    """One row per (user, organization, year), written by year-end settlement.

    The existence of any row for (organization, year) means that year has
    been settled.
    """

    __tablename__ = "leave_archives"
    __table_args__ = (
        sa.UniqueConstraint(
            "user_id", "organization_id", "year", name="uq_leave_archive"
        ),
        sa.Index("ix_leave_archives_org_year", "organization_id", "year"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("organizations.id"), nullable=False
    )
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    # Request counts by status
    total_requests: Mapped[int] = _count_column()
    pending_count: Mapped[int] = _count_column()
    approved_count: Mapped[int] = _count_column()
    rejected_count: Mapped[int] = _count_column()
    cancelled_count: Mapped[int] = _count_column()

    # Approved days by leave type
    casual_taken: Mapped[Decimal] = _days_column()
    medical_taken: Mapped[Decimal] = _days_column()
    comp_off_taken: Mapped[Decimal] = _days_column()

    # Balances at the moment of settlement
    balance_casual_at_year_end: Mapped[Decimal] = _days_column()
    balance_medical_at_year_end: Mapped[Decimal] = _days_column()
    balance_compoff_at_year_end: Mapped[Decimal] = _days_column()
    comp_off_forfeited: Mapped[Decimal] = _days_column()

    # Carry-forward applied and resulting opening balances
    carried_forward_casual: Mapped[Decimal] = _days_column()
    carried_forward_medical: Mapped[Decimal] = _days_column()
    new_balance_casual: Mapped[Decimal] = _days_column()
    new_balance_medical: Mapped[Decimal] = _days_column()

    settled_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=sa.func.now()
    )

    # Relationships
    user: Mapped["User"] = relationship()
