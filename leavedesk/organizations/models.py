"""Organization ORM models: Organization, Group, GroupMember, LeaveSettings, PublicHoliday."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leavedesk.common.constants import HolidayType
from leavedesk.database import Base, utcnow


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(sa.String(200), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=sa.func.now()
    )

    # Relationships
    users: Mapped[list["User"]] = relationship(back_populates="organization")
    groups: Mapped[list[Group]] = relationship(
        back_populates="organization", cascade="all, delete-orphan"
    )


class Group(Base):
    """Approval group: leave requests are routed to exactly one group."""

    __tablename__ = "groups"
    __table_args__ = (
        sa.UniqueConstraint("organization_id", "name", name="uq_group_org_name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("organizations.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=sa.func.now()
    )

    # Relationships
    organization: Mapped[Organization] = relationship(back_populates="groups")
    members: Mapped[list[GroupMember]] = relationship(
        back_populates="group", cascade="all, delete-orphan"
    )


class GroupMember(Base):
    __tablename__ = "group_members"
    __table_args__ = (
        sa.UniqueConstraint("group_id", "user_id", name="uq_group_member"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    group_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=sa.func.now()
    )

    # Relationships
    group: Mapped[Group] = relationship(back_populates="members")
    user: Mapped["User"] = relationship()


class LeaveSettings(Base):
    """One row per organization: the template for balance resets."""

    __tablename__ = "leave_settings"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("organizations.id"),
        unique=True,
        nullable=False,
    )
    # Display only; there is a single row per organization
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    default_casual_leaves: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, server_default=sa.text("12")
    )
    default_medical_leaves: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, server_default=sa.text("12")
    )
    carry_forward_enabled: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.false()
    )
    year_end_processed: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.false()
    )
    year_end_processed_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True)
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=sa.func.now()
    )


class PublicHoliday(Base):
    __tablename__ = "public_holidays"
    __table_args__ = (
        sa.Index("ix_public_holidays_org_year", "organization_id", "year"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("organizations.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    holiday_date: Mapped[date] = mapped_column("date", sa.Date, nullable=False)
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    holiday_type: Mapped[HolidayType] = mapped_column(
        "type",
        sa.Enum(HolidayType, name="holiday_type", native_enum=False, length=20),
        nullable=False,
        default=HolidayType.NORMAL,
    )
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id")
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=sa.func.now()
    )
