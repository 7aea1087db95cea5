"""Organization service — leave settings, balance resets, groups, holidays."""

from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from leavedesk.common.audit import create_audit_entry
from leavedesk.common.constants import Capability, has_capability
from leavedesk.common.exceptions import (
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from leavedesk.config import settings
from leavedesk.database import utcnow
from leavedesk.leave.ledger import BalanceLedger
from leavedesk.organizations.models import (
    Group,
    GroupMember,
    LeaveSettings,
    Organization,
    PublicHoliday,
)
from leavedesk.organizations.schemas import (
    LeaveSettingsUpdate,
    PublicHolidayCreate,
    PublicHolidayUpdate,
)
from leavedesk.users.models import User

logger = logging.getLogger(__name__)


def ensure_org_access(actor: User, organization_id: uuid.UUID) -> None:
    """Raise unless *actor* belongs to the organization or manages all of them."""
    if actor.organization_id == organization_id:
        return
    if has_capability(actor.role, Capability.can_manage_all_orgs):
        return
    raise ForbiddenException("You do not have access to this organization.")


def resolve_organization_id(
    actor: User, organization_id: Optional[uuid.UUID] = None
) -> uuid.UUID:
    """Default to the actor's organization; check access to any other."""
    target = organization_id or actor.organization_id
    if target is None:
        raise ValidationException(
            {"organization_id": ["You do not belong to an organization."]}
        )
    ensure_org_access(actor, target)
    return target


class OrganizationService:

    # ─────────────────────────────────────────────────────────────────
    # Organizations
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def list_organizations(db: AsyncSession, actor: User) -> list[Organization]:
        query = select(Organization).order_by(Organization.name)
        if not has_capability(actor.role, Capability.can_manage_all_orgs):
            query = query.where(Organization.id == actor.organization_id)
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def create_organization(
        db: AsyncSession, actor: User, name: str
    ) -> Organization:
        name = name.strip()
        existing = await db.execute(
            select(Organization.id).where(Organization.name == name)
        )
        if existing.scalar_one_or_none() is not None:
            raise ValidationException({"name": [f"Organization '{name}' already exists."]})

        org = Organization(name=name)
        db.add(org)
        await db.flush()
        await create_audit_entry(
            db,
            action="create",
            entity_type="organization",
            entity_id=org.id,
            actor_id=actor.id,
            new_values={"name": name},
        )
        logger.info("Organization %s created by %s", org.id, actor.id)
        return org

    @staticmethod
    async def get_organization(db: AsyncSession, organization_id: uuid.UUID) -> Organization:
        org = await db.get(Organization, organization_id)
        if org is None:
            raise NotFoundException("Organization", str(organization_id))
        return org

    # ─────────────────────────────────────────────────────────────────
    # Leave settings
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_settings(
        db: AsyncSession, organization_id: uuid.UUID, *, create: bool = True
    ) -> Optional[LeaveSettings]:
        """Return the org's settings row, creating it from config defaults if asked."""
        result = await db.execute(
            select(LeaveSettings).where(LeaveSettings.organization_id == organization_id)
        )
        row = result.scalar_one_or_none()
        if row is None and create:
            await OrganizationService.get_organization(db, organization_id)
            row = LeaveSettings(
                organization_id=organization_id,
                year=date.today().year,
                default_casual_leaves=Decimal(settings.DEFAULT_CASUAL_LEAVES),
                default_medical_leaves=Decimal(settings.DEFAULT_MEDICAL_LEAVES),
                carry_forward_enabled=False,
                year_end_processed=False,
            )
            db.add(row)
            await db.flush()
        return row

    @staticmethod
    async def update_settings(
        db: AsyncSession,
        actor: User,
        organization_id: uuid.UUID,
        data: LeaveSettingsUpdate,
    ) -> LeaveSettings:
        ensure_org_access(actor, organization_id)
        row = await OrganizationService.get_settings(db, organization_id)

        old = {
            "default_casual_leaves": str(row.default_casual_leaves),
            "default_medical_leaves": str(row.default_medical_leaves),
            "carry_forward_enabled": row.carry_forward_enabled,
            "year": row.year,
        }
        for field, value in data.model_dump(exclude_unset=True).items():
            if value is not None:
                setattr(row, field, value)
        row.updated_at = utcnow()
        await db.flush()

        await create_audit_entry(
            db,
            action="update",
            entity_type="leave_settings",
            entity_id=row.id,
            actor_id=actor.id,
            old_values=old,
            new_values={
                "default_casual_leaves": str(row.default_casual_leaves),
                "default_medical_leaves": str(row.default_medical_leaves),
                "carry_forward_enabled": row.carry_forward_enabled,
                "year": row.year,
            },
        )
        return row

    @staticmethod
    async def bulk_reset_balances(
        db: AsyncSession, actor: User, organization_id: uuid.UUID
    ) -> tuple[int, LeaveSettings]:
        """Set every user's casual/medical balance to the org defaults."""
        ensure_org_access(actor, organization_id)
        row = await OrganizationService.get_settings(db, organization_id)

        result = await db.execute(
            select(User.id).where(User.organization_id == organization_id).order_by(User.id)
        )
        user_ids = list(result.scalars().all())
        for user_id in user_ids:
            await BalanceLedger.set_balances(
                db,
                user_id,
                casual=row.default_casual_leaves,
                medical=row.default_medical_leaves,
                actor_id=actor.id,
            )
        logger.info(
            "Reset balances for %d user(s) in organization %s to %s casual / %s medical",
            len(user_ids), organization_id,
            row.default_casual_leaves, row.default_medical_leaves,
        )
        return len(user_ids), row

    # ─────────────────────────────────────────────────────────────────
    # Groups
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _get_group(db: AsyncSession, actor: User, group_id: uuid.UUID) -> Group:
        result = await db.execute(
            select(Group)
            .options(selectinload(Group.members).selectinload(GroupMember.user))
            .where(Group.id == group_id)
            .execution_options(populate_existing=True)
        )
        group = result.scalar_one_or_none()
        if group is None:
            raise NotFoundException("Group", str(group_id))
        ensure_org_access(actor, group.organization_id)
        return group

    @staticmethod
    async def list_groups(db: AsyncSession, organization_id: uuid.UUID) -> list[Group]:
        result = await db.execute(
            select(Group)
            .options(selectinload(Group.members).selectinload(GroupMember.user))
            .where(Group.organization_id == organization_id)
            .order_by(Group.name)
        )
        return list(result.scalars().all())

    @staticmethod
    async def create_group(
        db: AsyncSession, actor: User, organization_id: uuid.UUID, name: str
    ) -> Group:
        ensure_org_access(actor, organization_id)
        name = name.strip()
        clash = await db.execute(
            select(Group.id).where(
                Group.organization_id == organization_id, Group.name == name
            )
        )
        if clash.scalar_one_or_none() is not None:
            raise ValidationException({"name": [f"Group '{name}' already exists."]})

        group = Group(organization_id=organization_id, name=name)
        db.add(group)
        await db.flush()
        await create_audit_entry(
            db,
            action="create",
            entity_type="group",
            entity_id=group.id,
            actor_id=actor.id,
            new_values={"name": name},
        )
        return await OrganizationService._get_group(db, actor, group.id)

    @staticmethod
    async def rename_group(
        db: AsyncSession, actor: User, group_id: uuid.UUID, name: str
    ) -> Group:
        group = await OrganizationService._get_group(db, actor, group_id)
        old_name = group.name
        group.name = name.strip()
        await db.flush()
        await create_audit_entry(
            db,
            action="update",
            entity_type="group",
            entity_id=group.id,
            actor_id=actor.id,
            old_values={"name": old_name},
            new_values={"name": group.name},
        )
        return group

    @staticmethod
    async def delete_group(db: AsyncSession, actor: User, group_id: uuid.UUID) -> None:
        """Pending requests routed to the group lose their routing target."""
        group = await OrganizationService._get_group(db, actor, group_id)
        await create_audit_entry(
            db,
            action="delete",
            entity_type="group",
            entity_id=group.id,
            actor_id=actor.id,
            old_values={"name": group.name},
        )
        await db.delete(group)
        await db.flush()

    @staticmethod
    async def add_members(
        db: AsyncSession,
        actor: User,
        group_id: uuid.UUID,
        user_ids: Sequence[uuid.UUID],
    ) -> Group:
        group = await OrganizationService._get_group(db, actor, group_id)
        existing = {m.user_id for m in group.members}

        result = await db.execute(select(User).where(User.id.in_(list(user_ids))))
        users = {u.id: u for u in result.scalars().all()}
        errors: list[str] = []
        for uid in user_ids:
            user = users.get(uid)
            if user is None:
                errors.append(f"Unknown user {uid}.")
            elif user.organization_id != group.organization_id:
                errors.append(f"User {uid} belongs to another organization.")
        if errors:
            raise ValidationException({"user_ids": errors})

        for uid in dict.fromkeys(user_ids):
            if uid not in existing:
                db.add(GroupMember(group_id=group.id, user_id=uid))
        await db.flush()
        await create_audit_entry(
            db,
            action="add_members",
            entity_type="group",
            entity_id=group.id,
            actor_id=actor.id,
            new_values={"user_ids": [str(uid) for uid in user_ids]},
        )
        return await OrganizationService._get_group(db, actor, group.id)

    @staticmethod
    async def remove_member(
        db: AsyncSession, actor: User, group_id: uuid.UUID, user_id: uuid.UUID
    ) -> None:
        group = await OrganizationService._get_group(db, actor, group_id)
        member = next((m for m in group.members if m.user_id == user_id), None)
        if member is None:
            raise NotFoundException("GroupMember", str(user_id))
        await db.delete(member)
        await db.flush()
        await create_audit_entry(
            db,
            action="remove_member",
            entity_type="group",
            entity_id=group.id,
            actor_id=actor.id,
            old_values={"user_id": str(user_id)},
        )

    # ─────────────────────────────────────────────────────────────────
    # Public holidays
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def list_holidays(
        db: AsyncSession, organization_id: uuid.UUID, year: int
    ) -> list[PublicHoliday]:
        result = await db.execute(
            select(PublicHoliday)
            .where(
                PublicHoliday.organization_id == organization_id,
                PublicHoliday.year == year,
            )
            .order_by(PublicHoliday.holiday_date)
        )
        return list(result.scalars().all())

    @staticmethod
    async def create_holiday(
        db: AsyncSession,
        actor: User,
        organization_id: uuid.UUID,
        data: PublicHolidayCreate,
    ) -> PublicHoliday:
        ensure_org_access(actor, organization_id)
        holiday = PublicHoliday(
            organization_id=organization_id,
            name=data.name.strip(),
            holiday_date=data.holiday_date,
            year=data.holiday_date.year,
            holiday_type=data.holiday_type,
            description=data.description,
            created_by=actor.id,
        )
        db.add(holiday)
        await db.flush()
        await create_audit_entry(
            db,
            action="create",
            entity_type="public_holiday",
            entity_id=holiday.id,
            actor_id=actor.id,
            new_values={
                "name": holiday.name,
                "date": holiday.holiday_date.isoformat(),
                "type": holiday.holiday_type.value,
            },
        )
        return holiday

    @staticmethod
    async def _get_holiday(
        db: AsyncSession, actor: User, holiday_id: uuid.UUID
    ) -> PublicHoliday:
        holiday = await db.get(PublicHoliday, holiday_id)
        if holiday is None:
            raise NotFoundException("PublicHoliday", str(holiday_id))
        ensure_org_access(actor, holiday.organization_id)
        return holiday

    @staticmethod
    async def update_holiday(
        db: AsyncSession,
        actor: User,
        holiday_id: uuid.UUID,
        data: PublicHolidayUpdate,
    ) -> PublicHoliday:
        holiday = await OrganizationService._get_holiday(db, actor, holiday_id)
        changes = data.model_dump(exclude_unset=True)
        for field, value in changes.items():
            if value is not None or field == "description":
                setattr(holiday, field, value)
        holiday.year = holiday.holiday_date.year
        await db.flush()
        await create_audit_entry(
            db,
            action="update",
            entity_type="public_holiday",
            entity_id=holiday.id,
            actor_id=actor.id,
            new_values=data.model_dump(mode="json", exclude_unset=True),
        )
        return holiday

    @staticmethod
    async def delete_holiday(
        db: AsyncSession, actor: User, holiday_id: uuid.UUID
    ) -> None:
        holiday = await OrganizationService._get_holiday(db, actor, holiday_id)
        await create_audit_entry(
            db,
            action="delete",
            entity_type="public_holiday",
            entity_id=holiday.id,
            actor_id=actor.id,
            old_values={"name": holiday.name, "date": holiday.holiday_date.isoformat()},
        )
        await db.delete(holiday)
        await db.flush()
