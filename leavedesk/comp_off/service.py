"""Comp-off tracker — grants, availability, FIFO consumption and release.

Available comp-off is always recomputed from unconsumed ``user_comp_offs``
rows; ``users.balance_compoff`` is a cached counter kept in step with it.

Consumption policy: on approval of a COMP_OFF leave, whole grants are
consumed oldest-first (by grant creation time) until the leave's days are
covered.  Any fraction of the last grant beyond what was needed is
forfeited with it.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Optional, Sequence

import sqlalchemy as sa
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from leavedesk.common.audit import create_audit_entry
from leavedesk.common.constants import ZERO_DAYS, Capability, has_capability
from leavedesk.common.exceptions import (
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from leavedesk.comp_off.models import CompOff, UserCompOff
from leavedesk.database import utcnow
from leavedesk.users.models import User

logger = logging.getLogger(__name__)


class CompOffService:

    # ─────────────────────────────────────────────────────────────────
    # Cached counter
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _adjust_counter(
        db: AsyncSession, user_id: uuid.UUID, delta: Decimal
    ) -> None:
        """Move the cached counter by *delta*, flooring at zero."""
        await db.execute(
            select(User.id).where(User.id == user_id).with_for_update()
        )
        new_value = User.balance_compoff + delta
        await db.execute(
            update(User)
            .where(User.id == user_id)
            .values(
                balance_compoff=sa.case((new_value < 0, 0), else_=new_value),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session="fetch")
        )

    # ─────────────────────────────────────────────────────────────────
    # Grant
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def grant(
        db: AsyncSession,
        actor: User,
        user_ids: Sequence[uuid.UUID],
        work_date: date,
        title: str,
        description: Optional[str] = None,
        days: Decimal = Decimal("1"),
    ) -> CompOff:
        """Award *days* of comp-off to every user in *user_ids*."""
        if not has_capability(actor.role, Capability.can_manage_org):
            raise ForbiddenException("Only HR or admins can grant comp-off.")

        errors: dict[str, list[str]] = {}
        if not title or not title.strip():
            errors["title"] = ["Title is required."]
        if not user_ids:
            errors["user_ids"] = ["Select at least one employee."]
        if days is None or Decimal(str(days)) <= 0:
            errors["days"] = ["Days must be greater than zero."]
        if errors:
            raise ValidationException(errors)

        unique_ids = list(dict.fromkeys(user_ids))
        result = await db.execute(
            select(User.id, User.organization_id).where(User.id.in_(unique_ids))
        )
        found = {row.id: row.organization_id for row in result}
        missing = [str(uid) for uid in unique_ids if uid not in found]
        if missing:
            raise ValidationException({"user_ids": [f"Unknown user(s): {', '.join(missing)}"]})
        foreign = [str(uid) for uid, org in found.items() if org != actor.organization_id]
        if foreign and not has_capability(actor.role, Capability.can_manage_all_orgs):
            raise ForbiddenException("Comp-off can only be granted within your organization.")

        days = Decimal(str(days))
        comp_off = CompOff(
            organization_id=actor.organization_id,
            title=title.strip(),
            description=description,
            work_date=work_date,
            days=days,
            created_by=actor.id,
        )
        db.add(comp_off)
        await db.flush()

        for uid in unique_ids:
            db.add(UserCompOff(comp_off_id=comp_off.id, user_id=uid))
            await CompOffService._adjust_counter(db, uid, days)
        await db.flush()

        await create_audit_entry(
            db,
            action="grant",
            entity_type="comp_off",
            entity_id=comp_off.id,
            actor_id=actor.id,
            new_values={
                "title": comp_off.title,
                "days": str(days),
                "work_date": work_date.isoformat(),
                "user_ids": [str(uid) for uid in unique_ids],
            },
        )
        logger.info(
            "Granted %s comp-off day(s) to %d user(s) (grant %s)",
            days, len(unique_ids), comp_off.id,
        )

        result = await db.execute(
            select(CompOff)
            .options(selectinload(CompOff.recipients))
            .where(CompOff.id == comp_off.id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    # ─────────────────────────────────────────────────────────────────
    # Revoke
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def revoke(
        db: AsyncSession, actor: User, user_comp_off_id: uuid.UUID
    ) -> None:
        """Withdraw one user's unconsumed grant."""
        if not has_capability(actor.role, Capability.can_manage_org):
            raise ForbiddenException("Only HR or admins can revoke comp-off.")

        result = await db.execute(
            select(UserCompOff, CompOff)
            .join(CompOff, CompOff.id == UserCompOff.comp_off_id)
            .where(UserCompOff.id == user_comp_off_id)
            .with_for_update()
        )
        row = result.first()
        if row is None:
            raise NotFoundException("UserCompOff", str(user_comp_off_id))
        link, comp_off = row

        if (
            comp_off.organization_id != actor.organization_id
            and not has_capability(actor.role, Capability.can_manage_all_orgs)
        ):
            raise ForbiddenException("This grant belongs to another organization.")
        if link.is_consumed:
            raise ValidationException(
                {"user_comp_off_id": ["A consumed or forfeited grant cannot be revoked."]}
            )

        user_id = link.user_id
        await db.delete(link)
        await db.flush()
        await CompOffService._adjust_counter(db, user_id, -comp_off.days)

        remaining = (
            await db.execute(
                select(func.count())
                .select_from(UserCompOff)
                .where(UserCompOff.comp_off_id == comp_off.id)
            )
        ).scalar_one()
        if remaining == 0:
            await db.delete(comp_off)
            await db.flush()

        await create_audit_entry(
            db,
            action="revoke",
            entity_type="user_comp_off",
            entity_id=user_comp_off_id,
            actor_id=actor.id,
            old_values={
                "user_id": str(user_id),
                "comp_off_id": str(comp_off.id),
                "days": str(comp_off.days),
            },
        )
        logger.info("Revoked comp-off grant %s from user %s", user_comp_off_id, user_id)

    # ─────────────────────────────────────────────────────────────────
    # Availability
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def available_balance(db: AsyncSession, user_id: uuid.UUID) -> Decimal:
        """Sum of days over the user's unconsumed grants."""
        result = await db.execute(
            select(func.coalesce(func.sum(CompOff.days), 0))
            .select_from(UserCompOff)
            .join(CompOff, CompOff.id == UserCompOff.comp_off_id)
            .where(
                UserCompOff.user_id == user_id,
                UserCompOff.is_consumed.is_(False),
            )
        )
        return Decimal(str(result.scalar_one()))

    @staticmethod
    async def can_apply_comp_off(db: AsyncSession, user_id: uuid.UUID) -> bool:
        return await CompOffService.available_balance(db, user_id) > 0

    # ─────────────────────────────────────────────────────────────────
    # Consume / release
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def consume(
        db: AsyncSession,
        user_id: uuid.UUID,
        days: Decimal,
        leave_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Decimal:
        """Consume grants oldest-first until *days* is covered.

        Returns the total days of the grants consumed.  Raises
        ``ValidationException`` if the unconsumed grants cannot cover *days*.
        """
        days = Decimal(str(days))
        if days <= 0:
            return ZERO_DAYS

        result = await db.execute(
            select(UserCompOff, CompOff.days)
            .join(CompOff, CompOff.id == UserCompOff.comp_off_id)
            .where(
                UserCompOff.user_id == user_id,
                UserCompOff.is_consumed.is_(False),
            )
            .order_by(CompOff.created_at.asc(), UserCompOff.created_at.asc())
            .with_for_update()
        )
        rows = result.all()

        available = sum((Decimal(str(grant_days)) for _, grant_days in rows), ZERO_DAYS)
        if available < days:
            raise ValidationException(
                {"leave_type": [
                    f"Insufficient comp-off balance: {available} available, {days} requested."
                ]}
            )

        now = utcnow()
        consumed = ZERO_DAYS
        used_ids: list[str] = []
        for link, grant_days in rows:
            if consumed >= days:
                break
            link.is_consumed = True
            link.consumed_at = now
            link.consumed_leave_id = leave_id
            consumed += Decimal(str(grant_days))
            used_ids.append(str(link.id))
        await db.flush()
        await CompOffService._adjust_counter(db, user_id, -consumed)

        await create_audit_entry(
            db,
            action="consume",
            entity_type="leave",
            entity_id=leave_id,
            actor_id=actor_id,
            new_values={
                "user_id": str(user_id),
                "requested": str(days),
                "consumed": str(consumed),
                "user_comp_off_ids": used_ids,
            },
        )
        if consumed > days:
            logger.info(
                "Leave %s consumed %s comp-off day(s) for %s requested; %s forfeited",
                leave_id, consumed, days, consumed - days,
            )
        return consumed

    @staticmethod
    async def release(
        db: AsyncSession,
        leave_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Decimal:
        """Return the grants consumed by *leave_id* to the unconsumed pool."""
        result = await db.execute(
            select(UserCompOff, CompOff.days)
            .join(CompOff, CompOff.id == UserCompOff.comp_off_id)
            .where(UserCompOff.consumed_leave_id == leave_id)
            .with_for_update()
        )
        rows = result.all()
        if not rows:
            return ZERO_DAYS

        released = ZERO_DAYS
        per_user: dict[uuid.UUID, Decimal] = {}
        for link, grant_days in rows:
            link.is_consumed = False
            link.consumed_at = None
            link.consumed_leave_id = None
            grant_days = Decimal(str(grant_days))
            released += grant_days
            per_user[link.user_id] = per_user.get(link.user_id, ZERO_DAYS) + grant_days
        await db.flush()
        for user_id, amount in per_user.items():
            await CompOffService._adjust_counter(db, user_id, amount)

        await create_audit_entry(
            db,
            action="release",
            entity_type="leave",
            entity_id=leave_id,
            actor_id=actor_id,
            new_values={"released": str(released)},
        )
        return released

    # ─────────────────────────────────────────────────────────────────
    # Listing
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def list_grants(
        db: AsyncSession,
        user_id: uuid.UUID,
        *,
        include_consumed: bool = True,
    ) -> list[tuple[UserCompOff, CompOff]]:
        query = (
            select(UserCompOff, CompOff)
            .join(CompOff, CompOff.id == UserCompOff.comp_off_id)
            .where(UserCompOff.user_id == user_id)
            .order_by(CompOff.created_at.asc())
        )
        if not include_consumed:
            query = query.where(UserCompOff.is_consumed.is_(False))
        result = await db.execute(query)
        return [(link, comp_off) for link, comp_off in result.all()]
