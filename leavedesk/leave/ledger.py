"""Balance ledger — atomic per-user debit/credit of leave balances.

Every mutation locks the user row, re-reads the current value and issues a
single UPDATE whose new value is computed by the database.  Debits floor at
zero; the amount actually applied is returned so it can be reversed exactly.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from leavedesk.common.audit import record_balance_change
from leavedesk.common.constants import ZERO_DAYS, LeaveType
from leavedesk.common.exceptions import NotFoundException
from leavedesk.database import utcnow
from leavedesk.users.models import User

logger = logging.getLogger(__name__)

# COMP_OFF is tracked per grant by the comp-off tracker, not here.
LEDGER_FIELDS: dict[LeaveType, str] = {
    LeaveType.CASUAL: "balance_casual",
    LeaveType.MEDICAL: "balance_medical",
}


def _to_days(value) -> Decimal:
    return Decimal(str(value)) if value is not None else ZERO_DAYS


class BalanceLedger:
    """Stateless ledger operations; the caller owns the transaction."""

    # ─────────────────────────────────────────────────────────────────
    # Internal helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _lock_balance(
        db: AsyncSession, user_id: uuid.UUID, field: str
    ) -> Decimal:
        column = getattr(User, field)
        result = await db.execute(
            select(column).where(User.id == user_id).with_for_update()
        )
        current = result.scalar_one_or_none()
        if current is None:
            raise NotFoundException("User", str(user_id))
        return _to_days(current)

    @staticmethod
    async def _apply(
        db: AsyncSession,
        user_id: uuid.UUID,
        field: str,
        new_value: sa.ColumnElement,
    ) -> None:
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values({field: new_value, "updated_at": utcnow()})
            .execution_options(synchronize_session="fetch")
        )
        await db.execute(stmt)

    # ─────────────────────────────────────────────────────────────────
    # Debit
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def debit(
        db: AsyncSession,
        user_id: uuid.UUID,
        leave_type: LeaveType,
        days: Decimal,
        *,
        actor_id: Optional[uuid.UUID] = None,
        leave_id: Optional[uuid.UUID] = None,
    ) -> Decimal:
        """Subtract *days* from the balance for *leave_type*, flooring at zero.

        Returns the amount actually subtracted, which is less than *days*
        when the balance was insufficient.  COMP_OFF is a no-op.
        """
        days = _to_days(days)
        if days < 0:
            raise ValueError(f"Cannot debit a negative amount: {days}")
        field = LEDGER_FIELDS.get(leave_type)
        if field is None or days == 0:
            return ZERO_DAYS

        current = await BalanceLedger._lock_balance(db, user_id, field)
        column = getattr(User, field)
        await BalanceLedger._apply(
            db,
            user_id,
            field,
            sa.case((column - days < 0, 0), else_=column - days),
        )
        applied = min(days, current)
        new_value = current - applied

        logger.debug(
            "Debited %s %s from user %s (requested %s, %s -> %s)",
            applied, leave_type.value, user_id, days, current, new_value,
        )
        await record_balance_change(
            db, user_id, "debit",
            before={field: current},
            after={field: new_value, "requested": days, "applied": applied},
            actor_id=actor_id,
            leave_id=leave_id,
        )
        return applied

    # ─────────────────────────────────────────────────────────────────
    # Credit
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def credit(
        db: AsyncSession,
        user_id: uuid.UUID,
        leave_type: LeaveType,
        days: Decimal,
        *,
        actor_id: Optional[uuid.UUID] = None,
        leave_id: Optional[uuid.UUID] = None,
    ) -> Decimal:
        """Add *days* back to the balance for *leave_type*."""
        days = _to_days(days)
        if days < 0:
            raise ValueError(f"Cannot credit a negative amount: {days}")
        field = LEDGER_FIELDS.get(leave_type)
        if field is None or days == 0:
            return ZERO_DAYS

        current = await BalanceLedger._lock_balance(db, user_id, field)
        column = getattr(User, field)
        await BalanceLedger._apply(db, user_id, field, column + days)

        logger.debug(
            "Credited %s %s to user %s (%s -> %s)",
            days, leave_type.value, user_id, current, current + days,
        )
        await record_balance_change(
            db, user_id, "credit",
            before={field: current},
            after={field: current + days},
            actor_id=actor_id,
            leave_id=leave_id,
        )
        return days

    # ─────────────────────────────────────────────────────────────────
    # Administrative reset
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def set_balances(
        db: AsyncSession,
        user_id: uuid.UUID,
        *,
        casual: Optional[Decimal] = None,
        medical: Optional[Decimal] = None,
        compoff: Optional[Decimal] = None,
        actor_id: Optional[uuid.UUID] = None,
        action: str = "reset",
    ) -> dict[str, Decimal]:
        """Overwrite balances outright.  Fields left as ``None`` are untouched."""
        values: dict[str, Decimal] = {}
        if casual is not None:
            values["balance_casual"] = _to_days(casual)
        if medical is not None:
            values["balance_medical"] = _to_days(medical)
        if compoff is not None:
            values["balance_compoff"] = _to_days(compoff)
        if not values:
            return {}
        for value in values.values():
            if value < 0:
                raise ValueError(f"Balance cannot be negative: {value}")

        result = await db.execute(
            select(
                User.balance_casual, User.balance_medical, User.balance_compoff
            )
            .where(User.id == user_id)
            .with_for_update()
        )
        row = result.first()
        if row is None:
            raise NotFoundException("User", str(user_id))
        old = {
            "balance_casual": row.balance_casual,
            "balance_medical": row.balance_medical,
            "balance_compoff": row.balance_compoff,
        }

        await db.execute(
            update(User)
            .where(User.id == user_id)
            .values({**values, "updated_at": utcnow()})
            .execution_options(synchronize_session="fetch")
        )
        logger.debug("Reset balances for user %s: %s", user_id, values)
        await record_balance_change(
            db, user_id, action, before=old, after=values, actor_id=actor_id
        )
        return values
