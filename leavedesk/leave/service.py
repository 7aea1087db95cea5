"""Leave service layer — request lifecycle and its ledger side effects.

Business logic:
  - Day-count computation (half day = 0.5, otherwise inclusive span)
  - Application with required-field checks, rolling back-date floor and
    approval-group resolution
  - Approve / reject / cancel / edit / delete, each moving the balance
    ledger (or comp-off grants) before the status it depends on
  - Archived requests are read-only

All writes happen inside the caller's transaction; the request row is
locked before its status is checked so two approvers cannot both win.
"""

from __future__ import annotations

import calendar
import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from leavedesk.approvals.service import ApprovalRouter
from leavedesk.common.audit import create_audit_entry
from leavedesk.common.constants import (
    DEFAULT_PAGE_SIZE,
    HALF_DAY,
    ZERO_DAYS,
    Capability,
    LeaveDuration,
    LeaveStatus,
    LeaveType,
    has_capability,
)
from leavedesk.common.exceptions import (
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from leavedesk.common.pagination import PaginatedResponse, paginate
from leavedesk.comp_off.service import CompOffService
from leavedesk.config import settings
from leavedesk.database import utcnow
from leavedesk.leave.ledger import BalanceLedger
from leavedesk.leave.models import Leave
from leavedesk.leave.schemas import LeaveApplyRequest, LeaveOut, LeaveUpdateRequest
from leavedesk.organizations.models import Group, GroupMember
from leavedesk.users.models import User

logger = logging.getLogger(__name__)


def _today() -> date:
    return date.today()


def compute_days_count(start: date, end: date, is_half_day: bool) -> Decimal:
    """Days a request covers: 0.5 for a half day, else the inclusive span."""
    if end < start:
        raise ValidationException({"end_date": ["End date cannot be before start date."]})
    if is_half_day:
        return HALF_DAY
    return Decimal((end - start).days + 1)


def backdate_floor(today: date, months: int) -> date:
    """Same calendar day *months* back, clamped to that month's last day."""
    month_index = today.year * 12 + (today.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(today.day, last_day))


def _snapshot(leave: Leave) -> dict:
    return {
        "leave_type": leave.leave_type.value,
        "status": leave.status.value,
        "start_date": leave.start_date.isoformat(),
        "end_date": leave.end_date.isoformat(),
        "is_half_day": leave.is_half_day,
        "days_count": str(leave.days_count),
        "ledger_days": str(leave.ledger_days),
    }


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _resolve_dates(
        payload: LeaveApplyRequest,
    ) -> tuple[date, date, bool, dict[str, list[str]]]:
        errors: dict[str, list[str]] = {}
        start = end = None
        is_half_day = payload.duration == LeaveDuration.HALF_DAY

        if payload.duration == LeaveDuration.LONG_LEAVE:
            if payload.start_date is None:
                errors["start_date"] = ["Start date is required."]
            if payload.end_date is None:
                errors["end_date"] = ["End date is required."]
            start, end = payload.start_date, payload.end_date
        else:
            if payload.leave_date is None:
                errors["leave_date"] = ["Date is required."]
            start = end = payload.leave_date
            if is_half_day and payload.half_day_slot is None:
                errors["half_day_slot"] = ["Select morning or afternoon."]

        if start is not None and end is not None and end < start:
            errors.setdefault("end_date", []).append(
                "End date cannot be before start date."
            )
        return start, end, is_half_day, errors

    @staticmethod
    def _check_floor(start: date, end: date, errors: dict[str, list[str]]) -> None:
        floor = backdate_floor(_today(), settings.BACKDATE_LIMIT_MONTHS)
        if start < floor or end < floor:
            errors.setdefault("start_date", []).append(
                f"Leave dates cannot be earlier than {floor.isoformat()}."
            )

    @staticmethod
    async def _resolve_group(
        db: AsyncSession, requester: User, group_id: Optional[uuid.UUID]
    ) -> uuid.UUID:
        if group_id is not None:
            group = await db.get(Group, group_id)
            if group is None or group.organization_id != requester.organization_id:
                raise ValidationException(
                    {"group_id": ["Group does not belong to your organization."]}
                )
            return group.id

        result = await db.execute(
            select(GroupMember.group_id)
            .join(Group, Group.id == GroupMember.group_id)
            .where(
                GroupMember.user_id == requester.id,
                Group.organization_id == requester.organization_id,
            )
            .order_by(GroupMember.created_at.asc())
            .limit(1)
        )
        resolved = result.scalar_one_or_none()
        if resolved is None:
            raise ValidationException(
                {"group_id": ["You are not a member of any approval group."]}
            )
        return resolved

    @staticmethod
    async def _lock_leave(db: AsyncSession, leave_id: uuid.UUID) -> Leave:
        result = await db.execute(
            select(Leave)
            .where(Leave.id == leave_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        leave = result.scalar_one_or_none()
        if leave is None:
            raise NotFoundException("Leave", str(leave_id))
        return leave

    @staticmethod
    async def _reload(db: AsyncSession, leave_id: uuid.UUID) -> Leave:
        result = await db.execute(
            select(Leave)
            .options(selectinload(Leave.user))
            .where(Leave.id == leave_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    @staticmethod
    def _is_org_manager(actor: User, owner_org: Optional[uuid.UUID]) -> bool:
        if has_capability(actor.role, Capability.can_manage_all_orgs):
            return True
        return (
            has_capability(actor.role, Capability.can_manage_org)
            and owner_org is not None
            and owner_org == actor.organization_id
        )

    @staticmethod
    async def _owner_org(db: AsyncSession, leave: Leave) -> Optional[uuid.UUID]:
        result = await db.execute(
            select(User.organization_id).where(User.id == leave.user_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _ensure_not_archived(leave: Leave) -> None:
        if leave.is_archived:
            raise ValidationException(
                {"leave": ["Archived leave requests can no longer be changed."]}
            )

    @staticmethod
    def _ensure_status(leave: Leave, *allowed: LeaveStatus) -> None:
        if leave.status not in allowed:
            expected = " or ".join(s.value for s in allowed)
            raise ValidationException(
                {"status": [f"Leave is {leave.status.value}; expected {expected}."]}
            )

    # ─────────────────────────────────────────────────────────────────
    # Ledger side effects
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _take(
        db: AsyncSession, leave: Leave, actor_id: Optional[uuid.UUID]
    ) -> Decimal:
        """Debit (or consume comp-off) for *leave*; returns what was applied."""
        if leave.leave_type == LeaveType.COMP_OFF:
            return await CompOffService.consume(
                db, leave.user_id, leave.days_count, leave.id, actor_id=actor_id
            )
        return await BalanceLedger.debit(
            db, leave.user_id, leave.leave_type, leave.days_count,
            actor_id=actor_id, leave_id=leave.id,
        )

    @staticmethod
    async def _give_back(
        db: AsyncSession, leave: Leave, actor_id: Optional[uuid.UUID]
    ) -> None:
        """Reverse exactly what ``_take`` applied for *leave*."""
        if leave.leave_type == LeaveType.COMP_OFF:
            await CompOffService.release(db, leave.id, actor_id=actor_id)
        else:
            await BalanceLedger.credit(
                db, leave.user_id, leave.leave_type, leave.ledger_days,
                actor_id=actor_id, leave_id=leave.id,
            )
        leave.ledger_days = ZERO_DAYS

    # ─────────────────────────────────────────────────────────────────
    # Apply
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def apply_leave(
        db: AsyncSession, requester: User, payload: LeaveApplyRequest
    ) -> LeaveOut:
        """Create a PENDING request.  Balances are untouched until approval."""
        start, end, is_half_day, errors = LeaveService._resolve_dates(payload)
        if not payload.reason or not payload.reason.strip():
            errors["reason"] = ["Reason is required."]
        if start is not None and end is not None:
            LeaveService._check_floor(start, end, errors)
        if errors:
            raise ValidationException(errors)

        days_count = compute_days_count(start, end, is_half_day)

        if payload.leave_type == LeaveType.COMP_OFF:
            available = await CompOffService.available_balance(db, requester.id)
            if available <= 0:
                raise ValidationException(
                    {"leave_type": ["No comp-off balance available."]}
                )
            if available < days_count:
                raise ValidationException(
                    {"leave_type": [
                        f"Insufficient comp-off balance: {available} available, "
                        f"{days_count} requested."
                    ]}
                )

        group_id = await LeaveService._resolve_group(db, requester, payload.group_id)

        leave = Leave(
            user_id=requester.id,
            leave_type=payload.leave_type,
            status=LeaveStatus.PENDING,
            start_date=start,
            end_date=end,
            is_half_day=is_half_day,
            half_day_slot=payload.half_day_slot if is_half_day else None,
            days_count=days_count,
            reason=payload.reason.strip(),
            assigned_group_id=group_id,
        )
        db.add(leave)
        await db.flush()

        await create_audit_entry(
            db,
            action="apply",
            entity_type="leave",
            entity_id=leave.id,
            actor_id=requester.id,
            new_values=_snapshot(leave),
        )
        logger.info(
            "Leave %s applied by %s: %s %s day(s) from %s",
            leave.id, requester.id, leave.leave_type.value, days_count, start,
        )
        return LeaveOut.model_validate(await LeaveService._reload(db, leave.id))

    # ─────────────────────────────────────────────────────────────────
    # Approve / reject
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def approve_leave(
        db: AsyncSession, leave_id: uuid.UUID, actor: User
    ) -> LeaveOut:
        leave = await LeaveService._lock_leave(db, leave_id)
        LeaveService._ensure_not_archived(leave)
        if not await ApprovalRouter.can_act_on(db, actor, leave):
            raise ForbiddenException("You cannot act on this leave request.")
        LeaveService._ensure_status(leave, LeaveStatus.PENDING)

        # Ledger first: if it fails the status never flips.
        applied = await LeaveService._take(db, leave, actor.id)

        leave.ledger_days = applied
        leave.status = LeaveStatus.APPROVED
        leave.approved_by = actor.id
        leave.reviewed_at = utcnow()
        leave.updated_at = utcnow()
        await db.flush()

        await create_audit_entry(
            db,
            action="approve",
            entity_type="leave",
            entity_id=leave.id,
            actor_id=actor.id,
            old_values={"status": LeaveStatus.PENDING.value},
            new_values={"status": LeaveStatus.APPROVED.value, "applied": str(applied)},
        )
        if applied < leave.days_count and leave.leave_type != LeaveType.COMP_OFF:
            logger.warning(
                "Leave %s approved with insufficient balance: %s of %s day(s) debited",
                leave.id, applied, leave.days_count,
            )
        logger.info("Leave %s approved by %s", leave.id, actor.id)
        return LeaveOut.model_validate(await LeaveService._reload(db, leave.id))

    @staticmethod
    async def reject_leave(
        db: AsyncSession, leave_id: uuid.UUID, actor: User, reason: str
    ) -> LeaveOut:
        if not reason or not reason.strip():
            raise ValidationException({"reason": ["A rejection reason is required."]})

        leave = await LeaveService._lock_leave(db, leave_id)
        LeaveService._ensure_not_archived(leave)
        if not await ApprovalRouter.can_act_on(db, actor, leave):
            raise ForbiddenException("You cannot act on this leave request.")
        LeaveService._ensure_status(leave, LeaveStatus.PENDING)

        leave.status = LeaveStatus.REJECTED
        leave.rejection_reason = reason.strip()
        leave.approved_by = actor.id
        leave.reviewed_at = utcnow()
        leave.updated_at = utcnow()
        await db.flush()

        await create_audit_entry(
            db,
            action="reject",
            entity_type="leave",
            entity_id=leave.id,
            actor_id=actor.id,
            old_values={"status": LeaveStatus.PENDING.value},
            new_values={"status": LeaveStatus.REJECTED.value, "reason": leave.rejection_reason},
        )
        logger.info("Leave %s rejected by %s", leave.id, actor.id)
        return LeaveOut.model_validate(await LeaveService._reload(db, leave.id))

    # ─────────────────────────────────────────────────────────────────
    # Cancel
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def cancel_leave(
        db: AsyncSession, leave_id: uuid.UUID, actor: User
    ) -> LeaveOut:
        leave = await LeaveService._lock_leave(db, leave_id)
        if leave.user_id != actor.id and not LeaveService._is_org_manager(
            actor, await LeaveService._owner_org(db, leave)
        ):
            raise ForbiddenException("You can only cancel your own leave requests.")
        LeaveService._ensure_not_archived(leave)
        LeaveService._ensure_status(leave, LeaveStatus.PENDING, LeaveStatus.APPROVED)

        previous = leave.status
        if previous == LeaveStatus.APPROVED:
            await LeaveService._give_back(db, leave, actor.id)

        leave.status = LeaveStatus.CANCELLED
        leave.cancelled_at = utcnow()
        leave.updated_at = utcnow()
        await db.flush()

        await create_audit_entry(
            db,
            action="cancel",
            entity_type="leave",
            entity_id=leave.id,
            actor_id=actor.id,
            old_values={"status": previous.value},
            new_values={"status": LeaveStatus.CANCELLED.value},
        )
        logger.info("Leave %s cancelled by %s (was %s)", leave.id, actor.id, previous.value)
        return LeaveOut.model_validate(await LeaveService._reload(db, leave.id))

    # ─────────────────────────────────────────────────────────────────
    # Edit
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def edit_leave(
        db: AsyncSession,
        leave_id: uuid.UUID,
        actor: User,
        payload: LeaveUpdateRequest,
    ) -> LeaveOut:
        """Change dates/type/reason of a PENDING or APPROVED request.

        Owner edits of an APPROVED request give the balance back and return
        it to PENDING.  An org manager may pass ``keep_approved`` to keep it
        APPROVED: the old type is credited and the new type debited.
        """
        leave = await LeaveService._lock_leave(db, leave_id)
        is_owner = leave.user_id == actor.id
        is_manager = LeaveService._is_org_manager(
            actor, await LeaveService._owner_org(db, leave)
        )
        if not is_owner and not is_manager:
            raise ForbiddenException("You can only edit your own leave requests.")
        if payload.keep_approved and not is_manager:
            raise ForbiddenException("Only HR or admins can keep an edited leave approved.")
        if payload.keep_approved and is_owner:
            raise ForbiddenException("You cannot keep your own edited leave approved.")
        LeaveService._ensure_not_archived(leave)
        LeaveService._ensure_status(leave, LeaveStatus.PENDING, LeaveStatus.APPROVED)

        start, end, is_half_day, errors = LeaveService._resolve_dates(payload)
        if not payload.reason or not payload.reason.strip():
            errors["reason"] = ["Reason is required."]
        # Admin corrections may touch older dates
        if start is not None and end is not None and not is_manager:
            LeaveService._check_floor(start, end, errors)
        if errors:
            raise ValidationException(errors)
        new_days = compute_days_count(start, end, is_half_day)

        old = _snapshot(leave)
        was_approved = leave.status == LeaveStatus.APPROVED
        keep_approved = was_approved and payload.keep_approved

        if was_approved:
            await LeaveService._give_back(db, leave, actor.id)

        if payload.leave_type == LeaveType.COMP_OFF and not keep_approved:
            available = await CompOffService.available_balance(db, leave.user_id)
            if available <= 0 or available < new_days:
                raise ValidationException(
                    {"leave_type": ["Not enough comp-off balance for this request."]}
                )

        if payload.group_id is not None and payload.group_id != leave.assigned_group_id:
            owner = await db.get(User, leave.user_id)
            leave.assigned_group_id = await LeaveService._resolve_group(
                db, owner, payload.group_id
            )

        leave.leave_type = payload.leave_type
        leave.start_date = start
        leave.end_date = end
        leave.is_half_day = is_half_day
        leave.half_day_slot = payload.half_day_slot if is_half_day else None
        leave.days_count = new_days
        leave.reason = payload.reason.strip()
        leave.updated_at = utcnow()

        if keep_approved:
            leave.ledger_days = await LeaveService._take(db, leave, actor.id)
            leave.approved_by = actor.id
            leave.reviewed_at = utcnow()
        elif was_approved:
            leave.status = LeaveStatus.PENDING
            leave.approved_by = None
            leave.reviewed_at = None
        await db.flush()

        await create_audit_entry(
            db,
            action="edit",
            entity_type="leave",
            entity_id=leave.id,
            actor_id=actor.id,
            old_values=old,
            new_values=_snapshot(leave),
        )
        logger.info(
            "Leave %s edited by %s (%s -> %s)",
            leave.id, actor.id, old["status"], leave.status.value,
        )
        return LeaveOut.model_validate(await LeaveService._reload(db, leave.id))

    # ─────────────────────────────────────────────────────────────────
    # Delete
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def delete_leave(
        db: AsyncSession, leave_id: uuid.UUID, actor: User
    ) -> None:
        leave = await LeaveService._lock_leave(db, leave_id)
        if not LeaveService._is_org_manager(actor, await LeaveService._owner_org(db, leave)):
            raise ForbiddenException("Only HR or admins can delete leave requests.")
        LeaveService._ensure_not_archived(leave)

        old = _snapshot(leave)
        if leave.status == LeaveStatus.APPROVED:
            await LeaveService._give_back(db, leave, actor.id)

        await create_audit_entry(
            db,
            action="delete",
            entity_type="leave",
            entity_id=leave.id,
            actor_id=actor.id,
            old_values=old,
        )
        await db.delete(leave)
        await db.flush()
        logger.info("Leave %s deleted by %s", leave_id, actor.id)

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_my_leaves(
        db: AsyncSession,
        user: User,
        *,
        status: Optional[LeaveStatus] = None,
        leave_type: Optional[LeaveType] = None,
        year: Optional[int] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> PaginatedResponse:
        query = (
            select(Leave)
            .options(selectinload(Leave.user))
            .where(Leave.user_id == user.id)
        )
        if status is not None:
            query = query.where(Leave.status == status)
        if leave_type is not None:
            query = query.where(Leave.leave_type == leave_type)
        if year is not None:
            query = query.where(
                Leave.start_date >= date(year, 1, 1),
                Leave.start_date < date(year + 1, 1, 1),
            )
        query = query.order_by(Leave.start_date.desc(), Leave.created_at.desc())
        return await paginate(
            db, query, page=page, page_size=page_size,
            transform=LeaveOut.model_validate,
        )

    @staticmethod
    async def get_leave(db: AsyncSession, leave_id: uuid.UUID, viewer: User) -> LeaveOut:
        result = await db.execute(
            select(Leave).options(selectinload(Leave.user)).where(Leave.id == leave_id)
        )
        leave = result.scalar_one_or_none()
        if leave is None:
            raise NotFoundException("Leave", str(leave_id))

        if leave.user_id != viewer.id:
            owner_org = leave.user.organization_id if leave.user else None
            allowed = (
                has_capability(viewer.role, Capability.can_manage_all_orgs)
                or (
                    has_capability(viewer.role, Capability.can_view_all_leaves)
                    and owner_org == viewer.organization_id
                )
                or await ApprovalRouter.can_act_on(db, viewer, leave)
            )
            if not allowed:
                raise ForbiddenException("You cannot view this leave request.")
        return LeaveOut.model_validate(leave)
