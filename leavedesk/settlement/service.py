"""Year-end settlement — archive last year's leave, roll balances forward.

Per organization, target year = the year before *today*:
  1. Aggregate each user's requests that started in the target year.
  2. Upsert one ``leave_archives`` row per (user, organization, year).
  3. Mark those requests archived (read-only from then on).
  4. Forfeit unconsumed comp-off grants.
  5. Write opening balances: medical = default; casual = default, plus the
     previous casual balance when carry-forward is enabled; comp-off = 0.

Each user is settled inside its own SAVEPOINT.  A failure rolls back that
user only, is logged and reported, and the batch carries on.  Any existing
archive row for (organization, year) blocks a second run unless the caller
asks to retry the users that are still missing.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, or_, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from leavedesk.common.audit import create_audit_entry
from leavedesk.common.constants import (
    DEFAULT_PAGE_SIZE,
    ZERO_DAYS,
    Capability,
    LeaveStatus,
    LeaveType,
    SettlementStatus,
    has_capability,
)
from leavedesk.common.exceptions import (
    ConsistencyException,
    ForbiddenException,
    ValidationException,
)
from leavedesk.common.pagination import PaginatedResponse, paginate
from leavedesk.comp_off.models import UserCompOff
from leavedesk.comp_off.service import CompOffService
from leavedesk.config import settings
from leavedesk.database import utcnow
from leavedesk.leave.ledger import BalanceLedger
from leavedesk.leave.models import Leave
from leavedesk.organizations.models import LeaveSettings
from leavedesk.organizations.service import OrganizationService, ensure_org_access
from leavedesk.settlement.models import LeaveArchive
from leavedesk.settlement.schemas import (
    LeaveArchiveOut,
    SettlementReport,
    SettlementStatusOut,
    UserSettlementResult,
)
from leavedesk.users.models import User

logger = logging.getLogger(__name__)

# One in-process lock per (organization, year), dropped once no run holds it.
# PostgreSQL runs also take an advisory lock so separate workers exclude
# each other.
_run_locks: weakref.WeakValueDictionary[tuple[uuid.UUID, int], asyncio.Lock] = (
    weakref.WeakValueDictionary()
)


def _today() -> date:
    return date.today()


def _as_days(value) -> Decimal:
    return Decimal(str(value)) if value is not None else ZERO_DAYS


class SettlementService:

    # ─────────────────────────────────────────────────────────────────
    # Preconditions
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def in_settlement_window(today: date) -> bool:
        return today.month == 1 and today.day <= settings.SETTLEMENT_WINDOW_DAYS

    @staticmethod
    async def _advisory_lock(
        db: AsyncSession, organization_id: uuid.UUID, year: int
    ) -> None:
        if db.get_bind().dialect.name != "postgresql":
            return
        await db.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
            {"key": f"settlement:{organization_id}:{year}"},
        )

    @staticmethod
    async def _archived_user_ids(
        db: AsyncSession, organization_id: uuid.UUID, year: int
    ) -> set[uuid.UUID]:
        result = await db.execute(
            select(LeaveArchive.user_id).where(
                LeaveArchive.organization_id == organization_id,
                LeaveArchive.year == year,
            )
        )
        return set(result.scalars().all())

    # ─────────────────────────────────────────────────────────────────
    # Archive upsert
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _upsert_archive(db: AsyncSession, values: dict) -> None:
        """Insert or overwrite the (user, organization, year) archive row."""
        insert = pg_insert if db.get_bind().dialect.name == "postgresql" else sqlite_insert
        stmt = insert(LeaveArchive).values(id=uuid.uuid4(), created_at=utcnow(), **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "organization_id", "year"],
            set_={
                key: stmt.excluded[key]
                for key in values
                if key not in ("user_id", "organization_id", "year")
            },
        )
        await db.execute(stmt)

    # ─────────────────────────────────────────────────────────────────
    # Per-user settlement
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _settle_user(
        db: AsyncSession,
        user_id: uuid.UUID,
        organization_id: uuid.UUID,
        year: int,
        *,
        default_casual: Decimal,
        default_medical: Decimal,
        carry_forward: bool,
        actor_id: Optional[uuid.UUID],
    ) -> UserSettlementResult:
        user = (
            await db.execute(
                select(User)
                .where(User.id == user_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one()

        leaves = (
            await db.execute(
                select(Leave).where(
                    Leave.user_id == user_id,
                    Leave.start_date >= date(year, 1, 1),
                    Leave.start_date < date(year + 1, 1, 1),
                )
            )
        ).scalars().all()

        counts = {status: 0 for status in LeaveStatus}
        taken = {leave_type: ZERO_DAYS for leave_type in LeaveType}
        for leave in leaves:
            counts[leave.status] += 1
            if leave.status == LeaveStatus.APPROVED:
                taken[leave.leave_type] += _as_days(leave.days_count)

        casual_now = _as_days(user.balance_casual)
        medical_now = _as_days(user.balance_medical)
        compoff_now = await CompOffService.available_balance(db, user_id)

        carried_casual = max(ZERO_DAYS, casual_now) if carry_forward else ZERO_DAYS
        new_casual = default_casual + carried_casual
        new_medical = default_medical

        await SettlementService._upsert_archive(
            db,
            {
                "user_id": user_id,
                "organization_id": organization_id,
                "year": year,
                "total_requests": len(leaves),
                "pending_count": counts[LeaveStatus.PENDING],
                "approved_count": counts[LeaveStatus.APPROVED],
                "rejected_count": counts[LeaveStatus.REJECTED],
                "cancelled_count": counts[LeaveStatus.CANCELLED],
                "casual_taken": taken[LeaveType.CASUAL],
                "medical_taken": taken[LeaveType.MEDICAL],
                "comp_off_taken": taken[LeaveType.COMP_OFF],
                "balance_casual_at_year_end": casual_now,
                "balance_medical_at_year_end": medical_now,
                "balance_compoff_at_year_end": compoff_now,
                "comp_off_forfeited": compoff_now,
                "carried_forward_casual": carried_casual,
                "carried_forward_medical": ZERO_DAYS,
                "new_balance_casual": new_casual,
                "new_balance_medical": new_medical,
                "settled_by": actor_id,
            },
        )

        now = utcnow()
        if leaves:
            await db.execute(
                update(Leave)
                .where(Leave.id.in_([leave.id for leave in leaves]))
                .values(is_archived=True, archived_at=now)
                .execution_options(synchronize_session="fetch")
            )

        await db.execute(
            update(UserCompOff)
            .where(
                UserCompOff.user_id == user_id,
                UserCompOff.is_consumed.is_(False),
            )
            .values(is_consumed=True, forfeited_at=now)
            .execution_options(synchronize_session="fetch")
        )

        await BalanceLedger.set_balances(
            db,
            user_id,
            casual=new_casual,
            medical=new_medical,
            compoff=ZERO_DAYS,
            actor_id=actor_id,
            action="settle",
        )

        return UserSettlementResult(
            user_id=user_id,
            success=True,
            new_balance_casual=new_casual,
            new_balance_medical=new_medical,
            leaves_archived=len(leaves),
            comp_off_forfeited=compoff_now,
        )

    # ─────────────────────────────────────────────────────────────────
    # Run
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def run_settlement(
        db: AsyncSession,
        organization_id: uuid.UUID,
        actor: Optional[User],
        *,
        force: bool = False,
        retry_failed: bool = False,
        today: Optional[date] = None,
    ) -> SettlementReport:
        """Settle the previous year for every user in the organization.

        ``actor`` may be ``None`` for operator runs from the command line.
        ``retry_failed`` skips users that already have an archive row for the
        year instead of refusing to run.
        """
        if actor is not None:
            if not has_capability(actor.role, Capability.can_run_settlement):
                raise ForbiddenException("Only admins can run year-end settlement.")
            ensure_org_access(actor, organization_id)
        actor_id = actor.id if actor is not None else None

        today = today or _today()
        if not force and not SettlementService.in_settlement_window(today):
            raise ValidationException({
                "date": [
                    f"Settlement runs in the first {settings.SETTLEMENT_WINDOW_DAYS} "
                    "days of January; use force to run it now."
                ]
            })
        year = today.year - 1

        lock = _run_locks.setdefault((organization_id, year), asyncio.Lock())
        if lock.locked():
            raise ConsistencyException(
                f"Settlement for {year} is already running for this organization."
            )

        async with lock:
            await SettlementService._advisory_lock(db, organization_id, year)

            archived = await SettlementService._archived_user_ids(db, organization_id, year)
            if archived and not retry_failed:
                raise ConsistencyException(
                    f"Year {year} has already been settled for this organization.",
                    errors={"archived_users": [str(len(archived))]},
                )

            leave_settings = await OrganizationService.get_settings(db, organization_id)
            default_casual = _as_days(leave_settings.default_casual_leaves)
            default_medical = _as_days(leave_settings.default_medical_leaves)
            carry_forward = leave_settings.carry_forward_enabled
            settings_id = leave_settings.id

            user_ids = (
                await db.execute(
                    select(User.id)
                    .where(User.organization_id == organization_id)
                    .order_by(User.created_at, User.id)
                )
            ).scalars().all()
            pending = [uid for uid in user_ids if uid not in archived]

            logger.info(
                "Settling %s for organization %s: %d user(s) (%d already archived)",
                year, organization_id, len(pending), len(archived),
            )

            results: list[UserSettlementResult] = []
            for user_id in pending:
                try:
                    async with db.begin_nested():
                        result = await SettlementService._settle_user(
                            db,
                            user_id,
                            organization_id,
                            year,
                            default_casual=default_casual,
                            default_medical=default_medical,
                            carry_forward=carry_forward,
                            actor_id=actor_id,
                        )
                except Exception as exc:
                    logger.exception(
                        "Settlement of %s failed for user %s", year, user_id
                    )
                    result = UserSettlementResult(
                        user_id=user_id, success=False, reason=str(exc) or type(exc).__name__
                    )
                results.append(result)

            failed = [r for r in results if not r.success]
            marked = False
            if not failed:
                await db.execute(
                    update(LeaveSettings)
                    .where(LeaveSettings.id == settings_id)
                    .values(
                        year_end_processed=True,
                        year_end_processed_at=utcnow(),
                        year=year + 1,
                        updated_at=utcnow(),
                    )
                    .execution_options(synchronize_session="fetch")
                )
                marked = True

            status = SettlementStatus.PARTIAL if failed else SettlementStatus.COMPLETED
            await create_audit_entry(
                db,
                action="settle",
                entity_type="organization",
                entity_id=organization_id,
                actor_id=actor_id,
                new_values={
                    "year": year,
                    "status": status.value,
                    "succeeded": len(results) - len(failed),
                    "failed": [str(r.user_id) for r in failed],
                },
            )
            if failed:
                logger.warning(
                    "Settlement of %s for organization %s finished with %d failure(s)",
                    year, organization_id, len(failed),
                )
            else:
                logger.info(
                    "Settlement of %s for organization %s completed (%d user(s))",
                    year, organization_id, len(results),
                )

            return SettlementReport(
                organization_id=organization_id,
                year=year,
                status=status,
                processed=len(results),
                succeeded=len(results) - len(failed),
                failed=len(failed),
                marked_processed=marked,
                results=results,
            )

    # ─────────────────────────────────────────────────────────────────
    # Status / archives
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_settlement_status(
        db: AsyncSession, organization_id: uuid.UUID, year: int
    ) -> SettlementStatusOut:
        archived = len(await SettlementService._archived_user_ids(db, organization_id, year))
        total = (
            await db.execute(
                select(func.count())
                .select_from(User)
                .where(User.organization_id == organization_id)
            )
        ).scalar_one()
        leave_settings = await OrganizationService.get_settings(
            db, organization_id, create=False
        )
        return SettlementStatusOut(
            organization_id=organization_id,
            year=year,
            settled=archived > 0,
            archived_users=archived,
            total_users=total,
            year_end_processed=bool(leave_settings and leave_settings.year_end_processed),
            year_end_processed_at=leave_settings.year_end_processed_at if leave_settings else None,
        )

    @staticmethod
    async def list_archives(
        db: AsyncSession,
        organization_id: uuid.UUID,
        *,
        year: Optional[int] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> PaginatedResponse:
        query = (
            select(LeaveArchive)
            .join(User, User.id == LeaveArchive.user_id)
            .options(selectinload(LeaveArchive.user))
            .where(LeaveArchive.organization_id == organization_id)
        )
        if year is not None:
            query = query.where(LeaveArchive.year == year)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(
                or_(User.full_name.ilike(pattern), User.email.ilike(pattern))
            )
        query = query.order_by(LeaveArchive.year.desc(), User.full_name, User.email)
        return await paginate(
            db, query, page=page, page_size=page_size,
            transform=LeaveArchiveOut.model_validate,
        )
