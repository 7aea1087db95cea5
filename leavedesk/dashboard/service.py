"""Dashboard service — read-only aggregation for employees and HR.

All methods are static async; counts are done in the database.
"""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from leavedesk.common.constants import RECENT_LEAVES_LIMIT, LeaveStatus
from leavedesk.comp_off.service import CompOffService
from leavedesk.dashboard.schemas import (
    BalanceSummary,
    EmployeeDashboardResponse,
    HRDashboardResponse,
)
from leavedesk.leave.models import Leave
from leavedesk.leave.schemas import LeaveOut
from leavedesk.users.models import User


def _today() -> date:
    return date.today()


class DashboardService:
    """Async dashboard aggregation queries."""

    # ═════════════════════════════════════════════════════════════════
    # GET /me
    # ═════════════════════════════════════════════════════════════════

    @staticmethod
    async def get_employee_dashboard(
        db: AsyncSession, user: User
    ) -> EmployeeDashboardResponse:
        today = _today()
        comp_off = await CompOffService.available_balance(db, user.id)

        pending = (
            await db.execute(
                select(func.count())
                .select_from(Leave)
                .where(Leave.user_id == user.id, Leave.status == LeaveStatus.PENDING)
            )
        ).scalar_one()

        approved_days = (
            await db.execute(
                select(func.coalesce(func.sum(Leave.days_count), 0)).where(
                    Leave.user_id == user.id,
                    Leave.status == LeaveStatus.APPROVED,
                    Leave.start_date >= date(today.year, 1, 1),
                    Leave.start_date < date(today.year + 1, 1, 1),
                )
            )
        ).scalar_one()

        recent = (
            await db.execute(
                select(Leave)
                .options(selectinload(Leave.user))
                .where(Leave.user_id == user.id)
                .order_by(Leave.created_at.desc())
                .limit(RECENT_LEAVES_LIMIT)
            )
        ).scalars().all()

        return EmployeeDashboardResponse(
            user_id=user.id,
            balances=BalanceSummary(
                casual=user.balance_casual,
                medical=user.balance_medical,
                comp_off_available=comp_off,
            ),
            pending_requests=pending,
            approved_days_this_year=Decimal(str(approved_days)),
            recent_leaves=[LeaveOut.model_validate(leave) for leave in recent],
        )

    # ═════════════════════════════════════════════════════════════════
    # GET /hr
    # ═════════════════════════════════════════════════════════════════

    @staticmethod
    async def get_hr_dashboard(
        db: AsyncSession, organization_id: uuid.UUID
    ) -> HRDashboardResponse:
        today = _today()
        in_org = User.organization_id == organization_id

        total_users = (
            await db.execute(select(func.count()).select_from(User).where(in_org))
        ).scalar_one()

        on_leave_today = (
            await db.execute(
                select(func.count())
                .select_from(Leave)
                .join(User, User.id == Leave.user_id)
                .where(
                    in_org,
                    Leave.status == LeaveStatus.APPROVED,
                    Leave.start_date <= today,
                    Leave.end_date >= today,
                )
            )
        ).scalar_one()

        pending = (
            await db.execute(
                select(func.count())
                .select_from(Leave)
                .join(User, User.id == Leave.user_id)
                .where(in_org, Leave.status == LeaveStatus.PENDING)
            )
        ).scalar_one()

        recent = (
            await db.execute(
                select(Leave)
                .join(User, User.id == Leave.user_id)
                .options(selectinload(Leave.user))
                .where(in_org)
                .order_by(Leave.created_at.desc())
                .limit(RECENT_LEAVES_LIMIT)
            )
        ).scalars().all()

        return HRDashboardResponse(
            organization_id=organization_id,
            total_users=total_users,
            on_leave_today=on_leave_today,
            pending_requests=pending,
            recent_leaves=[LeaveOut.model_validate(leave) for leave in recent],
        )
