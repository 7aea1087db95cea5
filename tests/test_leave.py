"""Leave lifecycle tests — apply, approve/reject, cancel, edit, delete,
with the balance ledger and comp-off grants moving alongside each step.

Tests run against SQLite via the shared conftest.py fixtures.
"""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leavedesk.common.constants import (
    HalfDaySlot,
    LeaveDuration,
    LeaveStatus,
    LeaveType,
    UserRole,
)
from leavedesk.common.exceptions import (
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from leavedesk.comp_off.models import UserCompOff
from leavedesk.comp_off.service import CompOffService
from leavedesk.leave import service as leave_service
from leavedesk.leave.models import Leave
from leavedesk.leave.schemas import LeaveApplyRequest, LeaveUpdateRequest
from leavedesk.leave.service import LeaveService, backdate_floor, compute_days_count
from leavedesk.users.models import User
from tests.conftest import TestSessionFactory, _make_group, _make_org, _make_user

TODAY = date(2026, 3, 16)  # a Monday


@pytest.fixture(autouse=True)
def _fixed_today(monkeypatch):
    monkeypatch.setattr(leave_service, "_today", lambda: TODAY)


# ═════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════


def _full_day(
    leave_type: LeaveType = LeaveType.CASUAL,
    on: date = TODAY,
    reason: str = "Family function",
) -> LeaveApplyRequest:
    return LeaveApplyRequest(
        leave_type=leave_type,
        duration=LeaveDuration.FULL_DAY,
        leave_date=on,
        reason=reason,
    )


def _long_leave(
    start: date,
    end: date,
    leave_type: LeaveType = LeaveType.CASUAL,
) -> LeaveApplyRequest:
    return LeaveApplyRequest(
        leave_type=leave_type,
        duration=LeaveDuration.LONG_LEAVE,
        start_date=start,
        end_date=end,
        reason="Vacation",
    )


async def _balances(db: AsyncSession, user: User) -> tuple[Decimal, Decimal]:
    await db.refresh(user)
    return user.balance_casual, user.balance_medical


async def _grant(
    db: AsyncSession, granter: User, user: User, days: str = "1", title: str = "Weekend release"
):
    return await CompOffService.grant(
        db, granter, [user.id], date(2026, 3, 7), title, days=Decimal(days)
    )


# ═════════════════════════════════════════════════════════════════════
# Day count and back-date floor
# ═════════════════════════════════════════════════════════════════════


class TestDayCount:

    def test_single_day(self):
        assert compute_days_count(TODAY, TODAY, False) == Decimal("1")

    def test_half_day(self):
        assert compute_days_count(TODAY, TODAY, True) == Decimal("0.5")

    def test_inclusive_span_counts_weekends(self):
        assert compute_days_count(date(2026, 3, 13), date(2026, 3, 16), False) == Decimal("4")

    def test_end_before_start(self):
        with pytest.raises(ValidationException):
            compute_days_count(date(2026, 3, 16), date(2026, 3, 15), False)

    async def test_days_count_stable_across_recompute(self, db: AsyncSession, employee, group):
        """The stored count equals a fresh computation from the stored dates, every time."""
        payload = _long_leave(date(2026, 3, 16), date(2026, 3, 25))
        leave = await LeaveService.apply_leave(db, employee, payload)

        first = compute_days_count(leave.start_date, leave.end_date, leave.is_half_day)
        second = compute_days_count(leave.start_date, leave.end_date, leave.is_half_day)
        assert first == second == leave.days_count == Decimal("10")

        edited = await LeaveService.edit_leave(
            db, leave.id, employee, LeaveUpdateRequest(**payload.model_dump())
        )
        assert edited.days_count == leave.days_count

    def test_backdate_floor_same_day_previous_month(self):
        assert backdate_floor(date(2026, 3, 16), 1) == date(2026, 2, 16)

    def test_backdate_floor_clamps_to_month_end(self):
        assert backdate_floor(date(2026, 3, 31), 1) == date(2026, 2, 28)

    def test_backdate_floor_crosses_year(self):
        assert backdate_floor(date(2026, 1, 10), 1) == date(2025, 12, 10)


# ═════════════════════════════════════════════════════════════════════
# Apply
# ═════════════════════════════════════════════════════════════════════


class TestApply:

    async def test_apply_creates_pending_without_touching_balance(
        self, db: AsyncSession, employee, group
    ):
        result = await LeaveService.apply_leave(db, employee, _full_day())

        assert result.status == LeaveStatus.PENDING
        assert result.days_count == Decimal("1")
        assert result.assigned_group_id == group.id
        assert await _balances(db, employee) == (Decimal("12"), Decimal("12"))

    async def test_apply_half_day_requires_slot(self, db: AsyncSession, employee, group):
        payload = LeaveApplyRequest(
            leave_type=LeaveType.MEDICAL,
            duration=LeaveDuration.HALF_DAY,
            leave_date=TODAY,
            reason="Clinic visit",
        )
        with pytest.raises(ValidationException) as exc:
            await LeaveService.apply_leave(db, employee, payload)
        assert "half_day_slot" in exc.value.errors

    async def test_apply_long_leave_requires_both_dates(self, db: AsyncSession, employee, group):
        payload = LeaveApplyRequest(
            leave_type=LeaveType.CASUAL,
            duration=LeaveDuration.LONG_LEAVE,
            start_date=TODAY,
            reason="Trip",
        )
        with pytest.raises(ValidationException) as exc:
            await LeaveService.apply_leave(db, employee, payload)
        assert "end_date" in exc.value.errors

    async def test_apply_requires_reason(self, db: AsyncSession, employee, group):
        with pytest.raises(ValidationException) as exc:
            await LeaveService.apply_leave(db, employee, _full_day(reason="   "))
        assert "reason" in exc.value.errors

    async def test_apply_rejects_dates_before_floor(self, db: AsyncSession, employee, group):
        with pytest.raises(ValidationException) as exc:
            await LeaveService.apply_leave(db, employee, _full_day(on=date(2026, 2, 15)))
        assert "start_date" in exc.value.errors

    async def test_apply_accepts_floor_date(self, db: AsyncSession, employee, group):
        result = await LeaveService.apply_leave(db, employee, _full_day(on=date(2026, 2, 16)))
        assert result.start_date == date(2026, 2, 16)

    async def test_apply_without_group_membership(self, db: AsyncSession, employee):
        with pytest.raises(ValidationException) as exc:
            await LeaveService.apply_leave(db, employee, _full_day())
        assert "group_id" in exc.value.errors

    async def test_apply_with_foreign_group_rejected(self, db: AsyncSession, employee, group):
        other_org = await _make_org(db, name="Other")
        foreign = await _make_group(db, other_org, name="Ops")
        payload = _full_day()
        payload.group_id = foreign.id
        with pytest.raises(ValidationException):
            await LeaveService.apply_leave(db, employee, payload)

    async def test_comp_off_with_zero_balance_rejected(self, db: AsyncSession, employee, group):
        """No unconsumed grants means a comp-off request cannot even be filed."""
        with pytest.raises(ValidationException) as exc:
            await LeaveService.apply_leave(db, employee, _full_day(LeaveType.COMP_OFF))
        assert "leave_type" in exc.value.errors

        leaves = (await db.execute(select(Leave))).scalars().all()
        assert leaves == []

    async def test_comp_off_longer_than_balance_rejected(
        self, db: AsyncSession, employee, hr, group
    ):
        await _grant(db, hr, employee)
        payload = _long_leave(date(2026, 3, 16), date(2026, 3, 17), LeaveType.COMP_OFF)
        with pytest.raises(ValidationException):
            await LeaveService.apply_leave(db, employee, payload)


# ═════════════════════════════════════════════════════════════════════
# Approve / reject
# ═════════════════════════════════════════════════════════════════════


class TestApproveReject:

    async def test_approve_and_cancel_restores_balance(
        self, db: AsyncSession, org, team_lead, group
    ):
        """Five casual days against a balance of 10: approve → 5, cancel → 10."""
        user = await _make_user(db, org, casual=Decimal("10"))
        desk = await _make_group(db, org, name="Desk", members=[user, team_lead])

        payload = _long_leave(date(2026, 3, 16), date(2026, 3, 20))
        payload.group_id = desk.id
        leave = await LeaveService.apply_leave(db, user, payload)
        assert leave.days_count == Decimal("5")

        approved = await LeaveService.approve_leave(db, leave.id, team_lead)
        assert approved.status == LeaveStatus.APPROVED
        assert approved.ledger_days == Decimal("5")
        assert approved.approved_by == team_lead.id
        assert (await _balances(db, user))[0] == Decimal("5")

        cancelled = await LeaveService.cancel_leave(db, leave.id, user)
        assert cancelled.status == LeaveStatus.CANCELLED
        assert cancelled.ledger_days == Decimal("0")
        assert (await _balances(db, user))[0] == Decimal("10")

    async def test_half_day_medical(self, db: AsyncSession, org, team_lead):
        user = await _make_user(db, org, medical=Decimal("3"))
        await _make_group(db, org, name="Desk", members=[user, team_lead])
        payload = LeaveApplyRequest(
            leave_type=LeaveType.MEDICAL,
            duration=LeaveDuration.HALF_DAY,
            leave_date=TODAY,
            half_day_slot=HalfDaySlot.MORNING,
            reason="Dentist",
        )
        leave = await LeaveService.apply_leave(db, user, payload)
        assert leave.days_count == Decimal("0.5")

        await LeaveService.approve_leave(db, leave.id, team_lead)
        assert (await _balances(db, user))[1] == Decimal("2.5")

    async def test_approve_with_insufficient_balance_clamps(
        self, db: AsyncSession, org, team_lead
    ):
        user = await _make_user(db, org, casual=Decimal("2"))
        await _make_group(db, org, name="Desk", members=[user, team_lead])
        leave = await LeaveService.apply_leave(
            db, user, _long_leave(date(2026, 3, 16), date(2026, 3, 18))
        )

        approved = await LeaveService.approve_leave(db, leave.id, team_lead)
        assert approved.ledger_days == Decimal("2")
        assert (await _balances(db, user))[0] == Decimal("0")

        await LeaveService.cancel_leave(db, leave.id, user)
        assert (await _balances(db, user))[0] == Decimal("2")

    async def test_approve_twice_rejected(self, db: AsyncSession, employee, team_lead, group):
        leave = await LeaveService.apply_leave(db, employee, _full_day())
        await LeaveService.approve_leave(db, leave.id, team_lead)

        with pytest.raises(ValidationException) as exc:
            await LeaveService.approve_leave(db, leave.id, team_lead)
        assert "status" in exc.value.errors
        assert (await _balances(db, employee))[0] == Decimal("11")

    async def test_team_lead_outside_group_forbidden(
        self, db: AsyncSession, org, employee, group
    ):
        outsider = await _make_user(db, org, role=UserRole.TEAM_LEAD)
        leave = await LeaveService.apply_leave(db, employee, _full_day())
        with pytest.raises(ForbiddenException):
            await LeaveService.approve_leave(db, leave.id, outsider)

    async def test_regular_user_cannot_approve(self, db: AsyncSession, org, employee, group):
        peer = await _make_user(db, org)
        leave = await LeaveService.apply_leave(db, employee, _full_day())
        with pytest.raises(ForbiddenException):
            await LeaveService.approve_leave(db, leave.id, peer)

    async def test_hr_approves_across_groups(self, db: AsyncSession, employee, hr, group):
        leave = await LeaveService.apply_leave(db, employee, _full_day(LeaveType.MEDICAL))
        approved = await LeaveService.approve_leave(db, leave.id, hr)
        assert approved.status == LeaveStatus.APPROVED
        assert (await _balances(db, employee))[1] == Decimal("11")

    async def test_reject_requires_reason(self, db: AsyncSession, employee, team_lead, group):
        leave = await LeaveService.apply_leave(db, employee, _full_day())
        with pytest.raises(ValidationException):
            await LeaveService.reject_leave(db, leave.id, team_lead, "  ")

    async def test_reject_leaves_balance_alone(
        self, db: AsyncSession, employee, team_lead, group
    ):
        leave = await LeaveService.apply_leave(db, employee, _full_day())
        rejected = await LeaveService.reject_leave(db, leave.id, team_lead, "Release week")

        assert rejected.status == LeaveStatus.REJECTED
        assert rejected.rejection_reason == "Release week"
        assert await _balances(db, employee) == (Decimal("12"), Decimal("12"))

        with pytest.raises(ValidationException):
            await LeaveService.cancel_leave(db, leave.id, employee)

    async def test_approve_unknown_leave(self, db: AsyncSession, team_lead):
        with pytest.raises(NotFoundException):
            await LeaveService.approve_leave(db, uuid.uuid4(), team_lead)

    async def test_cannot_approve_own_request(self, db: AsyncSession, org, hr, team_lead):
        await _make_group(db, org, name="People", members=[hr, team_lead])
        leave = await LeaveService.apply_leave(db, hr, _full_day())

        with pytest.raises(ForbiddenException):
            await LeaveService.approve_leave(db, leave.id, hr)
        with pytest.raises(ForbiddenException):
            await LeaveService.reject_leave(db, leave.id, hr, "Changed my mind")

        approved = await LeaveService.approve_leave(db, leave.id, team_lead)
        assert approved.status == LeaveStatus.APPROVED
        assert (await _balances(db, hr))[0] == Decimal("11")

    async def test_second_approval_after_concurrent_commit_rejected(
        self, db: AsyncSession, employee, team_lead, hr, group
    ):
        """Status is re-read under the row lock, so a stale copy cannot approve again."""
        leave = await LeaveService.apply_leave(db, employee, _full_day())
        stale = await db.get(Leave, leave.id)
        assert stale.status == LeaveStatus.PENDING
        await db.commit()

        async with TestSessionFactory() as other:
            other_actor = await other.get(User, hr.id)
            await LeaveService.approve_leave(other, leave.id, other_actor)
            await other.commit()

        with pytest.raises(ValidationException) as exc:
            await LeaveService.approve_leave(db, leave.id, team_lead)
        assert "status" in exc.value.errors
        assert stale.approved_by == hr.id
        assert (await _balances(db, employee))[0] == Decimal("11")

    async def test_interleaved_requests_return_to_start(
        self, db: AsyncSession, org, team_lead
    ):
        user = await _make_user(db, org, casual=Decimal("6"), medical=Decimal("4"))
        await _make_group(db, org, name="Desk", members=[user, team_lead])

        trip = await LeaveService.apply_leave(
            db, user, _long_leave(date(2026, 3, 16), date(2026, 3, 19))
        )
        errand = await LeaveService.apply_leave(db, user, _full_day(on=date(2026, 3, 23)))
        clinic = await LeaveService.apply_leave(
            db, user, _full_day(LeaveType.MEDICAL, on=date(2026, 3, 24))
        )
        long_one = await LeaveService.apply_leave(
            db, user, _long_leave(date(2026, 4, 1), date(2026, 4, 5))
        )

        await LeaveService.approve_leave(db, trip.id, team_lead)
        await LeaveService.approve_leave(db, clinic.id, team_lead)
        await LeaveService.approve_leave(db, errand.id, team_lead)
        assert await _balances(db, user) == (Decimal("1"), Decimal("3"))

        await LeaveService.cancel_leave(db, trip.id, user)
        # The four days freed by the trip plus the one left cover it exactly
        await LeaveService.approve_leave(db, long_one.id, team_lead)
        await LeaveService.cancel_leave(db, errand.id, user)
        await LeaveService.cancel_leave(db, clinic.id, user)
        assert await _balances(db, user) == (Decimal("1"), Decimal("4"))

        await LeaveService.cancel_leave(db, long_one.id, user)
        assert await _balances(db, user) == (Decimal("6"), Decimal("4"))


# ═════════════════════════════════════════════════════════════════════
# Comp-off requests
# ═════════════════════════════════════════════════════════════════════


class TestCompOffLeave:

    async def test_approve_consumes_grant_and_cancel_releases(
        self, db: AsyncSession, employee, team_lead, hr, group
    ):
        await _grant(db, hr, employee)
        leave = await LeaveService.apply_leave(db, employee, _full_day(LeaveType.COMP_OFF))

        approved = await LeaveService.approve_leave(db, leave.id, team_lead)
        assert approved.ledger_days == Decimal("1")
        assert await CompOffService.available_balance(db, employee.id) == Decimal("0")
        # Casual and medical are untouched by comp-off
        assert await _balances(db, employee) == (Decimal("12"), Decimal("12"))

        await LeaveService.cancel_leave(db, leave.id, employee)
        assert await CompOffService.available_balance(db, employee.id) == Decimal("1")

    async def test_approve_fails_when_grant_revoked_meanwhile(
        self, db: AsyncSession, employee, team_lead, hr, group
    ):
        grant = await _grant(db, hr, employee)
        leave = await LeaveService.apply_leave(db, employee, _full_day(LeaveType.COMP_OFF))
        await CompOffService.revoke(db, hr, grant.recipients[0].id)

        with pytest.raises(ValidationException):
            await LeaveService.approve_leave(db, leave.id, team_lead)

        row = await db.get(Leave, leave.id)
        await db.refresh(row)
        assert row.status == LeaveStatus.PENDING

    async def test_half_day_consumes_whole_grant(
        self, db: AsyncSession, employee, team_lead, hr, group
    ):
        await _grant(db, hr, employee)
        payload = LeaveApplyRequest(
            leave_type=LeaveType.COMP_OFF,
            duration=LeaveDuration.HALF_DAY,
            leave_date=TODAY,
            half_day_slot=HalfDaySlot.AFTERNOON,
            reason="Errand",
        )
        leave = await LeaveService.apply_leave(db, employee, payload)
        approved = await LeaveService.approve_leave(db, leave.id, team_lead)

        assert approved.ledger_days == Decimal("1")
        assert await CompOffService.available_balance(db, employee.id) == Decimal("0")


# ═════════════════════════════════════════════════════════════════════
# Cancel / edit / delete
# ═════════════════════════════════════════════════════════════════════


class TestCancel:

    async def test_cancel_pending(self, db: AsyncSession, employee, group):
        leave = await LeaveService.apply_leave(db, employee, _full_day())
        cancelled = await LeaveService.cancel_leave(db, leave.id, employee)
        assert cancelled.status == LeaveStatus.CANCELLED
        assert cancelled.cancelled_at is not None

    async def test_cancel_someone_elses_forbidden(self, db: AsyncSession, org, employee, group):
        peer = await _make_user(db, org)
        leave = await LeaveService.apply_leave(db, employee, _full_day())
        with pytest.raises(ForbiddenException):
            await LeaveService.cancel_leave(db, leave.id, peer)

    async def test_hr_can_cancel_for_employee(
        self, db: AsyncSession, employee, team_lead, hr, group
    ):
        leave = await LeaveService.apply_leave(db, employee, _full_day())
        await LeaveService.approve_leave(db, leave.id, team_lead)
        await LeaveService.cancel_leave(db, leave.id, hr)
        assert (await _balances(db, employee))[0] == Decimal("12")

    async def test_archived_leave_is_read_only(
        self, db: AsyncSession, employee, team_lead, admin, group
    ):
        leave = await LeaveService.apply_leave(db, employee, _full_day())
        await LeaveService.approve_leave(db, leave.id, team_lead)
        row = await db.get(Leave, leave.id)
        row.is_archived = True
        await db.flush()

        with pytest.raises(ValidationException):
            await LeaveService.cancel_leave(db, leave.id, employee)
        with pytest.raises(ValidationException):
            await LeaveService.edit_leave(
                db, leave.id, employee,
                LeaveUpdateRequest(**_full_day().model_dump()),
            )
        with pytest.raises(ValidationException):
            await LeaveService.delete_leave(db, leave.id, admin)
        assert (await _balances(db, employee))[0] == Decimal("11")

    async def test_archived_pending_cannot_be_decided(
        self, db: AsyncSession, employee, team_lead, group
    ):
        """A request left PENDING at year end stays PENDING once archived."""
        leave = Leave(
            user_id=employee.id,
            leave_type=LeaveType.CASUAL,
            status=LeaveStatus.PENDING,
            start_date=date(2025, 12, 29),
            end_date=date(2025, 12, 31),
            is_half_day=False,
            days_count=Decimal("3"),
            reason="Year-end trip",
            assigned_group_id=group.id,
            is_archived=True,
        )
        db.add(leave)
        await db.flush()

        with pytest.raises(ValidationException) as exc:
            await LeaveService.approve_leave(db, leave.id, team_lead)
        assert "leave" in exc.value.errors
        with pytest.raises(ValidationException):
            await LeaveService.reject_leave(db, leave.id, team_lead, "Too late")

        await db.refresh(leave)
        assert leave.status == LeaveStatus.PENDING
        assert leave.ledger_days == Decimal("0")
        assert (await _balances(db, employee))[0] == Decimal("12")


class TestEdit:

    async def test_edit_pending_recomputes_days(self, db: AsyncSession, employee, group):
        leave = await LeaveService.apply_leave(db, employee, _full_day())
        payload = LeaveUpdateRequest(
            leave_type=LeaveType.CASUAL,
            duration=LeaveDuration.LONG_LEAVE,
            start_date=date(2026, 3, 17),
            end_date=date(2026, 3, 19),
            reason="Longer trip",
        )
        edited = await LeaveService.edit_leave(db, leave.id, employee, payload)
        assert edited.days_count == Decimal("3")
        assert edited.status == LeaveStatus.PENDING
        assert edited.reason == "Longer trip"

    async def test_owner_edit_of_approved_returns_to_pending(
        self, db: AsyncSession, employee, team_lead, group
    ):
        leave = await LeaveService.apply_leave(db, employee, _full_day())
        await LeaveService.approve_leave(db, leave.id, team_lead)
        assert (await _balances(db, employee))[0] == Decimal("11")

        edited = await LeaveService.edit_leave(
            db, leave.id, employee,
            LeaveUpdateRequest(**_full_day(on=date(2026, 3, 18)).model_dump()),
        )
        assert edited.status == LeaveStatus.PENDING
        assert edited.approved_by is None
        assert (await _balances(db, employee))[0] == Decimal("12")

    async def test_manager_keep_approved_moves_ledger(
        self, db: AsyncSession, employee, team_lead, hr, group
    ):
        """Switching an approved casual day to medical credits casual and debits medical."""
        leave = await LeaveService.apply_leave(db, employee, _full_day())
        await LeaveService.approve_leave(db, leave.id, team_lead)

        payload = LeaveUpdateRequest(
            **_full_day(LeaveType.MEDICAL).model_dump(), keep_approved=True
        )
        edited = await LeaveService.edit_leave(db, leave.id, hr, payload)

        assert edited.status == LeaveStatus.APPROVED
        assert edited.leave_type == LeaveType.MEDICAL
        assert await _balances(db, employee) == (Decimal("12"), Decimal("11"))

    async def test_keep_approved_by_owner_forbidden(
        self, db: AsyncSession, employee, team_lead, group
    ):
        leave = await LeaveService.apply_leave(db, employee, _full_day())
        await LeaveService.approve_leave(db, leave.id, team_lead)
        payload = LeaveUpdateRequest(**_full_day().model_dump(), keep_approved=True)
        with pytest.raises(ForbiddenException):
            await LeaveService.edit_leave(db, leave.id, employee, payload)

    async def test_manager_cannot_keep_own_edit_approved(
        self, db: AsyncSession, org, hr, team_lead
    ):
        await _make_group(db, org, name="People", members=[hr, team_lead])
        leave = await LeaveService.apply_leave(db, hr, _full_day())
        await LeaveService.approve_leave(db, leave.id, team_lead)

        payload = LeaveUpdateRequest(
            **_full_day(on=date(2026, 3, 18)).model_dump(), keep_approved=True
        )
        with pytest.raises(ForbiddenException):
            await LeaveService.edit_leave(db, leave.id, hr, payload)

        edited = await LeaveService.edit_leave(
            db, leave.id, hr,
            LeaveUpdateRequest(**_full_day(on=date(2026, 3, 18)).model_dump()),
        )
        assert edited.status == LeaveStatus.PENDING
        assert (await _balances(db, hr))[0] == Decimal("12")

    async def test_owner_edit_respects_floor_but_admin_does_not(
        self, db: AsyncSession, employee, admin, group
    ):
        leave = await LeaveService.apply_leave(db, employee, _full_day())
        old_date = LeaveUpdateRequest(**_full_day(on=date(2026, 1, 5)).model_dump())

        with pytest.raises(ValidationException):
            await LeaveService.edit_leave(db, leave.id, employee, old_date)

        edited = await LeaveService.edit_leave(db, leave.id, admin, old_date)
        assert edited.start_date == date(2026, 1, 5)

    async def test_edit_to_comp_off_without_grants(self, db: AsyncSession, employee, group):
        leave = await LeaveService.apply_leave(db, employee, _full_day())
        payload = LeaveUpdateRequest(**_full_day(LeaveType.COMP_OFF).model_dump())
        with pytest.raises(ValidationException):
            await LeaveService.edit_leave(db, leave.id, employee, payload)


class TestDelete:

    async def test_delete_approved_restores_balance(
        self, db: AsyncSession, employee, team_lead, admin, group
    ):
        leave = await LeaveService.apply_leave(
            db, employee, _long_leave(date(2026, 3, 16), date(2026, 3, 17))
        )
        await LeaveService.approve_leave(db, leave.id, team_lead)
        assert (await _balances(db, employee))[0] == Decimal("10")

        await LeaveService.delete_leave(db, leave.id, admin)

        assert await db.get(Leave, leave.id) is None
        assert (await _balances(db, employee))[0] == Decimal("12")

    async def test_delete_comp_off_releases_grant(
        self, db: AsyncSession, employee, team_lead, hr, group
    ):
        await _grant(db, hr, employee)
        leave = await LeaveService.apply_leave(db, employee, _full_day(LeaveType.COMP_OFF))
        await LeaveService.approve_leave(db, leave.id, team_lead)

        await LeaveService.delete_leave(db, leave.id, hr)

        links = (await db.execute(select(UserCompOff))).scalars().all()
        assert [link.is_consumed for link in links] == [False]

    async def test_delete_by_employee_forbidden(self, db: AsyncSession, employee, group):
        leave = await LeaveService.apply_leave(db, employee, _full_day())
        with pytest.raises(ForbiddenException):
            await LeaveService.delete_leave(db, leave.id, employee)


# ═════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════


class TestQueries:

    async def test_my_leaves_filters_and_paginates(self, db: AsyncSession, employee, group):
        await LeaveService.apply_leave(db, employee, _full_day())
        await LeaveService.apply_leave(db, employee, _full_day(LeaveType.MEDICAL, on=date(2026, 3, 17)))

        page = await LeaveService.get_my_leaves(db, employee, leave_type=LeaveType.MEDICAL)
        assert page.meta.total == 1
        assert page.data[0].leave_type == LeaveType.MEDICAL

        everything = await LeaveService.get_my_leaves(db, employee, page_size=1)
        assert everything.meta.total == 2
        assert len(everything.data) == 1

    async def test_get_leave_visibility(self, db: AsyncSession, org, employee, team_lead, hr, group):
        leave = await LeaveService.apply_leave(db, employee, _full_day())
        peer = await _make_user(db, org)

        assert (await LeaveService.get_leave(db, leave.id, employee)).id == leave.id
        assert (await LeaveService.get_leave(db, leave.id, team_lead)).id == leave.id
        assert (await LeaveService.get_leave(db, leave.id, hr)).id == leave.id
        with pytest.raises(ForbiddenException):
            await LeaveService.get_leave(db, leave.id, peer)
