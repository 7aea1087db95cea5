"""Organizations router — leave settings, balance reset, groups, holidays.

Reads are open to any member of the organization; writes require
``can_manage_org`` and creating organizations ``can_manage_all_orgs``.
"""

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from leavedesk.auth.dependencies import get_current_profile, require_capability
from leavedesk.common.constants import Capability
from leavedesk.database import get_db
from leavedesk.organizations.schemas import (
    BalanceResetOut,
    GroupCreate,
    GroupMemberAdd,
    GroupOut,
    LeaveSettingsOut,
    LeaveSettingsUpdate,
    OrganizationCreate,
    OrganizationOut,
    PublicHolidayCreate,
    PublicHolidayOut,
    PublicHolidayUpdate,
)
from leavedesk.organizations.service import (
    OrganizationService,
    resolve_organization_id,
)
from leavedesk.users.models import User

router = APIRouter(prefix="", tags=["organizations"])


# ── Organizations ───────────────────────────────────────────────────

@router.get("", response_model=list[OrganizationOut])
async def list_organizations(
    profile: User = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await OrganizationService.list_organizations(db, profile)


@router.post("", response_model=OrganizationOut, status_code=201)
async def create_organization(
    body: OrganizationCreate,
    profile: User = Depends(require_capability(Capability.can_manage_all_orgs)),
    db: AsyncSession = Depends(get_db),
):
    return await OrganizationService.create_organization(db, profile, body.name)


# ── Leave settings ──────────────────────────────────────────────────

@router.get("/settings", response_model=LeaveSettingsOut)
async def get_leave_settings(
    organization_id: Optional[uuid.UUID] = Query(None),
    profile: User = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await OrganizationService.get_settings(
        db, resolve_organization_id(profile, organization_id)
    )


@router.put("/settings", response_model=LeaveSettingsOut)
async def update_leave_settings(
    body: LeaveSettingsUpdate,
    organization_id: Optional[uuid.UUID] = Query(None),
    profile: User = Depends(require_capability(Capability.can_manage_org)),
    db: AsyncSession = Depends(get_db),
):
    return await OrganizationService.update_settings(
        db, profile, resolve_organization_id(profile, organization_id), body
    )


@router.post("/settings/reset-balances", response_model=BalanceResetOut)
async def reset_balances(
    organization_id: Optional[uuid.UUID] = Query(None),
    profile: User = Depends(require_capability(Capability.can_manage_org)),
    db: AsyncSession = Depends(get_db),
):
    """Set every member's casual/medical balance to the organization defaults."""
    org_id = resolve_organization_id(profile, organization_id)
    count, row = await OrganizationService.bulk_reset_balances(db, profile, org_id)
    return BalanceResetOut(
        organization_id=org_id,
        users_reset=count,
        balance_casual=row.default_casual_leaves,
        balance_medical=row.default_medical_leaves,
    )


# ── Groups ──────────────────────────────────────────────────────────

@router.get("/groups", response_model=list[GroupOut])
async def list_groups(
    organization_id: Optional[uuid.UUID] = Query(None),
    profile: User = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await OrganizationService.list_groups(
        db, resolve_organization_id(profile, organization_id)
    )


@router.post("/groups", response_model=GroupOut, status_code=201)
async def create_group(
    body: GroupCreate,
    organization_id: Optional[uuid.UUID] = Query(None),
    profile: User = Depends(require_capability(Capability.can_manage_org)),
    db: AsyncSession = Depends(get_db),
):
    return await OrganizationService.create_group(
        db, profile, resolve_organization_id(profile, organization_id), body.name
    )


@router.put("/groups/{group_id}", response_model=GroupOut)
async def rename_group(
    group_id: uuid.UUID,
    body: GroupCreate,
    profile: User = Depends(require_capability(Capability.can_manage_org)),
    db: AsyncSession = Depends(get_db),
):
    return await OrganizationService.rename_group(db, profile, group_id, body.name)


@router.delete("/groups/{group_id}", status_code=204)
async def delete_group(
    group_id: uuid.UUID,
    profile: User = Depends(require_capability(Capability.can_manage_org)),
    db: AsyncSession = Depends(get_db),
):
    await OrganizationService.delete_group(db, profile, group_id)
    return Response(status_code=204)


@router.post("/groups/{group_id}/members", response_model=GroupOut)
async def add_group_members(
    group_id: uuid.UUID,
    body: GroupMemberAdd,
    profile: User = Depends(require_capability(Capability.can_manage_org)),
    db: AsyncSession = Depends(get_db),
):
    return await OrganizationService.add_members(db, profile, group_id, body.user_ids)


@router.delete("/groups/{group_id}/members/{user_id}", status_code=204)
async def remove_group_member(
    group_id: uuid.UUID,
    user_id: uuid.UUID,
    profile: User = Depends(require_capability(Capability.can_manage_org)),
    db: AsyncSession = Depends(get_db),
):
    await OrganizationService.remove_member(db, profile, group_id, user_id)
    return Response(status_code=204)


# ── Public holidays ─────────────────────────────────────────────────

@router.get("/holidays", response_model=list[PublicHolidayOut])
async def list_holidays(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    organization_id: Optional[uuid.UUID] = Query(None),
    profile: User = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await OrganizationService.list_holidays(
        db,
        resolve_organization_id(profile, organization_id),
        year or date.today().year,
    )


@router.post("/holidays", response_model=PublicHolidayOut, status_code=201)
async def create_holiday(
    body: PublicHolidayCreate,
    organization_id: Optional[uuid.UUID] = Query(None),
    profile: User = Depends(require_capability(Capability.can_manage_org)),
    db: AsyncSession = Depends(get_db),
):
    return await OrganizationService.create_holiday(
        db, profile, resolve_organization_id(profile, organization_id), body
    )


@router.put("/holidays/{holiday_id}", response_model=PublicHolidayOut)
async def update_holiday(
    holiday_id: uuid.UUID,
    body: PublicHolidayUpdate,
    profile: User = Depends(require_capability(Capability.can_manage_org)),
    db: AsyncSession = Depends(get_db),
):
    return await OrganizationService.update_holiday(db, profile, holiday_id, body)


@router.delete("/holidays/{holiday_id}", status_code=204)
async def delete_holiday(
    holiday_id: uuid.UUID,
    profile: User = Depends(require_capability(Capability.can_manage_org)),
    db: AsyncSession = Depends(get_db),
):
    await OrganizationService.delete_holiday(db, profile, holiday_id)
    return Response(status_code=204)
