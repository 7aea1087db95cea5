"""Comp-off router — grant, revoke, balance and grant listing."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from leavedesk.auth.dependencies import get_current_profile, require_capability
from leavedesk.common.constants import Capability, has_capability
from leavedesk.common.exceptions import ForbiddenException, NotFoundException
from leavedesk.comp_off.schemas import (
    CompOffBalanceOut,
    CompOffGrantRequest,
    CompOffOut,
    UserCompOffOut,
)
from leavedesk.comp_off.service import CompOffService
from leavedesk.database import get_db
from leavedesk.users.models import User

router = APIRouter(prefix="", tags=["comp-off"])


async def _target_user(
    db: AsyncSession, profile: User, user_id: Optional[uuid.UUID]
) -> uuid.UUID:
    """Managers may look at anyone in their org; everyone else sees themselves."""
    if user_id is None or user_id == profile.id:
        return profile.id
    if not has_capability(profile.role, Capability.can_manage_org):
        raise ForbiddenException("You can only view your own comp-off.")
    target = await db.get(User, user_id)
    if target is None:
        raise NotFoundException("User", str(user_id))
    if (
        target.organization_id != profile.organization_id
        and not has_capability(profile.role, Capability.can_manage_all_orgs)
    ):
        raise ForbiddenException("This user belongs to another organization.")
    return target.id


# ── POST /grants ────────────────────────────────────────────────────

@router.post("/grants", response_model=CompOffOut, status_code=201)
async def grant_comp_off(
    body: CompOffGrantRequest,
    profile: User = Depends(require_capability(Capability.can_manage_org)),
    db: AsyncSession = Depends(get_db),
):
    """Grant comp-off to one or more employees for a worked day."""
    return await CompOffService.grant(
        db,
        profile,
        body.user_ids,
        body.work_date,
        body.title,
        body.description,
        body.days,
    )


# ── DELETE /grants/{id} ─────────────────────────────────────────────

@router.delete("/grants/{user_comp_off_id}", status_code=204)
async def revoke_comp_off(
    user_comp_off_id: uuid.UUID,
    profile: User = Depends(require_capability(Capability.can_manage_org)),
    db: AsyncSession = Depends(get_db),
):
    await CompOffService.revoke(db, profile, user_comp_off_id)
    return Response(status_code=204)


# ── GET /balance ────────────────────────────────────────────────────

@router.get("/balance", response_model=CompOffBalanceOut)
async def comp_off_balance(
    user_id: Optional[uuid.UUID] = Query(None),
    profile: User = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """Available comp-off, recomputed from unconsumed grants."""
    target_id = await _target_user(db, profile, user_id)
    available = await CompOffService.available_balance(db, target_id)
    return CompOffBalanceOut(user_id=target_id, available=available, can_apply=available > 0)


# ── GET /grants ─────────────────────────────────────────────────────

@router.get("/grants", response_model=list[UserCompOffOut])
async def list_grants(
    user_id: Optional[uuid.UUID] = Query(None),
    include_consumed: bool = Query(True),
    profile: User = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    target_id = await _target_user(db, profile, user_id)
    rows = await CompOffService.list_grants(
        db, target_id, include_consumed=include_consumed
    )
    return [
        UserCompOffOut(
            id=link.id,
            comp_off_id=comp_off.id,
            title=comp_off.title,
            description=comp_off.description,
            work_date=comp_off.work_date,
            days=comp_off.days,
            is_consumed=link.is_consumed,
            consumed_at=link.consumed_at,
            consumed_leave_id=link.consumed_leave_id,
            forfeited_at=link.forfeited_at,
            granted_at=link.created_at,
        )
        for link, comp_off in rows
    ]
