"""Users router — current profile and organization directory."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from leavedesk.auth.dependencies import get_current_profile, require_capability
from leavedesk.common.constants import ROLE_CAPABILITIES, Capability
from leavedesk.common.pagination import PaginationParams, paginate
from leavedesk.database import get_db
from leavedesk.organizations.service import resolve_organization_id
from leavedesk.users.models import User
from leavedesk.users.schemas import ProfileOut, UserBrief

router = APIRouter(prefix="", tags=["users"])


# ── GET /me ─────────────────────────────────────────────────────────

@router.get("/me", response_model=ProfileOut)
async def me(profile: User = Depends(get_current_profile)):
    """The caller's profile, balances and role capabilities."""
    out = ProfileOut.model_validate(profile)
    out.capabilities = sorted(c.value for c in ROLE_CAPABILITIES.get(profile.role, ()))
    return out


# ── GET / ───────────────────────────────────────────────────────────

@router.get("")
async def list_users(
    search: Optional[str] = Query(None, max_length=200),
    organization_id: Optional[uuid.UUID] = Query(None),
    pagination: PaginationParams = Depends(),
    profile: User = Depends(require_capability(Capability.can_view_all_leaves)),
    db: AsyncSession = Depends(get_db),
):
    org_id = resolve_organization_id(profile, organization_id)
    query = select(User).where(User.organization_id == org_id)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(or_(User.full_name.ilike(pattern), User.email.ilike(pattern)))
    query = query.order_by(User.full_name, User.email)
    return await paginate(
        db, query,
        page=pagination.page, page_size=pagination.page_size,
        transform=UserBrief.model_validate,
    )
