"""Settlement router — run year-end settlement, check status, browse archives."""

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from leavedesk.auth.dependencies import require_capability
from leavedesk.common.constants import Capability
from leavedesk.common.pagination import PaginationParams
from leavedesk.database import get_db
from leavedesk.organizations.service import resolve_organization_id
from leavedesk.settlement.schemas import (
    SettlementReport,
    SettlementRunRequest,
    SettlementStatusOut,
)
from leavedesk.settlement.service import SettlementService
from leavedesk.users.models import User

router = APIRouter(prefix="", tags=["settlement"])


# ── POST /run ───────────────────────────────────────────────────────

@router.post("/run", response_model=SettlementReport)
async def run_settlement(
    body: SettlementRunRequest,
    profile: User = Depends(require_capability(Capability.can_run_settlement)),
    db: AsyncSession = Depends(get_db),
):
    """Archive last year and reset balances. Blocked once the year is settled."""
    return await SettlementService.run_settlement(
        db,
        resolve_organization_id(profile, body.organization_id),
        profile,
        force=body.force,
        retry_failed=body.retry_failed,
        today=body.as_of if body.force else None,
    )


# ── GET /status ─────────────────────────────────────────────────────

@router.get("/status", response_model=SettlementStatusOut)
async def settlement_status(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    organization_id: Optional[uuid.UUID] = Query(None),
    profile: User = Depends(require_capability(Capability.can_manage_org)),
    db: AsyncSession = Depends(get_db),
):
    return await SettlementService.get_settlement_status(
        db,
        resolve_organization_id(profile, organization_id),
        year or date.today().year - 1,
    )


# ── GET /archives ───────────────────────────────────────────────────

@router.get("/archives")
async def list_archives(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    search: Optional[str] = Query(None, max_length=200),
    organization_id: Optional[uuid.UUID] = Query(None),
    pagination: PaginationParams = Depends(),
    profile: User = Depends(require_capability(Capability.can_view_all_leaves)),
    db: AsyncSession = Depends(get_db),
):
    """Per-user archive rows, filterable by year and name/email."""
    return await SettlementService.list_archives(
        db,
        resolve_organization_id(profile, organization_id),
        year=year,
        search=search,
        page=pagination.page,
        page_size=pagination.page_size,
    )
