"""Dashboard router — employee and HR views."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from leavedesk.auth.dependencies import get_current_profile, require_capability
from leavedesk.common.constants import Capability
from leavedesk.dashboard.schemas import EmployeeDashboardResponse, HRDashboardResponse
from leavedesk.dashboard.service import DashboardService
from leavedesk.database import get_db
from leavedesk.organizations.service import resolve_organization_id
from leavedesk.users.models import User

router = APIRouter(prefix="", tags=["dashboard"])


@router.get("/me", response_model=EmployeeDashboardResponse)
async def employee_dashboard(
    profile: User = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """Balances, pending count and recent requests for the caller."""
    return await DashboardService.get_employee_dashboard(db, profile)


@router.get("/hr", response_model=HRDashboardResponse)
async def hr_dashboard(
    organization_id: Optional[uuid.UUID] = Query(None),
    profile: User = Depends(require_capability(Capability.can_view_all_leaves)),
    db: AsyncSession = Depends(get_db),
):
    """Headcount, who is out today, pending requests and recent activity."""
    return await DashboardService.get_hr_dashboard(
        db, resolve_organization_id(profile, organization_id)
    )
