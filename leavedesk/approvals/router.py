"""Approval queue router — mounted under /leave ahead of the leave router."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from leavedesk.approvals.service import ApprovalRouter
from leavedesk.auth.dependencies import get_current_profile
from leavedesk.database import get_db
from leavedesk.leave.schemas import LeaveOut
from leavedesk.users.models import User

router = APIRouter(prefix="", tags=["approvals"])


# ── GET /approvals ──────────────────────────────────────────────────

@router.get("/approvals", response_model=list[LeaveOut])
async def pending_approvals(
    profile: User = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """Pending requests the caller may act on, oldest first."""
    leaves = await ApprovalRouter.resolve_approvable_requests(db, profile)
    return [LeaveOut.model_validate(leave) for leave in leaves]
