"""Leave router — apply, list, edit, approve/reject, cancel, delete.

All endpoints require authentication. Who may act on a request is decided
in the service (owner, approval routing, or org manager).
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from leavedesk.auth.dependencies import get_current_profile, require_capability
from leavedesk.common.constants import Capability, LeaveStatus, LeaveType
from leavedesk.common.pagination import PaginationParams
from leavedesk.database import get_db
from leavedesk.leave.schemas import (
    LeaveApplyRequest,
    LeaveOut,
    LeaveRejectRequest,
    LeaveUpdateRequest,
)
from leavedesk.leave.service import LeaveService
from leavedesk.users.models import User

router = APIRouter(prefix="", tags=["leave"])


# ── POST /apply ─────────────────────────────────────────────────────

@router.post("/apply", response_model=LeaveOut, status_code=201)
async def apply_leave(
    body: LeaveApplyRequest,
    profile: User = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """Apply for leave. Balances change only when the request is approved."""
    return await LeaveService.apply_leave(db, profile, body)


# ── GET /my-leaves ──────────────────────────────────────────────────

@router.get("/my-leaves")
async def my_leaves(
    status: Optional[LeaveStatus] = Query(None),
    leave_type: Optional[LeaveType] = Query(None),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    pagination: PaginationParams = Depends(),
    profile: User = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """Get the authenticated user's leave requests, newest first."""
    return await LeaveService.get_my_leaves(
        db,
        profile,
        status=status,
        leave_type=leave_type,
        year=year,
        page=pagination.page,
        page_size=pagination.page_size,
    )


# ── GET /{id} ───────────────────────────────────────────────────────

@router.get("/{leave_id}", response_model=LeaveOut)
async def get_leave(
    leave_id: uuid.UUID,
    profile: User = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.get_leave(db, leave_id, profile)


# ── PUT /{id} ───────────────────────────────────────────────────────

@router.put("/{leave_id}", response_model=LeaveOut)
async def edit_leave(
    leave_id: uuid.UUID,
    body: LeaveUpdateRequest,
    profile: User = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """Edit a pending or approved request. Owner edits send it back to PENDING."""
    return await LeaveService.edit_leave(db, leave_id, profile, body)


# ── PUT /{id}/approve ───────────────────────────────────────────────

@router.put("/{leave_id}/approve", response_model=LeaveOut)
async def approve_leave(
    leave_id: uuid.UUID,
    profile: User = Depends(require_capability(Capability.can_approve)),
    db: AsyncSession = Depends(get_db),
):
    """Approve a pending request. Debits the balance (or consumes comp-off)."""
    return await LeaveService.approve_leave(db, leave_id, profile)


# ── PUT /{id}/reject ────────────────────────────────────────────────

@router.put("/{leave_id}/reject", response_model=LeaveOut)
async def reject_leave(
    leave_id: uuid.UUID,
    body: LeaveRejectRequest,
    profile: User = Depends(require_capability(Capability.can_approve)),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.reject_leave(db, leave_id, profile, body.reason)


# ── PUT /{id}/cancel ────────────────────────────────────────────────

@router.put("/{leave_id}/cancel", response_model=LeaveOut)
async def cancel_leave(
    leave_id: uuid.UUID,
    profile: User = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a pending or approved request. Approved days are credited back."""
    return await LeaveService.cancel_leave(db, leave_id, profile)


# ── DELETE /{id} ────────────────────────────────────────────────────

@router.delete("/{leave_id}", status_code=204)
async def delete_leave(
    leave_id: uuid.UUID,
    profile: User = Depends(require_capability(Capability.can_manage_org)),
    db: AsyncSession = Depends(get_db),
):
    await LeaveService.delete_leave(db, leave_id, profile)
    return Response(status_code=204)
