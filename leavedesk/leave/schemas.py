"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Request      → request bodies (write)
  - *Out          → response bodies (read)

Business-rule checks (date floor, reason, group) live in the service so
they raise the same errors whether called over HTTP or from scripts.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from leavedesk.common.constants import (
    HalfDaySlot,
    LeaveDuration,
    LeaveStatus,
    LeaveType,
)
from leavedesk.users.schemas import UserBrief


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Create / Update
# ═════════════════════════════════════════════════════════════════════


class LeaveApplyRequest(BaseModel):
    """Body for POST /leave/apply.

    FULL_DAY and HALF_DAY use ``leave_date``; LONG_LEAVE uses ``start_date`` and
    ``end_date``.  HALF_DAY also needs ``half_day_slot``.
    """

    leave_type: LeaveType
    duration: LeaveDuration
    leave_date: Optional[date] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    half_day_slot: Optional[HalfDaySlot] = None
    reason: str = ""
    group_id: Optional[uuid.UUID] = None


class LeaveUpdateRequest(LeaveApplyRequest):
    """Body for PUT /leave/{id}.

    ``keep_approved`` is honoured only for org managers editing an
    approved request; the ledger is adjusted in place.
    """

    keep_approved: bool = False


class LeaveRejectRequest(BaseModel):
    reason: str = Field(..., max_length=2000)


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Response
# ═════════════════════════════════════════════════════════════════════


class LeaveOut(BaseModel):
    """Full leave request response."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    user: Optional[UserBrief] = None
    leave_type: LeaveType
    status: LeaveStatus
    start_date: date
    end_date: date
    is_half_day: bool
    half_day_slot: Optional[HalfDaySlot] = None
    days_count: Decimal
    ledger_days: Decimal
    reason: str
    assigned_group_id: Optional[uuid.UUID] = None
    rejection_reason: Optional[str] = None
    approved_by: Optional[uuid.UUID] = None
    reviewed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    is_archived: bool
    created_at: datetime
    updated_at: datetime
