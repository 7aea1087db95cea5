"""Dashboard Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from decimal import Decimal

from pydantic import BaseModel

from leavedesk.leave.schemas import LeaveOut


class BalanceSummary(BaseModel):
    casual: Decimal
    medical: Decimal
    comp_off_available: Decimal


class EmployeeDashboardResponse(BaseModel):
    user_id: uuid.UUID
    balances: BalanceSummary
    pending_requests: int
    approved_days_this_year: Decimal
    recent_leaves: list[LeaveOut]


class HRDashboardResponse(BaseModel):
    organization_id: uuid.UUID
    total_users: int
    on_leave_today: int
    pending_requests: int
    recent_leaves: list[LeaveOut]
