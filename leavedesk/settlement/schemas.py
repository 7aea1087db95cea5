"""Settlement Pydantic v2 schemas — run request, report, status, archives."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict

from leavedesk.common.constants import SettlementStatus
from leavedesk.users.schemas import UserBrief


class SettlementRunRequest(BaseModel):
    """Body for POST /settlement/run."""

    organization_id: Optional[uuid.UUID] = None
    force: bool = False
    retry_failed: bool = False
    as_of: Optional[date] = None


class UserSettlementResult(BaseModel):
    user_id: uuid.UUID
    success: bool
    reason: Optional[str] = None
    new_balance_casual: Optional[Decimal] = None
    new_balance_medical: Optional[Decimal] = None
    leaves_archived: int = 0
    comp_off_forfeited: Decimal = Decimal("0")


class SettlementReport(BaseModel):
    organization_id: uuid.UUID
    year: int
    status: SettlementStatus
    processed: int
    succeeded: int
    failed: int
    marked_processed: bool
    results: list[UserSettlementResult]


class SettlementStatusOut(BaseModel):
    organization_id: uuid.UUID
    year: int
    settled: bool
    archived_users: int
    total_users: int
    year_end_processed: bool
    year_end_processed_at: Optional[datetime] = None


class LeaveArchiveOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    user: Optional[UserBrief] = None
    organization_id: uuid.UUID
    year: int
    total_requests: int
    pending_count: int
    approved_count: int
    rejected_count: int
    cancelled_count: int
    casual_taken: Decimal
    medical_taken: Decimal
    comp_off_taken: Decimal
    balance_casual_at_year_end: Decimal
    balance_medical_at_year_end: Decimal
    balance_compoff_at_year_end: Decimal
    comp_off_forfeited: Decimal
    carried_forward_casual: Decimal
    carried_forward_medical: Decimal
    new_balance_casual: Decimal
    new_balance_medical: Decimal
    settled_by: Optional[uuid.UUID] = None
    created_at: datetime
