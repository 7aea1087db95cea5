"""Organization, leave-settings, group and holiday Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from leavedesk.common.constants import HolidayType
from leavedesk.users.schemas import UserBrief


# ═════════════════════════════════════════════════════════════════════
# Organizations
# ═════════════════════════════════════════════════════════════════════


class OrganizationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


class OrganizationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    created_at: datetime


# ═════════════════════════════════════════════════════════════════════
# Leave settings
# ═════════════════════════════════════════════════════════════════════


class LeaveSettingsUpdate(BaseModel):
    """Partial update; omitted fields keep their value."""

    default_casual_leaves: Optional[Decimal] = Field(None, ge=0, le=365)
    default_medical_leaves: Optional[Decimal] = Field(None, ge=0, le=365)
    carry_forward_enabled: Optional[bool] = None
    year: Optional[int] = Field(None, ge=2000, le=2100)


class LeaveSettingsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    organization_id: uuid.UUID
    year: int
    default_casual_leaves: Decimal
    default_medical_leaves: Decimal
    carry_forward_enabled: bool
    year_end_processed: bool
    year_end_processed_at: Optional[datetime] = None


class BalanceResetOut(BaseModel):
    organization_id: uuid.UUID
    users_reset: int
    balance_casual: Decimal
    balance_medical: Decimal


# ═════════════════════════════════════════════════════════════════════
# Groups
# ═════════════════════════════════════════════════════════════════════


class GroupCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class GroupMemberAdd(BaseModel):
    user_ids: list[uuid.UUID] = Field(..., min_length=1)


class GroupMemberOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    user: Optional[UserBrief] = None
    created_at: datetime


class GroupOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    organization_id: uuid.UUID
    name: str
    created_at: datetime
    members: list[GroupMemberOut] = []


# ═════════════════════════════════════════════════════════════════════
# Public holidays
# ═════════════════════════════════════════════════════════════════════


class PublicHolidayCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    holiday_date: date
    holiday_type: HolidayType = HolidayType.NORMAL
    description: Optional[str] = None


class PublicHolidayUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    holiday_date: Optional[date] = None
    holiday_type: Optional[HolidayType] = None
    description: Optional[str] = None


class PublicHolidayOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    organization_id: uuid.UUID
    name: str
    holiday_date: date
    year: int
    holiday_type: HolidayType
    description: Optional[str] = None
    created_at: datetime
