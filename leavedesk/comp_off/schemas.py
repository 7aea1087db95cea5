"""Comp-off Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CompOffGrantRequest(BaseModel):
    """Body for POST /comp-off/grants."""

    user_ids: list[uuid.UUID] = Field(..., min_length=1)
    work_date: date
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    days: Decimal = Field(Decimal("1"), gt=0, le=31)


class CompOffRecipientOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    is_consumed: bool


class CompOffOut(BaseModel):
    """A grant with its recipients."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    organization_id: uuid.UUID
    title: str
    description: Optional[str] = None
    work_date: date
    days: Decimal
    created_by: Optional[uuid.UUID] = None
    created_at: datetime
    recipients: list[CompOffRecipientOut] = []


class UserCompOffOut(BaseModel):
    """One user's view of a grant."""

    id: uuid.UUID
    comp_off_id: uuid.UUID
    title: str
    description: Optional[str] = None
    work_date: date
    days: Decimal
    is_consumed: bool
    consumed_at: Optional[datetime] = None
    consumed_leave_id: Optional[uuid.UUID] = None
    forfeited_at: Optional[datetime] = None
    granted_at: datetime


class CompOffBalanceOut(BaseModel):
    user_id: uuid.UUID
    available: Decimal
    can_apply: bool
