"""User Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict

from leavedesk.common.constants import UserRole


class UserBrief(BaseModel):
    """Minimal user info embedded in leave and archive responses."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: str
    full_name: Optional[str] = None
    designation: Optional[str] = None


class ProfileOut(BaseModel):
    """The authenticated user's profile with current balances."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    organization_id: Optional[uuid.UUID] = None
    email: str
    full_name: Optional[str] = None
    designation: Optional[str] = None
    role: UserRole
    balance_casual: Decimal
    balance_medical: Decimal
    balance_compoff: Decimal
    capabilities: list[str] = []
