"""Enums, role capability table and constants for LeaveDesk."""

from __future__ import annotations

import enum
from decimal import Decimal


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    USER = "USER"
    TEAM_LEAD = "TEAM_LEAD"
    HR = "HR"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"
    CEO = "CEO"

    @classmethod
    def parse(cls, value: str) -> "UserRole":
        """Parse a stored role string, accepting legacy spellings."""
        normalized = (value or "").strip().upper()
        normalized = _LEGACY_ROLE_NAMES.get(normalized, normalized)
        return cls(normalized)


# Older rows used APPROVER for what is now TEAM_LEAD.
_LEGACY_ROLE_NAMES: dict[str, str] = {
    "APPROVER": "TEAM_LEAD",
}


class Capability(str, enum.Enum):
    can_approve = "can_approve"
    can_manage_org = "can_manage_org"
    can_view_all_leaves = "can_view_all_leaves"
    can_manage_all_orgs = "can_manage_all_orgs"
    can_run_settlement = "can_run_settlement"


# ── Role → capability table ─────────────────────────────────────────

ROLE_CAPABILITIES: dict[UserRole, frozenset[Capability]] = {
    UserRole.USER: frozenset(),
    UserRole.TEAM_LEAD: frozenset({Capability.can_approve}),
    UserRole.HR: frozenset({
        Capability.can_approve,
        Capability.can_view_all_leaves,
        Capability.can_manage_org,
    }),
    UserRole.CEO: frozenset({
        Capability.can_approve,
        Capability.can_view_all_leaves,
    }),
    UserRole.ADMIN: frozenset({
        Capability.can_approve,
        Capability.can_view_all_leaves,
        Capability.can_manage_org,
        Capability.can_run_settlement,
    }),
    UserRole.SUPER_ADMIN: frozenset({
        Capability.can_approve,
        Capability.can_view_all_leaves,
        Capability.can_manage_org,
        Capability.can_run_settlement,
        Capability.can_manage_all_orgs,
    }),
}


def has_capability(role: UserRole, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES.get(role, frozenset())


# ── Leave ───────────────────────────────────────────────────────────

class LeaveType(str, enum.Enum):
    CASUAL = "CASUAL"
    MEDICAL = "MEDICAL"
    COMP_OFF = "COMP_OFF"


class LeaveStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class LeaveDuration(str, enum.Enum):
    FULL_DAY = "FULL_DAY"
    HALF_DAY = "HALF_DAY"
    LONG_LEAVE = "LONG_LEAVE"


class HalfDaySlot(str, enum.Enum):
    MORNING = "MORNING"
    AFTERNOON = "AFTERNOON"


# ── Organization ────────────────────────────────────────────────────

class HolidayType(str, enum.Enum):
    MANDATORY = "MANDATORY"
    OPTIONAL = "OPTIONAL"
    NORMAL = "NORMAL"


class SettlementStatus(str, enum.Enum):
    COMPLETED = "COMPLETED"
    PARTIAL = "PARTIAL"


# ── Misc constants ──────────────────────────────────────────────────

HALF_DAY = Decimal("0.5")
ZERO_DAYS = Decimal("0")
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
RECENT_LEAVES_LIMIT = 20
