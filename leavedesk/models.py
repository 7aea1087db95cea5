"""Import every ORM module so SQLAlchemy can resolve cross-module relationships."""

from leavedesk.common.audit import AuditTrail
from leavedesk.comp_off.models import CompOff, UserCompOff
from leavedesk.leave.models import Leave
from leavedesk.organizations.models import (
    Group,
    GroupMember,
    LeaveSettings,
    Organization,
    PublicHoliday,
)
from leavedesk.settlement.models import LeaveArchive
from leavedesk.users.models import User

__all__ = [
    "AuditTrail",
    "CompOff",
    "Group",
    "GroupMember",
    "Leave",
    "LeaveArchive",
    "LeaveSettings",
    "Organization",
    "PublicHoliday",
    "User",
    "UserCompOff",
]
