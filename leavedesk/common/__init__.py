"""Common module — shared utilities for LeaveDesk."""

from leavedesk.common.audit import AuditTrail, create_audit_entry, record_balance_change
from leavedesk.common.constants import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    ROLE_CAPABILITIES,
    Capability,
    HalfDaySlot,
    HolidayType,
    LeaveDuration,
    LeaveStatus,
    LeaveType,
    UserRole,
    has_capability,
)
from leavedesk.common.exceptions import (
    AppException,
    ConsistencyException,
    ForbiddenException,
    NotFoundException,
    ProfileLoadingException,
    UnauthorizedException,
    ValidationException,
    register_exception_handlers,
)
from leavedesk.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
)

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    "record_balance_change",
    # Constants / Enums
    "Capability",
    "HalfDaySlot",
    "HolidayType",
    "LeaveDuration",
    "LeaveStatus",
    "LeaveType",
    "UserRole",
    "ROLE_CAPABILITIES",
    "has_capability",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Exceptions
    "AppException",
    "ConsistencyException",
    "ForbiddenException",
    "NotFoundException",
    "ProfileLoadingException",
    "UnauthorizedException",
    "ValidationException",
    "register_exception_handlers",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]
