"""Auth dependencies — bearer token → session state → profile, capability checks."""

from __future__ import annotations

from typing import Callable

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from leavedesk.auth.identity import (
    Absent,
    Loading,
    Present,
    SessionState,
    decode_identity,
)
from leavedesk.common.constants import Capability, has_capability
from leavedesk.common.exceptions import (
    ForbiddenException,
    ProfileLoadingException,
    UnauthorizedException,
)
from leavedesk.database import get_db
from leavedesk.users.models import User


def _extract_bearer(request: Request) -> str | None:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header[7:]


# ── Core dependencies ───────────────────────────────────────────────

async def get_session_state(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> SessionState:
    """Resolve identity and profile for this request."""
    state = SessionState()
    token = _extract_bearer(request)
    if token is None:
        state.set_identity(Absent("Missing or invalid Authorization header."))
    else:
        state.set_identity(decode_identity(token))
    await state.load_profile(db)
    request.state.session_state = state
    return state


def profile_from_state(state: SessionState) -> User:
    """Return the loaded profile or raise for the Loading/Absent states."""
    profile = state.profile
    if isinstance(profile, Loading):
        raise ProfileLoadingException()
    if isinstance(profile, Absent):
        raise UnauthorizedException(profile.reason or "Authentication required.")
    if isinstance(profile, Present):
        return profile.value
    raise TypeError(f"Unknown profile state: {profile!r}")


async def get_current_profile(
    state: SessionState = Depends(get_session_state),
) -> User:
    """FastAPI dependency: the authenticated user's profile row."""
    return profile_from_state(state)


# ── Capability-based dependency ─────────────────────────────────────

def require_capability(capability: Capability) -> Callable:
    """Return a FastAPI dependency that enforces a role capability."""

    async def _check(profile: User = Depends(get_current_profile)) -> User:
        if not has_capability(profile.role, capability):
            raise ForbiddenException(
                detail=f"Role '{profile.role.value}' lacks '{capability.value}'.",
            )
        return profile

    return _check
