"""Per-request identity/profile state.

The identity provider and the profile lookup resolve independently, and each
value is in exactly one of three states:

    Loading          not resolved yet
    Absent           resolved, nothing there (no/invalid token, no profile row)
    Present(value)   resolved

Callers must handle all three before trusting role or organization fields.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar, Union

from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leavedesk.config import settings
from leavedesk.users.models import User

T = TypeVar("T")


@dataclass(frozen=True)
class Loading:
    pass


@dataclass(frozen=True)
class Absent:
    reason: str = ""


@dataclass(frozen=True)
class Present(Generic[T]):
    value: T


IdentityState = Union[Loading, Absent, Present]

LOADING = Loading()


@dataclass(frozen=True)
class Identity:
    """What the identity provider vouches for: the subject and its email."""

    user_id: uuid.UUID
    email: Optional[str] = None


def decode_identity(token: str) -> IdentityState:
    """Verify a bearer token and turn it into an identity state."""
    options: dict[str, Any] = {}
    if settings.JWT_AUDIENCE is None:
        options["verify_aud"] = False
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            options=options,
        )
    except ExpiredSignatureError:
        return Absent("Token has expired.")
    except JWTError:
        return Absent("Invalid token.")

    try:
        user_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        return Absent("Token subject is not a user id.")
    return Present(Identity(user_id=user_id, email=payload.get("email")))


class SessionState:
    """Container for the two independently-loading values of one request."""

    def __init__(self) -> None:
        self.identity: IdentityState = LOADING
        self.profile: IdentityState = LOADING

    def set_identity(self, state: IdentityState) -> None:
        self.identity = state
        # A new identity invalidates whatever profile was loaded before
        self.profile = LOADING if isinstance(state, Present) else Absent(
            getattr(state, "reason", "")
        )

    async def load_profile(self, db: AsyncSession) -> None:
        identity = self.identity
        if isinstance(identity, Loading):
            return
        if isinstance(identity, Absent):
            self.profile = Absent(identity.reason)
            return
        if isinstance(identity, Present):
            result = await db.execute(
                select(User).where(User.id == identity.value.user_id)
            )
            user = result.scalars().first()
            self.profile = (
                Present(user) if user is not None
                else Absent("No profile exists for this identity.")
            )
            return
        raise TypeError(f"Unknown identity state: {identity!r}")
