"""Append-only audit trail for balance mutations and leave transitions."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from leavedesk.database import Base, utcnow

_JSON = sa.JSON().with_variant(JSONB(), "postgresql")


class AuditTrail(Base):
    __tablename__ = "audit_trail"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    # NULL for operator-initiated changes (settlement script)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    action: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    old_values: Mapped[Optional[dict]] = mapped_column(_JSON)
    new_values: Mapped[Optional[dict]] = mapped_column(_JSON)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=sa.func.now(),
    )

    __table_args__ = (
        sa.Index("ix_audit_trail_entity", "entity_type", "entity_id"),
        sa.Index("ix_audit_trail_actor_id", "actor_id"),
    )

    def __repr__(self) -> str:
        return f"<AuditTrail {self.action} {self.entity_type}/{self.entity_id}>"


def _jsonable(values: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    # Day amounts are Decimals; store them as strings so no precision is lost
    if values is None:
        return None
    out: dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, (Decimal, uuid.UUID)):
            out[key] = str(value)
        else:
            out[key] = value
    return out


async def create_audit_entry(
    session: AsyncSession,
    *,
    action: str,
    entity_type: str,
    entity_id: uuid.UUID,
    actor_id: Optional[uuid.UUID] = None,
    old_values: Optional[dict[str, Any]] = None,
    new_values: Optional[dict[str, Any]] = None,
) -> AuditTrail:
    """Add and flush one audit row.

    ``action`` is free text; the services use apply, approve, reject,
    cancel, edit, delete, debit, credit, reset, grant, revoke, consume,
    release and settle.
    """
    entry = AuditTrail(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        old_values=_jsonable(old_values),
        new_values=_jsonable(new_values),
    )
    session.add(entry)
    await session.flush()
    return entry


async def record_balance_change(
    session: AsyncSession,
    user_id: uuid.UUID,
    action: str,
    *,
    before: dict[str, Any],
    after: dict[str, Any],
    actor_id: Optional[uuid.UUID] = None,
    leave_id: Optional[uuid.UUID] = None,
) -> AuditTrail:
    """Audit a change to one user's balance columns.

    ``after`` may carry extra keys (``requested``, ``applied``) next to the
    balance fields.  The leave that caused the change, if any, rides along
    in ``new_values["leave_id"]``.
    """
    new_values = dict(after)
    if leave_id is not None:
        new_values["leave_id"] = leave_id
    return await create_audit_entry(
        session,
        action=action,
        entity_type="user_balance",
        entity_id=user_id,
        actor_id=actor_id,
        old_values=before,
        new_values=new_values,
    )
