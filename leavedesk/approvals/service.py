"""Approval routing — which pending requests an actor may see and act on."""

from __future__ import annotations

import uuid

from sqlalchemy import Select, false, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from leavedesk.common.constants import Capability, LeaveStatus, has_capability
from leavedesk.config import settings
from leavedesk.leave.models import Leave
from leavedesk.organizations.models import GroupMember
from leavedesk.users.models import User


class ApprovalRouter:

    @staticmethod
    def _sees_everything(actor: User) -> bool:
        return has_capability(actor.role, Capability.can_view_all_leaves)

    @staticmethod
    async def group_ids_for(db: AsyncSession, user_id: uuid.UUID) -> list[uuid.UUID]:
        result = await db.execute(
            select(GroupMember.group_id).where(GroupMember.user_id == user_id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def approvable_query(db: AsyncSession, actor: User) -> Select:
        """Build the PENDING-request query visible to *actor*, oldest first."""
        query = (
            select(Leave)
            .options(selectinload(Leave.user))
            .where(Leave.status == LeaveStatus.PENDING, Leave.user_id != actor.id)
            .order_by(Leave.created_at.asc())
        )

        if ApprovalRouter._sees_everything(actor):
            if settings.APPROVAL_SCOPE == "global":
                return query
            return query.join(User, User.id == Leave.user_id).where(
                User.organization_id == actor.organization_id
            )

        if has_capability(actor.role, Capability.can_approve):
            group_ids = await ApprovalRouter.group_ids_for(db, actor.id)
            if not group_ids:
                return query.where(false())
            return query.where(Leave.assigned_group_id.in_(group_ids))

        return query.where(false())

    @staticmethod
    async def resolve_approvable_requests(
        db: AsyncSession, actor: User
    ) -> list[Leave]:
        query = await ApprovalRouter.approvable_query(db, actor)
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def can_act_on(db: AsyncSession, actor: User, leave: Leave) -> bool:
        """True when *leave* would appear in *actor*'s approval queue (ignoring status)."""
        if leave.user_id == actor.id:
            return False
        if ApprovalRouter._sees_everything(actor):
            if settings.APPROVAL_SCOPE == "global":
                return True
            owner_org = (
                await db.execute(
                    select(User.organization_id).where(User.id == leave.user_id)
                )
            ).scalar_one_or_none()
            return owner_org is not None and owner_org == actor.organization_id

        if has_capability(actor.role, Capability.can_approve):
            if leave.assigned_group_id is None:
                return False
            group_ids = await ApprovalRouter.group_ids_for(db, actor.id)
            return leave.assigned_group_id in group_ids

        return False
