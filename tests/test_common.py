"""Tests for common utilities — pagination, RFC 7807 error bodies, audit helper."""

from __future__ import annotations

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from leavedesk.auth.dependencies import get_current_profile
from leavedesk.common.audit import AuditTrail, create_audit_entry
from leavedesk.common.exceptions import ConsistencyException, NotFoundException
from leavedesk.common.pagination import PaginationParams, paginate
from leavedesk.users.models import User
from leavedesk.users.schemas import UserBrief
from tests.conftest import _make_org, _make_user, auth_headers


# ═════════════════════════════════════════════════════════════════════
# PAGINATION
# ═════════════════════════════════════════════════════════════════════


class TestPagination:

    async def _seed(self, db: AsyncSession, count: int):
        org = await _make_org(db)
        for i in range(count):
            await _make_user(db, org, email=f"u{i:02d}@acme.test", full_name=f"User {i:02d}")

    async def test_first_page(self, db: AsyncSession):
        await self._seed(db, 5)
        result = await paginate(
            db, select(User).order_by(User.email), page=1, page_size=2,
            transform=UserBrief.model_validate,
        )
        assert [u.email for u in result.data] == ["u00@acme.test", "u01@acme.test"]
        assert result.meta.total == 5
        assert result.meta.total_pages == 3
        assert result.meta.has_next is True
        assert result.meta.has_prev is False

    async def test_last_page(self, db: AsyncSession):
        await self._seed(db, 5)
        result = await paginate(db, select(User).order_by(User.email), page=3, page_size=2)
        assert len(result.data) == 1
        assert result.meta.has_next is False
        assert result.meta.has_prev is True

    async def test_empty_result(self, db: AsyncSession):
        result = await paginate(db, select(User), page=1, page_size=10)
        assert result.data == []
        assert result.meta.total == 0
        assert result.meta.total_pages == 0

    def test_params_offset(self):
        assert PaginationParams(page=3, page_size=20).offset == 40


# ═════════════════════════════════════════════════════════════════════
# ERROR BODIES
# ═════════════════════════════════════════════════════════════════════


class TestProblemDetails:

    def test_not_found_detail(self):
        exc = NotFoundException("Leave", "abc")
        assert exc.status_code == 404
        assert "abc" in exc.detail

    def test_consistency_carries_errors(self):
        exc = ConsistencyException("Already settled", errors={"archived_users": ["3"]})
        assert exc.status_code == 409
        assert exc.errors == {"archived_users": ["3"]}

    async def test_request_validation_error_shape(
        self, client: AsyncClient, db: AsyncSession, employee
    ):
        await db.commit()
        resp = await client.post(
            "/api/v1/leave/apply",
            json={"leave_type": "VACATION", "duration": "FULL_DAY"},
            headers=auth_headers(employee),
        )
        assert resp.status_code == 422
        body = resp.json()
        assert body["type"].endswith("/validation-error")
        assert body["instance"] == "/api/v1/leave/apply"
        assert "leave_type" in body["errors"]

    async def test_data_store_failure_is_503(self, app, client: AsyncClient):
        async def _broken_profile():
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))

        app.dependency_overrides[get_current_profile] = _broken_profile
        resp = await client.get("/api/v1/users/me")

        assert resp.status_code == 503
        body = resp.json()
        assert body["type"].endswith("/data-store-error")
        assert "connection refused" not in resp.text


# ═════════════════════════════════════════════════════════════════════
# AUDIT
# ═════════════════════════════════════════════════════════════════════


class TestAudit:

    async def test_create_audit_entry(self, db: AsyncSession):
        org = await _make_org(db)
        user = await _make_user(db, org)
        entry = await create_audit_entry(
            db,
            action="reset",
            entity_type="user_balance",
            entity_id=user.id,
            actor_id=user.id,
            old_values={"balance_casual": "3.0"},
            new_values={"balance_casual": "12"},
        )

        stored = (await db.execute(select(AuditTrail))).scalar_one()
        assert stored.id == entry.id
        assert stored.new_values == {"balance_casual": "12"}

    @pytest.mark.parametrize("action", ["approve", "cancel"])
    async def test_actions_are_free_text(self, db: AsyncSession, action):
        org = await _make_org(db)
        user = await _make_user(db, org)
        await create_audit_entry(
            db, action=action, entity_type="leave", entity_id=user.id, actor_id=None
        )
        stored = (await db.execute(select(AuditTrail))).scalar_one()
        assert stored.action == action
