"""Shared test fixtures — async DB, client, auth helpers, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Iterable, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

import leavedesk.models  # noqa: F401
from leavedesk.common.constants import UserRole
from leavedesk.config import settings
from leavedesk.database import Base, get_db, transaction
from leavedesk.main import create_app
from leavedesk.organizations.models import Group, GroupMember, LeaveSettings, Organization
from leavedesk.users.models import User

# ── SQLite compat: compile PG-specific types to TEXT ────────────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() as a SQLite custom function for server defaults."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )


TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from leavedesk.common.rate_limit import limiter

    limiter.reset()
    yield


@pytest.fixture(autouse=True)
def _reset_settlement_locks():
    from leavedesk.settlement import service as settlement_service

    settlement_service._run_locks.clear()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with transaction(TestSessionFactory) as session:
        yield session


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Model factories ─────────────────────────────────────────────────

async def _make_org(db: AsyncSession, name: str = "Acme") -> Organization:
    org = Organization(id=uuid.uuid4(), name=name)
    db.add(org)
    await db.flush()
    return org


async def _make_user(
    db: AsyncSession,
    org: Optional[Organization],
    *,
    role: UserRole = UserRole.USER,
    email: Optional[str] = None,
    full_name: Optional[str] = None,
    casual: Decimal = Decimal("12"),
    medical: Decimal = Decimal("12"),
) -> User:
    uid = uuid.uuid4()
    user = User(
        id=uid,
        organization_id=org.id if org else None,
        email=email or f"user-{uid.hex[:8]}@acme.test",
        full_name=full_name or f"User {uid.hex[:4]}",
        role=role,
        balance_casual=casual,
        balance_medical=medical,
        balance_compoff=Decimal("0"),
    )
    db.add(user)
    await db.flush()
    return user


async def _make_group(
    db: AsyncSession,
    org: Organization,
    name: str = "Engineering",
    members: Iterable[User] = (),
) -> Group:
    group = Group(id=uuid.uuid4(), organization_id=org.id, name=name)
    db.add(group)
    await db.flush()
    for member in members:
        db.add(GroupMember(group_id=group.id, user_id=member.id))
    await db.flush()
    return group


async def _make_settings(
    db: AsyncSession,
    org: Organization,
    *,
    casual: Decimal = Decimal("12"),
    medical: Decimal = Decimal("12"),
    carry_forward: bool = False,
    year: int = 2024,
) -> LeaveSettings:
    row = LeaveSettings(
        organization_id=org.id,
        year=year,
        default_casual_leaves=casual,
        default_medical_leaves=medical,
        carry_forward_enabled=carry_forward,
        year_end_processed=False,
    )
    db.add(row)
    await db.flush()
    return row


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    user_id: uuid.UUID,
    *,
    email: Optional[str] = None,
    expired: bool = False,
    secret: Optional[str] = None,
) -> str:
    """Generate an identity-provider style JWT for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {"sub": str(user_id), "exp": exp}
    if email:
        payload["email"] = email
    return jwt.encode(
        payload, secret or settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM
    )


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, email=user.email)}"}


# ── Common fixtures ─────────────────────────────────────────────────

@pytest.fixture
async def org(db) -> Organization:
    return await _make_org(db)


@pytest.fixture
async def employee(db, org) -> User:
    return await _make_user(db, org, email="employee@acme.test", full_name="Asha Employee")


@pytest.fixture
async def team_lead(db, org) -> User:
    return await _make_user(
        db, org, role=UserRole.TEAM_LEAD, email="lead@acme.test", full_name="Lee Lead"
    )


@pytest.fixture
async def hr(db, org) -> User:
    return await _make_user(db, org, role=UserRole.HR, email="hr@acme.test", full_name="Hari HR")


@pytest.fixture
async def admin(db, org) -> User:
    return await _make_user(
        db, org, role=UserRole.ADMIN, email="admin@acme.test", full_name="Ada Admin"
    )


@pytest.fixture
async def group(db, org, employee, team_lead) -> Group:
    return await _make_group(db, org, members=[employee, team_lead])
