"""Async engine, declarative base and transaction scoping."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from leavedesk.config import settings

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.ENVIRONMENT == "development",
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Timezone-aware now, used as the Python-side default for timestamps."""
    return datetime.now(timezone.utc)


@asynccontextmanager
async def transaction(
    factory: async_sessionmaker = async_session_factory,
) -> AsyncIterator[AsyncSession]:
    """One session, one transaction.

    Balance changes and the status they belong to are flushed into the
    same session, so they commit together or not at all.
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency wrapping each request in ``transaction()``."""
    async with transaction() as session:
        yield session
