"""Database connection and session management."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import TYPE_CHECKING, AsyncGenerator
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from driver_payroll.config import get_settings
from driver_payroll.errors import ConflictError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


def get_engine(database_url: str | None = None) -> AsyncEngine:
    """Create async database engine."""
    url = database_url or get_settings().database_url
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False)
    return create_async_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Global engine and session factory
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_db() -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Initialize database engine and session factory."""
    global _engine, _session_factory
    if _engine is None:
        _engine = get_engine()
        _session_factory = create_session_factory(_engine)
    return _engine, _session_factory


async def init_models(engine: AsyncEngine | None = None) -> None:
    """Create all tables that do not exist yet."""
    from driver_payroll.models import Base

    if engine is None:
        engine, _ = init_db()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get a database session that commits on success."""
    _, factory = init_db()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# Keys currently held by this process on dialects without advisory locks
_held_period_locks: set[str] = set()


def period_lock_key(employee_id: UUID, week_start: date) -> str:
    return f"payroll:{employee_id}:{week_start.isoformat()}"


@asynccontextmanager
async def employee_period_lock(
    session: AsyncSession, employee_id: UUID, week_start: date
) -> AsyncGenerator[str, None]:
    """Hold the (employee, week) advisory lock for the enclosed work.

    On PostgreSQL this is a transaction-scoped advisory lock released at
    commit/rollback. Elsewhere a process-local key registry is used.
    Raises ConflictError when another computation holds the key.
    """
    key = period_lock_key(employee_id, week_start)
    if session.bind.dialect.name == "postgresql":
        result = await session.execute(
            text("SELECT pg_try_advisory_xact_lock(hashtext(:key))"),
            {"key": key},
        )
        if not result.scalar():
            raise ConflictError(f"Payroll for {key} is being computed by another worker")
        yield key
        return

    if key in _held_period_locks:
        raise ConflictError(f"Payroll for {key} is being computed by another worker")
    _held_period_locks.add(key)
    try:
        yield key
    finally:
        _held_period_locks.discard(key)
