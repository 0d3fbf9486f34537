"""Async SQLAlchemy engine and session factory for the knowledge store.

Provides:
- Base: Declarative base for all knowledge tables
- get_engine(): Lazily created async engine singleton
- get_session(): Async generator yielding an AsyncSession (session_factory for repositories)
- init_db() / close_db(): Table creation on startup and engine disposal on shutdown

Workspace isolation is enforced by a workspace_id column on every table and a
mandatory workspace_id predicate in every repository query.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.app.config import get_settings

# ── Module-level engine (lazy init) ────────────────────────────────────────

_engine: AsyncEngine | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton."""
    global _engine
    if _engine is None:
        settings = get_settings()
        options: dict = {"echo": False}
        if not settings.DATABASE_URL.startswith("sqlite"):
            options.update(pool_size=settings.DATABASE_POOL_SIZE, max_overflow=10)
        _engine = create_async_engine(settings.DATABASE_URL, **options)
    return _engine


# ── Declarative Base ────────────────────────────────────────────────────────


class Base(DeclarativeBase):
    """Base class for knowledge store models."""


# ── Session Factory ─────────────────────────────────────────────────────────


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an AsyncSession bound to the engine singleton."""
    engine = get_engine()
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


# ── Database Initialization ─────────────────────────────────────────────────


async def init_db() -> None:
    """Create the knowledge tables if they don't exist."""
    # Register models on Base.metadata before create_all
    import src.knowledge.models  # noqa: F401

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine
    if _engine:
        await _engine.dispose()
        _engine = None
