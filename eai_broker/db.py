"""Database engine and session utilities for async SQLAlchemy.

This module centralizes engine/session creation so that the MessageBox, the
subscription tracker, the configuration stores and every script share a
single, lazily initialized async engine. It also handles common URL quirks
(e.g., ``postgres://`` vs ``postgresql://``) and provides a simple
``asynccontextmanager`` for sessions.

Why this exists:
- Ensure a consistent engine across source workers, destination workers,
  the sweeper and operator scripts
- Avoid duplicated URL parsing/normalization logic scattered across modules

How to use:
- Call ``get_engine()`` once to initialize the engine (optional; ``get_session``
  will also initialize it on first use).
- Use ``get_session()`` as an async context manager for DB work:

    Example:
        >>> from eai_broker.db import get_session
        >>> async with get_session() as session:
        ...     await session.execute(text("SELECT 1"))
        ...     await session.commit()

Local runs and tests may point ``DATABASE_URL`` at ``sqlite+aiosqlite:///path.db``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from eai_broker.config import Settings


_engine: Any = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def normalize_database_url(db_url: str) -> str:
    """Return a SQLAlchemy async URL for the configured database.

    ``postgres://`` and ``postgresql://`` are rewritten for the ``asyncpg``
    driver; other URLs (e.g. ``sqlite+aiosqlite://``) pass through.

    Example:
        >>> normalize_database_url("postgres://u:p@h/db")
        'postgresql+asyncpg://u:p@h/db'
    """
    if db_url.startswith("postgresql+asyncpg://"):
        return db_url
    if db_url.startswith("postgresql://"):
        return db_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if db_url.startswith("postgres://"):
        return db_url.replace("postgres://", "postgresql+asyncpg://", 1)
    return db_url


def is_database_configured() -> bool:
    return bool(Settings().database_url)


def get_engine() -> Any:
    """Return a process-wide async SQLAlchemy engine, creating it if needed.

    Returns:
        Any: A SQLAlchemy async engine instance.

    Raises:
        RuntimeError: when ``DATABASE_URL`` is not set.
    """
    global _engine, _session_factory
    if _engine is None:
        db_url = Settings().database_url
        if not db_url:
            raise RuntimeError("DATABASE_URL is not configured")
        db_url = normalize_database_url(db_url)
        kwargs: dict[str, Any] = {}
        if db_url.startswith("postgresql+asyncpg://"):
            kwargs["pool_pre_ping"] = True
        _engine = create_async_engine(db_url, **kwargs)
        _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    """Yield an async SQLAlchemy session bound to the shared engine.

    Sessions are created with ``expire_on_commit=False`` so ORM rows stay
    readable after the transaction that loaded them commits.

    Example:
        >>> async with get_session() as session:
        ...     await session.commit()
    """
    if _session_factory is None:
        get_engine()
    assert _session_factory is not None
    async with _session_factory() as session:
        yield session


async def create_all() -> None:
    """Create every broker table that does not exist yet."""
    from eai_broker.orm_models import Base

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Dispose the shared engine so the next ``get_engine()`` re-reads settings."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
