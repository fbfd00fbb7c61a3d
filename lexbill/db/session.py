"""Async SQLAlchemy session factory.

Provides a single async engine and a session factory. Use get_session()
as an async context manager for transactional blocks: it commits on
success and rolls back on exception. The workflow engine opens one such
block per commit point so a document row and its email attempt row
never share a transaction.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from lexbill.core.config import Settings


def create_engine(settings: Settings) -> AsyncEngine:
    """Build an async engine from application settings.

    SQLite (used for local runs and tests) does not take pool sizing
    arguments, so they are only passed to server databases.
    """
    kwargs: dict[str, Any] = {"echo": settings.debug}
    if settings.database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"timeout": 30}
    else:
        kwargs["pool_size"] = settings.database_pool_size
        kwargs["max_overflow"] = settings.database_max_overflow
    return create_async_engine(settings.database_url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build a session factory bound to the given engine."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@asynccontextmanager
async def get_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Yield a transactional session. Commits on success, rolls back on error."""
    session = session_factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()
