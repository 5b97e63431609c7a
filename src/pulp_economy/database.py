"""Async SQLAlchemy engine and session management."""

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from pulp_economy.errors import EconomyError, StorageError

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


async def init_db(url: str, pool_timeout: int = 10, command_timeout: int = 15) -> None:
    """Initialize the database engine and session factory."""
    global _engine, _session_factory  # noqa: PLW0603
    if url.startswith("postgresql"):
        _engine = create_async_engine(
            url,
            pool_size=20,
            max_overflow=10,
            pool_timeout=pool_timeout,
            pool_pre_ping=True,
            echo=False,
            connect_args={"statement_cache_size": 0, "command_timeout": command_timeout},
        )
    else:
        # SQLite (tests, local runs): the driver's busy timeout bounds lock waits
        _engine = create_async_engine(
            url,
            echo=False,
            connect_args={"timeout": command_timeout},
        )
    _session_factory = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def close_db() -> None:
    """Dispose of the database engine."""
    global _engine  # noqa: PLW0603
    if _engine:
        await _engine.dispose()
        _engine = None


def get_engine() -> AsyncEngine:
    """Get the async engine instance."""
    if _engine is None:
        msg = "Database not initialized. Call init_db() first."
        raise RuntimeError(msg)
    return _engine


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session (FastAPI dependency)."""
    if _session_factory is None:
        msg = "Database not initialized. Call init_db() first."
        raise RuntimeError(msg)
    async with _session_factory() as session:
        yield session


@asynccontextmanager
async def atomic(db: AsyncSession, failure_message: str) -> AsyncIterator[AsyncSession]:
    """Run the enclosed block as one unit of work: commit on success, roll back on any error.

    Domain errors propagate unchanged. Store failures become StorageError so
    callers never see driver details.
    """
    try:
        yield db
        await db.commit()
    except EconomyError:
        await db.rollback()
        raise
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StorageError(failure_message) from exc
