"""Async SQLAlchemy database engine and session management.

Provides the async database layer with:
- Engine construction from LibraryConfig (PostgreSQL in production,
  SQLite/aiosqlite for tests and local runs)
- FastAPI dependency injection via get_session()
- Automatic session lifecycle (commit on success, rollback on error)
- A module-level default engine that callers may replace with configure()
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from patterns.domain_config import DatabaseConfig, LibraryConfig

# ---------------------------------------------------------------------------
# Engine & session factory
# ---------------------------------------------------------------------------


def build_engine(config: DatabaseConfig) -> AsyncEngine:
    """Create an async engine for the configured URL.

    SQLite drivers reject pool sizing arguments, so those are only passed
    to server databases.
    """
    kwargs: dict = {"echo": config.echo}
    if not config.url.startswith("sqlite"):
        kwargs.update(
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_pre_ping=True,
        )
    return create_async_engine(config.url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


engine: AsyncEngine = build_engine(LibraryConfig.from_env().database)
async_session_factory: async_sessionmaker[AsyncSession] = build_session_factory(engine)


def configure(config: DatabaseConfig) -> async_sessionmaker[AsyncSession]:
    """Replace the module-level engine (used by the app factory and tests)."""
    global engine, async_session_factory

    engine = build_engine(config)
    async_session_factory = build_session_factory(engine)
    return async_session_factory


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """FastAPI dependency returning the current session factory.

    Services that must commit inside their own critical sections (lending)
    take the factory rather than a request-scoped session.
    """
    return async_session_factory


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------

async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session with automatic commit/rollback.

    Usage in FastAPI routes::

        @router.get("/conditions")
        async def list_conditions(session: AsyncSession = Depends(get_session)):
            result = await session.execute(select(Condition))
            return result.scalars().all()
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """Context manager variant for non-FastAPI code (scripts, tests, etc.)."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ---------------------------------------------------------------------------
# Lifecycle hooks
# ---------------------------------------------------------------------------

async def init_db(target: AsyncEngine | None = None) -> None:
    """Initialize database tables from models (dev/test only)."""
    from core.models.base import Base

    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the connection pool on shutdown."""
    await engine.dispose()
