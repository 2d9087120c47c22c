"""Database engine and sessions. The app context owns them; nothing here is global."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool, NullPool, StaticPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from reacher_api.errors import UpstreamError

# Small pool per serverless instance, recycled before provider idle timeouts
_SERVER_POOL = {
    "poolclass": AsyncAdaptedQueuePool,
    "pool_size": 2,
    "max_overflow": 5,
    "pool_pre_ping": True,
    "pool_recycle": 300,
}


def _engine_options(database_url: str) -> dict[str, Any]:
    if not database_url.startswith("sqlite"):
        return dict(_SERVER_POOL)
    # one shared connection keeps an in-memory database alive across sessions
    in_memory = ":memory:" in database_url or "mode=memory" in database_url
    return {
        "poolclass": StaticPool if in_memory else NullPool,
        "connect_args": {"check_same_thread": False},
    }


def create_engine(database_url: str) -> AsyncEngine:
    """Create the async engine for PostgreSQL (asyncpg) or SQLite (aiosqlite)."""
    return create_async_engine(database_url, echo=False, **_engine_options(database_url))


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_tables(engine: AsyncEngine) -> None:
    """Create any missing tables. Existing tables are left untouched."""
    import reacher_api.models  # noqa: F401  (registers tables on SQLModel.metadata)

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


@asynccontextmanager
async def get_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession]:
    """Open a session that commits when the block succeeds and rolls back otherwise.

    Raises:
        UpstreamError: If the database cannot be reached (502, database_unavailable).
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except (OperationalError, InterfaceError) as e:
            await session.rollback()
            raise UpstreamError("Database unavailable", code="database_unavailable") from e
        except Exception:
            await session.rollback()
            raise
