"""SQLAlchemy async engine and session factory."""

from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine_for_url(database_url: str) -> AsyncEngine:
    """Create an engine; SQLite connections get foreign-key enforcement."""
    if database_url.startswith("sqlite"):
        engine = create_async_engine(database_url)
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        return engine
    return create_async_engine(database_url, pool_size=10, max_overflow=20)


def init_db(database_url: str) -> async_sessionmaker[AsyncSession]:
    """Initialise the async engine and session factory.

    Must be called once at application startup before any database access.
    """
    global _engine, _session_factory
    _engine = create_engine_for_url(database_url)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _session_factory


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        from ..config import Settings
        return init_db(Settings().database_url.get_secret_value())
    return _session_factory


async def close_db():
    """Dispose of the engine connection pool.  Call at shutdown."""
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
    _engine = None
    _session_factory = None
