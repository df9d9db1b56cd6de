"""Engine, sessions and schema bootstrap for the self-hosted backend."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import event, inspect
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from portal_common.config import DatabaseSettings, get_settings
from portal_common.logging import get_logger
from portal_common.models.base import Base

logger = get_logger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None
_schema_ready = False
_schema_lock = asyncio.Lock()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database: DatabaseSettings, echo: bool = False) -> AsyncEngine:
    """Async engine for ``database``; SQLite files are created on demand."""
    if database.engine == "sqlite":
        database.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
        engine = create_async_engine(database.url, echo=echo)
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        return engine
    return create_async_engine(
        database.url,
        pool_size=database.pool_size,
        max_overflow=database.max_overflow,
        pool_timeout=database.pool_timeout,
        pool_pre_ping=True,
        echo=echo,
    )


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = build_engine(settings.database, echo=settings.debug)
        logger.info("database_engine_created", engine=settings.database.engine, database=settings.database.name)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)
    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Session that commits on success and rolls back on any error."""
    await ensure_schema_ready()
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def missing_tables() -> list[str]:
    """Portal tables the connected database does not have yet."""
    async with get_engine().connect() as conn:
        existing = await conn.run_sync(lambda sync_conn: set(inspect(sync_conn).get_table_names()))
    return sorted(set(Base.metadata.tables) - existing)


async def ensure_schema_ready() -> None:
    """Create any missing portal tables, once per process."""
    global _schema_ready
    if _schema_ready:
        return
    async with _schema_lock:
        if _schema_ready:
            return
        absent = await missing_tables()
        if absent:
            async with get_engine().begin() as conn:
                await conn.run_sync(Base.metadata.create_all, checkfirst=True)
            logger.info("database_tables_created", tables=absent)
        _schema_ready = True


async def close_engine() -> None:
    global _engine, _session_factory, _schema_ready
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
    _schema_ready = False
    logger.info("database_engine_closed")
