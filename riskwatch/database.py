"""Async SQLAlchemy database setup.

@module database
@description Engine and session factory shared by the security event store and
the audit trail, plus the startup and readiness checks.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import AsyncAdaptedQueuePool

from riskwatch.config import Settings, get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """Build an engine for ``settings.DATABASE_URL``.

    PostgreSQL gets a bounded pool and a per-connection statement timeout.
    Other drivers (aiosqlite in tests and local runs) use their defaults.
    """
    if not settings.DATABASE_URL.startswith("postgresql"):
        return create_async_engine(settings.DATABASE_URL, echo=settings.DEBUG)

    pg_engine = create_async_engine(
        settings.DATABASE_URL,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=settings.DEBUG,
    )
    timeout = settings.DATABASE_QUERY_TIMEOUT

    @event.listens_for(pg_engine.sync_engine, "connect")
    def apply_statement_timeout(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute(f"SET statement_timeout = '{timeout}s'")
        cursor.close()

    return pg_engine


engine = create_engine_from_settings(settings)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker,
) -> AsyncGenerator[AsyncSession, None]:
    """Unit of work: commit when the block exits cleanly, otherwise roll back."""
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(create_tables: bool = False) -> None:
    """Check connectivity at startup; with ``create_tables`` also create the schema."""
    from riskwatch import models  # noqa: F401

    async with engine.begin() as conn:
        if create_tables:
            logger.info("Creating security_events and audit_logs tables if missing")
            await conn.run_sync(Base.metadata.create_all)
        await conn.execute(text("SELECT 1"))


async def _check(statement: str) -> bool:
    try:
        async with async_session_factory() as session:
            await session.execute(text(statement))
        return True
    except (SQLAlchemyError, OSError) as e:
        logger.debug(f"Check failed ({statement}): {e}")
        return False


async def check_db_health() -> Dict[str, bool]:
    """Connectivity plus availability of each table the engine reads."""
    if not await _check("SELECT 1"):
        return {"database": False, "security_events": False, "audit_logs": False}
    return {
        "database": True,
        "security_events": await _check("SELECT 1 FROM security_events LIMIT 1"),
        "audit_logs": await _check("SELECT 1 FROM audit_logs LIMIT 1"),
    }


async def close_db() -> None:
    await engine.dispose()
