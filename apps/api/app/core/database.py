from collections.abc import AsyncGenerator
from typing import Any

import structlog
from sqlalchemy import JSON, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from app.core.config import settings

logger = structlog.get_logger()

# Plain JSON everywhere, JSONB on PostgreSQL
JSONType = JSON().with_variant(JSONB(), "postgresql")


def is_sqlite_url(url: str) -> bool:
    return make_url(url).get_backend_name() == "sqlite"


def _engine_kwargs(url: str, pool_size: int) -> dict[str, Any]:
    if is_sqlite_url(url):
        # Local development and the test-suite only; no row locks on SQLite
        return {"poolclass": StaticPool}
    return {
        "pool_size": pool_size,
        "max_overflow": 10,
        "pool_pre_ping": True,               # Drop stale connections before use
        "pool_recycle": 1800,                 # Recycle connections every 30 min
        "pool_timeout": 30,                   # Wait max 30s for a pool connection before raising
        "connect_args": {
            "server_settings": {
                "statement_timeout": "30000",
                "idle_in_transaction_session_timeout": "60000",
                # Bounds the wait on the per-policy row lock taken by version allocation
                "lock_timeout": str(settings.DATABASE_LOCK_TIMEOUT_MS),
            },
            "command_timeout": 30,
        },
    }


def enable_sqlite_savepoints(async_engine: AsyncEngine) -> None:
    """Let SQLAlchemy own BEGIN on SQLite so SAVEPOINT works with aiosqlite."""

    @event.listens_for(async_engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _do_begin(conn):  # type: ignore[no-untyped-def]
        conn.exec_driver_sql("BEGIN")


def build_engine(url: str, pool_size: int = 20) -> AsyncEngine:
    async_engine = create_async_engine(url, echo=settings.APP_DEBUG, **_engine_kwargs(url, pool_size))
    if is_sqlite_url(url):
        enable_sqlite_savepoints(async_engine)
    return async_engine


engine = build_engine(settings.DATABASE_URL)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# ── Read replica (optional) ───────────────────────────────────────────────────
# Falls back to primary when DATABASE_URL_READ_REPLICA is not set.

if settings.DATABASE_URL_READ_REPLICA:
    _read_engine = build_engine(settings.DATABASE_URL_READ_REPLICA, pool_size=15)
    logger.info("read_replica_configured")
else:
    _read_engine = engine

read_only_session_factory = async_sessionmaker(
    _read_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def get_readonly_db() -> AsyncGenerator[AsyncSession, None]:
    """Read-only session — routed to replica if DATABASE_URL_READ_REPLICA is set.

    Use for timeline, compare and summary endpoints that never write.
    """
    async with read_only_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
