import asyncio
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any, TypeVar

from sqlalchemy import event
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from lending.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# PostgreSQL SQLSTATEs that mean "try the whole transaction again".
_RETRYABLE_SQLSTATES = {"40001", "40P01"}  # serialization_failure, deadlock_detected


def _enable_sqlite_foreign_keys(dbapi_connection: Any, _record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(url: str) -> AsyncEngine:
    engine = create_async_engine(url, echo=settings.SQL_ECHO, pool_pre_ping=True)
    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    return engine


engine = build_engine(settings.DATABASE_URL)
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


async def init_models(bind: AsyncEngine | None = None) -> None:
    """Create all tables. Development and tests only; production uses Alembic."""
    from lending import models  # noqa: F401  (registers mappers on Base.metadata)
    from lending.db.base import Base

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def is_transient(exc: DBAPIError) -> bool:
    """True when *exc* is a lock/serialization conflict rather than a real failure."""
    orig = exc.orig
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate in _RETRYABLE_SQLSTATES:
        return True
    # SQLite reports writer contention as "database is locked" / "database table is locked"
    return isinstance(exc, OperationalError) and "locked" in str(orig).lower()


async def run_in_transaction(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    retries: int | None = None,
) -> T:
    """
    Run *operation* and commit, as a single all-or-nothing unit.

    Any exception rolls the session back before propagating, so a failed
    call leaves the store exactly as it was.  Transient store conflicts are
    retried from the start of *operation*; the caller only ever sees the
    final success or one terminal error.
    """
    max_retries = settings.TX_MAX_RETRIES if retries is None else retries
    attempt = 0
    while True:
        try:
            result = await operation()
            await db.commit()
            return result
        except DBAPIError as exc:
            await db.rollback()
            if not is_transient(exc) or attempt >= max_retries:
                raise
            attempt += 1
            logger.warning(
                "Transient store conflict, retrying transaction (%d/%d): %s",
                attempt,
                max_retries,
                exc.orig,
            )
            await asyncio.sleep(settings.TX_RETRY_BACKOFF_SECONDS * attempt)
        except BaseException:
            await db.rollback()
            raise
