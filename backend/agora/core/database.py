"""
Transactional store.

Async SQLAlchemy engine, declarative base and the ``Store`` that runs every
forum operation as one short transaction with bounded retries.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from asyncpg.exceptions import TransactionRollbackError
from loguru import logger
from sqlalchemy import event
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from agora.core.config import settings
from agora.core.errors import TransientStoreError

T = TypeVar("T")

RETRYABLE_ERRORS = (DBAPIError, PoolTimeoutError, asyncio.TimeoutError)

# serialization_failure, deadlock_detected
ROLLBACK_SQLSTATES = frozenset({"40001", "40P01"})


class Base(DeclarativeBase):
    """Declarative base for all models."""


def is_transient(exc: BaseException) -> bool:
    """Whether a store error is worth retrying (timeout, deadlock, lost connection)."""
    if isinstance(exc, (OperationalError, PoolTimeoutError, asyncio.TimeoutError)):
        return True
    if not isinstance(exc, DBAPIError):
        return False
    if exc.connection_invalidated:
        return True
    return _sqlstate(exc.orig) in ROLLBACK_SQLSTATES


def _sqlstate(error: BaseException | None) -> str | None:
    # The asyncpg dialect re-raises driver errors with the original as __cause__
    while error is not None:
        if isinstance(error, TransactionRollbackError):
            return error.sqlstate
        code = getattr(error, "sqlstate", None) or getattr(error, "pgcode", None)
        if code:
            return code
        error = error.__cause__
    return None


def _serialize_sqlite_transactions(engine: AsyncEngine) -> None:
    """
    Make SQLite transactions behave like row-locked PostgreSQL ones.

    pysqlite defers BEGIN until the first write, so a check followed by a
    write would not share a transaction. Taking the write lock up front with
    BEGIN IMMEDIATE serializes whole units of work instead.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine(url: str | None = None) -> AsyncEngine:
    """Create the async engine for the configured database."""
    url = url or settings.database_url

    if url.startswith("sqlite"):
        engine = create_async_engine(
            url,
            echo=settings.database_echo,
            poolclass=NullPool,
            connect_args={"timeout": settings.sqlite_busy_timeout},
        )
        _serialize_sqlite_transactions(engine)
        return engine

    return create_async_engine(
        url,
        echo=settings.database_echo,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_pre_ping=True,
    )


class Store:
    """
    Runs units of work against the database, one transaction each.

    A unit of work is an async callable taking the session. Transient failures
    raised while the work executes are retried with exponential backoff, since
    the rolled back transaction applied nothing. A transient failure during
    commit is surfaced at once with ``commit_uncertain`` set and never retried,
    so counter updates cannot be applied twice.

    Usage:
        store = Store(create_engine())
        thread = await store.run(lambda session: ..., label="create_thread")
    """

    def __init__(
        self,
        engine: AsyncEngine,
        retry_attempts: int | None = None,
        retry_base_delay: float | None = None,
    ) -> None:
        self.engine = engine
        self.session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        self.retry_attempts = max(
            1, retry_attempts if retry_attempts is not None else settings.store_retry_attempts
        )
        self.retry_base_delay = (
            retry_base_delay
            if retry_base_delay is not None
            else settings.store_retry_base_delay
        )

    async def run(
        self,
        work: Callable[[AsyncSession], Awaitable[T]],
        label: str = "unit of work",
    ) -> T:
        """Execute ``work`` in a single transaction and commit it."""
        attempt = 1
        while True:
            async with self.session_factory() as session:
                try:
                    result = await work(session)
                except RETRYABLE_ERRORS as e:
                    if not is_transient(e):
                        raise
                    if attempt >= self.retry_attempts:
                        logger.error(f"{label} failed after {attempt} attempts: {e}")
                        raise TransientStoreError(
                            f"{label} failed after {attempt} attempts"
                        ) from e
                    delay = self.retry_base_delay * 2 ** (attempt - 1)
                    logger.warning(
                        f"{label} hit transient store error (attempt {attempt}), "
                        f"retrying in {delay:.2f}s: {e}"
                    )
                else:
                    try:
                        await session.commit()
                    except RETRYABLE_ERRORS as e:
                        if not is_transient(e):
                            raise
                        logger.error(f"{label} commit outcome unknown: {e}")
                        raise TransientStoreError(
                            f"{label} commit outcome unknown", commit_uncertain=True
                        ) from e
                    return result

            await asyncio.sleep(delay)
            attempt += 1

    async def create_all(self) -> None:
        """Create all tables."""
        import agora.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()


_store: Store | None = None


def get_store() -> Store:
    """Get or create the store singleton (FastAPI dependency)."""
    global _store
    if _store is None:
        _store = Store(create_engine())
    return _store


async def init_db() -> None:
    """Create tables on startup."""
    await get_store().create_all()


async def close_db() -> None:
    """Dispose the engine on shutdown."""
    global _store
    if _store is not None:
        await _store.dispose()
        _store = None
