"""
DeepWiki Backend — Database Client
====================================

What:  Async SQLAlchemy engine, session factory and unit-of-work gateway.
How:   `Database.run(work)` opens a session, awaits `work(session)`, commits,
       and returns the result. The whole unit runs under QueryRetrier, so a
       connection dropped by the server re-runs the unit on a fresh session.
Who:   Built once by the application lifespan and stored on `app.state`;
       services receive it explicitly instead of importing a global engine.
When:  `init()` at startup, `dispose()` at shutdown.

Why retry whole units (not single statements):
    The ORM batches writes into a flush at commit time. After a dropped
    connection the session must be rolled back, which discards its pending
    objects. Re-running the unit from the start is the only retry that
    cannot silently lose writes.

Connection Pooling Strategy:
    pool_size=20, max_overflow=10 → at most 30 connections per process
    pool_pre_ping → catches most stale connections before use; the retrier
                    covers the ones that die between ping and query
    pool_recycle=3600 → no connection outlives an hour
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from deepwiki.exceptions import ConnectionClosedError
from deepwiki.retry import QueryRetrier, RetryOptions, SleepFunc

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Base(DeclarativeBase):
    """Base class for all ORM models; its metadata drives Alembic."""
    pass


class Database:
    """
    Explicitly owned data-access client.

    Args:
        url:            SQLAlchemy async URL.
        retry_options:  Closed-connection retry policy (validated on construction).
        sleep:          Backoff sleep, injectable for tests.
        echo:           Log SQL statements.
        engine_options: Extra create_async_engine kwargs (pool sizing).
    """

    def __init__(
        self,
        url: str,
        *,
        retry_options: Optional[RetryOptions] = None,
        sleep: SleepFunc = asyncio.sleep,
        echo: bool = False,
        **engine_options: Any,
    ):
        self.url = url
        self.echo = echo
        self.engine_options = engine_options
        self.retrier = QueryRetrier(retry_options, sleep=sleep)
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def retry_options(self) -> RetryOptions:
        return self.retrier.options

    def init(self) -> None:
        """Create the engine and session factory. Safe to call twice."""
        if self.engine is not None:
            return
        self.engine = create_async_engine(self.url, echo=self.echo, **self.engine_options)
        # expire_on_commit=False: results returned from run() stay readable
        # after the session that loaded them is closed
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        logger.info(
            "Database client initialized (max_retries=%d, backoff=%s %d-%dms)",
            self.retry_options.max_retries,
            self.retry_options.backoff,
            self.retry_options.backoff_min,
            self.retry_options.backoff_max,
        )

    async def dispose(self) -> None:
        """Close every pooled connection. Called from lifespan shutdown."""
        if self.engine is None:
            return
        await self.engine.dispose()
        self.engine = None
        self.session_factory = None
        logger.info("Database client disposed")

    async def run(
        self,
        work: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """
        Execute one unit of work in its own transaction, with retries.

        Example:
            async def _count(session):
                return (await session.execute(select(func.count(Wiki.id)))).scalar()

            total = await database.run(_count)

        Raises:
            RetryLimitExceeded: The server kept closing the connection.
            Exception: Whatever `work` raises, unchanged.
        """
        return await self.retrier.call(self._run_once, work, *args, **kwargs)

    async def _run_once(
        self,
        work: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        if self.session_factory is None:
            raise RuntimeError("Database.init() must be called before running queries")

        async with self.session_factory() as session:
            try:
                result = await work(session, *args, **kwargs)
                await session.commit()
                return result
            except DBAPIError as exc:
                await session.rollback()
                if exc.connection_invalidated:
                    raise ConnectionClosedError(
                        code=self.retry_options.error_code,
                        context={"driver_error": type(exc.orig).__name__},
                    ) from exc
                raise
            except Exception:
                await session.rollback()
                raise

    async def ping(self) -> bool:
        """Run SELECT 1 through the normal gateway. Never raises."""
        async def _select_one(session: AsyncSession) -> Any:
            return (await session.execute(text("SELECT 1"))).scalar()

        try:
            return await self.run(_select_one) == 1
        except Exception as e:
            logger.warning("Database ping failed: %s", str(e))
            return False


def create_database(settings: Any, sleep: SleepFunc = asyncio.sleep) -> Database:
    """
    Build the Database client from application settings.

    Pool sizing only applies to server databases; SQLite (used in tests)
    rejects those arguments.
    """
    engine_options: dict = {}
    if not settings.database_url.startswith("sqlite"):
        engine_options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            pool_recycle=3600,
        )
    return Database(
        settings.database_url,
        retry_options=settings.retry_options(),
        sleep=sleep,
        echo=settings.log_level == "DEBUG",
        **engine_options,
    )


def get_database(request: Request) -> Database:
    """FastAPI dependency: the client created by the lifespan handler."""
    return request.app.state.database
