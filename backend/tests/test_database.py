"""
DeepWiki Backend — Database Client Tests
==========================================

What:  Tests for Database.run(), disconnect translation and ping().
How:   A real async engine on a throwaway SQLite file (aiosqlite). Dropped
       connections are simulated by raising SQLAlchemy's DBAPIError with
       connection_invalidated=True from inside the unit of work.
"""

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError

from deepwiki.config import Settings
from deepwiki.database import Database, create_database
from deepwiki.exceptions import RetryLimitExceeded
from deepwiki.models.wiki import Wiki
from deepwiki.retry import RetryOptions


def _dropped_connection() -> DBAPIError:
    return DBAPIError(
        "SELECT 1",
        None,
        ConnectionResetError("server closed the connection unexpectedly"),
        connection_invalidated=True,
    )


async def _count_wikis(session) -> int:
    return (await session.execute(select(func.count(Wiki.id)))).scalar()


class TestDatabaseRun:
    @pytest.mark.asyncio
    async def test_commits_unit_of_work(self, database):
        async def _insert(session):
            session.add(Wiki(title="Docs", slug="docs"))

        await database.run(_insert)

        assert await database.run(_count_wikis) == 1

    @pytest.mark.asyncio
    async def test_passes_arguments_to_work(self, database):
        async def _insert(session, title, slug):
            session.add(Wiki(title=title, slug=slug))
            return slug

        assert await database.run(_insert, "Guide", slug="guide") == "guide"

    @pytest.mark.asyncio
    async def test_rolls_back_on_error(self, database):
        async def _insert_then_fail(session):
            session.add(Wiki(title="Docs", slug="docs"))
            await session.flush()
            raise ValueError("business rule broken")

        with pytest.raises(ValueError):
            await database.run(_insert_then_fail)

        assert await database.run(_count_wikis) == 0

    @pytest.mark.asyncio
    async def test_retries_dropped_connection(self, database):
        calls = []

        async def _flaky(session):
            calls.append(1)
            if len(calls) == 1:
                raise _dropped_connection()
            session.add(Wiki(title="Docs", slug="docs"))
            return "done"

        assert await database.run(_flaky) == "done"
        assert len(calls) == 2
        assert await database.run(_count_wikis) == 1

    @pytest.mark.asyncio
    async def test_retry_limit_exceeded(self, database, sleep_recorder):
        calls = []

        async def _always_dropped(session):
            calls.append(1)
            session.add(Wiki(title="Docs", slug="docs"))
            raise _dropped_connection()

        with pytest.raises(RetryLimitExceeded) as exc_info:
            await database.run(_always_dropped)

        # max_retries=2 in the fixture
        assert len(calls) == 3
        assert exc_info.value.attempts == 3
        assert sleep_recorder.delays == []
        assert await database.run(_count_wikis) == 0

    @pytest.mark.asyncio
    async def test_other_driver_errors_not_retried(self, database):
        calls = []

        async def _bad_sql(session):
            calls.append(1)
            raise DBAPIError("SELEC 1", None, Exception("syntax error"))

        with pytest.raises(DBAPIError):
            await database.run(_bad_sql)

        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_run_before_init_raises(self):
        db = Database("sqlite+aiosqlite://")

        async def _noop(session):
            return None

        with pytest.raises(RuntimeError, match="init"):
            await db.run(_noop)


class TestDatabaseLifecycle:
    @pytest.mark.asyncio
    async def test_ping_connected(self, database):
        assert await database.ping() is True

    @pytest.mark.asyncio
    async def test_ping_after_dispose(self, database):
        await database.dispose()
        assert await database.ping() is False

    def test_init_is_idempotent(self, tmp_path):
        db = Database(f"sqlite+aiosqlite:///{tmp_path / 'x.db'}")
        db.init()
        engine = db.engine
        db.init()
        assert db.engine is engine

    def test_retry_options_exposed(self):
        opts = RetryOptions(max_retries=5)
        db = Database("sqlite+aiosqlite://", retry_options=opts)
        assert db.retry_options is opts


class TestCreateDatabase:
    def test_sqlite_skips_pool_options(self, test_settings):
        db = create_database(test_settings)
        assert db.engine_options == {}
        assert db.engine is None

    def test_server_database_gets_pool_options(self):
        config = Settings(
            database_url="postgresql+asyncpg://u:p@localhost/deepwiki",
            db_pool_size=7,
            db_max_overflow=3,
        )
        db = create_database(config)
        assert db.engine_options["pool_size"] == 7
        assert db.engine_options["max_overflow"] == 3
        assert db.engine_options["pool_pre_ping"] is True

    def test_retry_settings_flow_into_client(self):
        config = Settings(
            database_url="sqlite+aiosqlite://",
            db_max_retries=6,
            db_backoff_enabled=False,
            db_backoff_min_ms=1,
            db_backoff_max_ms=2,
        )
        opts = create_database(config).retry_options
        assert opts.max_retries == 6
        assert opts.backoff is False
        assert (opts.backoff_min, opts.backoff_max) == (1, 2)

    def test_inverted_backoff_bounds_fail(self):
        config = Settings(db_backoff_min_ms=100, db_backoff_max_ms=10)
        with pytest.raises(ValueError):
            create_database(config)
