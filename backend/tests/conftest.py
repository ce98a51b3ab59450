"""
DeepWiki Backend — Test Configuration (conftest.py)
=====================================================

Fixture Hierarchy:
    Function-scoped:
    ├── sleep_recorder:   Injectable sleep that records requested delays
    ├── test_settings:    Settings pointed at SQLite and a temp storage dir
    ├── database:         Real Database client on a per-test SQLite file
    ├── storage:          LocalStorage under tmp_path
    ├── wiki_service:     WikiService wired to the two above
    ├── mock_wiki_service: AsyncMock standing in for WikiService in route tests
    ├── test_app:         App from create_app() with mocked state
    └── test_client:      HTTPX AsyncClient bound to test_app
"""

import os
import tempfile
from typing import List
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Must be set before deepwiki.config is imported anywhere
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["STORAGE_BACKEND"] = "local"
os.environ["STORAGE_ROOT"] = tempfile.mkdtemp(prefix="deepwiki_test_")
os.environ["LOG_LEVEL"] = "WARNING"

from deepwiki.config import Settings  # noqa: E402
from deepwiki.database import Base, Database  # noqa: E402
from deepwiki.retry import RetryOptions  # noqa: E402
from deepwiki.services.storage_service import LocalStorage  # noqa: E402
from deepwiki.services.wiki_service import WikiService, get_wiki_service  # noqa: E402
import deepwiki.models.wiki  # noqa: E402,F401


class SleepRecorder:
    """Awaitable stand-in for asyncio.sleep; remembers every delay."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'deepwiki.db'}",
        storage_backend="local",
        storage_root=str(tmp_path / "storage"),
        version_retention=3,
        max_upload_size=1_048_576,
        log_level="WARNING",
    )


@pytest_asyncio.fixture
async def database(test_settings, sleep_recorder):
    """A real Database client with the schema created on a throwaway SQLite file."""
    db = Database(
        test_settings.database_url,
        retry_options=RetryOptions(max_retries=2, backoff=False),
        sleep=sleep_recorder,
    )
    db.init()
    async with db.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield db
    await db.dispose()


@pytest.fixture
def storage(test_settings):
    return LocalStorage(test_settings.storage_root)


@pytest.fixture
def wiki_service(database, storage, test_settings):
    return WikiService(database, storage, test_settings)


@pytest.fixture
def sample_files():
    """A minimal valid upload: index.md plus one extra page."""
    return [
        ("index.md", b"# Getting Started\n\nWelcome.\n\n## Install\n\n### Linux\n"),
        ("setup.md", b"# Setup\n\nRun the installer.\n"),
    ]


@pytest.fixture
def mock_wiki_service():
    service = MagicMock(spec=WikiService)
    for name in (
        "create_wiki",
        "list_wikis",
        "search_wikis",
        "search_suggestions",
        "get_stats",
        "bulk_delete_wikis",
        "get_wiki",
        "delete_wiki",
        "set_privacy",
        "get_page",
        "add_page",
        "update_page",
        "delete_pages",
        "list_versions",
        "get_version",
        "rollback_page",
    ):
        setattr(service, name, AsyncMock())
    return service


@pytest.fixture
def test_app(test_settings, mock_wiki_service):
    """
    A fresh app with mocked collaborators.

    ASGITransport does not run the lifespan, so the state the lifespan would
    set up is filled with mocks here.
    """
    from deepwiki.main import create_app

    app = create_app(test_settings)
    app.dependency_overrides[get_wiki_service] = lambda: mock_wiki_service
    app.state.database = MagicMock()
    app.state.database.ping = AsyncMock(return_value=True)
    app.state.storage = MagicMock()
    app.state.storage.health_check = AsyncMock(return_value=True)
    return app


@pytest_asyncio.fixture
async def test_client(test_app):
    """HTTPX client bound to test_app."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
