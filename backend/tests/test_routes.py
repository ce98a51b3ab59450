"""
DeepWiki Backend — API Endpoint Tests
=======================================

What:  HTTP contract of the wiki, page and health routes.
How:   WikiService is replaced through dependency_overrides; the tests check
       status codes, argument plumbing and error mapping only.
"""

import uuid
from datetime import datetime, timezone

import pytest

from deepwiki.exceptions import (
    ConflictError,
    ConnectionClosedError,
    DatabaseError,
    NotFoundError,
    RetryLimitExceeded,
    StorageError,
    ValidationError,
)
from deepwiki.schemas.wiki import (
    BulkDeleteResponse,
    PageResponse,
    PrivacyResponse,
    UploadedFile,
    VersionItem,
    VersionListResponse,
    WikiCreateResponse,
    WikiDetail,
    WikiListResponse,
    WikiStats,
    WikiSummary,
)

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def _summary(slug="docs"):
    return WikiSummary(
        id=uuid.uuid4(),
        title=slug.title(),
        slug=slug,
        description=f"Wiki: {slug.title()}",
        is_public=False,
        created_at=NOW,
        updated_at=NOW,
        file_count=1,
    )


def _page(filename="index.md", version_number=1):
    return PageResponse(
        id=uuid.uuid4(),
        filename=filename,
        original_name=filename,
        size=7,
        uploaded_at=NOW,
        content="# Docs\n",
        version_number=version_number,
    )


class TestWikiRoutes:
    @pytest.mark.asyncio
    async def test_upload(self, test_client, mock_wiki_service):
        file_id = uuid.uuid4()
        mock_wiki_service.create_wiki.return_value = WikiCreateResponse(
            id=uuid.uuid4(),
            title="Docs",
            slug="docs",
            description="Wiki: Docs",
            files=[UploadedFile(id=file_id, filename="index.md", size=7)],
        )

        response = await test_client.post(
            "/api/wiki/upload",
            files=[
                ("files", ("index.md", b"# Docs\n", "text/markdown")),
                ("files", ("setup.md", b"# Setup\n", "text/markdown")),
            ],
            headers={"X-User-Id": "user-1"},
        )

        assert response.status_code == 201
        assert response.json()["slug"] == "docs"
        uploads = mock_wiki_service.create_wiki.call_args.args[0]
        assert uploads == [("index.md", b"# Docs\n"), ("setup.md", b"# Setup\n")]
        assert mock_wiki_service.create_wiki.call_args.kwargs["author"] == "user-1"

    @pytest.mark.asyncio
    async def test_upload_validation_error(self, test_client, mock_wiki_service):
        mock_wiki_service.create_wiki.side_effect = ValidationError(
            message="index.md file is required", field="files"
        )

        response = await test_client.post(
            "/api/wiki/upload",
            files=[("files", ("setup.md", b"# Setup\n", "text/markdown"))],
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation_error"
        assert body["message"] == "index.md file is required"
        assert body["details"] == {"field": "files"}

    @pytest.mark.asyncio
    async def test_list(self, test_client, mock_wiki_service):
        mock_wiki_service.list_wikis.return_value = WikiListResponse(
            wikis=[_summary()], total_count=1, next_cursor=None, has_more=False
        )

        response = await test_client.get("/api/wiki/list?limit=5&public_only=true")

        assert response.status_code == 200
        assert response.headers["X-Total-Count"] == "1"
        assert response.json()["wikis"][0]["slug"] == "docs"
        mock_wiki_service.list_wikis.assert_awaited_once_with(
            limit=5, cursor=None, public_only=True
        )

    @pytest.mark.asyncio
    async def test_list_limit_bounds(self, test_client):
        response = await test_client.get("/api/wiki/list?limit=0")
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_search(self, test_client, mock_wiki_service):
        mock_wiki_service.search_wikis.return_value = [_summary("kubernetes")]

        response = await test_client.get("/api/wiki/search?q=kube")

        assert response.status_code == 200
        assert [w["slug"] for w in response.json()["wikis"]] == ["kubernetes"]
        mock_wiki_service.search_wikis.assert_awaited_once_with("kube", limit=20)

    @pytest.mark.asyncio
    async def test_get_wiki(self, test_client, mock_wiki_service):
        mock_wiki_service.get_wiki.return_value = WikiDetail(
            id=uuid.uuid4(),
            title="Docs",
            slug="docs",
            is_public=True,
            created_at=NOW,
            updated_at=NOW,
            files=[],
        )

        response = await test_client.get("/api/wiki/docs")

        assert response.status_code == 200
        assert response.json()["is_public"] is True

    @pytest.mark.asyncio
    async def test_get_wiki_not_found(self, test_client, mock_wiki_service):
        mock_wiki_service.get_wiki.side_effect = NotFoundError(resource="wiki", resource_id="nope")

        response = await test_client.get("/api/wiki/nope")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_delete_wiki(self, test_client, mock_wiki_service):
        response = await test_client.delete("/api/wiki/docs")

        assert response.status_code == 204
        mock_wiki_service.delete_wiki.assert_awaited_once_with("docs")

    @pytest.mark.asyncio
    async def test_set_privacy(self, test_client, mock_wiki_service):
        mock_wiki_service.set_privacy.return_value = PrivacyResponse(slug="docs", is_public=True)

        response = await test_client.put("/api/wiki/docs/privacy", json={"is_public": True})

        assert response.status_code == 200
        mock_wiki_service.set_privacy.assert_awaited_once_with("docs", True)

    @pytest.mark.asyncio
    async def test_search_suggestions(self, test_client, mock_wiki_service):
        mock_wiki_service.search_suggestions.return_value = ["kubectl", "kubernetes"]

        response = await test_client.get("/api/wiki/search/suggestions?q=kub&limit=5")

        assert response.status_code == 200
        assert response.json() == {"suggestions": ["kubectl", "kubernetes"]}
        assert response.headers["Cache-Control"] == "private, max-age=30"
        mock_wiki_service.search_suggestions.assert_awaited_once_with("kub", limit=5)

    @pytest.mark.asyncio
    async def test_stats(self, test_client, mock_wiki_service):
        mock_wiki_service.get_stats.return_value = WikiStats(
            total_wikis=4, recent_uploads=1, total_documents=9
        )

        response = await test_client.get("/api/wiki/stats")

        assert response.status_code == 200
        assert response.json() == {"total_wikis": 4, "recent_uploads": 1, "total_documents": 9}
        mock_wiki_service.get_wiki.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bulk_delete(self, test_client, mock_wiki_service):
        ids = [uuid.uuid4(), uuid.uuid4()]
        mock_wiki_service.bulk_delete_wikis.return_value = BulkDeleteResponse(
            deleted_count=2,
            deleted_slugs=["alpha", "beta"],
            storage_files_deleted=4,
        )

        response = await test_client.request(
            "DELETE", "/api/wiki/bulk-delete", json={"wiki_ids": [str(i) for i in ids]}
        )

        assert response.status_code == 200
        assert response.json()["deleted_slugs"] == ["alpha", "beta"]
        assert response.json()["storage_failures"] == []
        mock_wiki_service.bulk_delete_wikis.assert_awaited_once_with(ids)
        mock_wiki_service.delete_wiki.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bulk_delete_requires_ids(self, test_client):
        response = await test_client.request(
            "DELETE", "/api/wiki/bulk-delete", json={"wiki_ids": []}
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_bulk_delete_none_found(self, test_client, mock_wiki_service):
        mock_wiki_service.bulk_delete_wikis.side_effect = NotFoundError(resource="wiki")

        response = await test_client.request(
            "DELETE", "/api/wiki/bulk-delete", json={"wiki_ids": [str(uuid.uuid4())]}
        )

        assert response.status_code == 404


class TestPageRoutes:
    @pytest.mark.asyncio
    async def test_add_page(self, test_client, mock_wiki_service):
        mock_wiki_service.add_page.return_value = _page("faq.md")

        response = await test_client.post(
            "/api/wiki/docs/pages",
            json={"title": "FAQ", "content": "# FAQ"},
            headers={"X-User-Id": "user-2"},
        )

        assert response.status_code == 201
        mock_wiki_service.add_page.assert_awaited_once_with(
            "docs", title="FAQ", content="# FAQ", filename=None, author="user-2"
        )

    @pytest.mark.asyncio
    async def test_add_page_conflict(self, test_client, mock_wiki_service):
        mock_wiki_service.add_page.side_effect = ConflictError(message="Page 'faq.md' already exists")

        response = await test_client.post(
            "/api/wiki/docs/pages", json={"title": "FAQ", "content": "# FAQ"}
        )

        assert response.status_code == 409
        assert response.json()["error"] == "conflict"

    @pytest.mark.asyncio
    async def test_get_page(self, test_client, mock_wiki_service):
        mock_wiki_service.get_page.return_value = _page()

        response = await test_client.get("/api/wiki/docs/pages/index.md")

        assert response.status_code == 200
        assert response.json()["content"] == "# Docs\n"
        mock_wiki_service.get_page.assert_awaited_once_with("docs", "index.md")

    @pytest.mark.asyncio
    async def test_update_page(self, test_client, mock_wiki_service):
        mock_wiki_service.update_page.return_value = _page(version_number=2)

        response = await test_client.put(
            "/api/wiki/docs/pages/index.md",
            json={"content": "# Docs v2", "change_description": "typo"},
        )

        assert response.status_code == 200
        assert response.json()["version_number"] == 2
        mock_wiki_service.update_page.assert_awaited_once_with(
            "docs", "index.md", content="# Docs v2", author=None, change_description="typo"
        )

    @pytest.mark.asyncio
    async def test_delete_pages(self, test_client, mock_wiki_service):
        mock_wiki_service.delete_pages.return_value = ["setup.md"]

        response = await test_client.request(
            "DELETE", "/api/wiki/docs/pages", json={"filenames": ["setup.md"]}
        )

        assert response.status_code == 200
        assert response.json() == {"deleted": ["setup.md"]}

    @pytest.mark.asyncio
    async def test_delete_pages_requires_names(self, test_client):
        response = await test_client.request(
            "DELETE", "/api/wiki/docs/pages", json={"filenames": []}
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_list_versions(self, test_client, mock_wiki_service):
        mock_wiki_service.list_versions.return_value = VersionListResponse(
            filename="index.md",
            versions=[
                VersionItem(
                    id=uuid.uuid4(),
                    version_number=1,
                    change_type="CREATE",
                    content_size=7,
                    checksum="abc",
                    created_at=NOW,
                )
            ],
        )

        response = await test_client.get("/api/wiki/docs/pages/index.md/versions")

        assert response.status_code == 200
        assert response.json()["versions"][0]["change_type"] == "CREATE"

    @pytest.mark.asyncio
    async def test_rollback(self, test_client, mock_wiki_service):
        mock_wiki_service.rollback_page.return_value = _page(version_number=3)

        response = await test_client.post(
            "/api/wiki/docs/pages/index.md/versions/rollback",
            json={"version_number": 1},
        )

        assert response.status_code == 200
        mock_wiki_service.rollback_page.assert_awaited_once_with(
            "docs", "index.md", 1, author=None
        )

    @pytest.mark.asyncio
    async def test_rollback_rejects_zero(self, test_client):
        response = await test_client.post(
            "/api/wiki/docs/pages/index.md/versions/rollback",
            json={"version_number": 0},
        )
        assert response.status_code == 422


class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_retry_limit_is_503(self, test_client, mock_wiki_service):
        mock_wiki_service.get_wiki.side_effect = RetryLimitExceeded(attempts=4)

        response = await test_client.get("/api/wiki/docs")

        assert response.status_code == 503
        assert response.json()["message"] == "Database retry limit exceeded. Please try again later."
        assert response.headers["Retry-After"] == "1"

    @pytest.mark.asyncio
    async def test_connection_closed_is_503(self, test_client, mock_wiki_service):
        mock_wiki_service.get_wiki.side_effect = ConnectionClosedError(code="08006")

        response = await test_client.get("/api/wiki/docs")

        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_database_error_is_generic_500(self, test_client, mock_wiki_service):
        mock_wiki_service.get_wiki.side_effect = DatabaseError(
            message="Could not retrieve the wiki", context={"sql": "SELECT secret"}
        )

        response = await test_client.get("/api/wiki/docs")

        assert response.status_code == 500
        assert "secret" not in response.text

    @pytest.mark.asyncio
    async def test_storage_error_is_500(self, test_client, mock_wiki_service):
        mock_wiki_service.get_page.side_effect = StorageError(context={"bucket": "private"})

        response = await test_client.get("/api/wiki/docs/pages/index.md")

        assert response.status_code == 500
        assert "private" not in response.text

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, test_client, mock_wiki_service):
        mock_wiki_service.get_wiki.side_effect = NotFoundError(resource="wiki")

        response = await test_client.get("/api/wiki/docs", headers={"X-Request-ID": "abc123"})

        assert response.headers["X-Request-ID"] == "abc123"
        assert response.json()["request_id"] == "abc123"


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, test_client):
        response = await test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["storage"] == "available"

    @pytest.mark.asyncio
    async def test_database_down(self, test_app, test_client):
        test_app.state.database.ping.return_value = False

        response = await test_client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    @pytest.mark.asyncio
    async def test_storage_down_is_degraded(self, test_app, test_client):
        test_app.state.storage.health_check.return_value = False

        response = await test_client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"


class TestLifespan:
    @pytest.mark.asyncio
    async def test_startup_and_shutdown(self, test_settings, monkeypatch):
        from deepwiki.main import create_app, lifespan

        monkeypatch.setattr("deepwiki.main.setup_logging", lambda level: None)
        app = create_app(test_settings)

        async with lifespan(app):
            database = app.state.database
            assert database.engine is not None
            assert database.retry_options.max_retries == test_settings.db_max_retries
            assert app.state.wiki_service.storage is app.state.storage

        assert database.engine is None

    @pytest.mark.asyncio
    async def test_inverted_backoff_aborts_startup(self, test_settings, monkeypatch):
        from deepwiki.main import create_app, lifespan

        monkeypatch.setattr("deepwiki.main.setup_logging", lambda level: None)
        config = test_settings.model_copy(update={"db_backoff_min_ms": 50, "db_backoff_max_ms": 10})
        app = create_app(config)

        with pytest.raises(ValueError):
            async with lifespan(app):
                pass
