"""
DeepWiki Backend — Wiki Service (Business Logic Orchestrator)
===============================================================

What:  Wiki, page and version workflows: upload, browse, search, edit,
       version history and rollback.
How:   Every database interaction is a unit of work handed to
       `Database.run()`, which commits it as one transaction and re-runs it
       if the server drops the connection. Page bodies are mirrored into the
       object store under "{slug}/{filename}" and "{slug}/{filename}.v{n}".
Who:   Called by the wiki and page route handlers.

Upload Flow (POST /api/wiki/upload):
    ┌──────────┐    ┌────────────┐    ┌───────────────────┐    ┌─────────────┐
    │ Validate │───▶│   Title    │───▶│ Slug + Insert (DB)│───▶│   Storage   │
    │  files   │    │            │    │  one unit of work │    │ (put pages) │
    └──────────┘    └────────────┘    └───────────────────┘    └─────────────┘

    The unique slug constraint decides which of two concurrent uploads owns
    a slug; the loser gets ConflictError before it writes any object. If
    storing fails, only the keys this upload wrote and its rows are removed.

Versioning:
    Each page keeps its newest `version_retention` versions. Updates and
    rollbacks append version n + 1 and prune the rest, in the same unit of
    work, then delete the pruned objects from storage.

Error Handling Strategy:
    DeepWikiError subclasses (NotFoundError, RetryLimitExceeded, ...)
    propagate unchanged. IntegrityError becomes ConflictError; any other
    SQLAlchemyError becomes a generic DatabaseError.
"""

import logging
import os
import random
import string
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar
from uuid import UUID

from fastapi import Request
from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from deepwiki.database import Database
from deepwiki.exceptions import (
    ConflictError,
    DatabaseError,
    DeepWikiError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from deepwiki.models.wiki import Wiki, WikiFile, WikiVersion
from deepwiki.schemas.wiki import (
    BulkDeleteResponse,
    PageResponse,
    PrivacyResponse,
    UploadedFile,
    VersionItem,
    VersionListResponse,
    VersionResponse,
    WikiCreateResponse,
    WikiDetail,
    WikiFileItem,
    WikiListResponse,
    WikiStats,
    WikiSummary,
)
from deepwiki.services import markdown_service as md
from deepwiki.services.storage_base import StorageBackend, page_key, version_key

logger = logging.getLogger(__name__)

T = TypeVar("T")

INDEX_FILE = "index.md"
MARKDOWN_SUFFIX = ".md"

# Unique slug generation: base slug first, then this many suffixed tries
SLUG_ATTEMPTS = 10
SLUG_SUFFIX_LENGTH = 6

MIN_SEARCH_LENGTH = 2
# Pages scanned per suggestion request
SUGGESTION_SCAN_LIMIT = 50
RECENT_UPLOAD_DAYS = 7

CHANGE_CREATE = "CREATE"
CHANGE_UPDATE = "UPDATE"
CHANGE_ROLLBACK = "ROLLBACK"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _random_suffix() -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "".join(random.choices(alphabet, k=SLUG_SUFFIX_LENGTH))


class WikiService:
    """
    Business logic layer for wikis and their pages.

    Args:
        database: Retrying unit-of-work client.
        storage:  Object store mirroring page bodies.
        settings: Application settings (upload limit, version retention).
    """

    def __init__(self, database: Database, storage: StorageBackend, settings: Any):
        self.database = database
        self.storage = storage
        self.settings = settings

    # ── Plumbing ──────────────────────────────────────────────────────────

    async def _run(
        self,
        work: Callable[[AsyncSession], Awaitable[T]],
        action: str,
        **context: Any,
    ) -> T:
        try:
            return await self.database.run(work)
        except DeepWikiError:
            raise
        except IntegrityError as e:
            logger.warning("Integrity error while trying to %s: %s", action, str(e))
            raise ConflictError(
                message="The resource already exists",
                context={"action": action, **context},
            )
        except SQLAlchemyError as e:
            logger.error("Database error while trying to %s: %s", action, str(e), exc_info=True)
            raise DatabaseError(
                message=f"Could not {action}. Please try again.",
                context={"error_type": type(e).__name__, **context},
            )

    @staticmethod
    async def _load_wiki(session: AsyncSession, slug: str) -> Wiki:
        result = await session.execute(select(Wiki).where(Wiki.slug == slug))
        wiki = result.scalar_one_or_none()
        if wiki is None:
            raise NotFoundError(resource="wiki", resource_id=slug)
        return wiki

    @staticmethod
    async def _load_file(session: AsyncSession, wiki: Wiki, filename: str) -> WikiFile:
        result = await session.execute(
            select(WikiFile).where(WikiFile.wiki_id == wiki.id, WikiFile.filename == filename)
        )
        wiki_file = result.scalar_one_or_none()
        if wiki_file is None:
            raise NotFoundError(resource="file", resource_id=filename)
        return wiki_file

    @staticmethod
    async def _latest_version(session: AsyncSession, file_id: UUID) -> Optional[WikiVersion]:
        result = await session.execute(
            select(WikiVersion)
            .where(WikiVersion.file_id == file_id)
            .order_by(WikiVersion.version_number.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _prune_versions(self, session: AsyncSession, file_id: UUID) -> List[int]:
        """Delete all but the newest `version_retention` versions; returns the dropped numbers."""
        result = await session.execute(
            select(WikiVersion.version_number)
            .where(WikiVersion.file_id == file_id)
            .order_by(WikiVersion.version_number.desc())
        )
        numbers = list(result.scalars().all())
        stale = numbers[self.settings.version_retention:]
        if stale:
            await session.execute(
                delete(WikiVersion).where(
                    WikiVersion.file_id == file_id,
                    WikiVersion.version_number.in_(stale),
                )
            )
        return stale

    @staticmethod
    def _new_version(
        file_id: UUID,
        version_number: int,
        content: str,
        change_type: str,
        change_description: Optional[str],
        author: Optional[str],
        checksum: Optional[str] = None,
    ) -> WikiVersion:
        return WikiVersion(
            file_id=file_id,
            version_number=version_number,
            content=content,
            change_type=change_type,
            change_description=change_description,
            author=author,
            content_size=md.content_size(content),
            checksum=checksum or md.checksum(content),
        )

    @staticmethod
    def _page_response(wiki_file: WikiFile, version: WikiVersion) -> PageResponse:
        return PageResponse(
            id=wiki_file.id,
            filename=wiki_file.filename,
            original_name=wiki_file.original_name,
            size=wiki_file.size,
            uploaded_at=wiki_file.uploaded_at,
            content=version.content,
            version_number=version.version_number,
            toc=md.extract_headings(version.content),
        )

    @staticmethod
    def _summary(wiki: Wiki, file_count: int) -> WikiSummary:
        return WikiSummary(
            id=wiki.id,
            title=wiki.title,
            slug=wiki.slug,
            description=wiki.description,
            is_public=wiki.is_public,
            created_at=wiki.created_at,
            updated_at=wiki.updated_at,
            file_count=file_count or 0,
        )

    @staticmethod
    def _file_counts():
        return (
            select(WikiFile.wiki_id, func.count(WikiFile.id).label("file_count"))
            .group_by(WikiFile.wiki_id)
            .subquery()
        )

    @staticmethod
    def _latest_pages(*columns):
        """SELECT `columns` over every page joined to its newest version."""
        newest = (
            select(
                WikiVersion.file_id,
                func.max(WikiVersion.version_number).label("version_number"),
            )
            .group_by(WikiVersion.file_id)
            .subquery()
        )
        return (
            select(*columns)
            .select_from(WikiFile)
            .join(WikiVersion, WikiVersion.file_id == WikiFile.id)
            .join(
                newest,
                and_(
                    newest.c.file_id == WikiVersion.file_id,
                    newest.c.version_number == WikiVersion.version_number,
                ),
            )
        )

    async def _store_page(
        self,
        slug: str,
        filename: str,
        content: str,
        version_number: int,
        pruned: Sequence[int] = (),
    ) -> None:
        await self.storage.put_text(page_key(slug, filename), content)
        await self.storage.put_text(version_key(slug, filename, version_number), content)
        if pruned:
            await self.storage.delete_keys([version_key(slug, filename, n) for n in pruned])

    # ── Wikis ─────────────────────────────────────────────────────────────

    def _validate_upload(self, files: Sequence[Tuple[str, bytes]]) -> List[Tuple[str, str, bytes]]:
        """
        Check an upload batch; returns (filename, original_name, raw) triples.

        Rules: at least one file, total size within max_upload_size, only
        ".md" files, no duplicate names, and an index.md among them.
        """
        if not files:
            raise ValidationError(message="At least one markdown file is required", field="files")

        total_size = sum(len(raw) for _, raw in files)
        if total_size > self.settings.max_upload_size:
            limit_mb = self.settings.max_upload_size / (1024 * 1024)
            raise ValidationError(
                message=f"Total upload size exceeds {limit_mb:.0f}MB limit",
                field="files",
                context={"total_size": total_size},
            )

        checked: List[Tuple[str, str, bytes]] = []
        seen = set()
        for original_name, raw in files:
            # Browsers may send relative paths for folder uploads
            filename = os.path.basename((original_name or "").replace("\\", "/"))
            if not filename.lower().endswith(MARKDOWN_SUFFIX):
                raise ValidationError(
                    message=f"Only markdown (.md) files are allowed: {original_name}",
                    field="files",
                )
            if filename in seen:
                raise ValidationError(message=f"Duplicate file: {filename}", field="files")
            seen.add(filename)
            checked.append((filename, original_name, raw))

        if INDEX_FILE not in seen:
            raise ValidationError(message="index.md file is required", field="files")
        return checked

    async def _free_slug(self, session: AsyncSession, base: str) -> str:
        """First unused slug among `base` and its suffixed variants."""
        candidate = base
        for _ in range(SLUG_ATTEMPTS + 1):
            taken = await session.execute(select(Wiki.id).where(Wiki.slug == candidate))
            if taken.scalar_one_or_none() is None:
                return candidate
            candidate = f"{base}-{_random_suffix()}"
        raise ConflictError(
            message="Could not generate a unique URL for this wiki. Please rename it.",
            context={"base_slug": base},
        )

    async def _discard_upload(self, wiki_id: UUID, slug: str, written: Sequence[str]) -> None:
        """Undo a half-finished upload: only the keys it wrote, then its rows."""
        try:
            await self.storage.delete_keys(list(written))
        except StorageError as cleanup_error:
            logger.error("Failed to clean up pages for %s: %s", slug, cleanup_error.message)

        async def _delete(session: AsyncSession) -> None:
            await self._delete_rows(session, [wiki_id])

        try:
            await self._run(_delete, "discard the wiki", slug=slug)
        except DeepWikiError as cleanup_error:
            logger.error("Failed to discard wiki rows for %s: %s", slug, cleanup_error.message)

    @staticmethod
    async def _delete_rows(session: AsyncSession, wiki_ids: Sequence[UUID]) -> None:
        file_ids = select(WikiFile.id).where(WikiFile.wiki_id.in_(wiki_ids))
        await session.execute(delete(WikiVersion).where(WikiVersion.file_id.in_(file_ids)))
        await session.execute(delete(WikiFile).where(WikiFile.wiki_id.in_(wiki_ids)))
        await session.execute(delete(Wiki).where(Wiki.id.in_(wiki_ids)))

    async def create_wiki(
        self,
        files: Sequence[Tuple[str, bytes]],
        author: Optional[str] = None,
    ) -> WikiCreateResponse:
        """
        Create a wiki from uploaded markdown files.

        The rows go in first so the slug is owned by this wiki before any
        object is written under it. If storing the pages fails, the keys
        written so far and the rows are removed again.

        Args:
            files:  (filename, raw bytes) pairs; one of them must be index.md.
            author: Caller id recorded on the initial versions.

        Raises:
            ValidationError: Upload rules broken (see _validate_upload).
            ConflictError: No free slug for the title, or another upload
                           claimed the same slug first.
            StorageError: Pages could not be stored.
            DatabaseError: Insert failed.
        """
        checked = self._validate_upload(files)
        pages = [
            (filename, original_name, md.normalize_content(raw, filename))
            for filename, original_name, raw in checked
        ]

        index_content = next(content for filename, _, content in pages if filename == INDEX_FILE)
        title = md.extract_title(index_content)
        base_slug = md.slugify_title(title)

        async def _insert(session: AsyncSession) -> WikiCreateResponse:
            slug = await self._free_slug(session, base_slug)
            wiki = Wiki(title=title, slug=slug, description=f"Wiki: {title}")
            session.add(wiki)
            await session.flush()

            uploaded: List[UploadedFile] = []
            for filename, original_name, content in pages:
                wiki_file = WikiFile(
                    wiki_id=wiki.id,
                    filename=filename,
                    original_name=original_name,
                    size=md.content_size(content),
                    storage_key=page_key(slug, filename),
                )
                session.add(wiki_file)
                await session.flush()
                session.add(
                    self._new_version(
                        wiki_file.id, 1, content, CHANGE_CREATE, "Initial upload", author
                    )
                )
                uploaded.append(
                    UploadedFile(id=wiki_file.id, filename=filename, size=wiki_file.size)
                )

            return WikiCreateResponse(
                id=wiki.id,
                title=wiki.title,
                slug=wiki.slug,
                description=wiki.description,
                files=uploaded,
            )

        created = await self._run(_insert, "create the wiki", base_slug=base_slug)
        slug = created.slug

        written: List[str] = []
        try:
            for filename, _, content in pages:
                for key in (page_key(slug, filename), version_key(slug, filename, 1)):
                    # Recorded before the write so a partial object is removed too
                    written.append(key)
                    await self.storage.put_text(key, content)
        except Exception:
            await self._discard_upload(created.id, slug, written)
            raise

        logger.info("Wiki created: %s (%d pages)", slug, len(pages))
        return created

    async def list_wikis(
        self,
        limit: int = 20,
        cursor: Optional[str] = None,
        public_only: bool = False,
    ) -> WikiListResponse:
        """
        Wikis ordered by updated_at, newest first, with cursor pagination.

        Cursor: ISO datetime of the last item of the previous page; an
        unparseable cursor is ignored and the first page is returned.
        """
        cursor_dt: Optional[datetime] = None
        if cursor:
            try:
                cursor_dt = datetime.fromisoformat(cursor)
            except ValueError:
                cursor_dt = None

        async def _list(session: AsyncSession) -> WikiListResponse:
            counts = self._file_counts()
            query = select(Wiki, counts.c.file_count).outerjoin(
                counts, counts.c.wiki_id == Wiki.id
            )
            count_query = select(func.count(Wiki.id))
            if public_only:
                query = query.where(Wiki.is_public.is_(True))
                count_query = count_query.where(Wiki.is_public.is_(True))
            if cursor_dt is not None:
                query = query.where(Wiki.updated_at < cursor_dt)

            # limit + 1 tells us whether another page exists
            query = query.order_by(Wiki.updated_at.desc()).limit(limit + 1)
            rows = list((await session.execute(query)).all())
            total_count = (await session.execute(count_query)).scalar() or 0

            has_more = len(rows) > limit
            rows = rows[:limit]
            next_cursor = rows[-1][0].updated_at.isoformat() if has_more and rows else None

            return WikiListResponse(
                wikis=[self._summary(wiki, count) for wiki, count in rows],
                total_count=total_count,
                next_cursor=next_cursor,
                has_more=has_more,
            )

        return await self._run(_list, "retrieve wikis")

    async def search_wikis(self, query: str, limit: int = 20) -> List[WikiSummary]:
        """
        Case-insensitive search over title, description and the current
        content of every page. Queries under 2 characters match nothing.
        """
        term = (query or "").strip()
        if len(term) < MIN_SEARCH_LENGTH:
            return []

        async def _search(session: AsyncSession) -> List[WikiSummary]:
            counts = self._file_counts()
            content_hits = self._latest_pages(WikiFile.wiki_id).where(
                WikiVersion.content.icontains(term, autoescape=True)
            )
            statement = (
                select(Wiki, counts.c.file_count)
                .outerjoin(counts, counts.c.wiki_id == Wiki.id)
                .where(
                    or_(
                        Wiki.title.icontains(term, autoescape=True),
                        Wiki.description.icontains(term, autoescape=True),
                        Wiki.id.in_(content_hits),
                    )
                )
                .order_by(Wiki.updated_at.desc())
                .limit(limit)
            )
            rows = (await session.execute(statement)).all()
            return [self._summary(wiki, count) for wiki, count in rows]

        return await self._run(_search, "search wikis", query=term)

    async def search_suggestions(self, query: str, limit: int = 10) -> List[str]:
        """Completions for a partial query, taken from current page content."""
        term = (query or "").strip()
        if len(term) < MIN_SEARCH_LENGTH:
            return []

        async def _contents(session: AsyncSession) -> List[str]:
            statement = (
                self._latest_pages(WikiVersion.content)
                .where(WikiVersion.content.icontains(term, autoescape=True))
                .limit(SUGGESTION_SCAN_LIMIT)
            )
            return list((await session.execute(statement)).scalars().all())

        contents = await self._run(_contents, "fetch search suggestions", query=term)
        return md.suggest_completions(contents, term, limit=limit)

    async def get_stats(self) -> WikiStats:
        """Wiki count, wikis created in the last RECENT_UPLOAD_DAYS days, page count."""
        since = _utcnow() - timedelta(days=RECENT_UPLOAD_DAYS)

        async def _stats(session: AsyncSession) -> WikiStats:
            total_wikis = (await session.execute(select(func.count(Wiki.id)))).scalar()
            recent = await session.execute(
                select(func.count(Wiki.id)).where(Wiki.created_at >= since)
            )
            total_documents = (await session.execute(select(func.count(WikiFile.id)))).scalar()
            return WikiStats(
                total_wikis=total_wikis or 0,
                recent_uploads=recent.scalar() or 0,
                total_documents=total_documents or 0,
            )

        return await self._run(_stats, "fetch wiki statistics")

    async def get_wiki(self, slug: str) -> WikiDetail:
        async def _get(session: AsyncSession) -> WikiDetail:
            wiki = await self._load_wiki(session, slug)
            result = await session.execute(
                select(WikiFile).where(WikiFile.wiki_id == wiki.id).order_by(WikiFile.filename)
            )
            return WikiDetail(
                id=wiki.id,
                title=wiki.title,
                slug=wiki.slug,
                description=wiki.description,
                is_public=wiki.is_public,
                created_at=wiki.created_at,
                updated_at=wiki.updated_at,
                files=[WikiFileItem.model_validate(f) for f in result.scalars().all()],
            )

        return await self._run(_get, "retrieve the wiki", slug=slug)

    async def delete_wiki(self, slug: str) -> None:
        """Remove the wiki's stored pages, then the wiki with its files and versions."""
        async def _lookup(session: AsyncSession) -> UUID:
            return (await self._load_wiki(session, slug)).id

        wiki_id = await self._run(_lookup, "retrieve the wiki", slug=slug)
        await self.storage.delete_prefix(f"{slug}/")

        async def _delete(session: AsyncSession) -> None:
            await self._delete_rows(session, [wiki_id])

        await self._run(_delete, "delete the wiki", slug=slug)
        logger.info("Wiki deleted: %s", slug)

    async def bulk_delete_wikis(self, wiki_ids: Sequence[UUID]) -> BulkDeleteResponse:
        """
        Delete several wikis by id. Unknown ids are ignored.

        Each wiki's stored pages are removed first. A storage failure for
        one wiki is logged and reported, and its rows are still deleted.

        Raises:
            ValidationError: No ids given.
            NotFoundError: None of the ids exists.
        """
        if not wiki_ids:
            raise ValidationError(message="At least one wiki id is required", field="wiki_ids")
        requested = list(dict.fromkeys(wiki_ids))

        async def _lookup(session: AsyncSession) -> List[Tuple[UUID, str]]:
            result = await session.execute(
                select(Wiki.id, Wiki.slug).where(Wiki.id.in_(requested)).order_by(Wiki.slug)
            )
            return [(row.id, row.slug) for row in result.all()]

        found = await self._run(_lookup, "retrieve wikis", count=len(requested))
        if not found:
            raise NotFoundError(
                resource="wiki",
                context={"wiki_ids": [str(wiki_id) for wiki_id in requested]},
            )

        files_deleted = 0
        failures: List[str] = []
        for _, slug in found:
            try:
                files_deleted += len(await self.storage.delete_prefix(f"{slug}/"))
            except StorageError as e:
                logger.warning("Failed to delete stored pages for %s: %s", slug, e.message)
                failures.append(slug)

        async def _delete(session: AsyncSession) -> None:
            await self._delete_rows(session, [wiki_id for wiki_id, _ in found])

        await self._run(_delete, "delete wikis", count=len(found))
        logger.info(
            "Bulk deleted %d wikis (%d stored files, %d storage failures)",
            len(found),
            files_deleted,
            len(failures),
        )
        return BulkDeleteResponse(
            deleted_count=len(found),
            deleted_slugs=[slug for _, slug in found],
            storage_files_deleted=files_deleted,
            storage_failures=failures,
        )

    async def set_privacy(self, slug: str, is_public: bool) -> PrivacyResponse:
        async def _update(session: AsyncSession) -> PrivacyResponse:
            wiki = await self._load_wiki(session, slug)
            wiki.is_public = is_public
            return PrivacyResponse(slug=wiki.slug, is_public=is_public)

        result = await self._run(_update, "update wiki privacy", slug=slug)
        logger.info("Wiki %s is now %s", slug, "public" if is_public else "private")
        return result

    # ── Pages ─────────────────────────────────────────────────────────────

    async def get_page(self, slug: str, filename: str) -> PageResponse:
        """Latest version of a page with its table of contents."""
        async def _get(session: AsyncSession) -> PageResponse:
            wiki = await self._load_wiki(session, slug)
            wiki_file = await self._load_file(session, wiki, filename)
            latest = await self._latest_version(session, wiki_file.id)
            if latest is None:
                raise NotFoundError(resource="version", resource_id=filename)
            return self._page_response(wiki_file, latest)

        return await self._run(_get, "retrieve the page", slug=slug, filename=filename)

    async def add_page(
        self,
        slug: str,
        title: str,
        content: str,
        filename: Optional[str] = None,
        author: Optional[str] = None,
    ) -> PageResponse:
        """
        Add a page to an existing wiki as version 1.

        Raises:
            ValidationError: Blank title or content, or a bad filename.
            NotFoundError: No such wiki.
            ConflictError: The wiki already has a page with this filename.
        """
        if not title or not title.strip():
            raise ValidationError(message="Page title is required", field="title")
        if not content or not content.strip():
            raise ValidationError(message="Page content is required", field="content")

        name = filename.strip() if filename else md.page_filename(title.strip())
        if "/" in name or "\\" in name or not name.endswith(MARKDOWN_SUFFIX):
            raise ValidationError(
                message="Filename must be a plain name ending in .md",
                field="filename",
            )

        async def _add(session: AsyncSession) -> PageResponse:
            wiki = await self._load_wiki(session, slug)
            existing = await session.execute(
                select(WikiFile.id).where(WikiFile.wiki_id == wiki.id, WikiFile.filename == name)
            )
            if existing.scalar_one_or_none() is not None:
                raise ConflictError(
                    message=f"Page '{name}' already exists",
                    context={"slug": slug, "filename": name},
                )

            wiki_file = WikiFile(
                wiki_id=wiki.id,
                filename=name,
                original_name=name,
                size=md.content_size(content),
                storage_key=page_key(slug, name),
            )
            session.add(wiki_file)
            await session.flush()

            version = self._new_version(
                wiki_file.id, 1, content, CHANGE_CREATE, f"Created page: {title.strip()}", author
            )
            session.add(version)
            wiki.updated_at = _utcnow()
            await session.flush()
            return self._page_response(wiki_file, version)

        page = await self._run(_add, "add the page", slug=slug, filename=name)
        await self._store_page(slug, name, content, 1)
        logger.info("Page added: %s/%s", slug, name)
        return page

    async def update_page(
        self,
        slug: str,
        filename: str,
        content: str,
        author: Optional[str] = None,
        change_description: Optional[str] = None,
    ) -> PageResponse:
        """Save `content` as version n + 1 and prune old versions."""
        if content is None or not content.strip():
            raise ValidationError(message="Page content is required", field="content")

        async def _update(session: AsyncSession) -> Tuple[PageResponse, List[int]]:
            wiki = await self._load_wiki(session, slug)
            wiki_file = await self._load_file(session, wiki, filename)
            latest = await self._latest_version(session, wiki_file.id)
            next_number = latest.version_number + 1 if latest else 1

            version = self._new_version(
                wiki_file.id,
                next_number,
                content,
                CHANGE_UPDATE,
                change_description or "Content updated",
                author,
            )
            session.add(version)

            now = _utcnow()
            wiki_file.size = version.content_size
            wiki_file.updated_at = now
            wiki.updated_at = now
            await session.flush()

            pruned = await self._prune_versions(session, wiki_file.id)
            return self._page_response(wiki_file, version), pruned

        page, pruned = await self._run(_update, "update the page", slug=slug, filename=filename)
        await self._store_page(slug, filename, content, page.version_number, pruned)
        logger.info("Page updated: %s/%s (version %d)", slug, filename, page.version_number)
        return page

    async def delete_pages(self, slug: str, filenames: Sequence[str]) -> List[str]:
        """
        Delete pages with all their versions. index.md cannot be deleted.

        Raises:
            ValidationError: index.md requested, or no filenames given.
            NotFoundError: Any requested page does not exist (nothing is deleted).
        """
        requested = list(dict.fromkeys(filenames))
        if not requested:
            raise ValidationError(message="No pages selected", field="filenames")
        if INDEX_FILE in requested:
            raise ValidationError(message="index.md cannot be deleted", field="filenames")

        async def _delete(session: AsyncSession) -> List[str]:
            wiki = await self._load_wiki(session, slug)
            result = await session.execute(
                select(WikiFile).where(
                    WikiFile.wiki_id == wiki.id,
                    WikiFile.filename.in_(requested),
                )
            )
            found = {f.filename: f for f in result.scalars().all()}
            missing = [name for name in requested if name not in found]
            if missing:
                raise NotFoundError(resource="file", resource_id=", ".join(missing))

            file_ids = [f.id for f in found.values()]
            versions = await session.execute(
                select(WikiFile.filename, WikiVersion.version_number)
                .join(WikiVersion, WikiVersion.file_id == WikiFile.id)
                .where(WikiFile.id.in_(file_ids))
            )
            keys = [page_key(slug, name) for name in requested]
            keys.extend(version_key(slug, name, number) for name, number in versions.all())

            await session.execute(delete(WikiVersion).where(WikiVersion.file_id.in_(file_ids)))
            await session.execute(delete(WikiFile).where(WikiFile.id.in_(file_ids)))
            wiki.updated_at = _utcnow()
            return keys

        keys = await self._run(_delete, "delete pages", slug=slug)
        await self.storage.delete_keys(keys)
        logger.info("Deleted %d pages from %s", len(requested), slug)
        return requested

    # ── Versions ──────────────────────────────────────────────────────────

    async def list_versions(self, slug: str, filename: str) -> VersionListResponse:
        async def _list(session: AsyncSession) -> VersionListResponse:
            wiki = await self._load_wiki(session, slug)
            wiki_file = await self._load_file(session, wiki, filename)
            result = await session.execute(
                select(WikiVersion)
                .where(WikiVersion.file_id == wiki_file.id)
                .order_by(WikiVersion.version_number.desc())
            )
            return VersionListResponse(
                filename=wiki_file.filename,
                versions=[VersionItem.model_validate(v) for v in result.scalars().all()],
            )

        return await self._run(_list, "retrieve versions", slug=slug, filename=filename)

    async def get_version(self, slug: str, filename: str, version_number: int) -> VersionResponse:
        async def _get(session: AsyncSession) -> VersionResponse:
            wiki = await self._load_wiki(session, slug)
            wiki_file = await self._load_file(session, wiki, filename)
            result = await session.execute(
                select(WikiVersion).where(
                    WikiVersion.file_id == wiki_file.id,
                    WikiVersion.version_number == version_number,
                )
            )
            version = result.scalar_one_or_none()
            if version is None:
                raise NotFoundError(resource="version", resource_id=str(version_number))
            return VersionResponse.model_validate(version)

        return await self._run(_get, "retrieve the version", slug=slug, filename=filename)

    async def rollback_page(
        self,
        slug: str,
        filename: str,
        version_number: int,
        author: Optional[str] = None,
    ) -> PageResponse:
        """
        Restore an earlier version by appending a copy of it.

        History is never rewritten: rolling back to version k creates version
        n + 1 with k's content and checksum, described as "Rollback to version k".
        """
        async def _rollback(session: AsyncSession) -> Tuple[PageResponse, List[int]]:
            wiki = await self._load_wiki(session, slug)
            wiki_file = await self._load_file(session, wiki, filename)
            result = await session.execute(
                select(WikiVersion).where(
                    WikiVersion.file_id == wiki_file.id,
                    WikiVersion.version_number == version_number,
                )
            )
            target = result.scalar_one_or_none()
            if target is None:
                raise NotFoundError(resource="version", resource_id=str(version_number))

            latest = await self._latest_version(session, wiki_file.id)
            version = self._new_version(
                wiki_file.id,
                latest.version_number + 1,
                target.content,
                CHANGE_ROLLBACK,
                f"Rollback to version {version_number}",
                author,
                checksum=target.checksum,
            )
            session.add(version)

            now = _utcnow()
            wiki_file.size = version.content_size
            wiki_file.updated_at = now
            wiki.updated_at = now
            await session.flush()

            pruned = await self._prune_versions(session, wiki_file.id)
            return self._page_response(wiki_file, version), pruned

        page, pruned = await self._run(
            _rollback, "roll back the page", slug=slug, filename=filename
        )
        await self._store_page(slug, filename, page.content, page.version_number, pruned)
        logger.info(
            "Page %s/%s rolled back to version %d (now version %d)",
            slug, filename, version_number, page.version_number,
        )
        return page


def get_wiki_service(request: Request) -> WikiService:
    """FastAPI dependency: the service built by the lifespan handler."""
    return request.app.state.wiki_service
