"""
DeepWiki Backend — Wiki Route Handlers
========================================

What:  Upload, list, search, inspect, delete and publish wikis, plus
       search suggestions, bulk delete and dashboard statistics.
Who:   Called by the frontend dashboard and wiki viewer.

Caching Strategy:
    - Mutations: never cached
    - GET /api/wiki/list, /search: short private cache, data changes often
    - GET /api/wiki/search/suggestions: 30s private cache
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Header, Query, Response, UploadFile

from deepwiki.schemas.common import ErrorResponse
from deepwiki.schemas.wiki import (
    BulkDeleteRequest,
    BulkDeleteResponse,
    PrivacyResponse,
    PrivacyUpdateRequest,
    SearchSuggestionResponse,
    WikiCreateResponse,
    WikiDetail,
    WikiListResponse,
    WikiSearchResponse,
    WikiStats,
)
from deepwiki.services.wiki_service import WikiService, get_wiki_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/wiki", tags=["Wikis"])


def get_author(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    """Caller id forwarded by the auth proxy, recorded as the version author."""
    return x_user_id.strip() if x_user_id and x_user_id.strip() else None


@router.post(
    "/upload",
    status_code=201,
    response_model=WikiCreateResponse,
    responses={
        400: {
            "description": "Missing index.md, non-markdown file or upload too large",
            "model": ErrorResponse,
        },
        409: {"description": "No unique slug available", "model": ErrorResponse},
        503: {"description": "Database unavailable", "model": ErrorResponse},
    },
    summary="Create a wiki from markdown files",
)
async def upload_wiki(
    files: List[UploadFile] = File(..., description="Markdown files; one must be index.md"),
    author: Optional[str] = Depends(get_author),
    service: WikiService = Depends(get_wiki_service),
) -> WikiCreateResponse:
    """
    The wiki title comes from index.md (front matter, then first H1) and the
    slug from the title.
    """
    uploads = []
    try:
        for upload in files:
            uploads.append((upload.filename or "", await upload.read()))
    finally:
        for upload in files:
            await upload.close()

    logger.info(
        "Received wiki upload: %d files, %d bytes",
        len(uploads),
        sum(len(raw) for _, raw in uploads),
    )
    return await service.create_wiki(uploads, author=author)


@router.get(
    "/list",
    response_model=WikiListResponse,
    summary="List wikis, most recently updated first",
)
async def list_wikis(
    response: Response,
    limit: int = Query(default=20, ge=1, le=100, description="Items per page"),
    cursor: Optional[str] = Query(
        default=None,
        description="next_cursor from the previous page; omit for the first page",
    ),
    public_only: bool = Query(default=False, description="Only return public wikis"),
    service: WikiService = Depends(get_wiki_service),
) -> WikiListResponse:
    result = await service.list_wikis(limit=limit, cursor=cursor, public_only=public_only)
    response.headers["X-Total-Count"] = str(result.total_count)
    response.headers["Cache-Control"] = "private, max-age=5"
    return result


@router.get(
    "/search",
    response_model=WikiSearchResponse,
    summary="Search wikis by title, description or page content",
)
async def search_wikis(
    q: str = Query(default="", max_length=200, description="Search text (2+ characters)"),
    limit: int = Query(default=20, ge=1, le=100),
    service: WikiService = Depends(get_wiki_service),
) -> WikiSearchResponse:
    return WikiSearchResponse(wikis=await service.search_wikis(q, limit=limit))


@router.get(
    "/search/suggestions",
    response_model=SearchSuggestionResponse,
    summary="Search-box completions from page content",
)
async def search_suggestions(
    response: Response,
    q: str = Query(default="", max_length=200, description="Partial query (2+ characters)"),
    limit: int = Query(default=10, ge=1, le=50),
    service: WikiService = Depends(get_wiki_service),
) -> SearchSuggestionResponse:
    suggestions = await service.search_suggestions(q, limit=limit)
    response.headers["Cache-Control"] = "private, max-age=30"
    return SearchSuggestionResponse(suggestions=suggestions)


@router.get(
    "/stats",
    response_model=WikiStats,
    summary="Wiki, recent upload and page counts",
)
async def get_stats(service: WikiService = Depends(get_wiki_service)) -> WikiStats:
    return await service.get_stats()


# Registered before /{slug} so "bulk-delete" is not taken for a slug
@router.delete(
    "/bulk-delete",
    response_model=BulkDeleteResponse,
    responses={
        404: {"description": "None of the wikis exist", "model": ErrorResponse},
    },
    summary="Delete several wikis by id",
)
async def bulk_delete_wikis(
    body: BulkDeleteRequest,
    service: WikiService = Depends(get_wiki_service),
) -> BulkDeleteResponse:
    return await service.bulk_delete_wikis(body.wiki_ids)


@router.get(
    "/{slug}",
    response_model=WikiDetail,
    responses={404: {"description": "Wiki not found", "model": ErrorResponse}},
    summary="Get a wiki with its pages",
)
async def get_wiki(
    slug: str,
    service: WikiService = Depends(get_wiki_service),
) -> WikiDetail:
    return await service.get_wiki(slug)


@router.delete(
    "/{slug}",
    status_code=204,
    responses={404: {"description": "Wiki not found", "model": ErrorResponse}},
    summary="Delete a wiki, its pages and all versions",
)
async def delete_wiki(
    slug: str,
    service: WikiService = Depends(get_wiki_service),
) -> Response:
    await service.delete_wiki(slug)
    return Response(status_code=204)


@router.put(
    "/{slug}/privacy",
    response_model=PrivacyResponse,
    responses={404: {"description": "Wiki not found", "model": ErrorResponse}},
    summary="Make a wiki public or private",
)
async def set_privacy(
    slug: str,
    body: PrivacyUpdateRequest,
    service: WikiService = Depends(get_wiki_service),
) -> PrivacyResponse:
    return await service.set_privacy(slug, body.is_public)
