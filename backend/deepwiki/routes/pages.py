"""
DeepWiki Backend — Page Route Handlers
========================================

What:  Page CRUD, version history and rollback inside one wiki.
Who:   Called by the wiki viewer and editor.

Every write records the X-User-Id header (when sent) as the version author.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Path

from deepwiki.routes.wikis import get_author
from deepwiki.schemas.common import ErrorResponse
from deepwiki.schemas.wiki import (
    PageCreateRequest,
    PageDeleteRequest,
    PageDeleteResponse,
    PageResponse,
    PageUpdateRequest,
    RollbackRequest,
    VersionListResponse,
    VersionResponse,
)
from deepwiki.services.wiki_service import WikiService, get_wiki_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/wiki/{slug}/pages", tags=["Pages"])

_NOT_FOUND = {404: {"description": "Wiki, page or version not found", "model": ErrorResponse}}


@router.post(
    "",
    status_code=201,
    response_model=PageResponse,
    responses={
        400: {"description": "Blank title or content", "model": ErrorResponse},
        409: {"description": "Page already exists", "model": ErrorResponse},
        **_NOT_FOUND,
    },
    summary="Add a page to a wiki",
)
async def add_page(
    slug: str,
    body: PageCreateRequest,
    author: Optional[str] = Depends(get_author),
    service: WikiService = Depends(get_wiki_service),
) -> PageResponse:
    return await service.add_page(
        slug,
        title=body.title,
        content=body.content,
        filename=body.filename,
        author=author,
    )


@router.delete(
    "",
    response_model=PageDeleteResponse,
    responses={
        400: {"description": "index.md cannot be deleted", "model": ErrorResponse},
        **_NOT_FOUND,
    },
    summary="Delete pages from a wiki",
)
async def delete_pages(
    slug: str,
    body: PageDeleteRequest,
    service: WikiService = Depends(get_wiki_service),
) -> PageDeleteResponse:
    deleted = await service.delete_pages(slug, body.filenames)
    return PageDeleteResponse(deleted=deleted)


@router.get(
    "/{filename}",
    response_model=PageResponse,
    responses=_NOT_FOUND,
    summary="Get the current version of a page with its table of contents",
)
async def get_page(
    slug: str,
    filename: str,
    service: WikiService = Depends(get_wiki_service),
) -> PageResponse:
    return await service.get_page(slug, filename)


@router.put(
    "/{filename}",
    response_model=PageResponse,
    responses={400: {"description": "Blank content", "model": ErrorResponse}, **_NOT_FOUND},
    summary="Save a new version of a page",
)
async def update_page(
    slug: str,
    filename: str,
    body: PageUpdateRequest,
    author: Optional[str] = Depends(get_author),
    service: WikiService = Depends(get_wiki_service),
) -> PageResponse:
    return await service.update_page(
        slug,
        filename,
        content=body.content,
        author=author,
        change_description=body.change_description,
    )


@router.get(
    "/{filename}/versions",
    response_model=VersionListResponse,
    responses=_NOT_FOUND,
    summary="List retained versions of a page, newest first",
)
async def list_versions(
    slug: str,
    filename: str,
    service: WikiService = Depends(get_wiki_service),
) -> VersionListResponse:
    return await service.list_versions(slug, filename)


@router.get(
    "/{filename}/versions/{version_number}",
    response_model=VersionResponse,
    responses=_NOT_FOUND,
    summary="Get one version of a page with its content",
)
async def get_version(
    slug: str,
    filename: str,
    version_number: int = Path(ge=1),
    service: WikiService = Depends(get_wiki_service),
) -> VersionResponse:
    return await service.get_version(slug, filename, version_number)


@router.post(
    "/{filename}/versions/rollback",
    response_model=PageResponse,
    responses=_NOT_FOUND,
    summary="Restore an earlier version as a new version",
)
async def rollback_page(
    slug: str,
    filename: str,
    body: RollbackRequest,
    author: Optional[str] = Depends(get_author),
    service: WikiService = Depends(get_wiki_service),
) -> PageResponse:
    return await service.rollback_page(
        slug, filename, body.version_number, author=author
    )
