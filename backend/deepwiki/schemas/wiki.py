"""
DeepWiki Backend — Pydantic Request/Response Schemas
=====================================================

What:  The API contract for wikis, pages, versions and search.
Why:   Kept apart from the ORM models so the wire format can change (or hide
       fields such as storage keys) without touching the schema.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


# ══════════════════════════════════════════════════════════════════════════
# Table of Contents
# ══════════════════════════════════════════════════════════════════════════


class TocHeading(BaseModel):
    id: str = Field(description="Anchor id, matching the rendered heading")
    text: str = Field(description="Heading text")
    level: int = Field(description="2 for H2, 3 for H3")


class TocSection(BaseModel):
    """An H2 heading with the H3 headings that follow it."""
    heading: TocHeading
    children: List[TocHeading] = Field(default_factory=list)


# ══════════════════════════════════════════════════════════════════════════
# Wikis
# ══════════════════════════════════════════════════════════════════════════


class WikiFileItem(BaseModel):
    id: uuid.UUID
    filename: str
    size: int = Field(description="Byte length of the current page body")
    uploaded_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class WikiSummary(BaseModel):
    """Compact representation used by list and search results."""
    id: uuid.UUID
    title: str
    slug: str
    description: Optional[str] = None
    is_public: bool
    created_at: datetime
    updated_at: datetime
    file_count: int = Field(default=0, description="Number of pages in the wiki")


class WikiDetail(BaseModel):
    id: uuid.UUID
    title: str
    slug: str
    description: Optional[str] = None
    is_public: bool
    created_at: datetime
    updated_at: datetime
    files: List[WikiFileItem]


class WikiListResponse(BaseModel):
    """
    Cursor-paginated wiki listing.

    next_cursor is the updated_at of the last item; pass it back as `cursor`
    to fetch the following page.
    """
    wikis: List[WikiSummary]
    total_count: int
    next_cursor: Optional[str] = None
    has_more: bool


class WikiSearchResponse(BaseModel):
    wikis: List[WikiSummary]


class SearchSuggestionResponse(BaseModel):
    suggestions: List[str] = Field(description="Completions, shortest first")


class BulkDeleteRequest(BaseModel):
    wiki_ids: List[uuid.UUID] = Field(min_length=1, max_length=100)


class BulkDeleteResponse(BaseModel):
    """
    Outcome of a bulk delete.

    Storage failures do not stop the delete; the affected slugs are listed
    in `storage_failures` so their objects can be cleaned up later.
    """

    deleted_count: int
    deleted_slugs: List[str]
    storage_files_deleted: int
    storage_failures: List[str] = Field(default_factory=list)


class WikiStats(BaseModel):
    total_wikis: int
    recent_uploads: int = Field(description="Wikis created in the last 7 days")
    total_documents: int = Field(description="Pages across all wikis")


class PrivacyUpdateRequest(BaseModel):
    is_public: bool = Field(description="Whether the wiki is publicly visible")


class PrivacyResponse(BaseModel):
    slug: str
    is_public: bool


# ══════════════════════════════════════════════════════════════════════════
# Pages
# ══════════════════════════════════════════════════════════════════════════


class PageResponse(BaseModel):
    """Current body of a page plus its table of contents."""
    id: uuid.UUID
    filename: str
    original_name: str
    size: int
    uploaded_at: datetime
    content: str
    version_number: int
    toc: List[TocSection] = Field(default_factory=list)


class PageCreateRequest(BaseModel):
    title: str = Field(description="Page title; also used to derive the filename")
    content: str = Field(description="Markdown body")
    filename: Optional[str] = Field(
        default=None,
        description="Explicit filename; derived from the title when omitted",
    )


class PageUpdateRequest(BaseModel):
    content: str = Field(description="New markdown body")
    change_description: Optional[str] = Field(default=None, max_length=500)


class PageDeleteRequest(BaseModel):
    filenames: List[str] = Field(min_length=1)


class PageDeleteResponse(BaseModel):
    deleted: List[str]


# ══════════════════════════════════════════════════════════════════════════
# Versions
# ══════════════════════════════════════════════════════════════════════════


class VersionItem(BaseModel):
    id: uuid.UUID
    version_number: int
    change_type: str
    change_description: Optional[str] = None
    author: Optional[str] = None
    content_size: int
    checksum: str
    created_at: datetime

    model_config = {"from_attributes": True}


class VersionResponse(VersionItem):
    content: str


class VersionListResponse(BaseModel):
    filename: str
    versions: List[VersionItem]


class RollbackRequest(BaseModel):
    version_number: int = Field(ge=1, description="Version to restore")


# ══════════════════════════════════════════════════════════════════════════
# Upload
# ══════════════════════════════════════════════════════════════════════════


class UploadedFile(BaseModel):
    id: uuid.UUID
    filename: str
    size: int


class WikiCreateResponse(BaseModel):
    id: uuid.UUID
    title: str
    slug: str
    description: Optional[str] = None
    files: List[UploadedFile]
