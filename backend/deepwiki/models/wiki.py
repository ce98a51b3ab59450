"""
DeepWiki Backend — Wiki SQLAlchemy Models
===========================================

What:  ORM models for wikis, their pages (files) and page versions.
Who:   Used by WikiService through Database.run() and by Alembic.

Table Design:
    wikis ──< wiki_files ──< wiki_versions

    - wikis.slug is unique; it is also the object-store prefix for the pages
    - wiki_files are unique per (wiki_id, filename)
    - wiki_versions are unique per (file_id, version_number); the newest
      version holds the current page body
    - Deleting a wiki cascades to its files and their versions

Generic Uuid / DateTime(timezone=True) types keep the models portable between
PostgreSQL (production) and SQLite (tests).
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from deepwiki.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Wiki(Base):
    """A named collection of markdown pages rooted at index.md."""

    __tablename__ = "wikis"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Private by default; public wikis are browsable without ownership
    is_public: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    files: Mapped[List["WikiFile"]] = relationship(
        back_populates="wiki",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="WikiFile.filename",
    )

    __table_args__ = (
        Index("idx_wikis_is_public", "is_public"),
        Index("idx_wikis_updated_at", updated_at.desc()),
    )

    def __repr__(self) -> str:
        return f"<Wiki(slug='{self.slug}', title='{self.title}')>"


class WikiFile(Base):
    """
    One markdown page of a wiki.

    `size` mirrors the byte length of the newest version; `storage_key` is the
    object-store key of the current body ("{slug}/{filename}").
    """

    __tablename__ = "wiki_files"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    wiki_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("wikis.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    storage_key: Mapped[str] = mapped_column(String(512), nullable=False)

    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    wiki: Mapped[Wiki] = relationship(back_populates="files")
    versions: Mapped[List["WikiVersion"]] = relationship(
        back_populates="file",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="desc(WikiVersion.version_number)",
    )

    __table_args__ = (
        UniqueConstraint("wiki_id", "filename", name="uq_wiki_files_wiki_filename"),
    )

    def __repr__(self) -> str:
        return f"<WikiFile(filename='{self.filename}', size={self.size})>"


class WikiVersion(Base):
    """Immutable snapshot of a page body."""

    __tablename__ = "wiki_versions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    file_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("wiki_files.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)

    # CREATE | UPDATE | ROLLBACK
    change_type: Mapped[str] = mapped_column(String(20), nullable=False)
    change_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Caller id from the auth proxy; NULL when the request carried none
    author: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    content_size: Mapped[int] = mapped_column(Integer, nullable=False)
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    file: Mapped[WikiFile] = relationship(back_populates="versions")

    __table_args__ = (
        UniqueConstraint("file_id", "version_number", name="uq_wiki_versions_file_version"),
    )

    def __repr__(self) -> str:
        return f"<WikiVersion(file_id={self.file_id}, version={self.version_number})>"
