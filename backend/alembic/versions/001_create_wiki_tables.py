"""Create wiki tables

Revision ID: 001
Revises: None
Create Date: 2026-01-15 00:00:00.000000+00:00

What:  Creates wikis, wiki_files and wiki_versions.
How:   Foreign keys cascade on delete, so removing a wiki removes its pages
       and their version history.

Rollback: downgrade() drops all three tables (destructive).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "wikis",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column(
            "slug",
            sa.String(255),
            nullable=False,
            comment="URL segment and object-store prefix",
        ),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "is_public",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug"),
    )
    op.create_index("idx_wikis_is_public", "wikis", ["is_public"])
    # Listing is always newest-first
    op.create_index("idx_wikis_updated_at", "wikis", [sa.text("updated_at DESC")])

    op.create_table(
        "wiki_files",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("wiki_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("original_name", sa.String(255), nullable=False),
        sa.Column(
            "size",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
            comment="UTF-8 byte length of the newest version",
        ),
        sa.Column("storage_key", sa.String(512), nullable=False),
        sa.Column(
            "uploaded_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["wiki_id"], ["wikis.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("wiki_id", "filename", name="uq_wiki_files_wiki_filename"),
    )
    op.create_index("ix_wiki_files_wiki_id", "wiki_files", ["wiki_id"])

    op.create_table(
        "wiki_versions",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("file_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column(
            "change_type",
            sa.String(20),
            nullable=False,
            comment="CREATE, UPDATE or ROLLBACK",
        ),
        sa.Column("change_description", sa.Text(), nullable=True),
        sa.Column("author", sa.String(255), nullable=True),
        sa.Column("content_size", sa.Integer(), nullable=False),
        sa.Column("checksum", sa.String(64), nullable=False),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["file_id"], ["wiki_files.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("file_id", "version_number", name="uq_wiki_versions_file_version"),
    )
    op.create_index("ix_wiki_versions_file_id", "wiki_versions", ["file_id"])


def downgrade() -> None:
    op.drop_index("ix_wiki_versions_file_id", table_name="wiki_versions")
    op.drop_table("wiki_versions")
    op.drop_index("ix_wiki_files_wiki_id", table_name="wiki_files")
    op.drop_table("wiki_files")
    op.drop_index("idx_wikis_updated_at", table_name="wikis")
    op.drop_index("idx_wikis_is_public", table_name="wikis")
    op.drop_table("wikis")
