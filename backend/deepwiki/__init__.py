"""
DeepWiki Backend — Application Package
========================================

What: Markdown wiki storage, versioning and browsing API.
Who:  Imported by uvicorn (`deepwiki.main:app`), Alembic and pytest.

Architecture Note:
    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │     Services (Wiki, Markdown,       │  ← Business rules
    │              Storage)               │
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │   Database client + Query retrier   │  ← Every unit of work is retried
    └─────────────────────────────────────┘   when the server drops the connection

    Page bodies live in an object store (local directory or Cloudflare R2);
    metadata and version history live in PostgreSQL.
"""

__version__ = "1.0.0"
