# Services package init
"""
DeepWiki Backend — Services Layer
===================================

What:  Business logic between the routes (HTTP) and the data stores.
How:   Services receive their collaborators (Database client, storage backend,
       settings) at construction; the lifespan handler builds them once.

Service Inventory:
    - StorageBackend (abstract): Interface for page object stores
    - LocalStorage / R2Storage: Local-disk and Cloudflare R2 implementations
    - markdown_service: TOC extraction, titles, slugs, upload decoding
    - WikiService: Wiki, page and version workflows
"""
