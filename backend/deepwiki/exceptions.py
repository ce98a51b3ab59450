"""
DeepWiki Backend — Custom Exception Hierarchy
===============================================

What:  Application-specific exceptions, each mapped to one HTTP status.
How:   Each exception carries a client-safe message and a context dict that is
       logged server-side only. Handlers registered in main.py turn them into
       JSON error responses.

Exception Hierarchy:
    DeepWikiError (base)
    ├── ValidationError          → 400 Bad Request
    ├── NotFoundError            → 404 Not Found
    ├── ConflictError            → 409 Conflict
    ├── StorageError             → 500 Internal Server Error
    └── DatabaseError            → 500 Internal Server Error
        ├── ConnectionClosedError → 503 (only if it escapes the retrier)
        └── RetryLimitExceeded    → 503 Service Unavailable
"""

from typing import Any, Dict, Optional


class DeepWikiError(Exception):
    """
    Base exception for all DeepWiki application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(DeepWikiError):
    """
    Raised when client input breaks a business rule.

    When:  Missing index.md, non-markdown upload, oversized upload, blank page
           title, attempt to delete index.md.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class NotFoundError(DeepWikiError):
    """Raised when a wiki, page, version or stored object does not exist."""

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)
        self.resource = resource


class ConflictError(DeepWikiError):
    """
    Raised when a write collides with existing data.

    When:  A page filename already exists in the wiki, or no unique slug could
           be generated for a new wiki.
    """

    def __init__(
        self,
        message: str = "The resource already exists",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class StorageError(DeepWikiError):
    """
    Raised when the object store (local directory or R2 bucket) fails.

    The client only ever sees the generic message; bucket names and keys go to
    the log through `context`.
    """

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(DeepWikiError):
    """
    Raised when database operations fail unexpectedly.

    Security Note:
        The message returned to the client is always generic. SQL text and
        constraint names are logged server-side only.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ConnectionClosedError(DatabaseError):
    """
    The database server closed the connection underneath a unit of work.

    Raised by the Database client when SQLAlchemy reports an invalidated
    connection. The `code` attribute is what the query retrier looks at.
    """

    def __init__(
        self,
        code: str,
        message: str = "The database server closed the connection.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
        self.code = code


class RetryLimitExceeded(DatabaseError):
    """
    Raised when every allowed retry of a unit of work hit a closed connection.

    Distinct from the driver error it replaces, which stays reachable through
    `__cause__` for logging.
    """

    def __init__(
        self,
        attempts: int,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["attempts"] = attempts
        super().__init__(
            message="Database retry limit exceeded. Please try again later.",
            context=ctx,
        )
        self.attempts = attempts
