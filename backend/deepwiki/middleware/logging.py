"""
DeepWiki Backend — Request Logging Middleware
===============================================

What:  One access log line per request, naming the wiki and page it touched
       and the X-User-Id author, so a page's edit history can be lined up
       with the access log.
When:  After RequestIDMiddleware, so the id is already set.

Log line:
    PUT /api/wiki/guide/pages/setup.md 200 12.4ms wiki=guide page=setup.md by=user-1

A 503 carrying Retry-After means the database kept dropping the connection
and the retrier gave up; it is logged as its own WARNING line so it can be
alerted on separately from other server errors.

Request bodies are never logged; they carry page content.
"""

import logging
import re
import time
from typing import Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("deepwiki.access")

# Polled by the load balancer every few seconds
QUIET_PATHS = frozenset({"/health"})

_WIKI_PATH_RE = re.compile(r"^/api/wiki/(?P<slug>[^/]+)(?:/pages/(?P<page>[^/]+))?")

# First path segments under /api/wiki that are not slugs
COLLECTION_SEGMENTS = frozenset({"upload", "list", "search", "stats", "bulk-delete"})


def wiki_target(path: str) -> Tuple[Optional[str], Optional[str]]:
    """(slug, page filename) addressed by an API path; (None, None) otherwise."""
    match = _WIKI_PATH_RE.match(path)
    if match is None or match.group("slug") in COLLECTION_SEGMENTS:
        return None, None
    return match.group("slug"), match.group("page")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs each response at a level chosen by status code:
        5xx → ERROR, 4xx → WARNING, everything else → INFO
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        slug, page = wiki_target(path)
        author = request.headers.get("X-User-Id")

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        target = ""
        if slug:
            target += f" wiki={slug}"
        if page:
            target += f" page={page}"
        if author:
            target += f" by={author}"

        logger.log(
            log_level,
            "%s %s %d %.1fms%s",
            request.method,
            path,
            status,
            duration_ms,
            target,
            extra={
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "wiki": slug,
                "page": page,
                "author": author,
            },
        )

        retry_after = response.headers.get("Retry-After")
        if status == 503 and retry_after:
            logger.warning(
                "Database unavailable for %s %s; client asked to retry after %ss",
                request.method,
                path,
                retry_after,
            )
        return response
