"""
DeepWiki Backend — Request ID Middleware
==========================================

What:  Tags each request with a short id, echoed in the X-Request-ID header
       and stamped on every log record emitted while the request runs.
How:   A client-supplied X-Request-ID is reused when it is a plain token;
       anything else is replaced with a fresh id. The id lives in a
       ContextVar, and RequestIDLogFilter copies it onto log records, so a
       "Retrying (2/3)" line from deepwiki.retry can be traced back to the
       upload or page edit that triggered it.
"""

import logging
import re
import uuid
from contextvars import ContextVar
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests on one thread each see their own id
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Client ids end up in log lines verbatim
_CLIENT_ID_RE = re.compile(r"[A-Za-z0-9._-]{1,64}")

NO_REQUEST = "-"


def resolve_request_id(header_value: Optional[str]) -> str:
    """The client's id when it is a safe token, else a new 8-char hex id."""
    if header_value and _CLIENT_ID_RE.fullmatch(header_value):
        return header_value
    return uuid.uuid4().hex[:8]


class RequestIDLogFilter(logging.Filter):
    """Adds `record.request_id` ("-" outside a request) for the log format."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = request_id_var.get("") or NO_REQUEST
        return True


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns and propagates a correlation id per request."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = resolve_request_id(request.headers.get("X-Request-ID"))

        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response
