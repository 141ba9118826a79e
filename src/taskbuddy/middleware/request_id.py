"""Request ID middleware: generates or propagates X-Request-Id.

Ledger routes are keyed by child or family, so the id from the path is bound
too; every log line written while serving the request carries it.
"""

import re
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

_SUBJECT_PATH = re.compile(r"^/api/v1/(children|families)/([0-9a-fA-F-]{36})(?:/|$)")
_SUBJECT_KEYS = {"children": "child_id", "families": "family_id"}


def subject_context(path: str) -> dict[str, str]:
    """``{"child_id": ...}`` or ``{"family_id": ...}`` for keyed routes, else empty."""
    match = _SUBJECT_PATH.match(path)
    if match is None:
        return {}
    return {_SUBJECT_KEYS[match.group(1)]: match.group(2).lower()}


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            **subject_context(request.url.path),
        )
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response
