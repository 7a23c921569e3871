"""X-Request-ID middleware.

Each request gets one correlation ID: the caller's ``X-Request-ID`` when it
is acceptable, a fresh UUID4 otherwise. The ID is bound to the log context,
echoed on the response, and reused as the generation trace ID by the
generation routes.

Add this middleware last so it is the outermost one and also wraps the
JSON-body guard's 400/415 responses.
"""

import re
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from arena.logging import clear_request_context, get_logger, set_request_context

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128

_REQUEST_ID_CHARS = re.compile(r"^[A-Za-z0-9._-]+$")

# Liveness probes would drown out generation traffic in the access log
QUIET_PATHS = frozenset({"/health"})

logger = get_logger(__name__)


def _as_uuid(value: str) -> uuid.UUID | None:
    if len(value) != 36:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


def is_valid_request_id(value: str) -> bool:
    """Accept 1-128 bytes of letters, digits, dots, dashes and underscores."""
    if not value or len(value.encode("utf-8")) > MAX_REQUEST_ID_LENGTH:
        return False
    return bool(_REQUEST_ID_CHARS.match(value))


def normalize_request_id(value: str) -> str:
    """Lowercase canonical UUIDs; keep other valid IDs as sent."""
    parsed = _as_uuid(value)
    return str(parsed) if parsed is not None else value


def resolve_request_id(header_value: str | None) -> str:
    """The ID to use for a request given its incoming header value."""
    if header_value and is_valid_request_id(header_value):
        return normalize_request_id(header_value)
    return str(uuid.uuid4())


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Bind X-Request-ID to the log context and write one access entry per request.

    Args:
        app: The ASGI application.
        log_requests: Write ``http.request.completed`` entries.
    """

    def __init__(self, app, log_requests: bool = True):
        super().__init__(app)
        self.log_requests = log_requests

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = time.monotonic()
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        set_request_context(request_id, path=request.url.path, method=request.method)

        try:
            response = await call_next(request)
        except Exception:
            # unhandled_exception_handler renders the 500
            logger.exception("http.request.failed")
            raise
        finally:
            clear_request_context()

        response.headers[REQUEST_ID_HEADER] = request_id
        if self.log_requests and request.url.path not in QUIET_PATHS:
            # Context is already cleared; SSE bodies are still streaming here
            logger.info(
                "http.request.completed",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round((time.monotonic() - started) * 1000, 2),
            )
        return response
