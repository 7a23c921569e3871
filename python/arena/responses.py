"""Response envelopes and exception handlers.

- Success: ``{"data": ...}``
- Error: ``{"error": {"code": "E_...", "message": "...", "request_id": "..."}}``

Generation failures add ``error.attempts``, the serialized attempt log, so the
caller can show which routing providers were tried and why each one failed.
"""

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from arena.errors import ERROR_CODE_TO_STATUS, ApiError, ApiErrorCode
from arena.logging import get_logger, get_request_id
from arena.services.generation.errors import GenerationError

logger = get_logger(__name__)

# Framework-raised HTTP errors (unknown route, wrong method) by status
HTTP_STATUS_TO_CODE: dict[int, ApiErrorCode] = {
    400: ApiErrorCode.E_INVALID_REQUEST,
    401: ApiErrorCode.E_API_KEY_MISSING,
    404: ApiErrorCode.E_NOT_FOUND,
    405: ApiErrorCode.E_INVALID_REQUEST,
    415: ApiErrorCode.E_UNSUPPORTED_MEDIA_TYPE,
    422: ApiErrorCode.E_INVALID_REQUEST,
}


def success_response(data: Any) -> dict[str, Any]:
    return {"data": data}


def error_response(
    code: ApiErrorCode,
    message: str,
    request_id: str | None = None,
    attempts: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Build the error envelope.

    Args:
        code: Error code.
        message: User-facing message.
        request_id: Correlation ID; read from the log context when omitted.
        attempts: Serialized attempt log, for generation failures only.

    Returns:
        ``{"error": {...}}`` without ``request_id`` when none is known.
    """
    error: dict[str, Any] = {"code": code.value, "message": message}
    if attempts is not None:
        error["attempts"] = attempts
    request_id = request_id or get_request_id()
    if request_id:
        error["request_id"] = request_id
    return {"error": error}


def error_json(
    code: ApiErrorCode,
    message: str,
    *,
    status_code: int | None = None,
    attempts: list[dict[str, Any]] | None = None,
) -> JSONResponse:
    """Error envelope as a response; the status defaults to the code's status."""
    return JSONResponse(
        status_code=status_code or ERROR_CODE_TO_STATUS.get(code, 500),
        content=error_response(code, message, attempts=attempts),
    )


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return error_json(exc.code, exc.message, status_code=exc.status_code)


async def generation_error_handler(request: Request, exc: GenerationError) -> JSONResponse:
    """Render a failed generation with its own status and the attempt log."""
    return error_json(
        ApiErrorCode.E_GENERATION_FAILED,
        exc.message,
        status_code=exc.status,
        attempts=[attempt.to_dict() for attempt in exc.attempts],
    )


async def http_exception_handler(request: Request, exc: Any) -> JSONResponse:
    code = HTTP_STATUS_TO_CODE.get(exc.status_code, ApiErrorCode.E_INTERNAL)
    message = str(exc.detail) if exc.detail else "An error occurred"
    return error_json(code, message, status_code=exc.status_code)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """500 with E_INTERNAL; the exception is logged, never sent to the client."""
    logger.exception("http.unhandled_exception", exc_type=type(exc).__name__)
    return error_json(ApiErrorCode.E_INTERNAL, "Internal server error")
