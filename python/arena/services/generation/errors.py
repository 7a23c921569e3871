"""Generation error types and classification.

- Classifies raw adapter failures into a status + retryable + detail triple
- Called by the orchestrator after catching adapter exceptions
- One place for every backend: status-carrying errors, transport errors, and
  anything unexpected all flow through ``classify_error``

Retry policy:
- Status 408, 429 and >= 500 are retryable
- Transport timeouts and connection failures map to 504, retryable
- Unknown failures map to 502, retryable (presumed transient)
- HTML validation failures are 422 and never retryable
"""

import asyncio
import json
import re
import socket
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from arena.services.generation.types import GenerationAttempt

MAX_ERROR_DETAIL_CHARS = 220

_LIKELY_HTML = re.compile(r"<!doctype html|<html[\s>]", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")
_DETAIL_KEYS = ("error", "message", "detail", "reason")

_TRANSPORT_ERRORS: tuple[type[BaseException], ...] = (
    asyncio.TimeoutError,
    TimeoutError,
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
    ConnectionError,
    socket.gaierror,
)


class ErrorClass(str, Enum):
    """Normalized failure classes."""

    AUTH = "auth"
    NOT_FOUND = "not_found"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    SERVER = "server"
    VALIDATION = "validation"
    INVALID_REQUEST = "invalid_request"
    UNKNOWN_TRANSPORT = "unknown_transport"


class GenerationError(Exception):
    """Raised when a generation run fails.

    Always carries the entire attempt log accumulated so far.

    Attributes:
        message: User-facing message
        status: HTTP-like status for the failure
        attempts: Every attempt made, in order
    """

    def __init__(
        self,
        message: str,
        status: int = 500,
        attempts: Iterable[GenerationAttempt] = (),
    ):
        self.message = message
        self.status = status
        self.attempts: tuple[GenerationAttempt, ...] = tuple(attempts)
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "status": self.status,
            "attempts": [attempt.to_dict() for attempt in self.attempts],
        }


class HtmlValidationError(Exception):
    """Model output did not contain a usable HTML document (422)."""

    status = 422

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ProviderResponseError(Exception):
    """A backend reported a failure without a non-2xx response.

    Raised for error events inside a stream and for malformed 2xx bodies.
    """

    def __init__(self, status: int, detail: str | None, provider: str | None = None):
        self.status = status
        self.detail = detail
        self.provider = provider
        super().__init__(detail or f"Provider error ({status})")


@dataclass(frozen=True)
class ClassifiedError:
    status: int
    detail: str | None
    retryable: bool
    error_class: ErrorClass


def is_retryable_status(status: int) -> bool:
    """408, 429 and 5xx are worth another attempt."""
    return status in (408, 429) or status >= 500


def error_class_for_status(status: int) -> ErrorClass:
    if status in (401, 403):
        return ErrorClass.AUTH
    if status == 404:
        return ErrorClass.NOT_FOUND
    if status == 429:
        return ErrorClass.RATE_LIMIT
    if status in (408, 504):
        return ErrorClass.TIMEOUT
    if status == 422:
        return ErrorClass.VALIDATION
    if status >= 500:
        return ErrorClass.SERVER
    return ErrorClass.INVALID_REQUEST


def _normalize_plain_text(value: str) -> str:
    return _WHITESPACE.sub(" ", value).strip()


def _find_message(value: Any) -> str | None:
    if isinstance(value, str):
        normalized = _normalize_plain_text(value)
        return normalized or None

    if isinstance(value, list):
        for item in value:
            message = _find_message(item)
            if message:
                return message
        return None

    if isinstance(value, dict):
        for key in _DETAIL_KEYS:
            message = _find_message(value.get(key))
            if message:
                return message
        for nested in value.values():
            message = _find_message(nested)
            if message:
                return message

    return None


def extract_error_detail(value: Any) -> str | None:
    """Pull the first plain-text message out of an error payload.

    Searches dicts (keys error, message, detail, reason first, then any value)
    and lists recursively. HTML-looking strings such as gateway error pages
    are discarded.

    Args:
        value: Parsed JSON payload or raw text.

    Returns:
        Whitespace-collapsed detail truncated to 220 characters, or None.
    """
    if isinstance(value, str):
        if _LIKELY_HTML.search(value):
            return None
        message = _normalize_plain_text(value) or None
    else:
        message = _find_message(value)

    if message is None or _LIKELY_HTML.search(message):
        return None
    return message[:MAX_ERROR_DETAIL_CHARS]


def response_error_detail(response: httpx.Response) -> str | None:
    """Extract a detail from an error response body, JSON first then text."""
    try:
        body = response.content
    except httpx.ResponseNotRead:
        return None

    if not body:
        return None

    try:
        payload = json.loads(body)
    except ValueError:
        return extract_error_detail(response.text)
    return extract_error_detail(payload)


def classify_error(exc: BaseException) -> ClassifiedError:
    """Classify any adapter failure.

    Args:
        exc: The exception raised by an adapter call.

    Returns:
        ClassifiedError with status, detail, retryable flag and class.
    """
    if isinstance(exc, HtmlValidationError):
        return ClassifiedError(exc.status, exc.message, False, ErrorClass.VALIDATION)

    if isinstance(exc, ProviderResponseError):
        return ClassifiedError(
            exc.status,
            extract_error_detail(exc.detail) if exc.detail else None,
            is_retryable_status(exc.status),
            error_class_for_status(exc.status),
        )

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return ClassifiedError(
            status,
            response_error_detail(exc.response),
            is_retryable_status(status),
            error_class_for_status(status),
        )

    if isinstance(exc, _TRANSPORT_ERRORS):
        return ClassifiedError(504, extract_error_detail(str(exc)), True, ErrorClass.TIMEOUT)

    return ClassifiedError(
        502, extract_error_detail(str(exc)), True, ErrorClass.UNKNOWN_TRANSPORT
    )


def build_user_message(
    status: int,
    detail: str | None,
    backend_label: str,
    not_found_target: str | None = None,
) -> str:
    """Map a classified failure to a friendly sentence.

    Args:
        status: Classified status.
        detail: Classified detail, if any.
        backend_label: Display name of the backend, e.g. "Hugging Face".
        not_found_target: What a 404 failed to find on, defaults to backend_label.

    Returns:
        Canned message per class, or "<backend> request failed (<status>): <detail>".
    """
    short_detail = detail[:MAX_ERROR_DETAIL_CHARS] if detail else None

    if status in (401, 403):
        return f"Invalid {backend_label} API key."
    if status == 404:
        return f"Model ID or provider not found on {not_found_target or backend_label}."
    if status in (408, 504):
        return (
            f"{backend_label} provider timed out. "
            "Try another provider, retry, or use a faster model."
        )
    if status == 429:
        return f"{backend_label} rate limit reached. Retry in a moment."
    if status >= 500:
        return f"{backend_label} provider is temporarily unavailable. Retry shortly."
    if short_detail:
        return f"{backend_label} request failed ({status}): {short_detail}"
    return f"{backend_label} request failed ({status})."


def _mentions_any(text: str, needles: Sequence[str]) -> bool:
    return any(needle in text for needle in needles)


def is_streaming_unsupported_error(status: int, detail: str | None) -> bool:
    """A 400/404/422 whose detail says streaming is not available."""
    if status not in (400, 404, 422) or not detail:
        return False
    return _mentions_any(detail.lower(), ("stream", "not supported", "unsupported"))


def is_unsupported_image_input_error(status: int, detail: str | None) -> bool:
    """A 400/422 whose detail says image input is not available."""
    if status not in (400, 422) or not detail:
        return False
    normalized = detail.lower()
    if "image" not in normalized:
        return False
    return _mentions_any(
        normalized, ("not support", "unsupported", "only text", "invalid type")
    )
