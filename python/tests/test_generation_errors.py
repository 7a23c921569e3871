"""Tests for generation error classification and user-facing messages.

Coverage:
- Status-carrying errors: retryable iff 408, 429 or >= 500
- Transport errors: 504, retryable
- Unknown errors: 502, retryable
- HTML validation: 422, never retryable
- Detail extraction: recursive, plain text only, truncated
- Fallback predicates for streaming and image input
"""

import asyncio
import socket

import httpx
import pytest

from arena.services.generation.errors import (
    MAX_ERROR_DETAIL_CHARS,
    ErrorClass,
    GenerationError,
    HtmlValidationError,
    ProviderResponseError,
    build_user_message,
    classify_error,
    extract_error_detail,
    is_retryable_status,
    is_streaming_unsupported_error,
    is_unsupported_image_input_error,
)
from arena.services.generation.types import GenerationAttempt


def _status_error(status: int, **kwargs) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://example.test/v1/chat/completions")
    response = httpx.Response(status, request=request, **kwargs)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


class TestIsRetryableStatus:
    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503, 504, 529])
    def test_retryable(self, status):
        assert is_retryable_status(status) is True

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 413, 422])
    def test_not_retryable(self, status):
        assert is_retryable_status(status) is False


class TestClassifyError:
    def test_http_status_error_uses_response_status_and_json_detail(self):
        exc = _status_error(429, json={"error": {"message": "Too many requests"}})

        classified = classify_error(exc)

        assert classified.status == 429
        assert classified.retryable is True
        assert classified.detail == "Too many requests"
        assert classified.error_class == ErrorClass.RATE_LIMIT

    def test_http_404_is_fatal(self):
        classified = classify_error(_status_error(404, json={"error": "Model not found"}))

        assert classified.status == 404
        assert classified.retryable is False
        assert classified.error_class == ErrorClass.NOT_FOUND

    def test_plain_text_body_becomes_detail(self):
        classified = classify_error(_status_error(400, text="bad   request\nbody"))

        assert classified.detail == "bad request body"

    def test_html_gateway_page_is_discarded(self):
        html = "<!DOCTYPE html><html><body><h1>502 Bad Gateway</h1></body></html>"

        classified = classify_error(_status_error(502, text=html))

        assert classified.status == 502
        assert classified.retryable is True
        assert classified.detail is None

    def test_provider_response_error(self):
        classified = classify_error(ProviderResponseError(529, "Overloaded", provider="anthropic"))

        assert classified.status == 529
        assert classified.retryable is True
        assert classified.error_class == ErrorClass.SERVER

    def test_html_validation_error_is_never_retryable(self):
        classified = classify_error(HtmlValidationError("Model returned empty output."))

        assert classified.status == 422
        assert classified.retryable is False
        assert classified.error_class == ErrorClass.VALIDATION

    @pytest.mark.parametrize(
        "exc",
        [
            asyncio.TimeoutError(),
            TimeoutError("timed out"),
            httpx.ReadTimeout("Read timed out"),
            httpx.ConnectError("connection refused"),
            httpx.ReadError("connection reset"),
            ConnectionResetError("reset by peer"),
            socket.gaierror("Name or service not known"),
        ],
    )
    def test_transport_errors_are_504_retryable(self, exc):
        classified = classify_error(exc)

        assert classified.status == 504
        assert classified.retryable is True
        assert classified.error_class == ErrorClass.TIMEOUT

    def test_unknown_errors_are_502_retryable(self):
        classified = classify_error(RuntimeError("something odd"))

        assert classified.status == 502
        assert classified.retryable is True
        assert classified.detail == "something odd"
        assert classified.error_class == ErrorClass.UNKNOWN_TRANSPORT


class TestExtractErrorDetail:
    def test_prefers_known_keys(self):
        payload = {"meta": "ignored first?", "error": {"message": "Quota exceeded"}}

        assert extract_error_detail(payload) == "Quota exceeded"

    def test_falls_back_to_any_nested_value(self):
        assert extract_error_detail({"errors": [{"msg": "deep text"}]}) == "deep text"

    def test_truncates_long_details(self):
        detail = extract_error_detail({"message": "x" * 1000})

        assert detail is not None
        assert len(detail) == MAX_ERROR_DETAIL_CHARS

    def test_none_for_empty_payloads(self):
        assert extract_error_detail({}) is None
        assert extract_error_detail("   ") is None
        assert extract_error_detail(None) is None


class TestBuildUserMessage:
    @pytest.mark.parametrize(
        "status, expected",
        [
            (401, "Invalid Hugging Face API key."),
            (403, "Invalid Hugging Face API key."),
            (404, "Model ID or provider not found on Hugging Face inference providers."),
            (
                504,
                "Hugging Face provider timed out. Try another provider, retry, or use a faster model.",
            ),
            (429, "Hugging Face rate limit reached. Retry in a moment."),
            (503, "Hugging Face provider is temporarily unavailable. Retry shortly."),
        ],
    )
    def test_canned_messages(self, status, expected):
        message = build_user_message(
            status, "raw detail", "Hugging Face", "Hugging Face inference providers"
        )

        assert message == expected

    def test_not_found_defaults_to_backend_label(self):
        assert build_user_message(404, None, "OpenAI") == "Model ID or provider not found on OpenAI."

    def test_other_status_includes_detail(self):
        assert (
            build_user_message(400, "max_tokens too large", "OpenAI")
            == "OpenAI request failed (400): max_tokens too large"
        )

    def test_other_status_without_detail(self):
        assert build_user_message(400, None, "Google") == "Google request failed (400)."


class TestFallbackPredicates:
    @pytest.mark.parametrize(
        "status, detail, expected",
        [
            (400, "Streaming is not supported for this model", True),
            (404, "stream endpoint unavailable", True),
            (422, "Unsupported parameter: stream", True),
            (400, "max_tokens too large", False),
            (500, "stream crashed", False),
            (400, None, False),
        ],
    )
    def test_streaming_unsupported(self, status, detail, expected):
        assert is_streaming_unsupported_error(status, detail) is expected

    @pytest.mark.parametrize(
        "status, detail, expected",
        [
            (400, "This model does not support image input.", True),
            (422, "Image content is unsupported", True),
            (400, "Model accepts only text; image parts rejected", True),
            (400, "Invalid type for image_url part", True),
            (400, "Image too large", False),
            (404, "image not supported", False),
            (400, "Streaming not supported", False),
        ],
    )
    def test_unsupported_image_input(self, status, detail, expected):
        assert is_unsupported_image_input_error(status, detail) is expected


class TestGenerationError:
    def test_carries_full_attempt_log(self):
        attempts = [
            GenerationAttempt("m:novita", "novita", "error", True, 12, status_code=504),
            GenerationAttempt("m", "auto", "error", False, 9, status_code=404),
        ]

        error = GenerationError("Model ID or provider not found.", 404, attempts)

        assert error.status == 404
        assert len(error.attempts) == 2
        assert error.to_dict()["attempts"][0]["statusCode"] == 504
