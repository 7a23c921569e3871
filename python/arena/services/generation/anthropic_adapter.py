"""Anthropic Messages adapter.

- Endpoint: POST {ANTHROPIC_BASE_URL}/v1/messages
- Headers: x-api-key: <key>, anthropic-version: <ANTHROPIC_VERSION>, Content-Type: application/json

Request body:
{
  "model": "<model>",
  "max_tokens": 32768,
  "temperature": 0.2,
  "system": "<system_prompt>",
  "messages": [{"role": "user", "content": "..." | [text block, image block]}]
}

Response (non-stream):
- text = content[].text where type="text", joined with newlines
- usage = input_tokens / output_tokens / cache_read_input_tokens
- finish_reason = stop_reason

Streaming:
- message_start carries input usage
- content_block_delta carries text_delta text
- message_delta carries output usage and stop_reason
- error carries {"error": {"type": ..., "message": ...}}
- message_stop is terminal
"""

from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

from arena.logging import get_logger
from arena.services.generation.adapter import TEMPERATURE, ProviderAdapter
from arena.services.generation.errors import ProviderResponseError, extract_error_detail
from arena.services.generation.pricing import usage_from_anthropic
from arena.services.generation.prompt import SYSTEM_PROMPT, build_user_prompt
from arena.services.generation.types import AdapterInput, ProviderChunk, ProviderResponse

logger = get_logger(__name__)

MESSAGES_PATH = "/v1/messages"

# Stream error types mapped onto HTTP statuses for the classifier
STREAM_ERROR_STATUS = {
    "invalid_request_error": 400,
    "authentication_error": 401,
    "permission_error": 403,
    "not_found_error": 404,
    "request_too_large": 413,
    "rate_limit_error": 429,
    "api_error": 500,
    "overloaded_error": 529,
}


class AnthropicAdapter(ProviderAdapter):
    """Anthropic Messages API adapter."""

    name = "anthropic"
    label = "Anthropic"
    default_max_tokens = 32_768

    @property
    def messages_url(self) -> str:
        return f"{self._settings.anthropic_base_url}{MESSAGES_PATH}"

    async def generate(self, input: AdapterInput, *, timeout_s: float) -> ProviderResponse:
        """Non-streaming message creation."""
        data = await self._post_json(
            self.messages_url,
            headers=self._build_headers(input),
            body=self._build_request_body(input, stream=False),
            timeout_s=timeout_s,
        )
        return self._parse_response(data)

    async def generate_stream(
        self, input: AdapterInput, *, timeout_s: float
    ) -> AsyncIterator[ProviderChunk]:
        """Streaming message creation using Server-Sent Events."""
        events = self._iter_sse_json(
            self.messages_url,
            headers=self._build_headers(input),
            body=self._build_request_body(input, stream=True),
            timeout_s=timeout_s,
        )
        # Input usage arrives in message_start, output usage in message_delta
        raw_usage: dict[str, Any] = {}

        async with aclosing(events) as stream:
            async for data in stream:
                event_type = data.get("type", "")

                if event_type == "error":
                    raise self._stream_error(data.get("error"))

                if event_type == "message_start":
                    message = data.get("message") or {}
                    raw_usage.update(message.get("usage") or {})
                    continue

                if event_type == "content_block_delta":
                    delta = data.get("delta") or {}
                    if delta.get("type") == "text_delta" and delta.get("text"):
                        yield ProviderChunk(delta_text=delta["text"])
                    continue

                if event_type == "message_delta":
                    raw_usage.update(data.get("usage") or {})
                    stop_reason = (data.get("delta") or {}).get("stop_reason")
                    yield ProviderChunk(
                        usage=usage_from_anthropic(raw_usage),
                        finish_reason=stop_reason,
                    )
                    continue

                if event_type == "message_stop":
                    yield ProviderChunk(done=True)
                    return

    def _build_headers(self, input: AdapterInput) -> dict[str, str]:
        return {
            "x-api-key": input.api_key,
            "anthropic-version": self._settings.anthropic_version,
            "Content-Type": "application/json",
        }

    def _build_user_content(self, input: AdapterInput) -> str | list[dict[str, Any]]:
        user_prompt = build_user_prompt(input.prompt, input.baseline_html)
        image = input.reference_image
        if image is None:
            return user_prompt

        return [
            {"type": "text", "text": user_prompt},
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": image.mime_type,
                    "data": image.base64_data,
                },
            },
        ]

    def _build_request_body(self, input: AdapterInput, stream: bool) -> dict[str, Any]:
        return {
            "model": input.model,
            "max_tokens": self.max_output_tokens,
            "temperature": TEMPERATURE,
            "system": SYSTEM_PROMPT,
            "messages": [{"role": "user", "content": self._build_user_content(input)}],
            "stream": stream,
        }

    def _parse_response(self, data: dict[str, Any]) -> ProviderResponse:
        content = data.get("content")
        if not isinstance(content, list):
            content = []

        text = "\n".join(
            block.get("text") or ""
            for block in content
            if isinstance(block, dict) and block.get("type") == "text"
        )
        return ProviderResponse(
            text=text.strip(),
            usage=usage_from_anthropic(data.get("usage")),
            finish_reason=data.get("stop_reason"),
        )

    def _stream_error(self, error: Any) -> ProviderResponseError:
        error_type = error.get("type") if isinstance(error, dict) else None
        status = STREAM_ERROR_STATUS.get(error_type or "", 502)
        detail = extract_error_detail(error.get("message")) if isinstance(error, dict) else None
        return ProviderResponseError(status, detail or error_type, provider=self.name)
