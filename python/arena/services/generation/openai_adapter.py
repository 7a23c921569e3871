"""OpenAI-compatible chat completions adapter.

- Endpoint: POST {OPENAI_BASE_URL}/chat/completions
- Headers: Authorization: Bearer <key>, Content-Type: application/json
- Streaming: Server-Sent Events with data: {...} format, terminal data: [DONE]
- Usage arrives in the final stream chunk when stream_options.include_usage is set

Request body:
{
  "model": "<model>",
  "messages": [
    {"role": "system", "content": "..."},
    {"role": "user", "content": "..." | [{"type": "text", ...}, {"type": "image_url", ...}]}
  ],
  "temperature": 0.2,
  "max_completion_tokens": 32768,
  "stream": false
}

Response (non-stream) - extract:
- text = choices[0].message.content (string or list of text parts)
- finish_reason = choices[0].finish_reason
- usage = prompt_tokens / completion_tokens / total_tokens /
  prompt_tokens_details.cached_tokens
"""

from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

from arena.logging import get_logger
from arena.services.generation.adapter import (
    TEMPERATURE,
    ProviderAdapter,
    coerce_message_content,
)
from arena.services.generation.errors import ProviderResponseError, extract_error_detail
from arena.services.generation.pricing import usage_from_openai
from arena.services.generation.prompt import SYSTEM_PROMPT, build_user_prompt
from arena.services.generation.types import AdapterInput, ProviderChunk, ProviderResponse

logger = get_logger(__name__)

CHAT_COMPLETIONS_SUFFIX = "/chat/completions"


class OpenAIAdapter(ProviderAdapter):
    """OpenAI chat completions adapter.

    Also the base for other OpenAI-compatible backends, which override the
    base URL, the max-tokens field name and the extra headers.
    """

    name = "openai"
    label = "OpenAI"
    default_max_tokens = 32_768
    max_tokens_field = "max_completion_tokens"
    include_stream_usage = True

    @property
    def base_url(self) -> str:
        return self._settings.openai_base_url

    @property
    def chat_url(self) -> str:
        return f"{self.base_url}{CHAT_COMPLETIONS_SUFFIX}"

    async def generate(self, input: AdapterInput, *, timeout_s: float) -> ProviderResponse:
        """Non-streaming chat completion."""
        data = await self._post_json(
            self.chat_url,
            headers=self._build_headers(input),
            body=self._build_request_body(input, stream=False),
            timeout_s=timeout_s,
        )
        return self._parse_response(data)

    async def generate_stream(
        self, input: AdapterInput, *, timeout_s: float
    ) -> AsyncIterator[ProviderChunk]:
        """Streaming chat completion using Server-Sent Events."""
        events = self._iter_sse_json(
            self.chat_url,
            headers=self._build_headers(input),
            body=self._build_request_body(input, stream=True),
            timeout_s=timeout_s,
        )
        async with aclosing(events) as stream:
            async for data in stream:
                chunk = self._parse_stream_event(data)
                if chunk is not None:
                    yield chunk

    def _build_headers(self, input: AdapterInput) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {input.api_key}",
            "Content-Type": "application/json",
        }

    def _build_messages(self, input: AdapterInput) -> list[dict[str, Any]]:
        user_prompt = build_user_prompt(input.prompt, input.baseline_html)
        image = input.reference_image if self.supports_image_input else None

        user_content: str | list[dict[str, Any]] = user_prompt
        if image is not None:
            user_content = [
                {"type": "text", "text": user_prompt},
                {"type": "image_url", "image_url": {"url": image.data_url}},
            ]

        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": user_content},
        ]

    def _build_request_body(self, input: AdapterInput, stream: bool) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": input.model,
            "messages": self._build_messages(input),
            "temperature": TEMPERATURE,
            self.max_tokens_field: self.max_output_tokens,
            "stream": stream,
        }
        if stream and self.include_stream_usage:
            body["stream_options"] = {"include_usage": True}
        return body

    def _parse_response(self, data: dict[str, Any]) -> ProviderResponse:
        choices = data.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            raise ProviderResponseError(
                502, f"{self.label} response missing choices", provider=self.name
            )

        choice = choices[0]
        message = choice.get("message") or {}
        return ProviderResponse(
            text=coerce_message_content(message.get("content")),
            usage=usage_from_openai(data.get("usage")),
            finish_reason=choice.get("finish_reason"),
        )

    def _parse_stream_event(self, data: dict[str, Any]) -> ProviderChunk | None:
        if "error" in data:
            raise self._stream_error(data["error"])

        usage = usage_from_openai(data.get("usage"))
        choices = data.get("choices") or []
        choice = choices[0] if choices and isinstance(choices[0], dict) else {}
        delta = choice.get("delta") or {}
        delta_text = coerce_message_content(delta.get("content"))
        finish_reason = choice.get("finish_reason")

        if not delta_text and usage is None and not finish_reason:
            return None
        return ProviderChunk(delta_text=delta_text, usage=usage, finish_reason=finish_reason)

    def _stream_error(self, error: Any) -> ProviderResponseError:
        status = 502
        if isinstance(error, dict):
            for key in ("status", "status_code", "http_status_code", "code"):
                value = error.get(key)
                if isinstance(value, int) and not isinstance(value, bool) and value >= 400:
                    status = value
                    break
        return ProviderResponseError(status, extract_error_detail(error), provider=self.name)
