"""Google Generative Language (Gemini) adapter.

- Endpoint: POST {GOOGLE_BASE_URL}/v1beta/models/{model}:generateContent
- Streaming: POST ...:streamGenerateContent?alt=sse
- Headers: x-goog-api-key: <key>, Content-Type: application/json

Request body:
{
  "systemInstruction": {"parts": [{"text": "<system_prompt>"}]},
  "contents": [{"role": "user", "parts": [{"text": "..."}, {"inlineData": {...}}]}],
  "generationConfig": {"temperature": 0.2, "maxOutputTokens": 8192}
}

Response:
- text = candidates[0].content.parts[].text joined with newlines
- usage = usageMetadata.promptTokenCount / candidatesTokenCount /
  totalTokenCount / cachedContentTokenCount
- finish_reason = candidates[0].finishReason

Streaming events have the same shape as the buffered response, each carrying
only the new parts.
"""

from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any
from urllib.parse import quote

from arena.logging import get_logger
from arena.services.generation.adapter import TEMPERATURE, ProviderAdapter
from arena.services.generation.errors import ProviderResponseError, extract_error_detail
from arena.services.generation.pricing import usage_from_google
from arena.services.generation.prompt import SYSTEM_PROMPT, build_user_prompt
from arena.services.generation.types import AdapterInput, ProviderChunk, ProviderResponse

logger = get_logger(__name__)

MAX_OUTPUT_TOKENS = 8_192


class GoogleAdapter(ProviderAdapter):
    """Google generateContent adapter."""

    name = "google"
    label = "Google"
    default_max_tokens = MAX_OUTPUT_TOKENS

    @property
    def max_output_tokens(self) -> int:
        return min(super().max_output_tokens, MAX_OUTPUT_TOKENS)

    def _model_url(self, model: str, method: str) -> str:
        return f"{self._settings.google_base_url}/v1beta/models/{quote(model, safe='')}:{method}"

    async def generate(self, input: AdapterInput, *, timeout_s: float) -> ProviderResponse:
        """Non-streaming content generation."""
        data = await self._post_json(
            self._model_url(input.model, "generateContent"),
            headers=self._build_headers(input),
            body=self._build_request_body(input),
            timeout_s=timeout_s,
        )
        return self._parse_response(data)

    async def generate_stream(
        self, input: AdapterInput, *, timeout_s: float
    ) -> AsyncIterator[ProviderChunk]:
        """Streaming content generation using Server-Sent Events."""
        events = self._iter_sse_json(
            self._model_url(input.model, "streamGenerateContent") + "?alt=sse",
            headers=self._build_headers(input),
            body=self._build_request_body(input),
            timeout_s=timeout_s,
        )
        async with aclosing(events) as stream:
            async for data in stream:
                if "error" in data:
                    raise self._stream_error(data["error"])

                response = self._parse_response(data, join_with="")
                if response.text or response.usage or response.finish_reason:
                    yield ProviderChunk(
                        delta_text=response.text,
                        usage=response.usage,
                        finish_reason=response.finish_reason,
                    )

    def _build_headers(self, input: AdapterInput) -> dict[str, str]:
        return {
            "x-goog-api-key": input.api_key,
            "Content-Type": "application/json",
        }

    def _build_user_parts(self, input: AdapterInput) -> list[dict[str, Any]]:
        parts: list[dict[str, Any]] = [
            {"text": build_user_prompt(input.prompt, input.baseline_html)}
        ]
        image = input.reference_image
        if image is not None:
            parts.append({"inlineData": {"mimeType": image.mime_type, "data": image.base64_data}})
        return parts

    def _build_request_body(self, input: AdapterInput) -> dict[str, Any]:
        return {
            "systemInstruction": {"parts": [{"text": SYSTEM_PROMPT}]},
            "contents": [{"role": "user", "parts": self._build_user_parts(input)}],
            "generationConfig": {
                "temperature": TEMPERATURE,
                "maxOutputTokens": self.max_output_tokens,
            },
        }

    def _parse_response(self, data: dict[str, Any], join_with: str = "\n") -> ProviderResponse:
        candidates = data.get("candidates")
        candidate = candidates[0] if isinstance(candidates, list) and candidates else {}
        if not isinstance(candidate, dict):
            candidate = {}

        parts = (candidate.get("content") or {}).get("parts")
        if not isinstance(parts, list):
            parts = []

        text = join_with.join(
            part["text"] for part in parts if isinstance(part, dict) and isinstance(part.get("text"), str)
        )
        return ProviderResponse(
            text=text,
            usage=usage_from_google(data.get("usageMetadata")),
            finish_reason=candidate.get("finishReason"),
        )

    def _stream_error(self, error: Any) -> ProviderResponseError:
        status = 502
        if isinstance(error, dict):
            code = error.get("code")
            if isinstance(code, int) and not isinstance(code, bool) and code >= 400:
                status = code
        detail = extract_error_detail(error)
        return ProviderResponseError(status, detail, provider=self.name)
