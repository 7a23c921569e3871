"""Abstract base class for backend adapters.

Each adapter executes exactly one attempt against one backend, buffered or
streamed, and never retries. Backend quirks (message shapes, auth header
placement, base-URL normalization, max-token clamps) stay inside the adapter.

Rules:
- No retries inside adapters
- No logging of request/response bodies
- Non-2xx responses are raised as httpx.HTTPStatusError with the body read,
  so the orchestrator's classifier can extract a detail
- Stream-level error events are raised as ProviderResponseError
- HTML extraction runs on the buffered text or the concatenated stream
"""

import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

import httpx

from arena.config import Settings, get_settings
from arena.services.generation.errors import ProviderResponseError
from arena.services.generation.html import extract_html_document
from arena.services.generation.types import (
    AdapterInput,
    AdapterOutput,
    OnToken,
    ProviderChunk,
    ProviderResponse,
)

TEMPERATURE = 0.2
CONNECT_TIMEOUT_S = 10.0


def coerce_message_content(value: Any) -> str:
    """Flatten string or list-of-parts message content into text."""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        parts = []
        for item in value:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
            else:
                parts.append("")
        return "\n".join(parts)
    return ""


class ProviderAdapter(ABC):
    """Base class for backend adapters.

    Subclasses implement ``generate`` (buffered) and ``generate_stream``
    (server-sent events); the base class turns either into an AdapterOutput.

    Attributes:
        name: Backend id used in requests and attempt logs
        label: Display name used in user-facing messages
        not_found_target: What a 404 failed to find on (defaults to label)
        supports_provider_routing: Whether the attempt planner applies
        supports_image_input: Whether a reference image is sent at all
        default_max_tokens: Used when GENERATION_MAX_TOKENS is not set
    """

    name: str = ""
    label: str = ""
    not_found_target: str | None = None
    supports_provider_routing: bool = False
    supports_image_input: bool = True
    default_max_tokens: int = 32_768

    def __init__(self, client: httpx.AsyncClient, settings: Settings | None = None):
        """Initialize adapter with shared HTTP client.

        Args:
            client: Shared httpx.AsyncClient for connection pooling.
            settings: Settings override (defaults to cached settings).
        """
        self._client = client
        self._settings = settings or get_settings()

    @property
    def max_output_tokens(self) -> int:
        return self._settings.generation_max_tokens or self.default_max_tokens

    async def request_once(self, input: AdapterInput, *, timeout_s: float) -> AdapterOutput:
        """Buffered attempt: one request, one response, then HTML extraction.

        Raises:
            httpx.HTTPStatusError: On non-2xx HTTP response.
            httpx.TimeoutException: On request timeout.
            ProviderResponseError: On malformed 2xx bodies.
            HtmlValidationError: If the output has no HTML document.
        """
        response = await self.generate(input, timeout_s=timeout_s)
        return AdapterOutput(
            html=extract_html_document(response.text),
            usage=response.usage,
            finish_reason=response.finish_reason,
        )

    async def request_streamed(
        self,
        input: AdapterInput,
        on_token: OnToken,
        *,
        timeout_s: float,
    ) -> AdapterOutput:
        """Streamed attempt: forward every non-empty delta, extract HTML at stream end.

        Raises:
            Same as request_once, plus ProviderResponseError for stream error events.
        """
        parts: list[str] = []
        usage = None
        finish_reason = None

        async with aclosing(self.generate_stream(input, timeout_s=timeout_s)) as chunks:
            async for chunk in chunks:
                if chunk.delta_text:
                    parts.append(chunk.delta_text)
                    await on_token(chunk.delta_text)
                if chunk.usage is not None:
                    usage = chunk.usage
                if chunk.finish_reason:
                    finish_reason = chunk.finish_reason
                if chunk.done:
                    break

        return AdapterOutput(
            html=extract_html_document("".join(parts)),
            usage=usage,
            finish_reason=finish_reason,
        )

    @abstractmethod
    async def generate(self, input: AdapterInput, *, timeout_s: float) -> ProviderResponse:
        """Non-streaming call. Returns the raw text and usage."""
        pass

    @abstractmethod
    async def generate_stream(
        self, input: AdapterInput, *, timeout_s: float
    ) -> AsyncIterator[ProviderChunk]:
        """Streaming call. Yields chunks in arrival order."""
        pass
        # Abstract async generator, must yield to be valid
        yield  # type: ignore

    def _timeout(self, timeout_s: float) -> httpx.Timeout:
        return httpx.Timeout(timeout_s, connect=min(CONNECT_TIMEOUT_S, timeout_s))

    async def _post_json(
        self,
        url: str,
        *,
        headers: dict[str, str],
        body: dict[str, Any],
        timeout_s: float,
    ) -> dict[str, Any]:
        response = await self._client.post(
            url,
            headers=headers,
            json=body,
            timeout=self._timeout(timeout_s),
        )
        response.raise_for_status()

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderResponseError(
                502, f"{self.label} returned a non-JSON response.", provider=self.name
            ) from e

        if not isinstance(data, dict):
            raise ProviderResponseError(
                502, f"{self.label} returned an unexpected response.", provider=self.name
            )
        return data

    async def _iter_sse_json(
        self,
        url: str,
        *,
        headers: dict[str, str],
        body: dict[str, Any],
        timeout_s: float,
    ) -> AsyncIterator[dict[str, Any]]:
        """POST and yield each JSON ``data:`` payload until ``[DONE]`` or stream end."""
        async with self._client.stream(
            "POST",
            url,
            headers=headers,
            json=body,
            timeout=self._timeout(timeout_s),
        ) as response:
            if response.is_error:
                # Read the body so the classifier can see the error detail
                await response.aread()
                response.raise_for_status()

            async for line in response.aiter_lines():
                if not line.startswith("data:"):
                    continue

                data_str = line[5:].strip()
                if not data_str:
                    continue
                if data_str == "[DONE]":
                    return

                try:
                    data = json.loads(data_str)
                except json.JSONDecodeError:
                    continue

                if isinstance(data, dict):
                    yield data
