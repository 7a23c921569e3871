"""Hugging Face inference router adapter.

The router speaks the OpenAI chat completions protocol. Differences:
- Base URL from HF_BASE_URL, normalized to ".../v1"
- Routing provider selected by a ":provider" suffix on the model id
- Optional X-HF-Bill-To header charging an organization
- max_tokens (default 8,192) instead of max_completion_tokens
- Text-only: reference images are never sent
"""

from urllib.parse import urlsplit

from arena.config import DEFAULT_HF_BASE_URL
from arena.services.generation.openai_adapter import CHAT_COMPLETIONS_SUFFIX, OpenAIAdapter
from arena.services.generation.types import AdapterInput

BILL_TO_HEADER = "X-HF-Bill-To"


def resolve_hf_base_url(raw_base_url: str | None) -> str:
    """Normalize a configured router URL to its ``/v1`` API root.

    Strips a trailing ``/chat/completions`` and collapses deeper ``/v1/...``
    paths. An empty path becomes ``/v1``.

    Args:
        raw_base_url: Configured base URL (may be empty).

    Returns:
        Normalized base URL without a trailing slash.
    """
    value = (raw_base_url or "").strip()
    if not value:
        return DEFAULT_HF_BASE_URL

    parts = urlsplit(value)
    if not parts.scheme or not parts.netloc:
        trimmed = value.rstrip("/")
        if trimmed.endswith(CHAT_COMPLETIONS_SUFFIX):
            return trimmed[: -len(CHAT_COMPLETIONS_SUFFIX)]
        if trimmed.endswith("/v1"):
            return trimmed
        return f"{trimmed}/v1"

    path = parts.path.rstrip("/")
    if path.endswith(CHAT_COMPLETIONS_SUFFIX):
        path = path[: -len(CHAT_COMPLETIONS_SUFFIX)]

    if not path or path == "/":
        path = "/v1"
    elif path.startswith("/v1/"):
        path = "/v1"

    return f"{parts.scheme}://{parts.netloc}{path}"


class HuggingFaceAdapter(OpenAIAdapter):
    """Hugging Face router adapter (OpenAI-compatible)."""

    name = "huggingface"
    label = "Hugging Face"
    not_found_target = "Hugging Face inference providers"
    supports_provider_routing = True
    supports_image_input = False
    default_max_tokens = 8_192
    max_tokens_field = "max_tokens"
    include_stream_usage = False

    @property
    def base_url(self) -> str:
        return resolve_hf_base_url(self._settings.hf_base_url)

    def _build_headers(self, input: AdapterInput) -> dict[str, str]:
        headers = super()._build_headers(input)
        if input.bill_to:
            headers[BILL_TO_HEADER] = input.bill_to
        return headers
