"""Request boundary validation for generation requests.

Turns a raw GenerateRequest body into a validated GenerationRequest:
- Backend must be one of the supported backends
- A "model:provider" suffix becomes the routing hint (Hugging Face only)
- Routing tokens must match [a-z0-9][a-z0-9-]{0,63}, case-insensitive
- providerHint, providerCandidates and billTo are Hugging Face only
- Skill addendum is capped at MAX_SKILL_CONTENT_CHARS
- API key comes from the body, then the Authorization header, then the
  server-side key for the backend

All violations raise ApiError subclasses (400, or 401 for a missing key).
The attempt planner trusts what comes out of here.
"""

import base64
import binascii
import re
from collections.abc import Iterable

from arena.config import Settings
from arena.errors import ApiErrorCode, InvalidRequestError, MissingApiKeyError
from arena.schemas.generation import GenerateRequest, ReferenceImageIn
from arena.services.generation.planner import MAX_PROVIDER_CANDIDATES
from arena.services.generation.prompt import (
    MAX_SKILL_CONTENT_CHARS,
    SHARED_PROMPT,
    build_prompt_with_skill,
)
from arena.services.generation.types import AUTO_PROVIDER, GenerationRequest, ReferenceImage

HUGGINGFACE = "huggingface"
SUPPORTED_BACKENDS = (HUGGINGFACE, "openai", "anthropic", "google")

BACKEND_LABELS = {
    HUGGINGFACE: "Hugging Face",
    "openai": "OpenAI",
    "anthropic": "Anthropic",
    "google": "Google",
}

SUPPORTED_IMAGE_MIME_TYPES = frozenset(
    {"image/png", "image/jpeg", "image/webp", "image/gif"}
)
MAX_REFERENCE_IMAGE_BYTES = 5 * 1024 * 1024

_PROVIDER_TOKEN = re.compile(r"^[a-z0-9][a-z0-9-]{0,63}$", re.IGNORECASE)
_BILL_TO = re.compile(r"^[a-z0-9][a-z0-9._-]{0,127}$", re.IGNORECASE)


def parse_backend(value: str | None) -> str:
    """Normalize and validate the backend name.

    Raises:
        InvalidRequestError: If the backend is missing or unsupported.
    """
    normalized = (value or "").strip().lower()
    if normalized not in SUPPORTED_BACKENDS:
        raise InvalidRequestError(ApiErrorCode.E_PROVIDER_INVALID, "provider is invalid.")
    return normalized


def _validate_provider_token(value: str) -> None:
    if not _PROVIDER_TOKEN.match(value):
        raise InvalidRequestError(
            ApiErrorCode.E_PROVIDER_HINT_INVALID, "Provider format is invalid."
        )


def parse_model_and_provider_hint(
    model_input: str | None,
    provider_hint: str | None = None,
) -> tuple[str, str | None]:
    """Split a "model:provider" id into model id and lower-cased routing hint.

    The suffix wins over an explicit hint. A leading or trailing colon is not
    treated as a suffix.

    Args:
        model_input: Raw model id, possibly with a ":provider" suffix.
        provider_hint: Explicit routing hint from the request body.

    Returns:
        (model_id, provider_hint or None)

    Raises:
        InvalidRequestError: If the model id is empty or the hint is malformed.
    """
    trimmed_model = (model_input or "").strip()
    if not trimmed_model:
        raise InvalidRequestError(ApiErrorCode.E_MODEL_REQUIRED, "Model ID is required.")

    model_id = trimmed_model
    hint = (provider_hint or "").strip() or None

    suffix_index = trimmed_model.rfind(":")
    if 0 < suffix_index < len(trimmed_model) - 1:
        model_id = trimmed_model[:suffix_index].strip()
        hint = trimmed_model[suffix_index + 1 :].strip() or None

    if not model_id:
        raise InvalidRequestError(ApiErrorCode.E_MODEL_REQUIRED, "Model ID is required.")

    if hint is not None:
        _validate_provider_token(hint)
        hint = hint.lower()

    return model_id, hint


def parse_provider_candidates(values: Iterable[str] | None) -> list[str]:
    """Validate routing candidates: trim, lower-case, drop "auto", dedupe, cap at 8.

    Raises:
        InvalidRequestError: If any remaining candidate is malformed.
    """
    candidates: list[str] = []
    for raw in values or ():
        candidate = raw.strip().lower()
        if not candidate or candidate == AUTO_PROVIDER:
            continue
        _validate_provider_token(candidate)
        if candidate in candidates:
            continue
        candidates.append(candidate)
        if len(candidates) >= MAX_PROVIDER_CANDIDATES:
            break
    return candidates


def parse_bill_to(value: str | None) -> str | None:
    """Validate the organization to bill, if any.

    Raises:
        InvalidRequestError: If the value is malformed.
    """
    bill_to = (value or "").strip()
    if not bill_to:
        return None
    if not _BILL_TO.match(bill_to):
        raise InvalidRequestError(ApiErrorCode.E_BILL_TO_INVALID, "Bill To format is invalid.")
    return bill_to


def validate_backend_options(
    backend: str,
    *,
    provider_hint: str | None = None,
    provider_candidates: list[str] | None = None,
    bill_to: str | None = None,
) -> None:
    """Reject routing options on backends that do not route.

    Raises:
        InvalidRequestError: If a Hugging Face-only option is set for another backend.
    """
    if backend == HUGGINGFACE:
        return

    if (provider_hint or "").strip():
        raise InvalidRequestError(
            message="providerHint is supported only for Hugging Face."
        )
    if provider_candidates:
        raise InvalidRequestError(
            message="providerCandidates are supported only for Hugging Face."
        )
    if (bill_to or "").strip():
        raise InvalidRequestError(message="billTo is supported only for Hugging Face.")


def parse_skill_content(value: str | None) -> str | None:
    """Trim the skill addendum and enforce its size limit.

    Raises:
        InvalidRequestError: If the trimmed skill is too large.
    """
    skill = (value or "").strip()
    if not skill:
        return None
    if len(skill) > MAX_SKILL_CONTENT_CHARS:
        raise InvalidRequestError(
            ApiErrorCode.E_SKILL_TOO_LARGE,
            f"skillContent must be {MAX_SKILL_CONTENT_CHARS} characters or fewer.",
        )
    return skill


def parse_reference_image(image: ReferenceImageIn | None) -> ReferenceImage | None:
    """Validate an inline reference image.

    Raises:
        InvalidRequestError: On unsupported MIME type, bad base64 or oversized data.
    """
    if image is None:
        return None

    mime_type = image.mime_type.lower()
    if mime_type not in SUPPORTED_IMAGE_MIME_TYPES:
        raise InvalidRequestError(
            ApiErrorCode.E_IMAGE_INVALID, "referenceImage mimeType is not supported."
        )

    try:
        decoded = base64.b64decode(image.base64_data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidRequestError(
            ApiErrorCode.E_IMAGE_INVALID, "referenceImage base64Data is invalid."
        ) from e

    if not decoded:
        raise InvalidRequestError(
            ApiErrorCode.E_IMAGE_INVALID, "referenceImage base64Data is invalid."
        )
    if len(decoded) > MAX_REFERENCE_IMAGE_BYTES:
        raise InvalidRequestError(
            ApiErrorCode.E_IMAGE_INVALID, "referenceImage is too large."
        )

    return ReferenceImage(mime_type=mime_type, base64_data=image.base64_data)


def resolve_api_key(
    backend: str,
    settings: Settings,
    *,
    body_key: str | None = None,
    authorization: str | None = None,
) -> str:
    """Pick the backend credential: body, then bearer header, then server key.

    Raises:
        MissingApiKeyError: If no key is available.
    """
    key = (body_key or "").strip()
    if key:
        return key

    header = (authorization or "").strip()
    if header.lower().startswith("bearer "):
        key = header[7:].strip()
        if key:
            return key

    key = (settings.platform_api_key(backend) or "").strip()
    if key:
        return key

    raise MissingApiKeyError(f"Provide {BACKEND_LABELS.get(backend, backend)} API key.")


def build_generation_request(
    body: GenerateRequest,
    settings: Settings,
    *,
    authorization: str | None = None,
    trace_id: str | None = None,
) -> GenerationRequest:
    """Validate a request body into a GenerationRequest.

    Validation order: backend, model, backend-specific options, bill-to,
    skill, routing, image, then the API key.

    Raises:
        InvalidRequestError: On any malformed field.
        MissingApiKeyError: If no key is available.
    """
    backend = parse_backend(body.provider)

    if not (body.model_id or "").strip():
        raise InvalidRequestError(ApiErrorCode.E_MODEL_REQUIRED, "Model ID is required.")

    validate_backend_options(
        backend,
        provider_hint=body.provider_hint,
        provider_candidates=body.provider_candidates,
        bill_to=body.bill_to,
    )
    bill_to = parse_bill_to(body.bill_to)
    skill = parse_skill_content(body.skill_content)

    if backend == HUGGINGFACE:
        model_id, provider_hint = parse_model_and_provider_hint(body.model_id, body.provider_hint)
        provider_candidates = parse_provider_candidates(body.provider_candidates)
    else:
        model_id, provider_hint = body.model_id.strip(), None
        provider_candidates = []

    reference_image = parse_reference_image(body.reference_image)
    api_key = resolve_api_key(
        backend, settings, body_key=body.api_key, authorization=authorization
    )

    base_prompt = (body.prompt or "").strip() or SHARED_PROMPT
    return GenerationRequest(
        backend=backend,
        api_key=api_key,
        model_id=model_id,
        prompt=build_prompt_with_skill(base_prompt, skill),
        baseline_html=body.baseline_html or "",
        provider_hint=provider_hint,
        provider_candidates=tuple(provider_candidates),
        bill_to=bill_to,
        reference_image=reference_image,
        trace_id=trace_id,
    )
