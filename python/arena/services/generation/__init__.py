"""Generation engine: one model, one backend, one HTML document.

This package turns a design prompt into a single self-contained HTML document
by calling third-party inference backends (Hugging Face, OpenAI-compatible,
Anthropic, Google). It includes:

- Attempt planning across routing providers
- A sequential attempt loop under a shared wall-clock budget
- Error classification into retry vs fatal decisions
- HTML extraction from fenced, prose-wrapped or streamed output
- Streaming-unsupported and image-unsupported fallbacks
- Usage normalization and cost estimation

Usage:
    from arena.services.generation import GenerationOrchestrator, GenerationRequest

    orchestrator = GenerationOrchestrator(httpx_client)
    request = GenerationRequest(
        backend="huggingface",
        api_key="hf_...",
        model_id="moonshotai/Kimi-K2-Instruct",
        prompt=SHARED_PROMPT,
    )
    result = await orchestrator.generate(request)

Rules:
- Adapters never retry; only the orchestrator decides what runs next
- No logging of prompts, keys or generated HTML
- Raw backend errors bubble up to the orchestrator for classification
"""

from arena.services.generation.adapter import ProviderAdapter
from arena.services.generation.errors import (
    ErrorClass,
    GenerationError,
    HtmlValidationError,
    ProviderResponseError,
    build_user_message,
    classify_error,
)
from arena.services.generation.html import extract_html_document
from arena.services.generation.orchestrator import GenerationOrchestrator
from arena.services.generation.planner import build_attempt_plan
from arena.services.generation.pricing import PRICING_VERSION, apply_pricing
from arena.services.generation.prompt import (
    PROMPT_VERSION,
    SHARED_PROMPT,
    SYSTEM_PROMPT,
    build_prompt_with_skill,
)
from arena.services.generation.types import (
    AttemptPlanEntry,
    GenerationAttempt,
    GenerationCost,
    GenerationRequest,
    GenerationResult,
    GenerationUsage,
    ReferenceImage,
    StreamAttemptInfo,
    StreamingCallbacks,
)

__all__ = [
    # Core types
    "GenerationRequest",
    "GenerationResult",
    "GenerationAttempt",
    "GenerationUsage",
    "GenerationCost",
    "AttemptPlanEntry",
    "ReferenceImage",
    "StreamAttemptInfo",
    "StreamingCallbacks",
    # Adapter interface
    "ProviderAdapter",
    # Orchestration
    "GenerationOrchestrator",
    "build_attempt_plan",
    "extract_html_document",
    # Errors
    "GenerationError",
    "HtmlValidationError",
    "ProviderResponseError",
    "ErrorClass",
    "classify_error",
    "build_user_message",
    # Pricing
    "apply_pricing",
    "PRICING_VERSION",
    # Prompt
    "build_prompt_with_skill",
    "SYSTEM_PROMPT",
    "SHARED_PROMPT",
    "PROMPT_VERSION",
]
