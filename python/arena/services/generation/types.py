"""Shared type definitions for the generation engine.

- GenerationUsage: Token usage normalized across backends
- GenerationCost: USD cost derived from the local price table
- GenerationAttempt: One network call to one (model, routing) target
- GenerationResult: The first successful attempt plus the full attempt log
- AttemptPlanEntry: A routing target produced by the attempt planner
- ReferenceImage: Optional vision input, supplied once per request
- StreamAttemptInfo / StreamingCallbacks: Progress reporting for streamed callers
- GenerationRequest: Everything one generation run needs
- AdapterInput / AdapterOutput: The adapter contract
- ProviderResponse / ProviderChunk: Raw backend output, buffered or streamed

All records are immutable. Nothing here is persisted or shared across requests.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import Any, Literal

AUTO_PROVIDER = "auto"

AttemptStatus = Literal["success", "error"]

OnAttempt = Callable[["StreamAttemptInfo"], Awaitable[None]]
OnToken = Callable[[str], Awaitable[None]]
OnLog = Callable[[str], Awaitable[None]]


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


@dataclass(frozen=True)
class GenerationUsage:
    """Token usage reported by a backend.

    Attributes:
        input_tokens: Prompt tokens (including cached ones)
        output_tokens: Completion tokens
        total_tokens: Never below input_tokens + output_tokens
        cached_input_tokens: Prompt tokens served from the backend cache, if reported
    """

    input_tokens: int
    output_tokens: int
    total_tokens: int
    cached_input_tokens: int | None = None

    def __post_init__(self):
        for name in ("input_tokens", "output_tokens", "total_tokens"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        if self.cached_input_tokens is not None and self.cached_input_tokens < 0:
            raise ValueError("cached_input_tokens must be non-negative")

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "inputTokens": self.input_tokens,
                "outputTokens": self.output_tokens,
                "totalTokens": self.total_tokens,
                "cachedInputTokens": self.cached_input_tokens,
            }
        )


@dataclass(frozen=True)
class GenerationCost:
    """Cost in USD for one attempt or one whole request."""

    currency: Literal["USD"]
    input_usd: float
    output_usd: float
    total_usd: float
    pricing_version: str
    pricing_matched_model: str
    cached_input_usd: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "currency": self.currency,
                "inputUsd": self.input_usd,
                "outputUsd": self.output_usd,
                "cachedInputUsd": self.cached_input_usd,
                "totalUsd": self.total_usd,
                "pricingVersion": self.pricing_version,
                "pricingMatchedModel": self.pricing_matched_model,
            }
        )


@dataclass(frozen=True)
class GenerationAttempt:
    """One attempt outcome, appended in order to the running attempt log.

    Attributes:
        model: Fully-qualified model sent to the backend (may carry a ":provider" suffix)
        provider: Routing provider ("auto" for backend routing) or backend name
        status: "success" or "error"
        status_code: HTTP-like status for failed attempts
        retryable: Whether the orchestrator moved on to another attempt after this one
        duration_ms: Wall-clock time spent in this attempt
        detail: User-facing failure detail
        usage: Token usage, when the backend reported any
        cost: Derived cost, when usage was reported and the model is priced
    """

    model: str
    provider: str
    status: AttemptStatus
    retryable: bool
    duration_ms: int
    status_code: int | None = None
    detail: str | None = None
    usage: GenerationUsage | None = None
    cost: GenerationCost | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "model": self.model,
            "provider": self.provider,
            "status": self.status,
            "statusCode": self.status_code,
            "retryable": self.retryable,
            "durationMs": self.duration_ms,
            "detail": self.detail,
            "usage": self.usage.to_dict() if self.usage else None,
            "cost": self.cost.to_dict() if self.cost else None,
        }
        return _drop_none(data)


@dataclass(frozen=True)
class GenerationResult:
    """Outcome of a successful generation run."""

    html: str
    used_model: str
    used_provider: str
    attempts: tuple[GenerationAttempt, ...]
    usage: GenerationUsage | None = None
    cost: GenerationCost | None = None

    def with_pricing(
        self,
        attempts: tuple[GenerationAttempt, ...],
        usage: GenerationUsage | None,
        cost: GenerationCost | None,
    ) -> "GenerationResult":
        return replace(self, attempts=attempts, usage=usage, cost=cost)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "usedModel": self.used_model,
            "usedProvider": self.used_provider,
            "attempts": [attempt.to_dict() for attempt in self.attempts],
            "usage": self.usage.to_dict() if self.usage else None,
            "cost": self.cost.to_dict() if self.cost else None,
        }
        return _drop_none(data)


@dataclass(frozen=True)
class AttemptPlanEntry:
    """A fully-qualified routing target. provider="auto" lets the backend choose."""

    model: str
    provider: str


@dataclass(frozen=True)
class ReferenceImage:
    """Optional vision input.

    Attributes:
        mime_type: e.g. "image/png"
        base64_data: Base64-encoded image bytes (no data: prefix)
    """

    mime_type: str
    base64_data: str

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64_data}"


@dataclass(frozen=True)
class StreamAttemptInfo:
    """Announced before each attempt.

    reset_code tells a streaming consumer to discard output accumulated by an
    earlier failed attempt.
    """

    attempt_number: int
    total_attempts: int
    model: str
    provider: str
    reset_code: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "attemptNumber": self.attempt_number,
            "totalAttempts": self.total_attempts,
            "model": self.model,
            "provider": self.provider,
            "resetCode": self.reset_code,
        }


@dataclass(frozen=True)
class StreamingCallbacks:
    """Injected progress slots. Each is awaited in order on the calling task."""

    on_attempt: OnAttempt | None = None
    on_token: OnToken | None = None
    on_log: OnLog | None = None

    async def attempt(self, info: StreamAttemptInfo) -> None:
        if self.on_attempt is not None:
            await self.on_attempt(info)

    async def token(self, text: str) -> None:
        if self.on_token is not None:
            await self.on_token(text)

    async def log(self, message: str) -> None:
        if self.on_log is not None:
            await self.on_log(message)


@dataclass(frozen=True)
class GenerationRequest:
    """One generation run for one model on one backend.

    Attributes:
        backend: "huggingface", "openai", "anthropic" or "google"
        api_key: Credential for the backend
        model_id: Model identifier without any ":provider" suffix
        prompt: Design prompt (skill addendum already applied)
        baseline_html: Optional baseline document given to the model as context
        provider_hint: Preferred routing provider (Hugging Face only)
        provider_candidates: Ordered routing providers to try (Hugging Face only)
        bill_to: Organization billed for the call (Hugging Face only)
        reference_image: Optional vision input
        trace_id: Caller-supplied correlation ID
    """

    backend: str
    api_key: str
    model_id: str
    prompt: str
    baseline_html: str = ""
    provider_hint: str | None = None
    provider_candidates: tuple[str, ...] = field(default_factory=tuple)
    bill_to: str | None = None
    reference_image: ReferenceImage | None = None
    trace_id: str | None = None


@dataclass(frozen=True)
class AdapterInput:
    """Everything an adapter needs for a single attempt."""

    api_key: str
    model: str
    prompt: str
    baseline_html: str = ""
    reference_image: ReferenceImage | None = None
    bill_to: str | None = None

    def without_image(self) -> "AdapterInput":
        return replace(self, reference_image=None)


@dataclass(frozen=True)
class AdapterOutput:
    """Validated HTML plus whatever usage the backend reported."""

    html: str
    usage: GenerationUsage | None = None
    finish_reason: str | None = None


@dataclass(frozen=True)
class ProviderResponse:
    """Raw text of a buffered backend call, before HTML extraction."""

    text: str
    usage: GenerationUsage | None = None
    finish_reason: str | None = None


@dataclass(frozen=True)
class ProviderChunk:
    """Single parsed event from a backend stream.

    Attributes:
        delta_text: New text in arrival order (may be empty)
        usage: Usage, when this event reports it
        finish_reason: Backend stop reason, when this event reports it
        done: Terminal marker; the stream reader stops after it
    """

    delta_text: str = ""
    usage: GenerationUsage | None = None
    finish_reason: str | None = None
    done: bool = False
