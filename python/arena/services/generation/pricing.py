"""Usage normalization and cost derivation.

Usage:
- Each backend reports token counts under its own field names; the
  ``usage_from_*`` mappers turn them into a common GenerationUsage
- Returns None when the backend reports nothing usable

Cost:
- Derived from a versioned local price table, never from the backend
- Exact model matches win over prefix matches; the longest prefix wins
- Unmatched models yield cost=None rather than a guessed price
- Routed Hugging Face ids ("org/model:provider") are matched on the base id
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Any, Literal

from arena.services.generation.types import (
    GenerationAttempt,
    GenerationCost,
    GenerationResult,
    GenerationUsage,
)

TOKENS_PER_MILLION = 1_000_000

# Bump when prices are refreshed from provider pricing pages
PRICING_VERSION = "2026-02-21"


@dataclass(frozen=True)
class ModelPricingEntry:
    backend: str
    match_type: Literal["exact", "prefix"]
    model: str
    input_usd_per_1m: float
    output_usd_per_1m: float
    cached_input_usd_per_1m: float | None = None
    routing_providers: tuple[str, ...] = ()


@dataclass(frozen=True)
class ResolvedModelPricing:
    input_usd_per_1m: float
    output_usd_per_1m: float
    cached_input_usd_per_1m: float | None
    pricing_matched_model: str
    pricing_version: str


MODEL_PRICING_TABLE: tuple[ModelPricingEntry, ...] = (
    # OpenAI
    ModelPricingEntry("openai", "exact", "gpt-5.2", 1.5, 6, 0.375),
    ModelPricingEntry("openai", "exact", "gpt-5.1", 1.25, 5, 0.3125),
    ModelPricingEntry("openai", "exact", "gpt-5-mini", 0.25, 1, 0.0625),
    ModelPricingEntry("openai", "exact", "gpt-5-nano", 0.05, 0.2, 0.0125),
    ModelPricingEntry("openai", "exact", "gpt-4.1", 2, 8, 0.5),
    # Anthropic
    ModelPricingEntry("anthropic", "exact", "claude-opus-4-6", 15, 75),
    ModelPricingEntry("anthropic", "exact", "claude-sonnet-4-6", 3, 15),
    ModelPricingEntry("anthropic", "exact", "claude-opus-4-1-20250805", 15, 75),
    ModelPricingEntry("anthropic", "exact", "claude-sonnet-4-20250514", 3, 15),
    ModelPricingEntry("anthropic", "exact", "claude-3-5-haiku-latest", 0.8, 4),
    # Google
    ModelPricingEntry("google", "exact", "gemini-3-pro-preview", 3.5, 10.5),
    ModelPricingEntry("google", "exact", "gemini-3-flash-preview", 0.35, 1.05),
    ModelPricingEntry("google", "exact", "gemini-2.5-flash", 0.35, 1.05),
    # Hugging Face (model families, any routing provider)
    ModelPricingEntry("huggingface", "prefix", "moonshotai/kimi-k2", 0.8, 2.4),
    ModelPricingEntry("huggingface", "prefix", "minimax/minimax-m1", 0.6, 2),
    ModelPricingEntry("huggingface", "prefix", "minimaxai/minimax-m2", 0.6, 2),
    ModelPricingEntry("huggingface", "prefix", "qwen/qwen", 0.3, 0.9),
    ModelPricingEntry("huggingface", "prefix", "deepseek-ai/deepseek", 0.55, 1.65),
    ModelPricingEntry("huggingface", "prefix", "meta-llama/llama-3.3-70b-instruct", 0.9, 0.9),
)


def round_usd(value: float) -> float:
    return round(value, 6)


def _parse_token_count(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    if value != value or value in (float("inf"), float("-inf")):
        return None
    normalized = int(value // 1)
    return normalized if normalized >= 0 else None


def normalize_usage(
    *,
    input_tokens: Any = None,
    output_tokens: Any = None,
    total_tokens: Any = None,
    cached_input_tokens: Any = None,
) -> GenerationUsage | None:
    """Build a GenerationUsage from loosely-typed backend values.

    Non-numeric or negative values are ignored; floats are floored.

    Returns:
        None when every count is zero or missing. Otherwise total_tokens is
        never below input + output and cached tokens never exceed input.
    """
    inputs = _parse_token_count(input_tokens) or 0
    outputs = _parse_token_count(output_tokens) or 0
    total_raw = _parse_token_count(total_tokens)
    cached_raw = _parse_token_count(cached_input_tokens)

    if not (inputs or outputs or total_raw or cached_raw):
        return None

    return GenerationUsage(
        input_tokens=inputs,
        output_tokens=outputs,
        total_tokens=max(total_raw or 0, inputs + outputs),
        cached_input_tokens=min(cached_raw, inputs) if cached_raw else None,
    )


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def usage_from_openai(payload: Any) -> GenerationUsage | None:
    """OpenAI-compatible chat completion usage (also used by Hugging Face)."""
    usage = _as_mapping(payload)
    return normalize_usage(
        input_tokens=usage.get("prompt_tokens"),
        output_tokens=usage.get("completion_tokens"),
        total_tokens=usage.get("total_tokens"),
        cached_input_tokens=_as_mapping(usage.get("prompt_tokens_details")).get("cached_tokens"),
    )


def usage_from_anthropic(payload: Any) -> GenerationUsage | None:
    """Anthropic Messages usage."""
    usage = _as_mapping(payload)
    return normalize_usage(
        input_tokens=usage.get("input_tokens"),
        output_tokens=usage.get("output_tokens"),
        cached_input_tokens=usage.get("cache_read_input_tokens"),
    )


def usage_from_google(payload: Any) -> GenerationUsage | None:
    """Google generateContent usageMetadata."""
    usage = _as_mapping(payload)
    return normalize_usage(
        input_tokens=usage.get("promptTokenCount"),
        output_tokens=usage.get("candidatesTokenCount"),
        total_tokens=usage.get("totalTokenCount"),
        cached_input_tokens=usage.get("cachedContentTokenCount"),
    )


def split_routed_model_id(model_id: str) -> tuple[str, str | None]:
    """Split "org/model:provider" into a lower-cased base id and routing provider."""
    trimmed = model_id.strip()
    suffix_index = trimmed.rfind(":")
    if 0 < suffix_index < len(trimmed) - 1:
        base = trimmed[:suffix_index].strip().lower()
        routing = trimmed[suffix_index + 1 :].strip().lower()
        return base, routing or None
    return trimmed.lower(), None


def _routing_matches(entry: ModelPricingEntry, routing_provider: str | None) -> bool:
    if not entry.routing_providers:
        return True
    return routing_provider is not None and routing_provider in entry.routing_providers


def _resolved(entry: ModelPricingEntry) -> ResolvedModelPricing:
    return ResolvedModelPricing(
        input_usd_per_1m=entry.input_usd_per_1m,
        output_usd_per_1m=entry.output_usd_per_1m,
        cached_input_usd_per_1m=entry.cached_input_usd_per_1m,
        pricing_matched_model=entry.model,
        pricing_version=PRICING_VERSION,
    )


def resolve_model_pricing(
    backend: str,
    model_id: str,
    routing_provider: str | None = None,
    table: Sequence[ModelPricingEntry] = MODEL_PRICING_TABLE,
) -> ResolvedModelPricing | None:
    """Find the price entry for a model.

    Args:
        backend: Backend name.
        model_id: Model id, optionally with a ":provider" routing suffix.
        routing_provider: Explicit routing provider; overrides the suffix.
        table: Price table to search.

    Returns:
        Exact match, else longest prefix match, else None.
    """
    base_model, routed = split_routed_model_id(model_id)
    if not base_model:
        return None

    routing = (routing_provider or "").strip().lower() or routed

    for entry in table:
        if (
            entry.backend == backend
            and entry.match_type == "exact"
            and entry.model == base_model
            and _routing_matches(entry, routing)
        ):
            return _resolved(entry)

    prefix_matches = [
        entry
        for entry in table
        if entry.backend == backend
        and entry.match_type == "prefix"
        and base_model.startswith(entry.model)
        and _routing_matches(entry, routing)
    ]
    if not prefix_matches:
        return None

    return _resolved(max(prefix_matches, key=lambda entry: len(entry.model)))


def calculate_cost(usage: GenerationUsage, pricing: ResolvedModelPricing) -> GenerationCost:
    """Price one usage record. Cached input is billed separately when a cached rate exists."""
    cached_tokens = usage.cached_input_tokens or 0
    uncached_input_tokens = usage.input_tokens
    cached_input_usd: float | None = None

    if cached_tokens > 0 and pricing.cached_input_usd_per_1m is not None:
        uncached_input_tokens = max(usage.input_tokens - cached_tokens, 0)
        cached_input_usd = round_usd(
            cached_tokens / TOKENS_PER_MILLION * pricing.cached_input_usd_per_1m
        )

    input_usd = round_usd(uncached_input_tokens / TOKENS_PER_MILLION * pricing.input_usd_per_1m)
    output_usd = round_usd(usage.output_tokens / TOKENS_PER_MILLION * pricing.output_usd_per_1m)

    return GenerationCost(
        currency="USD",
        input_usd=input_usd,
        output_usd=output_usd,
        cached_input_usd=cached_input_usd,
        total_usd=round_usd(input_usd + output_usd + (cached_input_usd or 0)),
        pricing_version=pricing.pricing_version,
        pricing_matched_model=pricing.pricing_matched_model,
    )


def price_attempt(backend: str, attempt: GenerationAttempt) -> GenerationAttempt:
    if attempt.usage is None:
        return attempt

    pricing = resolve_model_pricing(
        backend,
        attempt.model,
        attempt.provider if backend == "huggingface" else None,
    )
    if pricing is None:
        return replace(attempt, cost=None)
    return replace(attempt, cost=calculate_cost(attempt.usage, pricing))


def aggregate_usage(attempts: Sequence[GenerationAttempt]) -> GenerationUsage | None:
    usages = [attempt.usage for attempt in attempts if attempt.usage is not None]
    if not usages:
        return None

    cached = sum(usage.cached_input_tokens or 0 for usage in usages)
    return GenerationUsage(
        input_tokens=sum(usage.input_tokens for usage in usages),
        output_tokens=sum(usage.output_tokens for usage in usages),
        total_tokens=sum(usage.total_tokens for usage in usages),
        cached_input_tokens=cached or None,
    )


def aggregate_cost(attempts: Sequence[GenerationAttempt]) -> GenerationCost | None:
    """Sum attempt costs; None if any attempt with usage could not be priced."""
    with_usage = [attempt for attempt in attempts if attempt.usage is not None]
    if not with_usage:
        return None

    costs = [attempt.cost for attempt in with_usage if attempt.cost is not None]
    if len(costs) != len(with_usage):
        return None

    versions = {cost.pricing_version for cost in costs}
    matched_models = {cost.pricing_matched_model for cost in costs}
    cached = sum(cost.cached_input_usd or 0 for cost in costs)

    return GenerationCost(
        currency="USD",
        input_usd=round_usd(sum(cost.input_usd for cost in costs)),
        output_usd=round_usd(sum(cost.output_usd for cost in costs)),
        cached_input_usd=round_usd(cached) if cached > 0 else None,
        total_usd=round_usd(sum(cost.total_usd for cost in costs)),
        pricing_version=versions.pop() if len(versions) == 1 else f"{PRICING_VERSION}-mixed",
        pricing_matched_model=matched_models.pop() if len(matched_models) == 1 else "mixed",
    )


def apply_pricing(backend: str, result: GenerationResult) -> GenerationResult:
    """Price every attempt and aggregate usage and cost across the whole run."""
    attempts = tuple(price_attempt(backend, attempt) for attempt in result.attempts)
    return result.with_pricing(attempts, aggregate_usage(attempts), aggregate_cost(attempts))
