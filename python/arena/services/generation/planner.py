"""Attempt planning for routed backends.

The plan always tries the most specific routing target first and always ends
on an auto-routed entry as the safety net. Provider tokens are validated at
the request boundary (see ``routing.py``); the planner only re-normalizes.
"""

from collections.abc import Iterable

from arena.services.generation.types import AUTO_PROVIDER, AttemptPlanEntry

MAX_PROVIDER_CANDIDATES = 8


def normalize_provider_candidates(candidates: Iterable[str] | None) -> list[str]:
    """Trim, lower-case, drop empty/"auto", dedupe in order, cap at 8."""
    normalized: list[str] = []
    for raw in candidates or ():
        candidate = raw.strip().lower()
        if not candidate or candidate == AUTO_PROVIDER or candidate in normalized:
            continue
        normalized.append(candidate)
        if len(normalized) == MAX_PROVIDER_CANDIDATES:
            break
    return normalized


def build_attempt_plan(
    model_id: str,
    provider_hint: str | None = None,
    provider_candidates: Iterable[str] | None = None,
) -> list[AttemptPlanEntry]:
    """Build the ordered attempt plan for one model.

    Args:
        model_id: Model identifier without a ":provider" suffix.
        provider_hint: Single preferred routing provider.
        provider_candidates: Ordered routing providers; takes precedence over the hint.

    Returns:
        One entry per candidate (or the hint) followed by a trailing auto entry,
        or a single auto entry when nothing was requested.
    """
    auto_entry = AttemptPlanEntry(model=model_id, provider=AUTO_PROVIDER)

    candidates = normalize_provider_candidates(provider_candidates)
    if candidates:
        return [
            AttemptPlanEntry(model=f"{model_id}:{candidate}", provider=candidate)
            for candidate in candidates
        ] + [auto_entry]

    hint = (provider_hint or "").strip().lower()
    if hint and hint != AUTO_PROVIDER:
        return [AttemptPlanEntry(model=f"{model_id}:{hint}", provider=hint), auto_entry]

    return [auto_entry]
