"""Log guard for generation events.

Generation requests carry backend credentials, prompts, baseline documents and
image bytes, and responses carry whole HTML documents. None of these may reach
a log line. Events describe them by size and digest instead:

    logger.info("generation.request.started", **safe_kv(
        backend="huggingface",
        **text_fingerprint("prompt", prompt),   # prompt_chars, prompt_sha256
    ))
"""

import hashlib
import os

import structlog

# Raw values under these keys must never be logged
FORBIDDEN_KEYS = frozenset(
    {
        "api_key",
        "authorization",
        "bearer",
        "secret",
        "token",
        "prompt",
        "baseline_html",
        "skill",
        "content",
        "html",
        "image",
        "base64_data",
        "raw_body",
    }
)

# Keys ending in one of these describe a value instead of carrying it
REDACTED_SUFFIXES = ("_chars", "_length", "_sha256", "_hash")

STRICT_ENVIRONMENTS = frozenset({"local", "test"})


def hash_text(value: str) -> str:
    """Stable SHA-256 hex digest, for correlating identical inputs across events."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def text_fingerprint(name: str, value: str | None) -> dict[str, int | str]:
    """Describe a sensitive text by length and digest.

    Args:
        name: Field prefix, e.g. "prompt".
        value: The text; None and "" only report a zero length.

    Returns:
        ``{"<name>_chars": n}`` plus ``"<name>_sha256"`` for non-empty text.
    """
    if not value:
        return {f"{name}_chars": 0}
    return {f"{name}_chars": len(value), f"{name}_sha256": hash_text(value)}


def is_redacted_key(key: str) -> bool:
    return key.endswith(REDACTED_SUFFIXES)


def safe_kv(*, _env: str | None = None, **kwargs) -> dict:
    """Return ``kwargs`` after checking that no forbidden key carries a raw value.

    Args:
        _env: ARENA_ENV override for tests; read from the environment otherwise.
        **kwargs: Event fields.

    Returns:
        The same fields.

    Raises:
        ValueError: In local/test when a forbidden key is present. Other
            environments log ``safe_kv_violation`` and keep going.
    """
    violations = sorted(key for key in kwargs if key in FORBIDDEN_KEYS and not is_redacted_key(key))
    if not violations:
        return kwargs

    env = _env or os.environ.get("ARENA_ENV", "local")
    if env in STRICT_ENVIRONMENTS:
        raise ValueError(f"Forbidden log keys without redacted suffix: {violations}")

    structlog.get_logger(__name__).warning("safe_kv_violation", forbidden_keys=violations)
    return kwargs
