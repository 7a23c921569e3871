"""Application settings loaded from environment variables.

Environment Configuration:
    ARENA_ENV: Deployment environment (local | test | staging | prod)
    LOG_JSON: Emit JSON logs (default true); set false for console output

Generation Configuration:
    GENERATION_TIMEOUT_MS: Shared wall-clock budget for one generation request.
        Values below 1000 or unparsable values fall back to the default (1,200,000).
    GENERATION_MAX_TOKENS: Max output tokens override. Values below 256 or
        unparsable values are ignored and each backend uses its own default.

Backend Configuration:
    HF_BASE_URL: Hugging Face router base URL (normalized to .../v1)
    OPENAI_BASE_URL: OpenAI-compatible base URL
    ANTHROPIC_BASE_URL / ANTHROPIC_VERSION: Anthropic Messages API
    GOOGLE_BASE_URL: Google Generative Language API

Server-side keys (optional):
    HF_API_KEY, OPENAI_API_KEY, ANTHROPIC_API_KEY, GOOGLE_API_KEY
    Used when a request does not carry its own key.
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

DEFAULT_GENERATION_TIMEOUT_MS = 1_200_000
MIN_GENERATION_TIMEOUT_MS = 1_000
MIN_GENERATION_MAX_TOKENS = 256

DEFAULT_HF_BASE_URL = "https://router.huggingface.co/v1"
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_ANTHROPIC_BASE_URL = "https://api.anthropic.com"
DEFAULT_ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_GOOGLE_BASE_URL = "https://generativelanguage.googleapis.com"


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


def _parse_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


class Settings(BaseSettings):
    """Application configuration.

    Settings are loaded from environment variables (and an optional .env file).
    Out-of-range generation overrides never fail validation; they fall back to
    the documented defaults instead.
    """

    arena_env: Environment = Field(default=Environment.LOCAL, alias="ARENA_ENV")
    log_json: bool = Field(default=True, alias="LOG_JSON")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Generation budget
    generation_timeout_ms: int = Field(
        default=DEFAULT_GENERATION_TIMEOUT_MS, alias="GENERATION_TIMEOUT_MS"
    )
    generation_max_tokens: int | None = Field(default=None, alias="GENERATION_MAX_TOKENS")

    # Backend endpoints
    hf_base_url: str = Field(default=DEFAULT_HF_BASE_URL, alias="HF_BASE_URL")
    openai_base_url: str = Field(default=DEFAULT_OPENAI_BASE_URL, alias="OPENAI_BASE_URL")
    anthropic_base_url: str = Field(default=DEFAULT_ANTHROPIC_BASE_URL, alias="ANTHROPIC_BASE_URL")
    anthropic_version: str = Field(default=DEFAULT_ANTHROPIC_VERSION, alias="ANTHROPIC_VERSION")
    google_base_url: str = Field(default=DEFAULT_GOOGLE_BASE_URL, alias="GOOGLE_BASE_URL")

    # Platform API keys (optional fallback when the caller sends none)
    hf_api_key: str | None = Field(default=None, alias="HF_API_KEY")
    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    anthropic_api_key: str | None = Field(default=None, alias="ANTHROPIC_API_KEY")
    google_api_key: str | None = Field(default=None, alias="GOOGLE_API_KEY")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }

    @field_validator("generation_timeout_ms", mode="before")
    @classmethod
    def resolve_timeout(cls, value: object) -> int:
        """Fall back to the default budget for missing, invalid or sub-second values."""
        parsed = _parse_int(value)
        if parsed is None or parsed < MIN_GENERATION_TIMEOUT_MS:
            return DEFAULT_GENERATION_TIMEOUT_MS
        return parsed

    @field_validator("generation_max_tokens", mode="before")
    @classmethod
    def resolve_max_tokens(cls, value: object) -> int | None:
        """Ignore overrides below 256 so each backend keeps its own default."""
        parsed = _parse_int(value)
        if parsed is None or parsed < MIN_GENERATION_MAX_TOKENS:
            return None
        return parsed

    @field_validator(
        "hf_base_url",
        "openai_base_url",
        "anthropic_base_url",
        "google_base_url",
        mode="before",
    )
    @classmethod
    def strip_base_url(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().rstrip("/")
        return value

    @property
    def generation_timeout_s(self) -> float:
        """Shared generation budget in seconds."""
        return self.generation_timeout_ms / 1000

    def platform_api_key(self, backend: str) -> str | None:
        """Return the server-side API key configured for a backend, if any."""
        keys = {
            "huggingface": self.hf_api_key,
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
            "google": self.google_api_key,
        }
        return keys.get(backend)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
