"""Test helpers for generation tests.

Provides fixture loading, a controllable clock, and a scripted adapter that
stands in for a real backend without any network access.
"""

import json
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from arena.config import Settings
from arena.services.generation.adapter import ProviderAdapter
from arena.services.generation.types import (
    AdapterInput,
    AdapterOutput,
    GenerationUsage,
    OnToken,
    ProviderChunk,
    ProviderResponse,
)

FIXTURES_DIR = Path(__file__).parent / "fixtures" / "generation"

SAMPLE_HTML = "<!doctype html><html><head><title>Arena</title></head><body><h1>Hi</h1></body></html>"


def load_fixture(backend: str, filename: str) -> dict | str:
    """Load a test fixture file."""
    path = FIXTURES_DIR / backend / filename
    content = path.read_text()
    if filename.endswith(".json"):
        return json.loads(content)
    return content


def make_settings(**overrides: Any) -> Settings:
    """Build a Settings instance with test defaults + overrides (env var names)."""
    defaults: dict[str, Any] = {"ARENA_ENV": "test"}
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class RecordedCall:
    model: str
    streaming: bool
    has_image: bool
    timeout_s: float


@dataclass
class Step:
    """One scripted attempt outcome.

    Either ``html`` (success) or ``error`` (raised). ``tokens`` are streamed
    before the outcome; ``elapsed_s`` advances the fake clock first.
    """

    html: str | None = None
    error: BaseException | None = None
    tokens: Sequence[str] = ()
    usage: GenerationUsage | None = None
    finish_reason: str | None = None
    elapsed_s: float = 0.0


@dataclass
class ScriptedAdapter(ProviderAdapter):
    """Adapter that replays scripted steps in order and records every call."""

    steps: list[Step] = field(default_factory=list)
    clock: FakeClock | None = None
    name: str = "huggingface"
    label: str = "Hugging Face"
    not_found_target: str | None = "Hugging Face inference providers"
    supports_provider_routing: bool = True
    supports_image_input: bool = False
    calls: list[RecordedCall] = field(default_factory=list)

    def _next(self, input: AdapterInput, *, streaming: bool, timeout_s: float) -> Step:
        self.calls.append(
            RecordedCall(
                model=input.model,
                streaming=streaming,
                has_image=input.reference_image is not None,
                timeout_s=timeout_s,
            )
        )
        step = self.steps.pop(0)
        if self.clock is not None and step.elapsed_s:
            self.clock.advance(step.elapsed_s)
        return step

    def _finish(self, step: Step) -> AdapterOutput:
        if step.error is not None:
            raise step.error
        assert step.html is not None
        return AdapterOutput(html=step.html, usage=step.usage, finish_reason=step.finish_reason)

    async def request_once(self, input: AdapterInput, *, timeout_s: float) -> AdapterOutput:
        step = self._next(input, streaming=False, timeout_s=timeout_s)
        return self._finish(step)

    async def request_streamed(
        self, input: AdapterInput, on_token: OnToken, *, timeout_s: float
    ) -> AdapterOutput:
        step = self._next(input, streaming=True, timeout_s=timeout_s)
        for token in step.tokens:
            await on_token(token)
        return self._finish(step)

    async def generate(self, input: AdapterInput, *, timeout_s: float) -> ProviderResponse:
        raise NotImplementedError

    async def generate_stream(
        self, input: AdapterInput, *, timeout_s: float
    ) -> AsyncIterator[ProviderChunk]:
        raise NotImplementedError
        yield  # type: ignore


def scripted_vision_adapter(**kwargs: Any) -> ScriptedAdapter:
    """Scripted single-entry backend that accepts images (OpenAI-like)."""
    defaults: dict[str, Any] = {
        "name": "openai",
        "label": "OpenAI",
        "not_found_target": None,
        "supports_provider_routing": False,
        "supports_image_input": True,
    }
    defaults.update(kwargs)
    return ScriptedAdapter(**defaults)


class EventRecorder:
    """Collects streaming callback invocations in order."""

    def __init__(self):
        self.events: list[tuple[str, Any]] = []

    def callback(self, kind: str) -> Callable[[Any], Any]:
        async def record(value: Any) -> None:
            self.events.append((kind, value))

        return record

    def of(self, kind: str) -> list[Any]:
        return [value for event_kind, value in self.events if event_kind == kind]
