"""Tests for the generation orchestrator.

Adapters are scripted and the clock is fake, so every test is deterministic
and makes no network calls.

Coverage:
- Retry on retryable failures, abort on fatal ones, abort on the last entry
- Shared wall-clock budget checked before every attempt
- Streaming-unsupported fallback to buffered mode for the same entry
- Unsupported-image fallback on the first entry, at most once
- Callback ordering and reset_code semantics
- Usage and cost aggregated onto the result
"""

import asyncio

import pytest

from arena.services.generation.errors import (
    GenerationError,
    HtmlValidationError,
    ProviderResponseError,
)
from arena.services.generation.orchestrator import (
    BUDGET_EXHAUSTED_MESSAGE,
    STREAM_FALLBACK_DETAIL,
    STREAM_FALLBACK_LOG,
    GenerationOrchestrator,
)
from arena.services.generation.types import (
    GenerationRequest,
    GenerationUsage,
    ReferenceImage,
    StreamingCallbacks,
)
from tests.helpers import (
    SAMPLE_HTML,
    EventRecorder,
    FakeClock,
    ScriptedAdapter,
    Step,
    make_settings,
    scripted_vision_adapter,
)

MODEL = "moonshotai/Kimi-K2-Instruct"
IMAGE = ReferenceImage(mime_type="image/png", base64_data="iVBORw0KGgo=")

IMAGE_UNSUPPORTED = "This model does not support image input."


def _hf_request(**kwargs) -> GenerationRequest:
    defaults = {
        "backend": "huggingface",
        "api_key": "test-key",
        "model_id": MODEL,
        "prompt": "Redesign this page.",
    }
    defaults.update(kwargs)
    return GenerationRequest(**defaults)


def _vision_request(**kwargs) -> GenerationRequest:
    defaults = {
        "backend": "openai",
        "api_key": "test-key",
        "model_id": "gpt-4.1",
        "prompt": "Redesign this page.",
        "reference_image": IMAGE,
    }
    defaults.update(kwargs)
    return GenerationRequest(**defaults)


def _orchestrator(adapter: ScriptedAdapter, clock: FakeClock, **settings) -> GenerationOrchestrator:
    return GenerationOrchestrator(
        settings=make_settings(**settings),
        adapters={adapter.name: adapter},
        clock=clock,
    )


def _callbacks(recorder: EventRecorder) -> StreamingCallbacks:
    return StreamingCallbacks(
        on_attempt=recorder.callback("attempt"),
        on_token=recorder.callback("token"),
        on_log=recorder.callback("log"),
    )


class TestRetryPolicy:
    @pytest.mark.asyncio
    async def test_retryable_failure_moves_to_next_entry(self):
        clock = FakeClock()
        adapter = ScriptedAdapter(
            steps=[
                Step(error=ProviderResponseError(504, "Gateway timeout")),
                Step(html=SAMPLE_HTML),
            ],
            clock=clock,
        )

        result = await _orchestrator(adapter, clock).generate(_hf_request(provider_hint="novita"))

        assert [call.model for call in adapter.calls] == [f"{MODEL}:novita", MODEL]
        assert result.html == SAMPLE_HTML
        assert result.used_model == MODEL
        assert result.used_provider == "auto"
        assert len(result.attempts) == 2
        assert result.attempts[0].status == "error"
        assert result.attempts[0].status_code == 504
        assert result.attempts[0].retryable is True
        assert result.attempts[1].status == "success"

    @pytest.mark.asyncio
    async def test_fatal_failure_stops_immediately(self):
        clock = FakeClock()
        adapter = ScriptedAdapter(
            steps=[Step(error=ProviderResponseError(404, "Unknown model")), Step(html=SAMPLE_HTML)],
            clock=clock,
        )

        with pytest.raises(GenerationError) as exc_info:
            await _orchestrator(adapter, clock).generate(_hf_request(provider_hint="novita"))

        error = exc_info.value
        assert len(adapter.calls) == 1
        assert error.status == 404
        assert error.message == "Model ID or provider not found on Hugging Face inference providers."
        assert len(error.attempts) == 1
        assert error.attempts[0].retryable is False

    @pytest.mark.asyncio
    async def test_retryable_failure_on_last_entry_is_fatal(self):
        clock = FakeClock()
        adapter = ScriptedAdapter(
            steps=[Step(error=ProviderResponseError(503, "Service unavailable"))], clock=clock
        )

        with pytest.raises(GenerationError) as exc_info:
            await _orchestrator(adapter, clock).generate(_hf_request())

        error = exc_info.value
        assert error.status == 503
        assert error.message == "Hugging Face provider is temporarily unavailable. Retry shortly."
        assert error.attempts[0].retryable is False

    @pytest.mark.asyncio
    async def test_every_candidate_fails(self):
        clock = FakeClock()
        adapter = ScriptedAdapter(
            steps=[
                Step(error=ProviderResponseError(429, "slow down")),
                Step(error=asyncio.TimeoutError()),
                Step(error=ProviderResponseError(500, "boom")),
            ],
            clock=clock,
        )
        request = _hf_request(provider_candidates=("groq", "together"))

        with pytest.raises(GenerationError) as exc_info:
            await _orchestrator(adapter, clock).generate(request)

        error = exc_info.value
        assert len(adapter.calls) == 3
        assert [attempt.provider for attempt in error.attempts] == ["groq", "together", "auto"]
        assert [attempt.status_code for attempt in error.attempts] == [429, 504, 500]
        assert [attempt.retryable for attempt in error.attempts] == [True, True, False]

    @pytest.mark.asyncio
    async def test_html_validation_failure_is_fatal(self):
        clock = FakeClock()
        adapter = ScriptedAdapter(
            steps=[
                Step(error=HtmlValidationError("Model output does not contain a full HTML document.")),
                Step(html=SAMPLE_HTML),
            ],
            clock=clock,
        )

        with pytest.raises(GenerationError) as exc_info:
            await _orchestrator(adapter, clock).generate(_hf_request(provider_hint="novita"))

        assert len(adapter.calls) == 1
        assert exc_info.value.status == 422
        assert exc_info.value.attempts[0].detail == (
            "Model output does not contain a full HTML document."
        )

    @pytest.mark.asyncio
    async def test_unknown_exception_is_retried_as_502(self):
        clock = FakeClock()
        adapter = ScriptedAdapter(
            steps=[Step(error=RuntimeError("socket hang up")), Step(html=SAMPLE_HTML)],
            clock=clock,
        )

        result = await _orchestrator(adapter, clock).generate(_hf_request(provider_hint="novita"))

        assert result.attempts[0].status_code == 502
        assert result.attempts[0].retryable is True


class TestTimeoutBudget:
    @pytest.mark.asyncio
    async def test_exhausted_budget_skips_remaining_entries(self):
        clock = FakeClock()
        adapter = ScriptedAdapter(
            steps=[
                Step(error=ProviderResponseError(504, "slow"), elapsed_s=1.5),
                Step(html=SAMPLE_HTML),
            ],
            clock=clock,
        )
        orchestrator = _orchestrator(adapter, clock, GENERATION_TIMEOUT_MS=1000)

        with pytest.raises(GenerationError) as exc_info:
            await orchestrator.generate(_hf_request(provider_hint="novita"))

        error = exc_info.value
        assert len(adapter.calls) == 1
        assert error.status == 504
        assert error.message == BUDGET_EXHAUSTED_MESSAGE
        assert len(error.attempts) == 1

    @pytest.mark.asyncio
    async def test_sub_second_remainder_is_fatal(self):
        clock = FakeClock()
        adapter = ScriptedAdapter(
            steps=[
                Step(error=ProviderResponseError(502, "bad gateway"), elapsed_s=59.2),
                Step(html=SAMPLE_HTML),
            ],
            clock=clock,
        )
        orchestrator = _orchestrator(adapter, clock, GENERATION_TIMEOUT_MS=60_000)

        with pytest.raises(GenerationError) as exc_info:
            await orchestrator.generate(_hf_request(provider_hint="novita"))

        assert exc_info.value.message == BUDGET_EXHAUSTED_MESSAGE

    @pytest.mark.asyncio
    async def test_minimum_budget_runs_one_attempt(self):
        adapter = ScriptedAdapter(steps=[Step(html=SAMPLE_HTML)])
        orchestrator = GenerationOrchestrator(
            settings=make_settings(GENERATION_TIMEOUT_MS=1000), adapters={adapter.name: adapter}
        )

        result = await orchestrator.generate(_hf_request())

        assert len(adapter.calls) == 1
        assert result.attempts[0].status == "success"

    @pytest.mark.asyncio
    async def test_minimum_budget_tolerates_clock_drift_before_first_attempt(self):
        ticks = iter(1_000.0 + n * 0.00001 for n in range(1_000))
        adapter = ScriptedAdapter(steps=[Step(html=SAMPLE_HTML)])
        orchestrator = GenerationOrchestrator(
            settings=make_settings(GENERATION_TIMEOUT_MS=1000),
            adapters={adapter.name: adapter},
            clock=lambda: next(ticks),
        )

        await orchestrator.generate(_hf_request())

        assert len(adapter.calls) == 1
        assert adapter.calls[0].timeout_s == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_each_attempt_gets_the_remaining_budget(self):
        clock = FakeClock()
        adapter = ScriptedAdapter(
            steps=[
                Step(error=ProviderResponseError(500, "boom"), elapsed_s=20),
                Step(html=SAMPLE_HTML),
            ],
            clock=clock,
        )
        orchestrator = _orchestrator(adapter, clock, GENERATION_TIMEOUT_MS=60_000)

        await orchestrator.generate(_hf_request(provider_hint="novita"))

        assert adapter.calls[0].timeout_s == pytest.approx(60)
        assert adapter.calls[1].timeout_s == pytest.approx(40)

    @pytest.mark.asyncio
    async def test_attempt_duration_comes_from_clock(self):
        clock = FakeClock()
        adapter = ScriptedAdapter(steps=[Step(html=SAMPLE_HTML, elapsed_s=2.5)], clock=clock)

        result = await _orchestrator(adapter, clock).generate(_hf_request())

        assert result.attempts[0].duration_ms == 2500


class TestStreamingFallback:
    @pytest.mark.asyncio
    async def test_stream_unsupported_reruns_same_entry_buffered(self):
        clock = FakeClock()
        adapter = ScriptedAdapter(
            steps=[
                Step(error=ProviderResponseError(400, "Streaming is not supported for this model")),
                Step(html=SAMPLE_HTML),
            ],
            clock=clock,
        )
        recorder = EventRecorder()

        result = await _orchestrator(adapter, clock).generate_streamed(
            _hf_request(), _callbacks(recorder)
        )

        assert [(call.model, call.streaming) for call in adapter.calls] == [
            (MODEL, True),
            (MODEL, False),
        ]
        assert [attempt.status for attempt in result.attempts] == ["error", "success"]
        assert result.attempts[0].detail == STREAM_FALLBACK_DETAIL
        assert result.attempts[0].status_code == 400
        assert result.attempts[1].model == result.attempts[0].model

        # The buffered rerun still reaches the streaming consumer
        assert recorder.of("token") == [SAMPLE_HTML]
        assert STREAM_FALLBACK_LOG in recorder.of("log")

        infos = recorder.of("attempt")
        assert [info.attempt_number for info in infos] == [1, 1]
        assert [info.reset_code for info in infos] == [False, True]

    @pytest.mark.asyncio
    async def test_fallback_does_not_apply_to_buffered_calls(self):
        clock = FakeClock()
        adapter = ScriptedAdapter(
            steps=[Step(error=ProviderResponseError(400, "Streaming is not supported"))],
            clock=clock,
        )

        with pytest.raises(GenerationError) as exc_info:
            await _orchestrator(adapter, clock).generate(_hf_request())

        assert len(adapter.calls) == 1
        assert exc_info.value.status == 400

    @pytest.mark.asyncio
    async def test_later_entries_stay_buffered_after_fallback(self):
        clock = FakeClock()
        adapter = ScriptedAdapter(
            steps=[
                Step(error=ProviderResponseError(422, "stream unsupported")),
                Step(error=ProviderResponseError(503, "down")),
                Step(html=SAMPLE_HTML),
            ],
            clock=clock,
        )

        result = await _orchestrator(adapter, clock).generate_streamed(
            _hf_request(provider_hint="novita"), StreamingCallbacks()
        )

        assert [call.streaming for call in adapter.calls] == [True, False, False]
        assert len(result.attempts) == 3


class TestImageFallback:
    @pytest.mark.asyncio
    async def test_first_attempt_is_retried_without_image(self):
        clock = FakeClock()
        adapter = scripted_vision_adapter(
            steps=[Step(error=ProviderResponseError(400, IMAGE_UNSUPPORTED)), Step(html=SAMPLE_HTML)],
            clock=clock,
        )
        recorder = EventRecorder()

        result = await _orchestrator(adapter, clock).generate(
            _vision_request(), _callbacks(recorder)
        )

        assert [(call.model, call.has_image) for call in adapter.calls] == [
            ("gpt-4.1", True),
            ("gpt-4.1", False),
        ]
        assert len(result.attempts) == 2
        assert result.attempts[0].status_code == 400
        assert result.attempts[1].status == "success"

        # The rerun does not consume a plan slot
        infos = recorder.of("attempt")
        assert [info.total_attempts for info in infos] == [1, 1]
        assert [info.reset_code for info in infos] == [False, True]

    @pytest.mark.asyncio
    async def test_streamed_image_rejection_retries_streamed_without_image(self):
        clock = FakeClock()
        adapter = scripted_vision_adapter(
            steps=[
                Step(error=ProviderResponseError(400, "Image input is not supported for this model.")),
                Step(html=SAMPLE_HTML, tokens=["<!doctype html>"]),
            ],
            clock=clock,
        )
        recorder = EventRecorder()

        result = await _orchestrator(adapter, clock).generate_streamed(
            _vision_request(), _callbacks(recorder)
        )

        assert [(call.streaming, call.has_image) for call in adapter.calls] == [
            (True, True),
            (True, False),
        ]
        assert len(result.attempts) == 2
        assert result.attempts[0].detail != STREAM_FALLBACK_DETAIL
        assert STREAM_FALLBACK_LOG not in recorder.of("log")
        assert recorder.of("token") == ["<!doctype html>"]

    @pytest.mark.asyncio
    async def test_image_fallback_happens_at_most_once(self):
        clock = FakeClock()
        adapter = scripted_vision_adapter(
            steps=[
                Step(error=ProviderResponseError(422, IMAGE_UNSUPPORTED)),
                Step(error=ProviderResponseError(422, IMAGE_UNSUPPORTED)),
            ],
            clock=clock,
        )

        with pytest.raises(GenerationError) as exc_info:
            await _orchestrator(adapter, clock).generate(_vision_request())

        assert len(adapter.calls) == 2
        assert exc_info.value.status == 422
        assert len(exc_info.value.attempts) == 2

    @pytest.mark.asyncio
    async def test_other_400s_are_not_image_fallbacks(self):
        clock = FakeClock()
        adapter = scripted_vision_adapter(
            steps=[Step(error=ProviderResponseError(400, "max_tokens is too large"))],
            clock=clock,
        )

        with pytest.raises(GenerationError) as exc_info:
            await _orchestrator(adapter, clock).generate(_vision_request())

        assert len(adapter.calls) == 1
        assert exc_info.value.message == "OpenAI request failed (400): max_tokens is too large"

    @pytest.mark.asyncio
    async def test_text_only_backend_never_receives_image(self):
        clock = FakeClock()
        adapter = ScriptedAdapter(steps=[Step(html=SAMPLE_HTML)], clock=clock)

        await _orchestrator(adapter, clock).generate(_hf_request(reference_image=IMAGE))

        assert adapter.calls[0].has_image is False


class TestCallbacks:
    @pytest.mark.asyncio
    async def test_streamed_tokens_are_forwarded(self):
        clock = FakeClock()
        adapter = ScriptedAdapter(
            steps=[Step(html=SAMPLE_HTML, tokens=["<!doctype html>", "<html>..."])], clock=clock
        )
        recorder = EventRecorder()

        await _orchestrator(adapter, clock).generate_streamed(_hf_request(), _callbacks(recorder))

        assert recorder.of("token") == ["<!doctype html>", "<html>..."]

    @pytest.mark.asyncio
    async def test_buffered_success_emits_one_token(self):
        clock = FakeClock()
        adapter = ScriptedAdapter(steps=[Step(html=SAMPLE_HTML)], clock=clock)
        recorder = EventRecorder()

        await _orchestrator(adapter, clock).generate(_hf_request(), _callbacks(recorder))

        assert recorder.of("token") == [SAMPLE_HTML]

    @pytest.mark.asyncio
    async def test_event_order_across_a_retry(self):
        clock = FakeClock()
        adapter = ScriptedAdapter(
            steps=[
                Step(error=ProviderResponseError(504, "slow"), tokens=["partial"]),
                Step(html=SAMPLE_HTML, tokens=["full"]),
            ],
            clock=clock,
        )
        recorder = EventRecorder()

        await _orchestrator(adapter, clock).generate_streamed(
            _hf_request(provider_hint="novita"), _callbacks(recorder)
        )

        kinds = [kind for kind, _ in recorder.events]
        assert kinds == ["attempt", "log", "token", "log", "attempt", "log", "token"]
        assert recorder.of("log") == [
            f"Starting attempt 1/2 with {MODEL}:novita.",
            "Attempt 1 failed. Retrying.",
            f"Starting attempt 2/2 with {MODEL}.",
        ]
        infos = recorder.of("attempt")
        assert infos[0].reset_code is False
        assert infos[1].reset_code is True
        assert infos[1].to_dict() == {
            "attemptNumber": 2,
            "totalAttempts": 2,
            "model": MODEL,
            "provider": "auto",
            "resetCode": True,
        }


class TestPlanningAndPricing:
    def test_plan_for_routed_backend(self):
        adapter = ScriptedAdapter()
        orchestrator = _orchestrator(adapter, FakeClock())

        plan = orchestrator.plan_for(_hf_request(provider_candidates=("novita", "nebius")))

        assert [entry.provider for entry in plan] == ["novita", "nebius", "auto"]

    def test_non_routed_backend_has_single_entry(self):
        adapter = scripted_vision_adapter()
        orchestrator = _orchestrator(adapter, FakeClock())

        plan = orchestrator.plan_for(_vision_request(provider_hint="novita"))

        assert len(plan) == 1
        assert plan[0].model == "gpt-4.1"
        assert plan[0].provider == "openai"

    @pytest.mark.asyncio
    async def test_unknown_backend_is_rejected(self):
        orchestrator = _orchestrator(ScriptedAdapter(), FakeClock())

        with pytest.raises(GenerationError) as exc_info:
            await orchestrator.generate(_hf_request(backend="mistral"))

        assert exc_info.value.status == 400
        assert exc_info.value.message == "Unknown provider: mistral"

    def test_requires_client_or_adapters(self):
        with pytest.raises(ValueError):
            GenerationOrchestrator(settings=make_settings())

    def test_builds_default_adapters_from_client(self, httpx_client):
        orchestrator = GenerationOrchestrator(httpx_client, settings=make_settings())

        assert orchestrator.backends == ("huggingface", "openai", "anthropic", "google")

    @pytest.mark.asyncio
    async def test_usage_and_cost_are_aggregated(self):
        clock = FakeClock()
        adapter = ScriptedAdapter(
            steps=[
                Step(html=SAMPLE_HTML, usage=GenerationUsage(1000, 500, 1500), finish_reason="stop")
            ],
            clock=clock,
        )

        result = await _orchestrator(adapter, clock).generate(_hf_request())

        assert result.usage == GenerationUsage(1000, 500, 1500)
        assert result.cost is not None
        assert result.cost.total_usd == pytest.approx(0.002)
        assert result.attempts[0].cost is not None
        data = result.to_dict()
        assert data["usedModel"] == MODEL
        assert data["usage"]["totalTokens"] == 1500
