"""Generation orchestrator: attempt loop, timeout budget and fallbacks.

State per request: Planning -> Attempting(i) -> Success | Attempting(i+1) | Fatal.

- Resolves the adapter for the requested backend
- Builds the attempt plan (routed backends only; others get one entry)
- Runs attempts strictly in sequence against one shared wall-clock deadline
- Classifies every failure in one place and decides retry vs abort
- Streaming-unsupported fallback: rerun the same entry buffered
- Unsupported-image fallback: rerun the first entry once without the image

Observability:
- Emits generation.request.* and generation.attempt.* events
- All events use safe_kv(); prompts, keys and HTML are never logged
"""

import asyncio
import time
from collections.abc import Callable, Mapping
from dataclasses import replace

import httpx

from arena.config import Settings, get_settings
from arena.logging import bind_generation_context, get_logger
from arena.services.generation.adapter import ProviderAdapter
from arena.services.generation.anthropic_adapter import AnthropicAdapter
from arena.services.generation.errors import (
    GenerationError,
    HtmlValidationError,
    build_user_message,
    classify_error,
    is_streaming_unsupported_error,
    is_unsupported_image_input_error,
)
from arena.services.generation.google_adapter import GoogleAdapter
from arena.services.generation.huggingface_adapter import HuggingFaceAdapter
from arena.services.generation.openai_adapter import OpenAIAdapter
from arena.services.generation.planner import build_attempt_plan
from arena.services.generation.pricing import apply_pricing
from arena.services.generation.types import (
    AdapterInput,
    AdapterOutput,
    AttemptPlanEntry,
    GenerationAttempt,
    GenerationRequest,
    GenerationResult,
    StreamAttemptInfo,
    StreamingCallbacks,
)
from arena.services.redact import safe_kv, text_fingerprint

logger = get_logger(__name__)

MIN_ATTEMPT_BUDGET_MS = 1_000

BUDGET_EXHAUSTED_MESSAGE = "Generation timed out before another provider attempt could start."
STREAM_FALLBACK_DETAIL = "Provider does not support streaming; falling back to non-stream response."
STREAM_FALLBACK_LOG = "Provider does not support streaming. Falling back to non-stream response."
IMAGE_FALLBACK_LOG = "Model does not accept image input. Retrying without the reference image."

LENGTH_FINISH_REASONS = frozenset({"length", "max_tokens", "MAX_TOKENS"})

ADAPTER_CLASSES: tuple[type[ProviderAdapter], ...] = (
    HuggingFaceAdapter,
    OpenAIAdapter,
    AnthropicAdapter,
    GoogleAdapter,
)


def _elapsed_ms(start: float, end: float) -> int:
    return max(0, int(round((end - start) * 1000)))


class GenerationOrchestrator:
    """Runs one generation request across its attempt plan.

    Holds no request-spanning mutable state; one instance is shared by all
    requests of the application.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        settings: Settings | None = None,
        adapters: Mapping[str, ProviderAdapter] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the orchestrator.

        Args:
            client: Shared httpx.AsyncClient for connection pooling. Required
                unless ``adapters`` is given.
            settings: Settings override (defaults to cached settings).
            adapters: Adapter registry override, keyed by backend name.
            clock: Monotonic clock in seconds, injectable for tests.
        """
        self._settings = settings or get_settings()
        self._clock = clock

        if adapters is None:
            if client is None:
                raise ValueError("client is required when adapters are not given")
            adapters = {cls.name: cls(client, self._settings) for cls in ADAPTER_CLASSES}
        self._adapters: dict[str, ProviderAdapter] = dict(adapters)

    @property
    def backends(self) -> tuple[str, ...]:
        return tuple(self._adapters)

    def resolve_adapter(self, backend: str) -> ProviderAdapter:
        """Get the adapter for a backend.

        Raises:
            GenerationError: If the backend is unknown (400).
        """
        adapter = self._adapters.get(backend)
        if adapter is None:
            raise GenerationError(f"Unknown provider: {backend}", 400)
        return adapter

    def plan_for(self, request: GenerationRequest) -> list[AttemptPlanEntry]:
        """Attempt plan for a request, without running it."""
        adapter = self.resolve_adapter(request.backend)
        return self._build_plan(adapter, request)

    async def generate(
        self,
        request: GenerationRequest,
        callbacks: StreamingCallbacks | None = None,
    ) -> GenerationResult:
        """Buffered generation.

        With callbacks, a success emits exactly one ``on_token`` carrying the
        whole document.

        Returns:
            GenerationResult for the first successful attempt.

        Raises:
            GenerationError: With the full attempt log on failure.
        """
        return await self._run(request, callbacks or StreamingCallbacks(), streaming=False)

    async def generate_streamed(
        self,
        request: GenerationRequest,
        callbacks: StreamingCallbacks,
    ) -> GenerationResult:
        """Streamed generation; every output delta goes to ``on_token``.

        Raises:
            GenerationError: With the full attempt log on failure.
        """
        return await self._run(request, callbacks, streaming=True)

    def _build_plan(
        self, adapter: ProviderAdapter, request: GenerationRequest
    ) -> list[AttemptPlanEntry]:
        if adapter.supports_provider_routing:
            return build_attempt_plan(
                request.model_id,
                provider_hint=request.provider_hint,
                provider_candidates=request.provider_candidates,
            )
        return [AttemptPlanEntry(model=request.model_id, provider=adapter.name)]

    async def _call_adapter(
        self,
        adapter: ProviderAdapter,
        input: AdapterInput,
        callbacks: StreamingCallbacks,
        *,
        streaming: bool,
        timeout_s: float,
    ) -> AdapterOutput:
        if streaming:
            call = adapter.request_streamed(input, callbacks.token, timeout_s=timeout_s)
        else:
            call = adapter.request_once(input, timeout_s=timeout_s)
        return await asyncio.wait_for(call, timeout=timeout_s)

    def _fail(self, error: GenerationError, log_fields: dict) -> GenerationError:
        logger.warning(
            "generation.request.failed",
            **safe_kv(
                **log_fields,
                status_code=error.status,
                attempt_count=len(error.attempts),
            ),
        )
        return error

    async def _run(
        self,
        request: GenerationRequest,
        callbacks: StreamingCallbacks,
        *,
        streaming: bool,
    ) -> GenerationResult:
        adapter = self.resolve_adapter(request.backend)
        plan = self._build_plan(adapter, request)
        total = len(plan)
        deadline = self._clock() + self._settings.generation_timeout_s

        image = request.reference_image if adapter.supports_image_input else None
        base_input = AdapterInput(
            api_key=request.api_key,
            model=request.model_id,
            prompt=request.prompt,
            baseline_html=request.baseline_html,
            reference_image=image,
            bill_to=request.bill_to,
        )
        image_fallback_available = image is not None

        bind_generation_context(request.trace_id, backend=adapter.name, model_id=request.model_id)

        log_fields = {"backend": adapter.name, "model_id": request.model_id}
        logger.info(
            "generation.request.started",
            **safe_kv(
                **log_fields,
                **text_fingerprint("prompt", request.prompt),
                **text_fingerprint("baseline", request.baseline_html),
                streaming=streaming,
                planned_attempts=total,
                has_reference_image=image is not None,
            ),
        )

        attempts: list[GenerationAttempt] = []
        index = 0
        rerun = False

        while index < total:
            entry = plan[index]
            attempt_number = index + 1

            remaining_ms = int(round((deadline - self._clock()) * 1000))
            if remaining_ms < MIN_ATTEMPT_BUDGET_MS:
                logger.warning(
                    "generation.budget.exhausted",
                    **safe_kv(
                        **log_fields,
                        attempt_number=attempt_number,
                        remaining_ms=max(0, remaining_ms),
                    ),
                )
                raise self._fail(GenerationError(BUDGET_EXHAUSTED_MESSAGE, 504, attempts), log_fields)

            await callbacks.attempt(
                StreamAttemptInfo(
                    attempt_number=attempt_number,
                    total_attempts=total,
                    model=entry.model,
                    provider=entry.provider,
                    reset_code=rerun or index > 0,
                )
            )
            await callbacks.log(f"Starting attempt {attempt_number}/{total} with {entry.model}.")

            attempt_fields = {
                **log_fields,
                "attempt_number": attempt_number,
                "model": entry.model,
                "routing_provider": entry.provider,
                "streaming": streaming,
            }
            logger.info("generation.attempt.started", **safe_kv(**attempt_fields))

            entry_input = replace(base_input, model=entry.model)
            start = self._clock()
            try:
                output = await self._call_adapter(
                    adapter,
                    entry_input,
                    callbacks,
                    streaming=streaming,
                    timeout_s=remaining_ms / 1000,
                )
            except Exception as exc:
                duration_ms = _elapsed_ms(start, self._clock())

                if isinstance(exc, HtmlValidationError):
                    attempts.append(
                        GenerationAttempt(
                            model=entry.model,
                            provider=entry.provider,
                            status="error",
                            retryable=False,
                            duration_ms=duration_ms,
                            status_code=exc.status,
                            detail=exc.message,
                        )
                    )
                    logger.warning(
                        "generation.attempt.failed",
                        **safe_kv(
                            **attempt_fields,
                            status_code=exc.status,
                            error_class="validation",
                            retryable=False,
                            latency_ms=duration_ms,
                        ),
                    )
                    raise self._fail(
                        GenerationError(exc.message, exc.status, attempts), log_fields
                    ) from exc

                classified = classify_error(exc)
                status = classified.status

                user_message = build_user_message(
                    status, classified.detail, adapter.label, adapter.not_found_target
                )

                if (
                    index == 0
                    and image_fallback_available
                    and is_unsupported_image_input_error(status, classified.detail)
                ):
                    attempts.append(
                        GenerationAttempt(
                            model=entry.model,
                            provider=entry.provider,
                            status="error",
                            retryable=False,
                            duration_ms=duration_ms,
                            status_code=status,
                            detail=user_message,
                        )
                    )
                    logger.warning(
                        "generation.image.fallback",
                        **safe_kv(**attempt_fields, status_code=status, latency_ms=duration_ms),
                    )
                    await callbacks.log(IMAGE_FALLBACK_LOG)
                    base_input = base_input.without_image()
                    image_fallback_available = False
                    rerun = True
                    continue

                if streaming and is_streaming_unsupported_error(status, classified.detail):
                    attempts.append(
                        GenerationAttempt(
                            model=entry.model,
                            provider=entry.provider,
                            status="error",
                            retryable=False,
                            duration_ms=duration_ms,
                            status_code=status,
                            detail=STREAM_FALLBACK_DETAIL,
                        )
                    )
                    logger.warning(
                        "generation.stream.fallback",
                        **safe_kv(**attempt_fields, status_code=status, latency_ms=duration_ms),
                    )
                    await callbacks.log(STREAM_FALLBACK_LOG)
                    streaming = False
                    rerun = True
                    continue

                can_retry = classified.retryable and index < total - 1
                attempts.append(
                    GenerationAttempt(
                        model=entry.model,
                        provider=entry.provider,
                        status="error",
                        retryable=can_retry,
                        duration_ms=duration_ms,
                        status_code=status,
                        detail=user_message,
                    )
                )
                logger.warning(
                    "generation.attempt.failed",
                    **safe_kv(
                        **attempt_fields,
                        status_code=status,
                        error_class=classified.error_class.value,
                        retryable=can_retry,
                        latency_ms=duration_ms,
                    ),
                )
                if not can_retry:
                    raise self._fail(
                        GenerationError(user_message, status, attempts), log_fields
                    ) from exc

                await callbacks.log(f"Attempt {attempt_number} failed. Retrying.")
                index += 1
                rerun = False
                continue

            duration_ms = _elapsed_ms(start, self._clock())
            attempts.append(
                GenerationAttempt(
                    model=entry.model,
                    provider=entry.provider,
                    status="success",
                    retryable=False,
                    duration_ms=duration_ms,
                    usage=output.usage,
                )
            )

            usage_fields = {}
            if output.usage is not None:
                usage_fields = {
                    "tokens_input": output.usage.input_tokens,
                    "tokens_output": output.usage.output_tokens,
                }
            logger.info(
                "generation.attempt.succeeded",
                **safe_kv(
                    **attempt_fields,
                    latency_ms=duration_ms,
                    html_chars=len(output.html),
                    finish_reason=output.finish_reason,
                    **usage_fields,
                ),
            )
            if output.finish_reason in LENGTH_FINISH_REASONS:
                logger.warning(
                    "generation.attempt.finish_reason_length",
                    **safe_kv(**attempt_fields, finish_reason=output.finish_reason),
                )

            if not streaming:
                await callbacks.token(output.html)

            result = GenerationResult(
                html=output.html,
                used_model=entry.model,
                used_provider=entry.provider,
                attempts=tuple(attempts),
            )
            return apply_pricing(adapter.name, result)

        raise self._fail(
            GenerationError(f"Unable to contact {adapter.label} providers.", 502, attempts),
            log_fields,
        )
