"""Server-Sent Events bridge for streamed generation.

Maps the orchestrator callbacks onto named SSE events.

Event order:
- meta: {taskId?, modelId, provider, plannedAttempts}
- attempt: StreamAttemptInfo, before each attempt
- token: {text}, for every output delta
- log: {message}, human-readable progress
- complete: {result, generation} or error: {message, attempts}, exactly one
- done: {}, always last

The generation runs in one task owned by the response iterator. When the
client disconnects, the iterator is closed and the task is cancelled, which
aborts the in-flight backend call.
"""

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import suppress
from typing import Any

from arena.logging import get_logger
from arena.services.generation.errors import GenerationError
from arena.services.generation.orchestrator import GenerationOrchestrator
from arena.services.generation.routing import HUGGINGFACE
from arena.services.generation.types import (
    GenerationRequest,
    GenerationResult,
    StreamAttemptInfo,
    StreamingCallbacks,
)
from arena.services.redact import safe_kv

logger = get_logger(__name__)

STREAM_FAILURE_MESSAGE = "Unable to generate output from provider."
OUTPUT_RECEIVED_MESSAGE = "Model output received for this session."
MAX_LABEL_CHARS = 120


def format_sse_event(event: str, data: dict) -> str:
    """Format data as an SSE event."""
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


def derive_model_label(model_id: str) -> str:
    """Last path segment of the model id, capped at 120 chars."""
    segments = [segment for segment in model_id.split("/") if segment]
    label = segments[-1] if segments else model_id
    return label[:MAX_LABEL_CHARS]


def infer_vendor(model_id: str) -> str:
    """Vendor of a hub model id: the organization, else the name's first dash segment."""
    trimmed = model_id.strip()
    slash = trimmed.find("/")
    if slash > 0:
        return trimmed[:slash].lower()
    dash = trimmed.find("-")
    if dash > 0:
        return trimmed[:dash].lower()
    return "unknown"


def resolve_vendor(backend: str, model_id: str) -> str:
    if backend == HUGGINGFACE:
        return infer_vendor(model_id)
    return backend


def build_result_payload(request: GenerationRequest, result: GenerationResult) -> dict[str, Any]:
    """The {result, generation} payload shared by the JSON and SSE routes."""
    return {
        "result": {
            "modelId": request.model_id,
            "label": derive_model_label(request.model_id),
            "provider": request.backend,
            "vendor": resolve_vendor(request.backend, request.model_id),
            "html": result.html,
        },
        "generation": result.to_dict(),
    }


def build_meta_payload(
    orchestrator: GenerationOrchestrator,
    request: GenerationRequest,
    task_id: str | None = None,
) -> dict[str, Any]:
    """Meta event: routing hint (or backend) and the planned attempt count."""
    payload: dict[str, Any] = {}
    if task_id:
        payload["taskId"] = task_id
    payload["modelId"] = request.model_id
    payload["provider"] = request.provider_hint if request.backend == HUGGINGFACE else request.backend
    payload["plannedAttempts"] = len(orchestrator.plan_for(request))
    return payload


async def stream_generation(
    orchestrator: GenerationOrchestrator,
    request: GenerationRequest,
    *,
    task_id: str | None = None,
) -> AsyncIterator[str]:
    """Async generator for streamed generation via SSE.

    Yields SSE-formatted event strings. Always ends with exactly one terminal
    event (complete or error) followed by done.

    Args:
        orchestrator: Shared GenerationOrchestrator from app.state.
        request: Validated generation request.
        task_id: Optional client task id echoed in the meta event.

    Yields:
        SSE-formatted event strings.
    """
    queue: asyncio.Queue[str | None] = asyncio.Queue()

    async def emit(event: str, data: dict) -> None:
        await queue.put(format_sse_event(event, data))

    async def on_attempt(info: StreamAttemptInfo) -> None:
        await emit("attempt", info.to_dict())

    async def on_token(text: str) -> None:
        await emit("token", {"text": text})

    async def on_log(message: str) -> None:
        await emit("log", {"message": message})

    callbacks = StreamingCallbacks(on_attempt=on_attempt, on_token=on_token, on_log=on_log)

    async def run() -> None:
        try:
            await emit("meta", build_meta_payload(orchestrator, request, task_id))
            result = await orchestrator.generate_streamed(request, callbacks)
            await emit("log", {"message": OUTPUT_RECEIVED_MESSAGE})
            await emit("complete", build_result_payload(request, result))
        except GenerationError as e:
            await emit(
                "error",
                {"message": e.message, "attempts": [a.to_dict() for a in e.attempts]},
            )
        except Exception:
            logger.exception(
                "generation.stream.unexpected_error",
                **safe_kv(backend=request.backend, model_id=request.model_id),
            )
            await emit("error", {"message": STREAM_FAILURE_MESSAGE, "attempts": []})
        finally:
            await emit("done", {})
            await queue.put(None)

    task = asyncio.create_task(run())
    try:
        while True:
            item = await queue.get()
            if item is None:
                break
            yield item
    finally:
        if not task.done():
            # Client went away mid-generation
            logger.info(
                "generation.stream.disconnected",
                **safe_kv(backend=request.backend, model_id=request.model_id),
            )
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
