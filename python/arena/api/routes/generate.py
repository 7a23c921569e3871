"""Generation routes.

- POST /generate: buffered generation, JSON envelope
- POST /generate/stream: streamed generation over Server-Sent Events

Both take the same GenerateRequest body. The backend API key comes from the
body (apiKey), the Authorization: Bearer header, or the server-side key for
the backend, in that order.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Header
from fastapi.responses import StreamingResponse

from arena.api.deps import get_orchestrator
from arena.config import get_settings
from arena.logging import get_request_id
from arena.responses import success_response
from arena.schemas.generation import GenerateRequest
from arena.services.generation import GenerationOrchestrator
from arena.services.generation.routing import build_generation_request
from arena.services.generation.stream_events import build_result_payload, stream_generation

router = APIRouter(prefix="/generate")


@router.post("")
async def generate(
    body: GenerateRequest,
    orchestrator: Annotated[GenerationOrchestrator, Depends(get_orchestrator)],
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Generate one HTML document and return it with the attempt log.

    Failures surface as the generation status (400/422/502/504...) with the
    attempt history under error.attempts.
    """
    request = build_generation_request(
        body,
        get_settings(),
        authorization=authorization,
        trace_id=get_request_id(),
    )
    result = await orchestrator.generate(request)
    return success_response(build_result_payload(request, result))


@router.post("/stream")
async def generate_stream(
    body: GenerateRequest,
    orchestrator: Annotated[GenerationOrchestrator, Depends(get_orchestrator)],
    authorization: Annotated[str | None, Header()] = None,
) -> StreamingResponse:
    """Generate one HTML document, streaming progress as SSE.

    Validation errors are returned as JSON before the stream opens; once
    streaming, failures arrive as an error event.
    """
    request = build_generation_request(
        body,
        get_settings(),
        authorization=authorization,
        trace_id=get_request_id(),
    )

    return StreamingResponse(
        stream_generation(orchestrator, request, task_id=body.task_id),
        media_type="text/event-stream; charset=utf-8",
        headers={
            "Cache-Control": "no-cache, no-transform",
            "X-Accel-Buffering": "no",
        },
    )
