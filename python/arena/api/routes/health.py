"""Health check endpoint."""

from fastapi import APIRouter, Request

from arena.responses import success_response
from arena.services.generation.pricing import PRICING_VERSION
from arena.services.generation.prompt import PROMPT_VERSION

router = APIRouter()


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Liveness check.

    Reports the backends the orchestrator serves and the prompt and pricing
    versions in use. Never calls an inference backend.
    """
    orchestrator = getattr(request.app.state, "orchestrator", None)
    return success_response(
        {
            "status": "ok",
            "backends": list(orchestrator.backends) if orchestrator else [],
            "promptVersion": PROMPT_VERSION,
            "pricingVersion": PRICING_VERSION,
        }
    )
