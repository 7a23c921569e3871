"""FastAPI dependencies for route handlers."""

from fastapi import Request

from arena.services.generation import GenerationOrchestrator

__all__ = ["get_orchestrator"]


def get_orchestrator(request: Request) -> GenerationOrchestrator:
    """Get the shared generation orchestrator from app state.

    The orchestrator is created at app startup around the shared
    httpx.AsyncClient, so every request reuses one connection pool.

    Args:
        request: The incoming request (provides access to app.state)

    Returns:
        The shared GenerationOrchestrator instance.
    """
    return request.app.state.orchestrator
