"""HTTP routes: liveness and generation."""

from fastapi import APIRouter

from arena.api.routes.generate import router as generate_router
from arena.api.routes.health import router as health_router


def create_api_router() -> APIRouter:
    """Router with every route registered.

    Built on demand so importing route modules never loads settings.
    """
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(generate_router, tags=["generation"])
    return api_router


__all__ = ["create_api_router"]
