"""FastAPI application factory.

One process serves many concurrent generation runs. They share a single
``httpx.AsyncClient`` (connection pool to every backend) and a single
``GenerationOrchestrator``, both created in the lifespan and kept on
``app.state``; the client is closed at shutdown.

Generation routes only accept JSON bodies: anything else is answered with
415, and bodies that do not parse with 400, before a route handler runs.

Request IDs: ``add_request_id_middleware`` must be called after
``create_app`` so the middleware is outermost and stamps every response.
"""

import json
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from arena.api.routes import create_api_router
from arena.config import get_settings
from arena.errors import ApiError, ApiErrorCode
from arena.logging import configure_logging, get_logger
from arena.middleware.request_id import RequestIDMiddleware
from arena.responses import (
    api_error_handler,
    error_json,
    generation_error_handler,
    http_exception_handler,
    unhandled_exception_handler,
)
from arena.services.generation import GenerationError, GenerationOrchestrator

_settings = get_settings()
configure_logging(json_format=_settings.log_json, level=_settings.log_level)

logger = get_logger(__name__)

JSON_ONLY_PATH_PREFIXES = ("/generate",)

# Connect timeout only; each attempt passes its own read budget
BACKEND_CONNECT_TIMEOUT_S = 10.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()

    app.state.httpx_client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.generation_timeout_s, connect=BACKEND_CONNECT_TIMEOUT_S),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
    )
    app.state.orchestrator = GenerationOrchestrator(app.state.httpx_client, settings=settings)
    logger.info(
        "app.startup",
        backends=list(app.state.orchestrator.backends),
        generation_timeout_ms=settings.generation_timeout_ms,
        generation_max_tokens=settings.generation_max_tokens,
    )

    try:
        yield
    finally:
        await app.state.httpx_client.aclose()
        logger.info("app.shutdown")


async def _reject_non_json(request: Request) -> JSONResponse | None:
    """415/400 response for a generation POST whose body is not JSON, else None."""
    if request.method != "POST" or not request.url.path.startswith(JSON_ONLY_PATH_PREFIXES):
        return None

    if "application/json" not in request.headers.get("content-type", ""):
        return error_json(
            ApiErrorCode.E_UNSUPPORTED_MEDIA_TYPE, "Content-Type must be application/json."
        )

    body = await request.body()
    if body:
        try:
            json.loads(body)
        except json.JSONDecodeError:
            return error_json(ApiErrorCode.E_INVALID_REQUEST, "Malformed JSON body")
    return None


async def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Field names only; values may hold keys or prompt text
    logger.info(
        "http.request.invalid_body",
        fields=[".".join(str(part) for part in error["loc"]) for error in exc.errors()],
    )
    return error_json(ApiErrorCode.E_INVALID_REQUEST, "Invalid request body")


def create_app() -> FastAPI:
    """Create the application with handlers, the JSON-body guard and routes.

    Returns:
        A FastAPI app without the request-id middleware.
    """
    app = FastAPI(
        title="HTML Arena API",
        description="Generate one self-contained HTML document per model and compare them",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(GenerationError, generation_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.middleware("http")
    async def require_json_bodies(request: Request, call_next):
        rejection = await _reject_non_json(request)
        if rejection is not None:
            return rejection
        return await call_next(request)

    app.include_router(create_api_router())
    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Install RequestIDMiddleware as the outermost middleware.

    Args:
        app: App from ``create_app``.
        log_requests: Write one access entry per request.
    """
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
