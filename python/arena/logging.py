"""Structured logging configuration using structlog.

Every event carries the correlation fields that are set for the current
async context:
- request_id: X-Request-ID of the HTTP request
- path, method: request line (path never includes the query string)
- trace_id: correlation ID of one generation run
- backend, model_id: what the generation run is talking to

Usage:
    from arena.logging import get_logger, configure_logging

    configure_logging()
    logger = get_logger(__name__)
    logger.info("generation.request.started", backend="huggingface")
"""

import logging
import sys
from contextvars import ContextVar

import structlog

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
path_var: ContextVar[str | None] = ContextVar("path", default=None)
method_var: ContextVar[str | None] = ContextVar("method", default=None)
trace_id_var: ContextVar[str | None] = ContextVar("trace_id", default=None)
backend_var: ContextVar[str | None] = ContextVar("backend", default=None)
model_id_var: ContextVar[str | None] = ContextVar("model_id", default=None)

_CONTEXT_FIELDS: tuple[tuple[str, ContextVar[str | None]], ...] = (
    ("request_id", request_id_var),
    ("path", path_var),
    ("method", method_var),
    ("trace_id", trace_id_var),
    ("backend", backend_var),
    ("model_id", model_id_var),
)

# Loggers that would otherwise log every backend round-trip
_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def add_request_context(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    """Merge the context fields that are set into the event.

    Explicit event fields win over context values.
    """
    for key, var in _CONTEXT_FIELDS:
        value = var.get()
        if value:
            event_dict.setdefault(key, value)
    return event_dict


def configure_logging(json_format: bool = True, level: str = "INFO") -> None:
    """Configure structlog and route stdlib logging through it.

    Args:
        json_format: JSON lines when True, console-friendly output otherwise.
        level: Root log level name.
    """
    shared_processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_request_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    renderer = (
        structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger, typically for ``__name__``."""
    return structlog.get_logger(name)


def set_request_context(
    request_id: str | None,
    path: str | None = None,
    method: str | None = None,
) -> None:
    """Bind the HTTP request fields for the current async context."""
    request_id_var.set(request_id)
    if path is not None:
        path_var.set(path)
    if method is not None:
        method_var.set(method)


def bind_generation_context(
    trace_id: str | None,
    backend: str | None = None,
    model_id: str | None = None,
) -> None:
    """Bind the fields of one generation run for the current async context.

    Args:
        trace_id: Correlation ID for the run (the request ID over HTTP).
        backend: Backend name, e.g. "huggingface".
        model_id: Model identifier without a routing suffix.
    """
    trace_id_var.set(trace_id)
    backend_var.set(backend)
    model_id_var.set(model_id)


def clear_request_context() -> None:
    """Reset every context field at the end of a request."""
    for _, var in _CONTEXT_FIELDS:
        var.set(None)


def get_request_id() -> str | None:
    """Get the current request ID from context."""
    return request_id_var.get()
