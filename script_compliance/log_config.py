"""
Logging setup for the worker process.

Standard-library logging carries everything; structlog events are rendered
into the message and pick up ``job_id``/``chunk_id``/``worker_id`` from
context variables bound by the worker loop.
"""

import logging
from typing import Optional

import structlog


def configure_logging(level: str = "INFO", fmt: str = "json", force: bool = False) -> None:
    """Configure stdlib logging and structlog once per process.

    Args:
        level: Log level name
        fmt: ``json`` for JSON lines, ``console`` for human-readable output
        force: Replace handlers configured earlier (used by tests and the CLI)
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        force=force,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if fmt == "json"
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def bind_context(
    job_id: Optional[str] = None,
    chunk_id: Optional[str] = None,
    worker_id: Optional[str] = None,
) -> None:
    values = {"job_id": job_id, "chunk_id": chunk_id, "worker_id": worker_id}
    structlog.contextvars.bind_contextvars(**{k: v for k, v in values.items() if v is not None})


def clear_context(*keys: str) -> None:
    if keys:
        structlog.contextvars.unbind_contextvars(*keys)
    else:
        structlog.contextvars.clear_contextvars()
