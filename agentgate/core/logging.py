from __future__ import annotations

import logging
from typing import Any, ContextManager

import structlog

from .config import Settings, get_settings


def configure_logging(level: str | None = None, *, settings: Settings | None = None) -> None:
    """Configure structlog and stdlib logging for the decision core.

    ``level`` falls back to ``observability.log_level`` from settings.
    """
    resolved = (level or (settings or get_settings()).observability.log_level).upper()
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, resolved, logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def request_context(request_id: str, **values: Any) -> ContextManager[Any]:
    """Bind ``request_id`` (and extra values) to every event logged inside the block."""
    return structlog.contextvars.bound_contextvars(request_id=request_id, **values)


def get_logger(*, name: str | None = None, **kwargs: Any) -> structlog.stdlib.BoundLogger:
    logger = structlog.get_logger(name)
    return logger.bind(**kwargs) if kwargs else logger
