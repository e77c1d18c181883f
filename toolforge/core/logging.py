from __future__ import annotations

import logging
from typing import Any

import structlog

from .config import get_settings

_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "langchain", "langgraph")


def configure_logging(level: str | None = None, *, json_output: bool | None = None) -> None:
    """Configure structlog and standard logging for the tool runtime.

    Unset arguments fall back to the ``observability`` settings section.
    """
    observability = get_settings().observability
    resolved = getattr(logging, (level or observability.log_level).upper(), logging.INFO)
    render_json = observability.log_json if json_output is None else json_output
    logging.basicConfig(
        format="%(message)s",
        level=resolved,
    )
    quiet = logging.WARNING if resolved < logging.WARNING else resolved
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet)

    renderer: Any = structlog.processors.JSONRenderer() if render_json else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(*, name: str | None = None, **kwargs: Any) -> structlog.stdlib.BoundLogger:
    logger = structlog.get_logger(name)
    if kwargs:
        return logger.bind(**kwargs)
    return logger
