"""Logging configuration helpers."""

from __future__ import annotations

import logging
import sys

from loguru import logger

_LOGGING_CONFIGURED = False

_TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> | {message} | {extra}"
)


class InterceptHandler(logging.Handler):
    """Route stdlib records (uvicorn, sqlalchemy, alembic) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1
        logger.opt(depth=depth, exception=record.exc_info).bind(component=record.name).log(
            level, record.getMessage()
        )


def configure_logging(level: str = "INFO", *, serialize: bool = False) -> None:
    """Install the loguru sink once per process.

    ``serialize`` switches to JSON lines, which is what the production
    environment ships to the log collector.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    logging.basicConfig(handlers=[InterceptHandler()], level=logging.getLevelName(level), force=True)
    for name in ("uvicorn", "uvicorn.access", "uvicorn.error", "sqlalchemy.engine", "alembic"):
        logging.getLogger(name).handlers = [InterceptHandler()]

    logger.remove()
    logger.configure(extra={"component": "app"})
    logger.add(
        sys.stderr,
        level=level,
        format=_TEXT_FORMAT,
        serialize=serialize,
        enqueue=True,
        backtrace=True,
        diagnose=False,
    )

    _LOGGING_CONFIGURED = True


def get_logger(component: str):
    """Return a logger bound to a pipeline component name."""
    return logger.bind(component=component)


__all__ = ["configure_logging", "get_logger", "logger"]
