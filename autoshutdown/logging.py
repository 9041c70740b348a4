"""
Logging setup for autoshutdown.

Modules log through ``structlog.get_logger(__name__)``. Host applications
that already configure structlog can ignore this module; standalone scripts
call ``configure_logging()`` once at startup.
"""

import logging

import structlog

from .config import config

__all__ = ["configure_logging"]


def _resolve_level(level_name: str) -> int:
    return getattr(logging, level_name.upper(), logging.INFO)


def configure_logging(level: str | None = None) -> None:
    """Configure structlog with a level filter.

    Args:
        level: Log level name (default: config.log_level)
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            _resolve_level(level or config.log_level)
        ),
        cache_logger_on_first_use=False,
    )
