"""Structured logging for Bashpilot.

Everything is written to stderr so log lines never interleave with the
assistant text streamed to stdout.
"""

import logging
import sys

import structlog

from bashpilot.config import get_config


def _renderer(fmt: str):
    if fmt == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Configure structlog from the ``logging`` config section.

    Args:
        level: Level name overriding the config (``--verbose`` passes "DEBUG")
        fmt: "console" or "json", overriding the config
    """
    if level is None or fmt is None:
        settings = get_config().logging
        level = level or settings.level
        fmt = fmt or settings.format
    level_name = (level or "WARNING").upper()
    min_level = logging.getLevelName(level_name)
    if not isinstance(min_level, int):
        min_level = logging.WARNING

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _renderer(fmt or "console"),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        # Reconfigured once the config file is loaded, so loggers must not cache.
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Return a structlog logger, named after the calling module when given."""
    return structlog.get_logger(name) if name else structlog.get_logger()


log = get_logger(__name__)
