"""
Structured logging setup for kubepki.

JSON output for machine consumption in provisioning pipelines, a console
renderer for interactive use. Both share the same processor chain so
key/value context looks the same in either mode.
"""

import logging
import sys

import structlog

from kubepki.config import settings


def configure_logging(json_logs: bool | None = None, log_level: str | None = None) -> None:
    """Configure structlog and the stdlib root logger.

    Arguments left as None fall back to settings.json_logs and settings.log_level.
    """
    if json_logs is None:
        json_logs = settings.json_logs
    if log_level is None:
        log_level = settings.log_level

    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    shared_processors: list[structlog.typing.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    renderer: structlog.typing.Processor
    if json_logs:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )

    # Libraries that log through stdlib logging end up on the same stream
    logging.basicConfig(level=level, stream=sys.stderr, format="%(message)s", force=True)


def get_logger(name: str | None = None) -> structlog.typing.FilteringBoundLogger:
    """Return a structlog logger bound to the given module name."""
    return structlog.get_logger(name)
