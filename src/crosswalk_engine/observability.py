"""Structured logging setup for the crosswalk engine.

Modules obtain a bound logger with `get_logger(__name__)` and log with
key/value context:

    logger.info("Framework version activated", version_id=version.id)

`configure_logging` installs the processor chain once per process; calling
`get_logger` before configuration falls back to structlog's defaults.
"""

import logging
from typing import Any

import structlog

from crosswalk_engine.settings import Settings


def configure_logging(settings: Settings) -> None:
    """Configure structlog according to the engine settings.

    Args:
        settings: Settings providing `log_level` and `log_json`.
    """
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    renderer: structlog.typing.Processor
    if settings.log_json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    """Return a structlog logger bound to the given module name.

    Args:
        name: Logger name, normally the calling module's `__name__`.

    Returns:
        A structlog bound logger.
    """
    return structlog.get_logger(name)
