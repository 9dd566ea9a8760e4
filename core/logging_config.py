"""
Structured logging setup.

Every module logs through ``get_logger(__name__)`` and passes key-value
context instead of formatting it into the message:

    logger.info("Tier 2 entries", count=3, names=["Rook"])
"""

import logging
import sys

import structlog

_CONFIGURED = False


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """
    Configure structlog on top of stdlib logging.

    Args:
        level: Root log level name (DEBUG, INFO, ...)
        json_output: Render JSON lines instead of the console renderer
    """
    global _CONFIGURED

    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level, force=True)

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _CONFIGURED = True


def get_logger(name: str):
    """Return a structlog logger bound to ``name``."""
    if not _CONFIGURED:
        from config.settings import settings

        configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    return structlog.get_logger(name)
