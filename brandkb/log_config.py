"""Structured logging setup shared by the web app and the CLI."""
import logging

import structlog

from brandkb import config


def configure_logging(log_level: str = None, json_output: bool = None) -> None:
    """Configure structlog processors and rendering.

    Args:
        log_level: Minimum level name (default from config)
        json_output: Render JSON lines instead of coloured console output
            (default from config)
    """
    level_name = (log_level or config.LOG_LEVEL).upper()
    if json_output is None:
        json_output = config.LOG_JSON

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json_output:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level_name)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
