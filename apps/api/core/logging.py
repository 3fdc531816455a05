"""Structured logging with structlog.

Configures JSON logging for production and colorized console for dev.
The ingestion engine logs through the same structlog pipeline, so
``statement_read``, ``header_located`` and the provider attempt events
all land in one stream.

Usage:
    import structlog
    logger = structlog.get_logger()
    logger.info("event_name", key="value", count=42)
"""

import logging
import sys

import structlog

# Third-party loggers that would otherwise echo provider URLs at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "multipart")


def setup_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Configure structured logging for the application.

    Args:
        log_level: Python log level string (DEBUG, INFO, WARNING, ERROR).
            ``DEBUG`` also enables the prompt hash/length events emitted
            when AI parse debugging is switched on.
        json_output: If True, use JSON renderer (production). If False,
                     use colorized console renderer (development).
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
        force=True,
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
