"""Structured logging configuration using structlog.

Logs go through the standard library so uvicorn and pymongo records end up
in the same stream.
"""

import logging
import sys
from typing import Optional

import structlog
from structlog.types import EventDict, Processor

import config


def add_app_context(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Tag every entry with the service and environment."""
    event_dict["app"] = "events-rental-api"
    event_dict["environment"] = config.ENVIRONMENT
    return event_dict


def configure_logging(log_level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """Configure structlog and the root logger.

    Args:
        log_level: Log level name, defaults to ``config.LOG_LEVEL``
        json_logs: Render JSON instead of the console format, defaults to ``config.JSON_LOGS``
    """
    log_level = log_level or config.LOG_LEVEL
    if json_logs is None:
        json_logs = config.JSON_LOGS

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_app_context,
    ]

    if json_logs:
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
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
