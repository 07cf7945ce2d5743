"""
Structured logging setup for the bot runtime.
Provides JSON-formatted logs with consistent fields for queue and seal monitoring.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging with JSON output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _add_queue_context,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def _add_queue_context(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Normalize the queue key field so lanes can be filtered in log search."""
    key = event_dict.get("key")
    if key is not None and not isinstance(key, str):
        event_dict["key"] = str(key)
    return event_dict


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def log_stall(queue: str, key: str, item_id: str, error: str, attempts: int):
    """Log a stalled queue lane with consistent fields."""
    logger = get_logger("queues")
    logger.error(
        "Queue lane stalled",
        queue=queue,
        key=key,
        item_id=item_id,
        attempts=attempts,
        error=error,
        event_type="queue_stall",
    )
