"""
Structured Logging
==================

JSON-structured logging with correlation ID tracking.

Provides:
- Structured JSON logs (parseable by log aggregators)
- Correlation / session ID for conversation tracing
- Contextual loggers for modules
- Performance timing utilities

Usage:
    from helpdesk_ai.shared.infrastructure.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Turn processed", extra={"session_id": "chat-42"})
"""

import logging
import sys
import time
from datetime import datetime, timezone
from typing import Any, Optional
from contextlib import contextmanager

from pythonjsonlogger import jsonlogger

_SENSITIVE_KEYS = ("password", "api_key", "secret")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    Custom JSON formatter with additional fields.

    Adds:
    - timestamp in ISO format
    - correlation_id / session_id when available
    - environment name
    """

    def __init__(self, *args: Any, environment: str = "development", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._environment = environment

    def add_fields(
        self,
        log_data: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_data, record, message_dict)

        if not log_data.get("timestamp"):
            log_data["timestamp"] = datetime.now(timezone.utc).isoformat()

        for key in ("correlation_id", "session_id"):
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        log_data["environment"] = self._environment

        for key, value in list(log_data.items()):
            if not isinstance(value, str):
                continue
            lowered = key.lower()
            if any(marker in lowered for marker in _SENSITIVE_KEYS):
                log_data[key] = "***REDACTED***"
            elif "token" in lowered and "tokens" not in lowered:
                log_data[key] = "***REDACTED***"


def setup_logging(
    level: str = "INFO",
    environment: str = "development",
) -> None:
    """
    Configure structured JSON logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        environment: Environment name for log context
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))
    handler.setFormatter(
        CustomJsonFormatter(
            fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
            environment=environment,
        )
    )
    root_logger.addHandler(handler)

    # Silence noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Args:
        name: Logger name (typically __name__ of the module)

    Returns:
        logging.Logger: Configured logger instance
    """
    return logging.getLogger(name)


class ContextLoggerAdapter(logging.LoggerAdapter):
    """Adapter whose identifiers are merged with each call's own extra."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_context_logger(
    name: str,
    correlation_id: Optional[str] = None,
    session_id: Optional[str] = None,
) -> logging.Logger | logging.LoggerAdapter:
    """
    Get a logger that stamps every record with request/session identifiers.

    Args:
        name: Logger name
        correlation_id: Request correlation ID
        session_id: Conversation session ID

    Returns:
        Logger, or LoggerAdapter carrying the identifiers in extra
    """
    logger = get_logger(name)
    context = {}
    if correlation_id:
        context["correlation_id"] = correlation_id
    if session_id:
        context["session_id"] = session_id
    if context:
        return ContextLoggerAdapter(logger, context)
    return logger


@contextmanager
def log_latency(logger: logging.Logger, operation: str, **extra_context: Any):
    """
    Context manager for measuring and logging operation latency.

    Usage:
        with log_latency(logger, "embedding", corpus="kb"):
            vector = await provider.embed(text)

    Args:
        logger: Logger instance
        operation: Operation name for logging
        **extra_context: Additional context to include in log
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        latency_ms = (time.perf_counter() - start) * 1000
        logger.debug(
            f"{operation} completed",
            extra={
                "operation": operation,
                "latency_ms": round(latency_ms, 2),
                **extra_context,
            },
        )
