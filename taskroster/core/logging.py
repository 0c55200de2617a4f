"""Logging and observability configuration using Pydantic Logfire.

This module provides standardized logging utilities and configuration.
All modules should use Python's standard logging library (logging.getLogger(__name__)),
and Logfire will automatically capture and enrich these logs.

Standard usage:
    import logging
    logger = logging.getLogger(__name__)
    logger.info("Message", extra={"key": "value"})

Structured logging utilities:
    log_with_context(logger, "info", "Message", task_id="123", user_id="abc")
"""

import logging

import logfire

from taskroster.core.config import settings


def configure_logfire() -> None:
    """Configure Pydantic Logfire with token from environment.

    Without a token nothing is sent; spans and logs stay local.
    """
    logfire.configure(
        token=settings.logfire_token,
        service_name="taskroster",
        service_version="0.1.0",
        environment=settings.logfire_environment,
        send_to_logfire="if-token-present",
    )

    logger = logging.getLogger(__name__)
    logger.info("Logfire configured successfully")


def span(name: str) -> logfire.LogfireSpan:
    """Create a custom span for service layer functions.

    Usage:
        with span("task_service.create_task"):
            # Your service logic here
            pass
    """
    return logfire.span(name)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context: object,
) -> None:
    """Log a message with structured context fields.

    Args:
        logger: Logger instance to use
        level: Log level ("debug", "info", "warning", "error", "critical")
        message: Log message
        **context: Additional context fields (task_id, user_id, operation_type, etc.)

    Usage:
        log_with_context(logger, "info", "Task claimed", task_id="123", user_id="abc")
    """
    log_method = getattr(logger, level.lower())
    log_method(message, extra=context)
