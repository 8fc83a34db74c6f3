"""Structured logging utilities with correlation ID support.

Provides:
- Correlation ID context management for request tracing
- Structured logging formatter for consistent log output
- Helper functions for payment and webhook delivery logging

Usage:
    from stormcom.utils.logging import get_logger, set_correlation_id

    # In middleware/request handler:
    set_correlation_id(request.headers.get("X-Correlation-ID"))

    # In service code:
    logger = get_logger(__name__)
    logger.info("Capturing payment", extra={"attempt_id": "pa_123"})
"""

import logging
import uuid
from contextvars import ContextVar
from typing import Any

# Context variable for correlation ID - thread-safe and async-safe
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def generate_correlation_id() -> str:
    """Generate a new UUID-based correlation ID."""
    return str(uuid.uuid4())


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set the correlation ID for the current request context.

    Args:
        correlation_id: Optional existing correlation ID. If None, generates new one.

    Returns:
        The correlation ID that was set
    """
    cid = correlation_id or generate_correlation_id()
    _correlation_id.set(cid)
    return cid


def get_correlation_id() -> str | None:
    """Get the current correlation ID, or None if not set."""
    return _correlation_id.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID context."""
    _correlation_id.set(None)


class CorrelationIdFilter(logging.Filter):
    """Logging filter that adds correlation_id to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "no-correlation-id"
        return True


class StructuredFormatter(logging.Formatter):
    """Formatter for structured log output with correlation ID."""

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = get_correlation_id() or "no-correlation-id"

        base = super().format(record)

        # Correlation ID prefix for easy grep/filtering
        return f"[{record.correlation_id}] {base}"


def get_logger(name: str) -> logging.Logger:
    """Get a logger with correlation ID support.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if not any(isinstance(f, CorrelationIdFilter) for f in logger.filters):
        logger.addFilter(CorrelationIdFilter())

    return logger


def configure_logging(level: int | str = logging.INFO) -> None:
    """Install a root handler using StructuredFormatter.

    Safe to call more than once; an existing structured handler is reused.
    """
    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers:
        if isinstance(handler.formatter, StructuredFormatter):
            return
    handler = logging.StreamHandler()
    handler.setFormatter(
        StructuredFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    handler.addFilter(CorrelationIdFilter())
    root.addHandler(handler)


def log_payment_operation(
    logger: logging.Logger,
    operation: str,
    *,
    attempt_id: str | None = None,
    store_id: str | None = None,
    order_id: str | None = None,
    amount: int | None = None,
    status: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log a payment operation with structured context.

    Args:
        logger: Logger instance
        operation: Operation name (e.g., "capture", "refund")
        attempt_id: Payment attempt ID if available
        store_id: Owning store
        order_id: Order ID if relevant
        amount: Amount in minor units if relevant
        status: Resulting attempt status
        error: Error message if operation failed
        **extra: Additional context fields
    """
    context: dict[str, Any] = {"operation": operation}

    if attempt_id:
        context["attempt_id"] = attempt_id
    if store_id:
        context["store_id"] = store_id
    if order_id:
        context["order_id"] = order_id
    if amount is not None:
        context["amount"] = amount
    if status:
        context["status"] = status
    if error:
        context["error"] = error

    context.update(extra)

    msg_parts = [f"Payment operation: {operation}"]
    for key, value in context.items():
        if key != "operation":
            msg_parts.append(f"{key}={value}")

    message = " | ".join(msg_parts)

    if error:
        logger.error(message, extra=context)
    else:
        logger.info(message, extra=context)


def log_webhook_delivery(
    logger: logging.Logger,
    event: str,
    webhook_id: str,
    *,
    delivery_id: str | None = None,
    attempt: int | None = None,
    status_code: int | None = None,
    success: bool | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log an outbound webhook delivery attempt with structured context.

    Args:
        logger: Logger instance
        event: Event name (e.g., "order.paid")
        webhook_id: Target webhook ID
        delivery_id: Payload ID shared by all attempts of one delivery
        attempt: 1-based attempt number
        status_code: HTTP status returned by the endpoint
        success: Whether the attempt succeeded
        error: Transport or validation error message
        **extra: Additional context fields
    """
    context: dict[str, Any] = {"event": event, "webhook_id": webhook_id}

    if delivery_id:
        context["delivery_id"] = delivery_id
    if attempt is not None:
        context["attempt"] = attempt
    if status_code is not None:
        context["status_code"] = status_code
    if success is not None:
        context["success"] = success
    if error:
        context["error"] = error

    context.update(extra)

    msg_parts = [f"Webhook delivery: {event} -> {webhook_id}"]
    if attempt is not None:
        msg_parts.append(f"attempt={attempt}")
    if status_code is not None:
        msg_parts.append(f"status={status_code}")
    if error:
        msg_parts.append(f"error={error}")

    message = " | ".join(msg_parts)

    if success:
        logger.info(message, extra=context)
    else:
        logger.warning(message, extra=context)
