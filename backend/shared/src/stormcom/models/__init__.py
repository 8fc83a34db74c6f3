"""Pydantic models for StormCom payment and webhook entities."""

from .audit import AuditChange, AuditLogEntry
from .enums import (
    TERMINAL_STATUSES,
    WILDCARD_EVENT,
    AuditAction,
    PaymentAttemptStatus,
    PaymentProvider,
    PaymentTransactionType,
    WebhookEventType,
)
from .errors import (
    ERROR_MESSAGES,
    AlreadyCapturedError,
    CaptureExceedsAuthorizationError,
    CommerceError,
    ConcurrentModificationError,
    CrossTenantIdempotencyConflictError,
    ErrorCode,
    ErrorResponse,
    InvalidTransitionError,
    InvalidWebhookEventError,
    NotCapturedError,
    PaymentAttemptNotFoundError,
    PaymentValidationError,
    RefundExceedsBalanceError,
    UnsafeWebhookUrlError,
    WebhookNotFoundError,
)
from .payment import (
    PaymentAttempt,
    PaymentAttemptCreate,
    PaymentTransaction,
    ReconciliationResult,
    RequestContext,
    StuckAttempt,
)
from .webhook import (
    DeliveryResult,
    Webhook,
    WebhookCreate,
    WebhookDelivery,
    WebhookPayload,
)

__all__ = [
    # Enums
    "AuditAction",
    "PaymentAttemptStatus",
    "PaymentProvider",
    "PaymentTransactionType",
    "WebhookEventType",
    "TERMINAL_STATUSES",
    "WILDCARD_EVENT",
    # Payment
    "PaymentAttempt",
    "PaymentAttemptCreate",
    "PaymentTransaction",
    "ReconciliationResult",
    "RequestContext",
    "StuckAttempt",
    # Webhook
    "DeliveryResult",
    "Webhook",
    "WebhookCreate",
    "WebhookDelivery",
    "WebhookPayload",
    # Audit
    "AuditChange",
    "AuditLogEntry",
    # Errors
    "ERROR_MESSAGES",
    "AlreadyCapturedError",
    "CaptureExceedsAuthorizationError",
    "CommerceError",
    "ConcurrentModificationError",
    "CrossTenantIdempotencyConflictError",
    "ErrorCode",
    "ErrorResponse",
    "InvalidTransitionError",
    "InvalidWebhookEventError",
    "NotCapturedError",
    "PaymentAttemptNotFoundError",
    "PaymentValidationError",
    "RefundExceedsBalanceError",
    "UnsafeWebhookUrlError",
    "WebhookNotFoundError",
]
