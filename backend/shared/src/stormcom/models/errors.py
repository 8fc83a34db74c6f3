"""Standard error codes and domain exceptions for StormCom core services.

Every business-rule violation raised by the payment engine or the webhook
registry is a ``CommerceError`` subclass carrying an ``ErrorCode``. The API
layer maps codes to HTTP status codes (see ``stormcom_api.exceptions``).
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class ErrorCode(str, Enum):
    """Error codes surfaced to callers of the core services."""

    # Payment error codes (ERR_PAY_001-ERR_PAY_009)
    PAYMENT_ATTEMPT_NOT_FOUND = "ERR_PAY_001"
    INVALID_TRANSITION = "ERR_PAY_002"
    ALREADY_CAPTURED = "ERR_PAY_003"
    NOT_CAPTURED = "ERR_PAY_004"
    REFUND_EXCEEDS_BALANCE = "ERR_PAY_005"
    CAPTURE_EXCEEDS_AUTHORIZATION = "ERR_PAY_006"
    IDEMPOTENCY_CONFLICT = "ERR_PAY_007"
    CONCURRENT_MODIFICATION = "ERR_PAY_008"
    VALIDATION_ERROR = "ERR_PAY_009"

    # Webhook error codes (ERR_HOOK_001-ERR_HOOK_003)
    WEBHOOK_NOT_FOUND = "ERR_HOOK_001"
    UNSAFE_WEBHOOK_URL = "ERR_HOOK_002"
    INVALID_WEBHOOK_EVENT = "ERR_HOOK_003"

    # Request errors
    STORE_REQUIRED = "ERR_REQ_001"


# Human-readable error messages
ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.PAYMENT_ATTEMPT_NOT_FOUND: "Payment attempt not found",
    ErrorCode.INVALID_TRANSITION: "Invalid payment state transition",
    ErrorCode.ALREADY_CAPTURED: "Payment already captured",
    ErrorCode.NOT_CAPTURED: "Cannot refund a payment that has not been captured",
    ErrorCode.REFUND_EXCEEDS_BALANCE: "Refund amount exceeds refundable amount",
    ErrorCode.CAPTURE_EXCEEDS_AUTHORIZATION: "Capture amount cannot exceed authorized amount",
    ErrorCode.IDEMPOTENCY_CONFLICT: "Idempotency key already used by another store",
    ErrorCode.CONCURRENT_MODIFICATION: "Payment attempt was modified concurrently",
    ErrorCode.VALIDATION_ERROR: "Invalid payment request",
    ErrorCode.WEBHOOK_NOT_FOUND: "Webhook not found",
    ErrorCode.UNSAFE_WEBHOOK_URL: "Webhook URL is not allowed",
    ErrorCode.INVALID_WEBHOOK_EVENT: "Unknown webhook event",
    ErrorCode.STORE_REQUIRED: "Store identifier is required",
}


class ErrorResponse(BaseModel):
    """Standard error body returned to API callers."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: ErrorCode
    message: str
    details: Optional[dict[str, Any]] = None

    @classmethod
    def from_code(
        cls,
        code: ErrorCode,
        details: Optional[dict[str, Any]] = None,
    ) -> "ErrorResponse":
        """Create an ErrorResponse from an error code.

        Args:
            code: The error code
            details: Optional additional context about the error

        Returns:
            An ErrorResponse with the standard message for the code.
        """
        return cls(error_code=code, message=ERROR_MESSAGES[code], details=details)


class CommerceError(Exception):
    """Base exception for StormCom core business-rule violations."""

    code: ErrorCode = ErrorCode.INVALID_TRANSITION

    def __init__(
        self,
        details: Optional[dict[str, Any]] = None,
        *,
        code: Optional[ErrorCode] = None,
        message: Optional[str] = None,
    ):
        if code is not None:
            self.code = code
        self.message = message or ERROR_MESSAGES[self.code]
        self.details = details
        super().__init__(self.message)

    def to_response(self) -> ErrorResponse:
        """Convert this exception to an ErrorResponse body."""
        return ErrorResponse(
            error_code=self.code,
            message=self.message,
            details=self.details,
        )


class PaymentAttemptNotFoundError(CommerceError):
    code = ErrorCode.PAYMENT_ATTEMPT_NOT_FOUND


class InvalidTransitionError(CommerceError):
    """Requested status change is not in the transition table."""

    code = ErrorCode.INVALID_TRANSITION

    def __init__(self, from_status: str, to_status: str, hint: str | None = None):
        message = f"Invalid transition from {from_status} to {to_status}"
        if hint:
            message = f"{message}. {hint}"
        super().__init__(
            {"from_status": from_status, "to_status": to_status},
            message=message,
        )


class AlreadyCapturedError(CommerceError):
    """Double-capture guard."""

    code = ErrorCode.ALREADY_CAPTURED


class NotCapturedError(CommerceError):
    code = ErrorCode.NOT_CAPTURED


class RefundExceedsBalanceError(CommerceError):
    code = ErrorCode.REFUND_EXCEEDS_BALANCE

    def __init__(self, requested: int, refundable: int, captured: int, refunded: int):
        super().__init__(
            {
                "requested": requested,
                "refundable": refundable,
                "captured": captured,
                "refunded": refunded,
            },
            message=(
                f"Refund amount ({requested}) exceeds refundable amount ({refundable}). "
                f"Captured: {captured}, Already refunded: {refunded}"
            ),
        )


class CaptureExceedsAuthorizationError(CommerceError):
    code = ErrorCode.CAPTURE_EXCEEDS_AUTHORIZATION

    def __init__(self, requested: int, authorized: int):
        super().__init__(
            {"requested": requested, "authorized": authorized},
            message=(
                f"Capture amount ({requested}) cannot exceed "
                f"authorized amount ({authorized})"
            ),
        )


class CrossTenantIdempotencyConflictError(CommerceError):
    code = ErrorCode.IDEMPOTENCY_CONFLICT


class ConcurrentModificationError(CommerceError):
    code = ErrorCode.CONCURRENT_MODIFICATION


class PaymentValidationError(CommerceError):
    """Input rejected before any persistence."""

    code = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str, field: str | None = None):
        super().__init__({"field": field} if field else None, message=message)


class WebhookNotFoundError(CommerceError):
    code = ErrorCode.WEBHOOK_NOT_FOUND


class UnsafeWebhookUrlError(CommerceError):
    code = ErrorCode.UNSAFE_WEBHOOK_URL

    def __init__(self, reason: str):
        super().__init__({"reason": reason}, message=f"Webhook URL is not allowed: {reason}")


class InvalidWebhookEventError(CommerceError):
    code = ErrorCode.INVALID_WEBHOOK_EVENT

    def __init__(self, events: list[str]):
        super().__init__(
            {"events": ", ".join(events)},
            message=f"Unknown webhook event(s): {', '.join(events)}",
        )
