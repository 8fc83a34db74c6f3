"""API request models for payment endpoints.

The owning store comes from the X-Store-ID header, never from the body.
"""

from pydantic import BaseModel, ConfigDict, Field

from stormcom.models import PaymentProvider


class CreatePaymentAttemptRequest(BaseModel):
    """Request to create a payment attempt for an order."""

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "order_id": "ORD-1001",
                    "provider": "stripe",
                    "amount": 10000,
                    "currency": "usd",
                    "idempotency_key": "checkout-ORD-1001",
                }
            ]
        },
    )

    order_id: str = Field(..., min_length=1, description="Order being paid for")
    provider: PaymentProvider = Field(..., description="Payment provider")
    amount: int = Field(..., gt=0, description="Amount in minor units")
    currency: str = Field(..., min_length=3, max_length=3, examples=["USD"])
    idempotency_key: str | None = Field(default=None, min_length=1, max_length=128)
    provider_reference: str | None = None


class AuthorizeRequest(BaseModel):
    provider_reference: str | None = Field(
        default=None, description="External processor reference"
    )


class FailAuthorizationRequest(BaseModel):
    """Record a failed authorization."""

    error_code: str | None = Field(default=None, examples=["card_declined"])
    error_message: str | None = Field(default=None, examples=["Card was declined"])
    schedule_retry: bool = False
    retry_delay_minutes: int | None = Field(default=None, gt=0)


class CaptureRequest(BaseModel):
    """Capture an authorized payment. Omit amount to capture in full."""

    amount: int | None = Field(default=None, gt=0, description="Amount in minor units")
    provider_reference: str | None = None


class RefundRequest(BaseModel):
    amount: int = Field(..., gt=0, description="Amount in minor units")
    reason: str | None = Field(default=None, max_length=500)
    provider_reference: str | None = None


class VoidRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)
    provider_reference: str | None = None


class RefundableAmountResponse(BaseModel):
    """Ledger totals of one attempt, in minor units."""

    attempt_id: str
    status: str
    currency: str
    captured_amount: int
    refunded_amount: int
    refundable_amount: int
