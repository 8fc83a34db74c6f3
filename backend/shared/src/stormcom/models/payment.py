"""Payment attempt and ledger models.

Amounts are integers in minor currency units (e.g. cents, poisha).
"""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from .enums import PaymentAttemptStatus, PaymentProvider, PaymentTransactionType


class PaymentTransaction(BaseModel):
    """Immutable ledger entry attached to a payment attempt."""

    id: str = Field(..., description="Unique transaction ID")
    attempt_id: str = Field(..., description="Owning payment attempt")
    store_id: str = Field(..., description="Owning store (tenant)")
    type: PaymentTransactionType = Field(..., description="Ledger entry type")
    amount: int = Field(..., ge=0, description="Amount in minor units")
    currency: str = Field(..., description="ISO 4217 currency code")
    provider_reference: str | None = Field(
        default=None, description="External processor reference"
    )
    reason: str | None = Field(default=None, description="Refund/void reason")
    created_at: datetime = Field(..., description="Creation timestamp")


class PaymentAttempt(BaseModel):
    """One attempt to collect payment for an order.

    Financial totals are never stored on the attempt; they are derived from
    ``transactions`` on every read.
    """

    id: str = Field(..., description="Unique payment attempt ID")
    store_id: str = Field(..., description="Owning store (tenant)")
    order_id: str = Field(..., description="Order being paid for")
    provider: PaymentProvider = Field(..., description="Payment provider")
    provider_reference: str | None = Field(
        default=None, description="External processor reference"
    )
    amount: int = Field(..., gt=0, description="Amount in minor units")
    currency: str = Field(..., description="ISO 4217 currency code (upper case)")
    status: PaymentAttemptStatus = Field(..., description="Lifecycle status")
    attempt_count: int = Field(default=1, ge=1)
    last_error_code: str | None = None
    last_error_message: str | None = None
    next_retry_at: datetime | None = None
    idempotency_key: str | None = None
    version: int = Field(default=1, ge=1, description="Optimistic lock counter")
    created_at: datetime
    updated_at: datetime
    transactions: list[PaymentTransaction] = Field(default_factory=list)

    def sum_transactions(self, txn_type: PaymentTransactionType) -> int:
        """Sum ledger amounts of one transaction type."""
        return sum(t.amount for t in self.transactions if t.type == txn_type)

    @property
    def captured_amount(self) -> int:
        return self.sum_transactions(PaymentTransactionType.CAPTURE)

    @property
    def refunded_amount(self) -> int:
        return self.sum_transactions(PaymentTransactionType.REFUND)

    @property
    def refundable_amount(self) -> int:
        if self.status != PaymentAttemptStatus.CAPTURED:
            return 0
        return self.captured_amount - self.refunded_amount


class PaymentAttemptCreate(BaseModel):
    """Data required to create a payment attempt."""

    store_id: str = Field(..., min_length=1)
    order_id: str = Field(..., min_length=1)
    provider: PaymentProvider
    amount: int = Field(..., gt=0, description="Amount must be positive (minor units)")
    currency: str = Field(
        ...,
        min_length=3,
        max_length=3,
        description="ISO 4217 code (3 chars)",
    )
    idempotency_key: str | None = Field(default=None, min_length=1, max_length=128)
    provider_reference: str | None = None

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, value: str) -> str:
        return value.upper()


class RequestContext(BaseModel):
    """Caller metadata recorded in audit entries."""

    user_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None


class StuckAttempt(BaseModel):
    """An attempt left in AUTHORIZING beyond the reconciliation timeout."""

    id: str
    store_id: str
    order_id: str
    status: PaymentAttemptStatus
    created_at: datetime
    stuck_minutes: int


class ReconciliationResult(BaseModel):
    """Result of a reconciliation scan."""

    stuck_attempts: list[StuckAttempt] = Field(default_factory=list)
    total_stuck: int = 0
    checked_at: datetime
