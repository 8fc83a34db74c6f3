"""Enumeration types for StormCom payment and webhook models."""

from enum import Enum


class PaymentAttemptStatus(str, Enum):
    """Lifecycle status of a payment attempt."""

    INITIATED = "INITIATED"
    AUTHORIZING = "AUTHORIZING"
    AUTHORIZED = "AUTHORIZED"
    CAPTURED = "CAPTURED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"


class PaymentTransactionType(str, Enum):
    """Type of an immutable ledger entry."""

    AUTH = "AUTH"
    CAPTURE = "CAPTURE"
    REFUND = "REFUND"
    VOID = "VOID"


class PaymentProvider(str, Enum):
    """Supported payment providers."""

    STRIPE = "stripe"
    BKASH = "bkash"
    COD = "cod"  # Cash on delivery


class AuditAction(str, Enum):
    """Actions recorded in the audit log."""

    CREATE = "CREATE"
    PAYMENT_STATE_CHANGE = "PAYMENT_STATE_CHANGE"
    RECONCILIATION = "RECONCILIATION"


class WebhookEventType(str, Enum):
    """Domain events that tenants can subscribe to."""

    # Order events
    ORDER_CREATED = "order.created"
    ORDER_UPDATED = "order.updated"
    ORDER_PAID = "order.paid"
    ORDER_SHIPPED = "order.shipped"
    ORDER_DELIVERED = "order.delivered"
    ORDER_CANCELLED = "order.cancelled"
    ORDER_REFUNDED = "order.refunded"

    # Customer events
    CUSTOMER_CREATED = "customer.created"
    CUSTOMER_UPDATED = "customer.updated"

    # Product events
    PRODUCT_CREATED = "product.created"
    PRODUCT_UPDATED = "product.updated"
    PRODUCT_LOW_STOCK = "product.low_stock"
    PRODUCT_OUT_OF_STOCK = "product.out_of_stock"

    # Inventory events
    INVENTORY_UPDATED = "inventory.updated"

    # Synthetic event sent by "send test event"
    TEST = "test"


# Subscribing to this matches every event
WILDCARD_EVENT = "*"

TERMINAL_STATUSES: frozenset[PaymentAttemptStatus] = frozenset(
    {PaymentAttemptStatus.FAILED, PaymentAttemptStatus.CANCELED}
)
