"""Payment attempt endpoints.

Provides REST endpoints for:
- Creating payment attempts (idempotent per store)
- Authorization lifecycle (start, complete, fail)
- Capture, refund and void, each emitting an order webhook event
- Ledger totals and stuck-attempt reconciliation

The calling store is identified by the X-Store-ID header.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query
from starlette.status import HTTP_200_OK, HTTP_201_CREATED

from stormcom.models import (
    PaymentAttempt,
    PaymentAttemptCreate,
    PaymentAttemptNotFoundError,
    ReconciliationResult,
    RequestContext,
    WebhookEventType,
)
from stormcom.services.payment_service import AUTHORIZING_TIMEOUT_MINUTES, PaymentService
from stormcom.services.webhook_dispatcher import WebhookDispatcher
from stormcom_api.dependencies import (
    get_payment_service,
    get_request_context,
    get_store_id,
    get_webhook_dispatcher,
)
from stormcom_api.models.payments import (
    AuthorizeRequest,
    CaptureRequest,
    CreatePaymentAttemptRequest,
    FailAuthorizationRequest,
    RefundableAmountResponse,
    RefundRequest,
    VoidRequest,
)

router = APIRouter(tags=["payments"])

ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"description": "Invalid transition or amount"},
    404: {"description": "Payment attempt not found"},
    409: {"description": "Already captured or modified concurrently"},
}


def _event_data(attempt: PaymentAttempt, **extra: Any) -> dict[str, Any]:
    """Order event data sent to webhook subscribers."""
    data: dict[str, Any] = {
        "order_id": attempt.order_id,
        "payment_attempt_id": attempt.id,
        "provider": attempt.provider.value,
        "status": attempt.status.value,
        "amount": attempt.amount,
        "currency": attempt.currency,
        "captured_amount": attempt.captured_amount,
        "refunded_amount": attempt.refunded_amount,
    }
    data.update(extra)
    return data


@router.post(
    "/payments/attempts",
    summary="Create payment attempt",
    description="""
Create a payment attempt for an order in INITIATED status.

**Notes:**
- Repeating a request with the same `idempotency_key` returns the original attempt
- An `idempotency_key` already used by another store returns 409
- Amounts are integers in minor units (cents, poisha)
""",
    response_model=PaymentAttempt,
    status_code=HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def create_payment_attempt(
    body: CreatePaymentAttemptRequest,
    store_id: str = Depends(get_store_id),
    context: RequestContext = Depends(get_request_context),
    payments: PaymentService = Depends(get_payment_service),
) -> PaymentAttempt:
    data = PaymentAttemptCreate(store_id=store_id, **body.model_dump())
    return payments.create_attempt(data, context)


@router.get(
    "/payments/attempts/{attempt_id}",
    summary="Get payment attempt",
    response_model=PaymentAttempt,
    responses={404: {"description": "Payment attempt not found"}},
)
async def get_payment_attempt(
    attempt_id: str,
    store_id: str = Depends(get_store_id),
    payments: PaymentService = Depends(get_payment_service),
) -> PaymentAttempt:
    """Get an attempt with its ledger entries."""
    attempt = payments.get_attempt_by_id(attempt_id, store_id)
    if not attempt:
        raise PaymentAttemptNotFoundError({"attempt_id": attempt_id})
    return attempt


@router.get(
    "/payments/orders/{order_id}/attempts",
    summary="List payment attempts for an order",
    response_model=list[PaymentAttempt],
)
async def list_order_attempts(
    order_id: str,
    store_id: str = Depends(get_store_id),
    payments: PaymentService = Depends(get_payment_service),
) -> list[PaymentAttempt]:
    """Newest attempt first."""
    return payments.get_attempts_by_order_id(order_id, store_id)


@router.post(
    "/payments/attempts/{attempt_id}/authorize",
    summary="Start authorization",
    response_model=PaymentAttempt,
    status_code=HTTP_200_OK,
    responses=ERROR_RESPONSES,
)
async def start_authorization(
    attempt_id: str,
    body: AuthorizeRequest | None = None,
    store_id: str = Depends(get_store_id),
    context: RequestContext = Depends(get_request_context),
    payments: PaymentService = Depends(get_payment_service),
) -> PaymentAttempt:
    return payments.start_authorization(
        attempt_id,
        store_id,
        provider_reference=body.provider_reference if body else None,
        context=context,
    )


@router.post(
    "/payments/attempts/{attempt_id}/authorize/complete",
    summary="Complete authorization",
    response_model=PaymentAttempt,
    responses=ERROR_RESPONSES,
)
async def complete_authorization(
    attempt_id: str,
    body: AuthorizeRequest | None = None,
    store_id: str = Depends(get_store_id),
    context: RequestContext = Depends(get_request_context),
    payments: PaymentService = Depends(get_payment_service),
) -> PaymentAttempt:
    return payments.complete_authorization(
        attempt_id,
        store_id,
        provider_reference=body.provider_reference if body else None,
        context=context,
    )


@router.post(
    "/payments/attempts/{attempt_id}/authorize/fail",
    summary="Record failed authorization",
    response_model=PaymentAttempt,
    responses=ERROR_RESPONSES,
)
async def fail_authorization(
    attempt_id: str,
    body: FailAuthorizationRequest,
    store_id: str = Depends(get_store_id),
    context: RequestContext = Depends(get_request_context),
    payments: PaymentService = Depends(get_payment_service),
) -> PaymentAttempt:
    return payments.fail_authorization(
        attempt_id,
        store_id,
        error_code=body.error_code,
        error_message=body.error_message,
        schedule_retry=body.schedule_retry,
        retry_delay_minutes=body.retry_delay_minutes,
        context=context,
    )


@router.post(
    "/payments/attempts/{attempt_id}/capture",
    summary="Capture payment",
    description="""
Capture an authorized payment. Omit `amount` to capture the full authorized amount.

Emits `order.paid` to subscribed webhooks.
""",
    response_model=PaymentAttempt,
    responses=ERROR_RESPONSES,
)
async def capture_payment(
    attempt_id: str,
    body: CaptureRequest | None = None,
    store_id: str = Depends(get_store_id),
    context: RequestContext = Depends(get_request_context),
    payments: PaymentService = Depends(get_payment_service),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
) -> PaymentAttempt:
    attempt = payments.capture(
        attempt_id,
        store_id,
        amount=body.amount if body else None,
        provider_reference=body.provider_reference if body else None,
        context=context,
    )
    dispatcher.emit(store_id, WebhookEventType.ORDER_PAID.value, _event_data(attempt))
    return attempt


@router.post(
    "/payments/attempts/{attempt_id}/refund",
    summary="Refund payment",
    description="""
Refund part or all of a captured payment. Partial refunds accumulate until the
captured amount is exhausted.

Emits `order.refunded` to subscribed webhooks.
""",
    response_model=PaymentAttempt,
    responses=ERROR_RESPONSES,
)
async def refund_payment(
    attempt_id: str,
    body: RefundRequest,
    store_id: str = Depends(get_store_id),
    context: RequestContext = Depends(get_request_context),
    payments: PaymentService = Depends(get_payment_service),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
) -> PaymentAttempt:
    attempt = payments.refund(
        attempt_id,
        store_id,
        body.amount,
        reason=body.reason,
        provider_reference=body.provider_reference,
        context=context,
    )
    dispatcher.emit(
        store_id,
        WebhookEventType.ORDER_REFUNDED.value,
        _event_data(attempt, refund_amount=body.amount, reason=body.reason),
    )
    return attempt


@router.post(
    "/payments/attempts/{attempt_id}/void",
    summary="Void payment",
    description="Cancel an initiated or authorized payment. Emits `order.cancelled`.",
    response_model=PaymentAttempt,
    responses=ERROR_RESPONSES,
)
async def void_payment(
    attempt_id: str,
    body: VoidRequest | None = None,
    store_id: str = Depends(get_store_id),
    context: RequestContext = Depends(get_request_context),
    payments: PaymentService = Depends(get_payment_service),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
) -> PaymentAttempt:
    reason = body.reason if body else None
    attempt = payments.void(
        attempt_id,
        store_id,
        reason=reason,
        provider_reference=body.provider_reference if body else None,
        context=context,
    )
    dispatcher.emit(
        store_id,
        WebhookEventType.ORDER_CANCELLED.value,
        _event_data(attempt, reason=reason),
    )
    return attempt


@router.get(
    "/payments/attempts/{attempt_id}/refundable",
    summary="Get refundable amount",
    response_model=RefundableAmountResponse,
    responses={404: {"description": "Payment attempt not found"}},
)
async def get_refundable_amount(
    attempt_id: str,
    store_id: str = Depends(get_store_id),
    payments: PaymentService = Depends(get_payment_service),
) -> RefundableAmountResponse:
    """Captured minus refunded; 0 unless the attempt is CAPTURED."""
    refundable = payments.get_refundable_amount(attempt_id, store_id)
    attempt = payments.get_attempt_by_id(attempt_id, store_id)
    if not attempt:
        raise PaymentAttemptNotFoundError({"attempt_id": attempt_id})
    return RefundableAmountResponse(
        attempt_id=attempt.id,
        status=attempt.status.value,
        currency=attempt.currency,
        captured_amount=attempt.captured_amount,
        refunded_amount=attempt.refunded_amount,
        refundable_amount=refundable,
    )


@router.post(
    "/payments/reconciliation",
    summary="Find stuck payment attempts",
    description="""
Report attempts that have been AUTHORIZING for longer than `timeout_minutes`.
Read-only: attempts are not modified.
""",
    response_model=ReconciliationResult,
)
async def run_reconciliation(
    timeout_minutes: int = Query(default=AUTHORIZING_TIMEOUT_MINUTES, gt=0),
    payments: PaymentService = Depends(get_payment_service),
) -> ReconciliationResult:
    return payments.run_reconciliation(timeout_minutes)
