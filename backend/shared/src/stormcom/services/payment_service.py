"""Payment attempt state machine with ledger, idempotency and reconciliation.

Every status change is a single DynamoDB transaction that:
- conditionally updates the attempt on its expected ``status`` and ``version``
- appends the matching ledger row (AUTH, CAPTURE, REFUND, VOID) when there is one

A cancelled transaction means another request changed the attempt first, so
the loser re-reads and reports either ``AlreadyCapturedError`` (double
capture) or ``ConcurrentModificationError``.

Captured and refunded totals are never stored; they are summed from the
ledger on every read (see ``PaymentAttempt.captured_amount``).
"""

import datetime as dt
import uuid
from typing import TYPE_CHECKING, Any

from boto3.dynamodb.conditions import Key

from stormcom.models import (
    AlreadyCapturedError,
    AuditAction,
    CaptureExceedsAuthorizationError,
    ConcurrentModificationError,
    CrossTenantIdempotencyConflictError,
    InvalidTransitionError,
    NotCapturedError,
    PaymentAttempt,
    PaymentAttemptCreate,
    PaymentAttemptNotFoundError,
    PaymentAttemptStatus,
    PaymentProvider,
    PaymentTransaction,
    PaymentTransactionType,
    PaymentValidationError,
    ReconciliationResult,
    RefundExceedsBalanceError,
    RequestContext,
    StuckAttempt,
)
from stormcom.utils.logging import get_logger, log_payment_operation

if TYPE_CHECKING:
    from .audit_log import AuditLogService
    from .dynamodb import DynamoDBService

logger = get_logger(__name__)

Status = PaymentAttemptStatus

VALID_TRANSITIONS: dict[PaymentAttemptStatus, frozenset[PaymentAttemptStatus]] = {
    Status.INITIATED: frozenset({Status.AUTHORIZING, Status.FAILED, Status.CANCELED}),
    Status.AUTHORIZING: frozenset({Status.AUTHORIZED, Status.FAILED}),
    Status.AUTHORIZED: frozenset({Status.CAPTURED, Status.CANCELED, Status.FAILED}),
    Status.CAPTURED: frozenset({Status.FAILED}),
    Status.FAILED: frozenset(),
    Status.CANCELED: frozenset(),
}

# Attempts left in AUTHORIZING longer than this are reported as stuck
AUTHORIZING_TIMEOUT_MINUTES = 15


def can_transition(from_status: PaymentAttemptStatus, to_status: PaymentAttemptStatus) -> bool:
    """Check whether a status change is allowed by the transition table."""
    return to_status in VALID_TRANSITIONS[from_status]


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


class PaymentService:
    """Service for payment attempts, their ledger, and reconciliation."""

    ATTEMPTS_TABLE = "payment-attempts"
    IDEMPOTENCY_TABLE = "payment-idempotency-keys"
    TRANSACTIONS_TABLE = "payment-transactions"

    def __init__(self, db: "DynamoDBService", audit: "AuditLogService") -> None:
        """Initialize payment service.

        Args:
            db: DynamoDB service instance
            audit: Audit log writer (best-effort)
        """
        self.db = db
        self.audit = audit

    def _generate_id(self, prefix: str) -> str:
        """Generate a unique ID like PA-ABC123DEF456."""
        return f"{prefix}-{uuid.uuid4().hex[:12].upper()}"

    # Creation

    def create_attempt(
        self,
        data: PaymentAttemptCreate,
        context: RequestContext | None = None,
    ) -> PaymentAttempt:
        """Create a payment attempt in INITIATED status.

        When ``data.idempotency_key`` matches an existing attempt of the same
        store, that attempt is returned unchanged. The same key used by a
        different store is rejected.

        Args:
            data: Validated creation data
            context: Caller metadata for the audit log

        Returns:
            The new (or previously created) attempt

        Raises:
            CrossTenantIdempotencyConflictError: Key belongs to another store
        """
        key = data.idempotency_key
        if key:
            existing = self._find_by_idempotency_key(key, data.store_id)
            if existing:
                log_payment_operation(
                    logger,
                    "create_attempt_idempotent",
                    attempt_id=existing.id,
                    store_id=existing.store_id,
                    order_id=existing.order_id,
                )
                return existing

        now = _utcnow()
        attempt = PaymentAttempt(
            id=self._generate_id("PA"),
            store_id=data.store_id,
            order_id=data.order_id,
            provider=data.provider,
            provider_reference=data.provider_reference,
            amount=data.amount,
            currency=data.currency,
            status=Status.INITIATED,
            attempt_count=1,
            idempotency_key=key,
            version=1,
            created_at=now,
            updated_at=now,
        )

        requests = [
            self.db.put_request(
                self.ATTEMPTS_TABLE,
                self._attempt_to_item(attempt),
                "attribute_not_exists(attempt_id)",
            )
        ]
        if key:
            requests.append(
                self.db.put_request(
                    self.IDEMPOTENCY_TABLE,
                    {
                        "idempotency_key": key,
                        "attempt_id": attempt.id,
                        "store_id": attempt.store_id,
                        "created_at": now.isoformat(),
                    },
                    "attribute_not_exists(idempotency_key)",
                )
            )

        if not self.db.transact_write(requests):
            # Lost a race on the idempotency key: the winner's attempt is the answer
            if key:
                existing = self._find_by_idempotency_key(key, data.store_id)
                if existing:
                    return existing
            raise ConcurrentModificationError({"order_id": data.order_id})

        log_payment_operation(
            logger,
            "create_attempt",
            attempt_id=attempt.id,
            store_id=attempt.store_id,
            order_id=attempt.order_id,
            amount=attempt.amount,
            status=attempt.status.value,
        )
        self.audit.create(
            AuditAction.CREATE,
            "PaymentAttempt",
            attempt.id,
            store_id=attempt.store_id,
            changes={
                "status": (None, attempt.status.value),
                "amount": (None, attempt.amount),
                "currency": (None, attempt.currency),
            },
            context=context,
        )
        return attempt

    # Authorization

    def start_authorization(
        self,
        attempt_id: str,
        store_id: str,
        provider_reference: str | None = None,
        context: RequestContext | None = None,
    ) -> PaymentAttempt:
        """Move an INITIATED attempt to AUTHORIZING."""
        attempt = self._load_attempt(attempt_id, store_id)
        self._assert_transition(attempt, Status.AUTHORIZING)

        sets: dict[str, Any] = {}
        if provider_reference:
            sets["provider_reference"] = provider_reference

        return self._commit(
            attempt,
            Status.AUTHORIZING,
            operation="start_authorization",
            sets=sets,
            context=context,
        )

    def complete_authorization(
        self,
        attempt_id: str,
        store_id: str,
        provider_reference: str | None = None,
        context: RequestContext | None = None,
    ) -> PaymentAttempt:
        """Mark an AUTHORIZING attempt as AUTHORIZED and record an AUTH entry.

        Clears any error left by a previous failed authorization.
        """
        attempt = self._load_attempt(attempt_id, store_id)
        self._assert_transition(attempt, Status.AUTHORIZED)

        sets: dict[str, Any] = {}
        if provider_reference:
            sets["provider_reference"] = provider_reference

        txn = self._new_transaction(
            attempt,
            PaymentTransactionType.AUTH,
            attempt.amount,
            provider_reference=provider_reference or attempt.provider_reference,
        )
        return self._commit(
            attempt,
            Status.AUTHORIZED,
            operation="complete_authorization",
            sets=sets,
            removes=["last_error_code", "last_error_message", "next_retry_at"],
            transaction=txn,
            context=context,
        )

    def fail_authorization(
        self,
        attempt_id: str,
        store_id: str,
        error_code: str | None = None,
        error_message: str | None = None,
        schedule_retry: bool = False,
        retry_delay_minutes: int | None = None,
        context: RequestContext | None = None,
    ) -> PaymentAttempt:
        """Mark an attempt FAILED, recording the error and bumping attempt_count.

        Args:
            attempt_id: Payment attempt ID
            store_id: Owning store
            error_code: Provider or internal error code
            error_message: Human-readable error
            schedule_retry: Whether to set ``next_retry_at``
            retry_delay_minutes: Delay used when ``schedule_retry`` is set
            context: Caller metadata for the audit log

        Raises:
            PaymentValidationError: retry_delay_minutes is not positive
            InvalidTransitionError: Attempt is already terminal
        """
        if retry_delay_minutes is not None and retry_delay_minutes <= 0:
            raise PaymentValidationError(
                "retry_delay_minutes must be a positive integer",
                field="retry_delay_minutes",
            )

        attempt = self._load_attempt(attempt_id, store_id)
        self._assert_transition(attempt, Status.FAILED)

        sets: dict[str, Any] = {"attempt_count": attempt.attempt_count + 1}
        removes: list[str] = []
        if error_code:
            sets["last_error_code"] = error_code
        if error_message:
            sets["last_error_message"] = error_message
        if schedule_retry and retry_delay_minutes:
            next_retry = _utcnow() + dt.timedelta(minutes=retry_delay_minutes)
            sets["next_retry_at"] = next_retry.isoformat()
        else:
            removes.append("next_retry_at")

        return self._commit(
            attempt,
            Status.FAILED,
            operation="fail_authorization",
            sets=sets,
            removes=removes,
            context=context,
            error=error_message or error_code,
        )

    # Capture / refund / void

    def capture(
        self,
        attempt_id: str,
        store_id: str,
        amount: int | None = None,
        provider_reference: str | None = None,
        context: RequestContext | None = None,
    ) -> PaymentAttempt:
        """Capture an AUTHORIZED attempt, fully or partially.

        Args:
            attempt_id: Payment attempt ID
            store_id: Owning store
            amount: Amount to capture; defaults to the full authorized amount
            provider_reference: External capture reference
            context: Caller metadata for the audit log

        Raises:
            AlreadyCapturedError: Attempt was already captured
            InvalidTransitionError: Attempt is not AUTHORIZED
            CaptureExceedsAuthorizationError: amount > authorized amount
        """
        if amount is not None and amount <= 0:
            raise PaymentValidationError("Capture amount must be positive", field="amount")

        attempt = self._load_attempt(attempt_id, store_id)
        if attempt.status == Status.CAPTURED:
            raise AlreadyCapturedError({"attempt_id": attempt.id})
        self._assert_transition(
            attempt,
            Status.CAPTURED,
            hint="Payment must be authorized before capture",
        )

        capture_amount = attempt.amount if amount is None else amount
        if capture_amount > attempt.amount:
            raise CaptureExceedsAuthorizationError(capture_amount, attempt.amount)

        txn = self._new_transaction(
            attempt,
            PaymentTransactionType.CAPTURE,
            capture_amount,
            provider_reference=provider_reference,
        )
        return self._commit(
            attempt,
            Status.CAPTURED,
            operation="capture",
            transaction=txn,
            context=context,
        )

    def refund(
        self,
        attempt_id: str,
        store_id: str,
        amount: int,
        reason: str | None = None,
        provider_reference: str | None = None,
        context: RequestContext | None = None,
    ) -> PaymentAttempt:
        """Refund part or all of a captured payment.

        The attempt stays CAPTURED; each refund is a REFUND ledger entry and
        the remaining balance is always captured minus refunded.

        Raises:
            NotCapturedError: Attempt is not CAPTURED
            RefundExceedsBalanceError: amount > refundable balance
        """
        if amount <= 0:
            raise PaymentValidationError("Refund amount must be positive", field="amount")

        attempt = self._load_attempt(attempt_id, store_id)
        if attempt.status != Status.CAPTURED:
            raise NotCapturedError({"attempt_id": attempt.id, "status": attempt.status.value})

        refundable = attempt.refundable_amount
        if amount > refundable:
            raise RefundExceedsBalanceError(
                amount,
                refundable,
                attempt.captured_amount,
                attempt.refunded_amount,
            )

        txn = self._new_transaction(
            attempt,
            PaymentTransactionType.REFUND,
            amount,
            provider_reference=provider_reference,
            reason=reason,
        )
        # Status is unchanged but the version bump serializes concurrent refunds
        return self._commit(
            attempt,
            Status.CAPTURED,
            operation="refund",
            transaction=txn,
            context=context,
        )

    def void(
        self,
        attempt_id: str,
        store_id: str,
        reason: str | None = None,
        provider_reference: str | None = None,
        context: RequestContext | None = None,
    ) -> PaymentAttempt:
        """Cancel an INITIATED or AUTHORIZED attempt and record a VOID entry."""
        attempt = self._load_attempt(attempt_id, store_id)
        self._assert_transition(
            attempt,
            Status.CANCELED,
            hint="Only initiated or authorized payments can be voided",
        )

        txn = self._new_transaction(
            attempt,
            PaymentTransactionType.VOID,
            attempt.amount,
            provider_reference=provider_reference,
            reason=reason,
        )
        return self._commit(
            attempt,
            Status.CANCELED,
            operation="void",
            transaction=txn,
            context=context,
        )

    # Reads

    def get_attempt_by_id(self, attempt_id: str, store_id: str) -> PaymentAttempt | None:
        """Get an attempt with its ledger, or None if absent or owned by another store."""
        try:
            return self._load_attempt(attempt_id, store_id)
        except PaymentAttemptNotFoundError:
            return None

    def get_attempts_by_order_id(self, order_id: str, store_id: str) -> list[PaymentAttempt]:
        """Get all attempts for an order, newest first."""
        items = self.db.query_by_gsi(
            self.ATTEMPTS_TABLE,
            "store-order-index",
            "store_id",
            store_id,
            sort_key_condition=Key("order_id").eq(order_id),
        )
        attempts = [
            self._item_to_attempt(item, self._load_transactions(item["attempt_id"]))
            for item in items
        ]
        return sorted(attempts, key=lambda a: a.created_at, reverse=True)

    def get_refundable_amount(self, attempt_id: str, store_id: str) -> int:
        """Remaining refundable balance; 0 unless the attempt is CAPTURED."""
        attempt = self._load_attempt(attempt_id, store_id)
        return attempt.refundable_amount

    # Reconciliation

    def find_stuck_attempts(
        self,
        timeout_minutes: int = AUTHORIZING_TIMEOUT_MINUTES,
    ) -> ReconciliationResult:
        """Find attempts sitting in AUTHORIZING for longer than the timeout.

        Read-only; oldest first.
        """
        if timeout_minutes <= 0:
            raise PaymentValidationError(
                "timeout_minutes must be a positive integer", field="timeout_minutes"
            )

        now = _utcnow()
        cutoff = now - dt.timedelta(minutes=timeout_minutes)
        items = self.db.query_by_gsi(
            self.ATTEMPTS_TABLE,
            "status-created-index",
            "status",
            Status.AUTHORIZING.value,
            sort_key_condition=Key("created_at").lt(cutoff.isoformat()),
        )

        stuck = []
        for item in items:
            created_at = dt.datetime.fromisoformat(item["created_at"])
            stuck.append(
                StuckAttempt(
                    id=item["attempt_id"],
                    store_id=item["store_id"],
                    order_id=item["order_id"],
                    status=Status(item["status"]),
                    created_at=created_at,
                    stuck_minutes=int((now - created_at).total_seconds() // 60),
                )
            )
        return ReconciliationResult(
            stuck_attempts=stuck,
            total_stuck=len(stuck),
            checked_at=now,
        )

    def run_reconciliation(
        self,
        timeout_minutes: int = AUTHORIZING_TIMEOUT_MINUTES,
    ) -> ReconciliationResult:
        """Report stuck attempts, auditing the run only when some are found.

        Attempts are not modified; resolving them against the provider is an
        operator decision.
        """
        result = self.find_stuck_attempts(timeout_minutes)

        for item in result.stuck_attempts:
            logger.warning(
                "Payment attempt %s stuck in %s for %d minutes (store=%s, order=%s)",
                item.id,
                item.status.value,
                item.stuck_minutes,
                item.store_id,
                item.order_id,
            )

        if result.stuck_attempts:
            self.audit.create(
                AuditAction.RECONCILIATION,
                "PaymentAttempt",
                "system",
                changes={
                    "total_stuck": (None, result.total_stuck),
                    "stuck_attempt_ids": (None, [s.id for s in result.stuck_attempts]),
                    "timeout_minutes": (None, timeout_minutes),
                },
            )
        log_payment_operation(
            logger,
            "reconciliation",
            total_stuck=result.total_stuck,
            timeout_minutes=timeout_minutes,
        )
        return result

    # Internals

    def _assert_transition(
        self,
        attempt: PaymentAttempt,
        to_status: PaymentAttemptStatus,
        hint: str | None = None,
    ) -> None:
        if not can_transition(attempt.status, to_status):
            raise InvalidTransitionError(attempt.status.value, to_status.value, hint)

    def _load_attempt(self, attempt_id: str, store_id: str) -> PaymentAttempt:
        """Load a store-scoped attempt with its ledger.

        Attempts owned by another store are reported as not found.
        """
        item = self.db.get_item(self.ATTEMPTS_TABLE, {"attempt_id": attempt_id})
        if not item or item["store_id"] != store_id:
            raise PaymentAttemptNotFoundError({"attempt_id": attempt_id})
        return self._item_to_attempt(item, self._load_transactions(attempt_id))

    def _load_transactions(self, attempt_id: str) -> list[PaymentTransaction]:
        items = self.db.query(
            self.TRANSACTIONS_TABLE,
            Key("attempt_id").eq(attempt_id),
        )
        txns = [self._item_to_transaction(item) for item in items]
        return sorted(txns, key=lambda t: (t.created_at, t.id))

    def _find_by_idempotency_key(self, key: str, store_id: str) -> PaymentAttempt | None:
        item = self.db.get_item(self.IDEMPOTENCY_TABLE, {"idempotency_key": key})
        if not item:
            return None
        if item["store_id"] != store_id:
            logger.warning(
                "Idempotency key reused across stores (owner=%s, caller=%s)",
                item["store_id"],
                store_id,
            )
            raise CrossTenantIdempotencyConflictError()
        return self._load_attempt(item["attempt_id"], store_id)

    def _new_transaction(
        self,
        attempt: PaymentAttempt,
        txn_type: PaymentTransactionType,
        amount: int,
        provider_reference: str | None = None,
        reason: str | None = None,
    ) -> PaymentTransaction:
        return PaymentTransaction(
            id=self._generate_id("TXN"),
            attempt_id=attempt.id,
            store_id=attempt.store_id,
            type=txn_type,
            amount=amount,
            currency=attempt.currency,
            provider_reference=provider_reference,
            reason=reason,
            created_at=_utcnow(),
        )

    def _commit(
        self,
        attempt: PaymentAttempt,
        to_status: PaymentAttemptStatus,
        *,
        operation: str,
        sets: dict[str, Any] | None = None,
        removes: list[str] | None = None,
        transaction: PaymentTransaction | None = None,
        context: RequestContext | None = None,
        error: str | None = None,
    ) -> PaymentAttempt:
        """Apply a status change and its ledger entry atomically.

        Raises:
            AlreadyCapturedError: A concurrent request captured first
            ConcurrentModificationError: The attempt changed since it was read
        """
        now = _utcnow()
        values: dict[str, Any] = {
            ":status": to_status.value,
            ":expected_status": attempt.status.value,
            ":expected_version": attempt.version,
            ":next_version": attempt.version + 1,
            ":now": now.isoformat(),
        }
        set_parts = ["#status = :status", "#version = :next_version", "updated_at = :now"]
        for field, value in (sets or {}).items():
            set_parts.append(f"{field} = :{field}")
            values[f":{field}"] = value

        expression = "SET " + ", ".join(set_parts)
        if removes:
            expression += " REMOVE " + ", ".join(removes)

        requests = [
            self.db.update_request(
                self.ATTEMPTS_TABLE,
                {"attempt_id": attempt.id},
                expression,
                values,
                {"#status": "status", "#version": "version"},
                "#status = :expected_status AND #version = :expected_version",
            )
        ]
        if transaction:
            requests.append(
                self.db.put_request(
                    self.TRANSACTIONS_TABLE,
                    self._transaction_to_item(transaction),
                    "attribute_not_exists(transaction_id)",
                )
            )

        if not self.db.transact_write(requests):
            current = self._load_attempt(attempt.id, attempt.store_id)
            log_payment_operation(
                logger,
                operation,
                attempt_id=attempt.id,
                store_id=attempt.store_id,
                status=current.status.value,
                error="lost concurrent update",
            )
            capturing = to_status == Status.CAPTURED and attempt.status != Status.CAPTURED
            if capturing and current.status == Status.CAPTURED:
                raise AlreadyCapturedError({"attempt_id": attempt.id})
            raise ConcurrentModificationError(
                {
                    "attempt_id": attempt.id,
                    "expected_version": attempt.version,
                    "current_version": current.version,
                }
            )

        updated = self._load_attempt(attempt.id, attempt.store_id)

        if attempt.status != to_status:
            self.audit.create(
                AuditAction.PAYMENT_STATE_CHANGE,
                "PaymentAttempt",
                attempt.id,
                store_id=attempt.store_id,
                changes={"status": (attempt.status.value, to_status.value)},
                context=context,
            )
        if transaction and transaction.type in (
            PaymentTransactionType.CAPTURE,
            PaymentTransactionType.REFUND,
        ):
            self.audit.create(
                AuditAction.CREATE,
                "PaymentTransaction",
                transaction.id,
                store_id=attempt.store_id,
                changes={
                    "type": (None, transaction.type.value),
                    "amount": (None, transaction.amount),
                },
                context=context,
            )

        log_payment_operation(
            logger,
            operation,
            attempt_id=updated.id,
            store_id=updated.store_id,
            order_id=updated.order_id,
            amount=transaction.amount if transaction else None,
            status=updated.status.value,
            error=error,
        )
        return updated

    # Conversion helpers

    def _attempt_to_item(self, attempt: PaymentAttempt) -> dict[str, Any]:
        """Convert PaymentAttempt model to DynamoDB item (ledger excluded)."""
        item: dict[str, Any] = {
            "attempt_id": attempt.id,
            "store_id": attempt.store_id,
            "order_id": attempt.order_id,
            "provider": attempt.provider.value,
            "amount": attempt.amount,
            "currency": attempt.currency,
            "status": attempt.status.value,
            "attempt_count": attempt.attempt_count,
            "version": attempt.version,
            "created_at": attempt.created_at.isoformat(),
            "updated_at": attempt.updated_at.isoformat(),
        }
        if attempt.provider_reference:
            item["provider_reference"] = attempt.provider_reference
        if attempt.idempotency_key:
            item["idempotency_key"] = attempt.idempotency_key
        if attempt.last_error_code:
            item["last_error_code"] = attempt.last_error_code
        if attempt.last_error_message:
            item["last_error_message"] = attempt.last_error_message
        if attempt.next_retry_at:
            item["next_retry_at"] = attempt.next_retry_at.isoformat()
        return item

    def _item_to_attempt(
        self,
        item: dict[str, Any],
        transactions: list[PaymentTransaction],
    ) -> PaymentAttempt:
        """Convert DynamoDB item to PaymentAttempt model."""
        return PaymentAttempt(
            id=item["attempt_id"],
            store_id=item["store_id"],
            order_id=item["order_id"],
            provider=PaymentProvider(item["provider"]),
            provider_reference=item.get("provider_reference"),
            amount=int(item["amount"]),
            currency=item["currency"],
            status=Status(item["status"]),
            attempt_count=int(item.get("attempt_count", 1)),
            last_error_code=item.get("last_error_code"),
            last_error_message=item.get("last_error_message"),
            next_retry_at=(
                dt.datetime.fromisoformat(item["next_retry_at"])
                if item.get("next_retry_at")
                else None
            ),
            idempotency_key=item.get("idempotency_key"),
            version=int(item.get("version", 1)),
            created_at=dt.datetime.fromisoformat(item["created_at"]),
            updated_at=dt.datetime.fromisoformat(item["updated_at"]),
            transactions=transactions,
        )

    def _transaction_to_item(self, txn: PaymentTransaction) -> dict[str, Any]:
        item: dict[str, Any] = {
            "attempt_id": txn.attempt_id,
            "transaction_id": txn.id,
            "store_id": txn.store_id,
            "type": txn.type.value,
            "amount": txn.amount,
            "currency": txn.currency,
            "created_at": txn.created_at.isoformat(),
        }
        if txn.provider_reference:
            item["provider_reference"] = txn.provider_reference
        if txn.reason:
            item["reason"] = txn.reason
        return item

    def _item_to_transaction(self, item: dict[str, Any]) -> PaymentTransaction:
        return PaymentTransaction(
            id=item["transaction_id"],
            attempt_id=item["attempt_id"],
            store_id=item["store_id"],
            type=PaymentTransactionType(item["type"]),
            amount=int(item["amount"]),
            currency=item["currency"],
            provider_reference=item.get("provider_reference"),
            reason=item.get("reason"),
            created_at=dt.datetime.fromisoformat(item["created_at"]),
        )
