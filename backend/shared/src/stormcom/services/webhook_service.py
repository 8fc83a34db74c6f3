"""Webhook registry, delivery log, and failure accounting."""

import datetime as dt
import uuid
from typing import TYPE_CHECKING, Any

from boto3.dynamodb.conditions import Key

from stormcom.models import (
    WILDCARD_EVENT,
    InvalidWebhookEventError,
    Webhook,
    WebhookCreate,
    WebhookDelivery,
    WebhookEventType,
    WebhookNotFoundError,
)
from stormcom.utils.logging import get_logger

from .url_safety import assert_webhook_url_safe, filter_custom_headers

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = get_logger(__name__)

SUPPORTED_EVENTS = frozenset(e.value for e in WebhookEventType)

# Consecutive failed deliveries before a webhook is switched off
MAX_FAILURES_BEFORE_DISABLE = 10


class WebhookService:
    """Service for tenant webhook subscriptions and their delivery logs."""

    WEBHOOKS_TABLE = "webhooks"
    DELIVERIES_TABLE = "webhook-deliveries"

    def __init__(self, db: "DynamoDBService") -> None:
        self.db = db

    def _generate_id(self, prefix: str) -> str:
        return f"{prefix}-{uuid.uuid4().hex[:12].upper()}"

    def create_webhook(self, data: WebhookCreate) -> Webhook:
        """Register a webhook after validating its URL and events.

        Args:
            data: Webhook creation data

        Returns:
            The stored, active webhook

        Raises:
            UnsafeWebhookUrlError: URL is not a safe outbound target
            InvalidWebhookEventError: Unknown event names
        """
        assert_webhook_url_safe(data.url)

        unknown = [
            e for e in data.events if e != WILDCARD_EVENT and e not in SUPPORTED_EVENTS
        ]
        if unknown:
            raise InvalidWebhookEventError(unknown)

        now = dt.datetime.now(dt.UTC)
        webhook = Webhook(
            id=self._generate_id("WH"),
            store_id=data.store_id,
            name=data.name,
            url=data.url.strip(),
            secret=data.secret,
            events=list(dict.fromkeys(data.events)),
            custom_headers=filter_custom_headers(data.custom_headers),
            is_active=True,
            failure_count=0,
            created_at=now,
            updated_at=now,
        )
        self.db.put_item(self.WEBHOOKS_TABLE, self._webhook_to_item(webhook))

        logger.info(
            "Created webhook %s for store %s (events=%s)",
            webhook.id,
            webhook.store_id,
            ",".join(webhook.events),
        )
        return webhook

    def get_webhook(self, webhook_id: str, store_id: str | None = None) -> Webhook:
        """Get a non-deleted webhook, optionally scoped to a store.

        Raises:
            WebhookNotFoundError: Missing, deleted, or owned by another store
        """
        item = self.db.get_item(self.WEBHOOKS_TABLE, {"webhook_id": webhook_id})
        if (
            not item
            or item.get("deleted_at")
            or (store_id is not None and item["store_id"] != store_id)
        ):
            raise WebhookNotFoundError({"webhook_id": webhook_id})
        return self._item_to_webhook(item)

    def list_webhooks(self, store_id: str) -> list[Webhook]:
        """Get all non-deleted webhooks of a store, newest first."""
        items = self.db.query_by_gsi(
            self.WEBHOOKS_TABLE,
            "store-index",
            "store_id",
            store_id,
        )
        webhooks = [
            self._item_to_webhook(item) for item in items if not item.get("deleted_at")
        ]
        return sorted(webhooks, key=lambda w: w.created_at, reverse=True)

    def list_active_for_store(self, store_id: str, event: str | None = None) -> list[Webhook]:
        """Get active webhooks of a store, optionally only those subscribed to event."""
        return [
            w
            for w in self.list_webhooks(store_id)
            if w.is_active and (event is None or w.is_subscribed(event))
        ]

    def set_active(self, webhook_id: str, store_id: str, is_active: bool) -> Webhook:
        """Enable or disable a webhook.

        Enabling resets the failure counter so a re-enabled webhook gets the
        full failure budget again.
        """
        self.get_webhook(webhook_id, store_id)
        now = dt.datetime.now(dt.UTC).isoformat()

        expression = "SET is_active = :active, updated_at = :now"
        values: dict[str, Any] = {":active": is_active, ":now": now}
        if is_active:
            expression += ", failure_count = :zero"
            values[":zero"] = 0

        attrs = self.db.update_item(
            self.WEBHOOKS_TABLE,
            {"webhook_id": webhook_id},
            expression,
            values,
            condition_expression="attribute_exists(webhook_id)",
        )
        if attrs is None:
            raise WebhookNotFoundError({"webhook_id": webhook_id})

        logger.info(
            "Webhook %s %s by store %s",
            webhook_id,
            "enabled" if is_active else "disabled",
            store_id,
        )
        return self._item_to_webhook(attrs)

    def delete_webhook(self, webhook_id: str, store_id: str) -> None:
        """Soft-delete a webhook; it stops receiving deliveries immediately."""
        self.get_webhook(webhook_id, store_id)
        now = dt.datetime.now(dt.UTC).isoformat()
        self.db.update_item(
            self.WEBHOOKS_TABLE,
            {"webhook_id": webhook_id},
            "SET deleted_at = :now, updated_at = :now, is_active = :inactive",
            {":now": now, ":inactive": False},
        )
        logger.info("Deleted webhook %s for store %s", webhook_id, store_id)

    # Failure accounting

    def record_success(self, webhook_id: str) -> None:
        """Reset the failure counter after a successful delivery."""
        now = dt.datetime.now(dt.UTC).isoformat()
        self.db.update_item(
            self.WEBHOOKS_TABLE,
            {"webhook_id": webhook_id},
            "SET failure_count = :zero, last_success_at = :now, "
            "last_triggered_at = :now, updated_at = :now",
            {":zero": 0, ":now": now},
            condition_expression="attribute_exists(webhook_id)",
        )

    def record_failure(
        self,
        webhook_id: str,
        error: str,
        max_failures: int = MAX_FAILURES_BEFORE_DISABLE,
    ) -> int:
        """Count a failed delivery and disable the webhook at the threshold.

        Args:
            webhook_id: Webhook that failed
            error: Last error message
            max_failures: Failure count at which the webhook is disabled

        Returns:
            The new failure count (0 if the webhook no longer exists)
        """
        now = dt.datetime.now(dt.UTC).isoformat()
        attrs = self.db.update_item(
            self.WEBHOOKS_TABLE,
            {"webhook_id": webhook_id},
            "SET last_error = :error, last_error_at = :now, "
            "last_triggered_at = :now, updated_at = :now "
            "ADD failure_count :one",
            {":error": error[:1000], ":now": now, ":one": 1},
            condition_expression="attribute_exists(webhook_id)",
        )
        if attrs is None:
            return 0

        failure_count = int(attrs["failure_count"])
        if failure_count >= max_failures and attrs.get("is_active", True):
            self.db.update_item(
                self.WEBHOOKS_TABLE,
                {"webhook_id": webhook_id},
                "SET is_active = :inactive, updated_at = :now",
                {":inactive": False, ":now": now},
            )
            logger.warning(
                "Webhook %s disabled after %d consecutive failures",
                webhook_id,
                failure_count,
            )
        return failure_count

    # Delivery log

    def log_delivery(self, delivery: WebhookDelivery) -> None:
        """Append a delivery row. Storage failures are logged, not raised."""
        try:
            self.db.put_item(self.DELIVERIES_TABLE, self._delivery_to_item(delivery))
        except Exception:
            logger.exception(
                "Failed to log delivery %s for webhook %s",
                delivery.id,
                delivery.webhook_id,
            )

    def get_delivery_logs(
        self,
        webhook_id: str,
        store_id: str | None = None,
        limit: int = 50,
    ) -> list[WebhookDelivery]:
        """Get recent delivery attempts, newest first."""
        if store_id is not None:
            self.get_webhook(webhook_id, store_id)

        items = self.db.query(
            self.DELIVERIES_TABLE,
            Key("webhook_id").eq(webhook_id),
            limit=limit,
            scan_index_forward=False,
        )
        return [self._item_to_delivery(item) for item in items]

    # Conversion helpers

    def _webhook_to_item(self, webhook: Webhook) -> dict[str, Any]:
        item: dict[str, Any] = {
            "webhook_id": webhook.id,
            "store_id": webhook.store_id,
            "name": webhook.name,
            "url": webhook.url,
            "events": webhook.events,
            "custom_headers": webhook.custom_headers,
            "is_active": webhook.is_active,
            "failure_count": webhook.failure_count,
            "created_at": webhook.created_at.isoformat(),
            "updated_at": webhook.updated_at.isoformat(),
        }
        if webhook.secret:
            item["secret"] = webhook.secret
        return item

    def _item_to_webhook(self, item: dict[str, Any]) -> Webhook:
        def _ts(name: str) -> dt.datetime | None:
            value = item.get(name)
            return dt.datetime.fromisoformat(value) if value else None

        return Webhook(
            id=item["webhook_id"],
            store_id=item["store_id"],
            name=item["name"],
            url=item["url"],
            secret=item.get("secret"),
            events=list(item.get("events", [])),
            custom_headers=dict(item.get("custom_headers", {})),
            is_active=bool(item.get("is_active", True)),
            failure_count=int(item.get("failure_count", 0)),
            last_triggered_at=_ts("last_triggered_at"),
            last_success_at=_ts("last_success_at"),
            last_error_at=_ts("last_error_at"),
            last_error=item.get("last_error"),
            created_at=dt.datetime.fromisoformat(item["created_at"]),
            updated_at=dt.datetime.fromisoformat(item["updated_at"]),
            deleted_at=_ts("deleted_at"),
        )

    def _delivery_to_item(self, delivery: WebhookDelivery) -> dict[str, Any]:
        item: dict[str, Any] = {
            "webhook_id": delivery.webhook_id,
            "delivery_key": f"{delivery.created_at.isoformat()}#{delivery.id}",
            "delivery_id": delivery.id,
            "event": delivery.event,
            "payload": delivery.payload,
            "success": delivery.success,
            "attempt": delivery.attempt,
            "created_at": delivery.created_at.isoformat(),
        }
        if delivery.status_code is not None:
            item["status_code"] = delivery.status_code
        if delivery.response_body is not None:
            item["response_body"] = delivery.response_body
        if delivery.response_time_ms is not None:
            item["response_time_ms"] = delivery.response_time_ms
        if delivery.error:
            item["error"] = delivery.error
        return item

    def _item_to_delivery(self, item: dict[str, Any]) -> WebhookDelivery:
        return WebhookDelivery(
            id=item["delivery_id"],
            webhook_id=item["webhook_id"],
            event=item["event"],
            payload=item["payload"],
            status_code=(
                int(item["status_code"]) if item.get("status_code") is not None else None
            ),
            response_body=item.get("response_body"),
            response_time_ms=(
                int(item["response_time_ms"])
                if item.get("response_time_ms") is not None
                else None
            ),
            success=bool(item["success"]),
            error=item.get("error"),
            attempt=int(item.get("attempt", 1)),
            created_at=dt.datetime.fromisoformat(item["created_at"]),
        )
