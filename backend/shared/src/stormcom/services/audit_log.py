"""Audit log service for payment state transitions and mutations.

Audit writes are best-effort: a failure to persist an entry is logged to the
operator error stream and never propagated, so the financial operation that
triggered it is not rolled back or blocked.
"""

import datetime as dt
import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from stormcom.models import AuditAction, AuditLogEntry, RequestContext
from stormcom.utils.logging import get_logger

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = get_logger(__name__)


class AuditLogService:
    """Append-only writer for AuditLog entries."""

    AUDIT_TABLE = "audit-logs"

    def __init__(self, db: "DynamoDBService") -> None:
        self.db = db

    def create(
        self,
        action: AuditAction,
        entity_type: str,
        entity_id: str,
        *,
        store_id: str | None = None,
        changes: dict[str, tuple[Any, Any]] | None = None,
        context: RequestContext | None = None,
    ) -> AuditLogEntry | None:
        """Record an audit entry.

        Args:
            action: What happened
            entity_type: Entity kind (PaymentAttempt, PaymentTransaction)
            entity_id: Entity ID, or "system" for batch jobs
            store_id: Owning store, if any
            changes: Mapping of field -> (old, new)
            context: Caller metadata

        Returns:
            The stored entry, or None if the write failed
        """
        now = dt.datetime.now(dt.UTC)
        entry = AuditLogEntry(
            id=f"AUD-{uuid.uuid4().hex[:16].upper()}",
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            store_id=store_id,
            user_id=context.user_id if context else None,
            changes={
                field: {"old": old, "new": new}
                for field, (old, new) in (changes or {}).items()
            },
            metadata={
                k: v
                for k, v in {
                    "ip_address": context.ip_address if context else None,
                    "user_agent": context.user_agent if context else None,
                }.items()
                if v
            },
            created_at=now,
        )

        try:
            self.db.put_item(self.AUDIT_TABLE, self._entry_to_item(entry))
        except Exception:
            logger.exception(
                "Failed to write audit entry %s for %s %s",
                action.value,
                entity_type,
                entity_id,
            )
            return None

        return entry

    def list_for_entity(self, entity_id: str) -> list[AuditLogEntry]:
        """Get audit entries for one entity, oldest first."""
        items = self.db.query_by_gsi(
            self.AUDIT_TABLE,
            "entity-index",
            "entity_id",
            entity_id,
        )
        entries = [self._item_to_entry(item) for item in items]
        return sorted(entries, key=lambda e: e.created_at)

    def _entry_to_item(self, entry: AuditLogEntry) -> dict[str, Any]:
        item: dict[str, Any] = {
            "audit_id": entry.id,
            "action": entry.action.value,
            "entity_type": entry.entity_type,
            "entity_id": entry.entity_id,
            "changes": entry.model_dump(mode="json")["changes"],
            "metadata": entry.metadata,
            "created_at": entry.created_at.isoformat(),
        }
        if entry.store_id:
            item["store_id"] = entry.store_id
        if entry.user_id:
            item["user_id"] = entry.user_id
        return item

    def _item_to_entry(self, item: dict[str, Any]) -> AuditLogEntry:
        return AuditLogEntry(
            id=item["audit_id"],
            action=AuditAction(item["action"]),
            entity_type=item["entity_type"],
            entity_id=item["entity_id"],
            store_id=item.get("store_id"),
            user_id=item.get("user_id"),
            changes=_from_dynamo(item.get("changes", {})),
            metadata=item.get("metadata", {}),
            created_at=dt.datetime.fromisoformat(item["created_at"]),
        )


def _from_dynamo(value: Any) -> Any:
    """Convert Decimal values returned by DynamoDB back to ints."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_dynamo(v) for v in value]
    return value
