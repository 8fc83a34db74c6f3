"""Audit log entry model."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import AuditAction


class AuditChange(BaseModel):
    """Before/after value of one changed field."""

    old: Any = None
    new: Any = None


class AuditLogEntry(BaseModel):
    """Immutable record of a state transition or payment mutation."""

    id: str
    action: AuditAction
    entity_type: str = Field(..., examples=["PaymentAttempt", "PaymentTransaction"])
    entity_id: str
    store_id: str | None = None
    user_id: str | None = None
    changes: dict[str, AuditChange] = Field(default_factory=dict)
    metadata: dict[str, str] = Field(default_factory=dict)
    created_at: datetime
