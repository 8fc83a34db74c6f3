"""Webhook subscription, delivery log, and event payload models."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Webhook(BaseModel):
    """A tenant-owned endpoint subscribed to domain events."""

    id: str = Field(..., description="Unique webhook ID")
    store_id: str = Field(..., description="Owning store (tenant)")
    name: str
    url: str = Field(..., description="HTTPS delivery URL")
    secret: str | None = Field(default=None, description="HMAC signing secret")
    events: list[str] = Field(
        default_factory=list,
        description="Subscribed event names, or '*' for all",
        examples=[["order.paid", "order.refunded"]],
    )
    custom_headers: dict[str, str] = Field(
        default_factory=dict,
        description="Allow-listed headers added to every delivery",
    )
    is_active: bool = True
    failure_count: int = Field(default=0, ge=0)
    last_triggered_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error_at: datetime | None = None
    last_error: str | None = None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None

    def is_subscribed(self, event: str) -> bool:
        return event in self.events or "*" in self.events


class WebhookCreate(BaseModel):
    """Data required to register a webhook."""

    store_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    url: str = Field(..., min_length=1, max_length=2048)
    secret: str | None = Field(default=None, max_length=256)
    events: list[str] = Field(..., min_length=1)
    custom_headers: dict[str, str] | None = None


class WebhookDelivery(BaseModel):
    """Append-only record of one HTTP delivery attempt."""

    id: str
    webhook_id: str
    event: str
    payload: str = Field(..., description="JSON body exactly as sent")
    status_code: int | None = None
    response_body: str | None = Field(
        default=None, description="Response excerpt (max 1000 chars)"
    )
    response_time_ms: int | None = None
    success: bool
    error: str | None = None
    attempt: int = Field(default=1, ge=1)
    created_at: datetime


class WebhookPayload(BaseModel):
    """Event envelope sent to subscribers.

    Serialized with camelCase aliases:
    ``{"id", "event", "storeId", "createdAt", "data"}``.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    event: str
    store_id: str = Field(..., alias="storeId")
    created_at: str = Field(..., alias="createdAt", description="ISO 8601 timestamp")
    data: dict[str, Any] = Field(default_factory=dict)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class DeliveryResult(BaseModel):
    """Outcome of delivering one payload to one webhook (after retries)."""

    webhook_id: str
    success: bool
    attempts: int = 0
    status_code: int | None = None
    response_time_ms: int | None = None
    response_body: str | None = None
    error: str | None = None
