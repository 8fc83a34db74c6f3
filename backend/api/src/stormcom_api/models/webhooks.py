"""API request models for webhook endpoints."""

from pydantic import BaseModel, ConfigDict, Field


class CreateWebhookRequest(BaseModel):
    """Request to register a webhook for the calling store."""

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "name": "ERP sync",
                    "url": "https://erp.example.com/hooks/stormcom",
                    "secret": "whsec_example",
                    "events": ["order.paid", "order.refunded"],
                    "custom_headers": {"X-Api-Key": "abc123"},
                }
            ]
        },
    )

    name: str = Field(..., min_length=1, max_length=100)
    url: str = Field(..., min_length=1, max_length=2048, description="HTTPS endpoint")
    secret: str | None = Field(
        default=None, max_length=256, description="Shared secret for HMAC signatures"
    )
    events: list[str] = Field(..., min_length=1, description="Event names or '*'")
    custom_headers: dict[str, str] | None = Field(
        default=None, description="Extra headers; only allow-listed names are kept"
    )
