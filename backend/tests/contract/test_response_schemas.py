"""Contract tests for wire formats shared with third parties.

Webhook payloads and error bodies are validated against the JSON schemas in
``schemas/``, which are what subscribers and API clients code against.
"""

import json
from pathlib import Path
from typing import Any, Generator

import pytest
from fastapi.testclient import TestClient
from jsonschema import ValidationError, validate

from stormcom.models import WebhookEventType

SCHEMA_DIR = Path(__file__).parent / "schemas"
STORE_HEADERS = {"X-Store-ID": "store-alpha"}


def _load_schema(name: str) -> dict[str, Any]:
    return json.loads((SCHEMA_DIR / name).read_text())


@pytest.fixture
def payload_schema() -> dict[str, Any]:
    return _load_schema("webhook-payload.schema.json")


@pytest.fixture
def error_schema() -> dict[str, Any]:
    return _load_schema("error-response.schema.json")


@pytest.fixture
def client(dynamodb_tables: Any) -> Generator[TestClient, None, None]:
    from stormcom_api.main import app

    yield TestClient(app)


class TestWebhookPayloadSchema:
    @pytest.mark.parametrize("event", [e.value for e in WebhookEventType])
    def test_payload_matches_schema(
        self, webhook_service: Any, payload_schema: dict[str, Any], event: str
    ) -> None:
        from stormcom.services.webhook_dispatcher import WebhookDispatcher

        dispatcher = WebhookDispatcher(webhook_service)
        payload = dispatcher.build_payload("store-alpha", event, {"order_id": "ORD-1"})

        validate(instance=json.loads(payload.to_json()), schema=payload_schema)

    def test_snake_case_keys_rejected(self, payload_schema: dict[str, Any]) -> None:
        with pytest.raises(ValidationError):
            validate(
                instance={
                    "id": "1",
                    "event": "order.paid",
                    "store_id": "store-alpha",
                    "created_at": "2026-01-01T00:00:00+00:00",
                    "data": {},
                },
                schema=payload_schema,
            )


class TestErrorResponseSchema:
    @pytest.mark.parametrize(
        ("method", "path", "headers", "body", "status_code"),
        [
            ("get", "/api/payments/attempts/PA-NOPE", STORE_HEADERS, None, 404),
            ("get", "/api/payments/attempts/PA-NOPE", {}, None, 400),
            ("delete", "/api/webhooks/WH-NOPE", STORE_HEADERS, None, 404),
            (
                "post",
                "/api/webhooks",
                STORE_HEADERS,
                {"name": "x", "url": "https://127.0.0.1/", "events": ["order.paid"]},
                400,
            ),
        ],
    )
    def test_error_bodies_match_schema(
        self,
        client: TestClient,
        error_schema: dict[str, Any],
        method: str,
        path: str,
        headers: dict[str, str],
        body: dict[str, Any] | None,
        status_code: int,
    ) -> None:
        response = client.request(method, path, headers=headers, json=body)

        assert response.status_code == status_code
        validate(instance=response.json(), schema=error_schema)
