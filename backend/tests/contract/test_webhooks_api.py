"""Contract tests for the webhook subscription endpoints.

Also checks that payment endpoints feed the background dispatcher: a capture
made while the app lifespan is running reaches a subscribed endpoint.
"""

import json
from typing import Any, Generator

import httpx
import pytest
from fastapi.testclient import TestClient
from starlette.status import (
    HTTP_200_OK,
    HTTP_201_CREATED,
    HTTP_204_NO_CONTENT,
    HTTP_400_BAD_REQUEST,
    HTTP_404_NOT_FOUND,
)

STORE_HEADERS = {"X-Store-ID": "store-alpha"}
OTHER_STORE_HEADERS = {"X-Store-ID": "store-beta"}

WEBHOOK_BODY = {
    "name": "ERP sync",
    "url": "https://erp.example.com/hooks",
    "secret": "whsec_test",
    "events": ["order.paid"],
    "custom_headers": {"X-Api-Key": "k", "Cookie": "session=1"},
}


@pytest.fixture
def client(dynamodb_tables: Any) -> Generator[TestClient, None, None]:
    from stormcom_api.main import app

    yield TestClient(app)


@pytest.fixture
def received() -> list[httpx.Request]:
    return []


@pytest.fixture
def live_app(
    dynamodb_tables: Any,
    received: list[httpx.Request],
    monkeypatch: pytest.MonkeyPatch,
) -> Generator[Any, None, None]:
    """App whose dispatcher sends webhook HTTP to MockTransport.

    Use it as ``with TestClient(live_app)`` so the lifespan starts the worker.
    """
    from stormcom.services.webhook_dispatcher import WebhookDispatcher
    from stormcom_api import main
    from stormcom_api.dependencies import get_webhook_dispatcher, get_webhook_service

    def endpoint(request: httpx.Request) -> httpx.Response:
        received.append(request)
        return httpx.Response(200, text="ok")

    async def no_sleep(delay: float) -> None:
        return None

    dispatcher = WebhookDispatcher(
        get_webhook_service(),
        transport=httpx.MockTransport(endpoint),
        sleep=no_sleep,
    )
    monkeypatch.setattr(main, "get_webhook_dispatcher", lambda: dispatcher)
    main.app.dependency_overrides[get_webhook_dispatcher] = lambda: dispatcher
    try:
        yield main.app
    finally:
        main.app.dependency_overrides.clear()


def _create_webhook(client: TestClient, **overrides: Any) -> dict[str, Any]:
    response = client.post(
        "/api/webhooks", json={**WEBHOOK_BODY, **overrides}, headers=STORE_HEADERS
    )
    assert response.status_code == HTTP_201_CREATED, response.text
    return response.json()


class TestCreateWebhook:
    def test_create_hides_secret(self, client: TestClient) -> None:
        data = _create_webhook(client)

        assert data["id"].startswith("WH-")
        assert "secret" not in data
        assert data["is_active"] is True
        assert data["custom_headers"] == {"X-Api-Key": "k"}

    @pytest.mark.parametrize(
        "url",
        [
            "http://erp.example.com/hooks",
            "https://localhost/hooks",
            "https://169.254.169.254/latest/meta-data",
            "https://2852039166/latest/meta-data/",
            "https://10.0.0.1/hooks",
        ],
    )
    def test_unsafe_url_rejected(self, client: TestClient, url: str) -> None:
        response = client.post(
            "/api/webhooks", json={**WEBHOOK_BODY, "url": url}, headers=STORE_HEADERS
        )

        assert response.status_code == HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "ERR_HOOK_002"

    def test_unknown_event_rejected(self, client: TestClient) -> None:
        response = client.post(
            "/api/webhooks",
            json={**WEBHOOK_BODY, "events": ["order.teleported"]},
            headers=STORE_HEADERS,
        )

        assert response.status_code == HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "ERR_HOOK_003"


class TestManageWebhook:
    def test_list_is_store_scoped(self, client: TestClient) -> None:
        webhook = _create_webhook(client)

        mine = client.get("/api/webhooks", headers=STORE_HEADERS).json()
        theirs = client.get("/api/webhooks", headers=OTHER_STORE_HEADERS).json()

        assert [w["id"] for w in mine] == [webhook["id"]]
        assert "secret" not in mine[0]
        assert theirs == []

    def test_disable_and_enable(self, client: TestClient) -> None:
        webhook = _create_webhook(client)
        base = f"/api/webhooks/{webhook['id']}"

        disabled = client.post(f"{base}/disable", headers=STORE_HEADERS)
        assert disabled.status_code == HTTP_200_OK
        assert disabled.json()["is_active"] is False

        enabled = client.post(f"{base}/enable", headers=STORE_HEADERS)
        assert enabled.status_code == HTTP_200_OK
        assert enabled.json()["is_active"] is True
        assert enabled.json()["failure_count"] == 0

    def test_other_store_cannot_manage(self, client: TestClient) -> None:
        webhook = _create_webhook(client)

        response = client.post(
            f"/api/webhooks/{webhook['id']}/disable", headers=OTHER_STORE_HEADERS
        )

        assert response.status_code == HTTP_404_NOT_FOUND
        assert response.json()["error_code"] == "ERR_HOOK_001"

    def test_delete(self, client: TestClient) -> None:
        webhook = _create_webhook(client)
        url = f"/api/webhooks/{webhook['id']}"

        assert client.delete(url, headers=STORE_HEADERS).status_code == HTTP_204_NO_CONTENT
        assert client.delete(url, headers=STORE_HEADERS).status_code == HTTP_404_NOT_FOUND
        assert client.get("/api/webhooks", headers=STORE_HEADERS).json() == []

    def test_deliveries_empty(self, client: TestClient) -> None:
        webhook = _create_webhook(client)

        response = client.get(
            f"/api/webhooks/{webhook['id']}/deliveries?limit=10", headers=STORE_HEADERS
        )

        assert response.status_code == HTTP_200_OK
        assert response.json() == []


class TestDelivery:
    def test_test_event(self, live_app: Any, received: list[httpx.Request]) -> None:
        with TestClient(live_app) as client:
            webhook = _create_webhook(client)

            response = client.post(f"/api/webhooks/{webhook['id']}/test", headers=STORE_HEADERS)
            deliveries = client.get(
                f"/api/webhooks/{webhook['id']}/deliveries", headers=STORE_HEADERS
            ).json()

        assert response.status_code == HTTP_200_OK
        assert response.json()["success"] is True
        assert json.loads(received[0].content)["event"] == "test"
        assert len(deliveries) == 1
        assert deliveries[0]["status_code"] == 200

    def test_capture_emits_order_paid(
        self, live_app: Any, received: list[httpx.Request]
    ) -> None:
        with TestClient(live_app) as client:
            _create_webhook(client)
            attempt = client.post(
                "/api/payments/attempts",
                json={"order_id": "ORD-1", "provider": "bkash", "amount": 2500, "currency": "BDT"},
                headers=STORE_HEADERS,
            ).json()
            base = f"/api/payments/attempts/{attempt['id']}"
            client.post(f"{base}/authorize", headers=STORE_HEADERS)
            client.post(f"{base}/authorize/complete", headers=STORE_HEADERS)

            response = client.post(f"{base}/capture", headers=STORE_HEADERS)
            assert response.status_code == HTTP_200_OK

        # Leaving the client ran the lifespan shutdown, which drained the queue
        assert len(received) == 1
        payload = json.loads(received[0].content)
        assert payload["event"] == "order.paid"
        assert payload["storeId"] == "store-alpha"
        assert payload["data"]["order_id"] == "ORD-1"
        assert payload["data"]["payment_attempt_id"] == attempt["id"]
        assert payload["data"]["captured_amount"] == 2500
        assert received[0].headers["X-Api-Key"] == "k"
        assert "Cookie" not in received[0].headers
