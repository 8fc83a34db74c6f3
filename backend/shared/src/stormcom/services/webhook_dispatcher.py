"""Outbound webhook delivery.

``dispatch`` delivers one event to every matching webhook of a store
concurrently and never raises. ``emit`` is the fire-and-forget entry point
for request handlers: it enqueues the event for a background worker that is
started and stopped with the application lifespan.

Each delivery makes up to ``MAX_ATTEMPTS`` HTTP attempts with increasing
delays, logs every attempt, and updates the webhook's failure counter once the
final attempt is done.
"""

import asyncio
import contextlib
import datetime as dt
import hashlib
import hmac
import os
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import httpx

from stormcom.models import (
    DeliveryResult,
    Webhook,
    WebhookDelivery,
    WebhookEventType,
    WebhookPayload,
)
from stormcom.utils.logging import get_logger, log_webhook_delivery

from .url_safety import filter_custom_headers, validate_webhook_url
from .webhook_service import MAX_FAILURES_BEFORE_DISABLE

if TYPE_CHECKING:
    from .webhook_service import WebhookService

logger = get_logger(__name__)

MAX_ATTEMPTS = 3
# Delay before attempt n+1; the last entry repeats if MAX_ATTEMPTS is raised
RETRY_DELAYS: tuple[float, ...] = (1, 5, 30)
DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_QUEUE_MAXSIZE = 1000
RESPONSE_BODY_LIMIT = 1000
USER_AGENT = "StormCom-Webhook/1.0"


def sign_payload(body: str, secret: str) -> str:
    """HMAC-SHA256 hex digest of the exact request body."""
    return hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_signature(body: str, secret: str, signature: str) -> bool:
    """Constant-time check of a signature header (with or without ``sha256=``)."""
    if signature.startswith("sha256="):
        signature = signature[len("sha256="):]
    return hmac.compare_digest(sign_payload(body, secret), signature)


def _truncate(text: str) -> str:
    if len(text) <= RESPONSE_BODY_LIMIT:
        return text
    return text[:RESPONSE_BODY_LIMIT] + "... (truncated)"


class WebhookDispatcher:
    """Delivers webhook events with retries, signing and failure accounting."""

    def __init__(
        self,
        webhook_service: "WebhookService",
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        max_attempts: int = MAX_ATTEMPTS,
        retry_delays: tuple[float, ...] = RETRY_DELAYS,
        timeout: float | None = None,
        queue_maxsize: int | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            webhook_service: Registry used to load webhooks and log deliveries
            transport: Optional httpx transport (tests use httpx.MockTransport)
            sleep: Coroutine used between attempts
            max_attempts: HTTP attempts per delivery
            retry_delays: Seconds to wait after each failed attempt
            timeout: Per-request timeout. Defaults to WEBHOOK_TIMEOUT_SECONDS.
            queue_maxsize: Bound of the emit queue. Defaults to WEBHOOK_QUEUE_MAXSIZE.
        """
        self.webhooks = webhook_service
        self._transport = transport
        self._sleep = sleep
        self.max_attempts = max_attempts
        self.retry_delays = retry_delays
        self.timeout = timeout or float(
            os.getenv("WEBHOOK_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS))
        )
        self.queue_maxsize = queue_maxsize or int(
            os.getenv("WEBHOOK_QUEUE_MAXSIZE", str(DEFAULT_QUEUE_MAXSIZE))
        )

        self._queue: asyncio.Queue[tuple[str, str, dict[str, Any]]] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._worker: asyncio.Task[None] | None = None

    # Background worker

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        """Start the background worker on the running event loop."""
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self.queue_maxsize)
        self._worker = asyncio.create_task(self._run(), name="webhook-dispatcher")
        logger.info("Webhook dispatcher started (queue maxsize=%d)", self.queue_maxsize)

    async def stop(self, drain_timeout: float = 30.0) -> None:
        """Deliver queued events, then stop the worker."""
        if self._worker is None or self._queue is None:
            return

        try:
            await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
        except TimeoutError:
            logger.warning(
                "Webhook dispatcher stopped with %d undelivered events",
                self._queue.qsize(),
            )

        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker

        self._worker = None
        self._queue = None
        self._loop = None
        logger.info("Webhook dispatcher stopped")

    async def _run(self) -> None:
        assert self._queue is not None
        while True:
            store_id, event, data = await self._queue.get()
            try:
                await self.dispatch(store_id, event, data)
            finally:
                self._queue.task_done()

    def emit(self, store_id: str, event: str, data: dict[str, Any]) -> None:
        """Queue an event for background delivery without waiting for it.

        Safe to call from the event loop or from a worker thread. Events are
        dropped with a warning when the worker is not running or the queue is
        full.
        """
        loop = self._loop
        if loop is None or self._queue is None or loop.is_closed():
            logger.warning(
                "Webhook dispatcher not running; dropped %s for store %s", event, store_id
            )
            return

        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None

        item = (store_id, event, data)
        if current is loop:
            self._enqueue(item)
        else:
            loop.call_soon_threadsafe(self._enqueue, item)

    def _enqueue(self, item: tuple[str, str, dict[str, Any]]) -> None:
        if self._queue is None:
            return
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            logger.warning(
                "Webhook queue full (%d); dropped %s for store %s",
                self.queue_maxsize,
                item[1],
                item[0],
            )

    # Dispatch

    def build_payload(self, store_id: str, event: str, data: dict[str, Any]) -> WebhookPayload:
        return WebhookPayload(
            id=str(uuid.uuid4()),
            event=event,
            store_id=store_id,
            created_at=dt.datetime.now(dt.UTC).isoformat(),
            data=data,
        )

    async def dispatch(
        self,
        store_id: str,
        event: str,
        data: dict[str, Any],
    ) -> list[DeliveryResult]:
        """Deliver an event to all active subscribers of a store.

        Never raises; failures are logged and reported in the results.

        Args:
            store_id: Store whose webhooks receive the event
            event: Event name, e.g. "order.paid"
            data: JSON-serializable event data

        Returns:
            One DeliveryResult per matching webhook
        """
        try:
            webhooks = await asyncio.to_thread(
                self.webhooks.list_active_for_store, store_id, event
            )
        except Exception:
            logger.exception("Failed to load webhooks for store %s (%s)", store_id, event)
            return []

        if not webhooks:
            logger.debug("No webhooks subscribed to %s for store %s", event, store_id)
            return []

        payload = self.build_payload(store_id, event, data)
        outcomes = await asyncio.gather(
            *(self.deliver(webhook, payload) for webhook in webhooks),
            return_exceptions=True,
        )

        results: list[DeliveryResult] = []
        for webhook, outcome in zip(webhooks, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Webhook delivery %s to %s crashed: %r", payload.id, webhook.id, outcome
                )
                results.append(
                    DeliveryResult(webhook_id=webhook.id, success=False, error=str(outcome))
                )
            else:
                results.append(outcome)
        return results

    async def test_webhook(self, webhook_id: str, store_id: str | None = None) -> DeliveryResult:
        """Send a synthetic ``test`` event to one webhook.

        Raises:
            WebhookNotFoundError: Unknown webhook (or owned by another store)
        """
        webhook = await asyncio.to_thread(self.webhooks.get_webhook, webhook_id, store_id)
        payload = self.build_payload(
            webhook.store_id,
            WebhookEventType.TEST.value,
            {
                "message": "This is a test webhook from StormCom",
                "webhook_id": webhook.id,
                "webhook_name": webhook.name,
            },
        )
        return await self.deliver(webhook, payload)

    async def deliver(self, webhook: Webhook, payload: WebhookPayload) -> DeliveryResult:
        """Deliver one payload to one webhook with retries.

        The URL is checked before every attempt; an unsafe URL ends the
        delivery without a network call.
        """
        body = payload.to_json()
        result = DeliveryResult(webhook_id=webhook.id, success=False)

        for attempt in range(1, self.max_attempts + 1):
            result.attempts = attempt

            safe, reason = validate_webhook_url(webhook.url)
            if not safe:
                result.error = f"Unsafe webhook URL: {reason}"
                result.status_code = None
                await self._log_attempt(webhook, payload, body, attempt, result)
                break

            await self._send(webhook, payload, body, attempt, result)
            await self._log_attempt(webhook, payload, body, attempt, result)

            if result.success:
                break
            if attempt < self.max_attempts:
                await self._sleep(self._retry_delay(attempt))

        await self._record_outcome(webhook, result)
        return result

    def _retry_delay(self, attempt: int) -> float:
        return self.retry_delays[min(attempt - 1, len(self.retry_delays) - 1)]

    def _build_headers(
        self,
        webhook: Webhook,
        payload: WebhookPayload,
        body: str,
        attempt: int,
    ) -> dict[str, str]:
        headers = filter_custom_headers(webhook.custom_headers)
        headers.update(
            {
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT,
                "X-Webhook-ID": webhook.id,
                "X-Event-Type": payload.event,
                "X-Delivery-ID": payload.id,
                "X-Delivery-Attempt": str(attempt),
            }
        )
        if webhook.secret:
            signature = sign_payload(body, webhook.secret)
            headers["X-Webhook-Signature"] = signature
            headers["X-Webhook-Signature-256"] = f"sha256={signature}"
        return headers

    async def _send(
        self,
        webhook: Webhook,
        payload: WebhookPayload,
        body: str,
        attempt: int,
        result: DeliveryResult,
    ) -> None:
        """Make one HTTP attempt and record its outcome on ``result``."""
        headers = self._build_headers(webhook, payload, body, attempt)
        result.status_code = None
        result.error = None
        result.response_body = None

        start = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                follow_redirects=False,
            ) as client:
                response = await client.post(webhook.url, content=body, headers=headers)
        except httpx.TimeoutException:
            result.success = False
            result.error = f"Timeout after {self.timeout:g}s"
        except httpx.HTTPError as e:
            result.success = False
            result.error = str(e) or e.__class__.__name__
        else:
            result.status_code = response.status_code
            result.success = response.is_success
            result.response_body = _truncate(response.text)
            if not result.success:
                result.error = f"HTTP {response.status_code}"
        finally:
            result.response_time_ms = int((time.perf_counter() - start) * 1000)

    async def _log_attempt(
        self,
        webhook: Webhook,
        payload: WebhookPayload,
        body: str,
        attempt: int,
        result: DeliveryResult,
    ) -> None:
        log_webhook_delivery(
            logger,
            payload.event,
            webhook.id,
            delivery_id=payload.id,
            attempt=attempt,
            status_code=result.status_code,
            success=result.success,
            error=result.error,
        )
        delivery = WebhookDelivery(
            id=f"DLV-{uuid.uuid4().hex[:12].upper()}",
            webhook_id=webhook.id,
            event=payload.event,
            payload=body,
            status_code=result.status_code,
            response_body=result.response_body,
            response_time_ms=result.response_time_ms,
            success=result.success,
            error=result.error,
            attempt=attempt,
            created_at=dt.datetime.now(dt.UTC),
        )
        await asyncio.to_thread(self.webhooks.log_delivery, delivery)

    async def _record_outcome(self, webhook: Webhook, result: DeliveryResult) -> None:
        try:
            if result.success:
                await asyncio.to_thread(self.webhooks.record_success, webhook.id)
            else:
                await asyncio.to_thread(
                    self.webhooks.record_failure,
                    webhook.id,
                    result.error or "Delivery failed",
                    MAX_FAILURES_BEFORE_DISABLE,
                )
        except Exception:
            logger.exception("Failed to update failure count for webhook %s", webhook.id)
