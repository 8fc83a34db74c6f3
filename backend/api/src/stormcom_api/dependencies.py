"""FastAPI dependency injection providers for shared services.

Service instances are created lazily and cached with @lru_cache, so each
process shares one instance of every service.

Usage in routes:
    from stormcom_api.dependencies import get_payment_service

    @router.get("/payments/attempts/{attempt_id}")
    async def get_attempt(
        attempt_id: str,
        payments: PaymentService = Depends(get_payment_service),
    ):
        ...

Service Dependency Graph:
    DynamoDBService (singleton via get_dynamodb_service)
        ├── AuditLogService
        │       └── PaymentService
        └── WebhookService
                └── WebhookDispatcher

Testing:
    Use reset_services() to clear cached instances between tests.
"""

from functools import lru_cache

from fastapi import Header, Request

from stormcom.models import CommerceError, ErrorCode, RequestContext
from stormcom.services.audit_log import AuditLogService
from stormcom.services.dynamodb import get_dynamodb_service
from stormcom.services.payment_service import PaymentService
from stormcom.services.webhook_dispatcher import WebhookDispatcher
from stormcom.services.webhook_service import WebhookService


@lru_cache
def get_audit_log_service() -> AuditLogService:
    return AuditLogService(db=get_dynamodb_service())


@lru_cache
def get_payment_service() -> PaymentService:
    """Get cached PaymentService instance.

    Returns:
        PaymentService configured with DynamoDB and the audit log.
    """
    return PaymentService(db=get_dynamodb_service(), audit=get_audit_log_service())


@lru_cache
def get_webhook_service() -> WebhookService:
    return WebhookService(db=get_dynamodb_service())


@lru_cache
def get_webhook_dispatcher() -> WebhookDispatcher:
    """Get cached WebhookDispatcher instance.

    The same instance is started and stopped by the application lifespan.
    """
    return WebhookDispatcher(get_webhook_service())


def get_store_id(
    x_store_id: str | None = Header(default=None, alias="X-Store-ID"),
) -> str:
    """Tenant identity set by the upstream auth layer.

    Raises:
        CommerceError: STORE_REQUIRED when the header is missing or blank
    """
    if not x_store_id or not x_store_id.strip():
        raise CommerceError(code=ErrorCode.STORE_REQUIRED)
    return x_store_id.strip()


def get_request_context(request: Request) -> RequestContext:
    """Caller metadata recorded in audit entries."""
    return RequestContext(
        user_id=request.headers.get("x-user-id"),
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


def reset_services() -> None:
    """Clear all cached service instances.

    Call this in test fixtures to ensure clean state between tests.
    Also resets the underlying DynamoDB singleton.
    """
    from stormcom.services.dynamodb import reset_dynamodb_service

    get_audit_log_service.cache_clear()
    get_payment_service.cache_clear()
    get_webhook_service.cache_clear()
    get_webhook_dispatcher.cache_clear()

    reset_dynamodb_service()
