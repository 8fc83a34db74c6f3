"""Backend services for StormCom payments and webhooks."""

from .audit_log import AuditLogService
from .dynamodb import DynamoDBService, get_dynamodb_service, reset_dynamodb_service
from .payment_service import PaymentService, can_transition
from .url_safety import filter_custom_headers, validate_webhook_url
from .webhook_dispatcher import WebhookDispatcher, sign_payload, verify_signature
from .webhook_service import WebhookService

__all__ = [
    "AuditLogService",
    "DynamoDBService",
    "get_dynamodb_service",
    "reset_dynamodb_service",
    "PaymentService",
    "can_transition",
    "filter_custom_headers",
    "validate_webhook_url",
    "WebhookDispatcher",
    "sign_payload",
    "verify_signature",
    "WebhookService",
]
