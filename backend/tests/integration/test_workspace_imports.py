"""Workspace import integration tests.

Validates that both workspace packages (stormcom, stormcom_api) are importable
and their public interfaces are accessible.
"""


class TestSharedPackageImports:
    """Tests for the stormcom package public interface."""

    def test_can_import_shared_package(self):
        import stormcom

        assert hasattr(stormcom, "__version__")

    def test_can_import_models(self):
        """All public models should be importable from stormcom.models."""
        from stormcom.models import (
            # Enums
            PaymentAttemptStatus,
            PaymentProvider,
            PaymentTransactionType,
            WebhookEventType,
            # Payment
            PaymentAttempt,
            PaymentTransaction,
            ReconciliationResult,
            # Webhook
            Webhook,
            WebhookDelivery,
            WebhookPayload,
            # Audit
            AuditLogEntry,
            # Errors
            CommerceError,
            ErrorCode,
        )

        assert hasattr(PaymentAttempt, "model_fields")
        assert hasattr(PaymentTransaction, "model_fields")
        assert hasattr(ReconciliationResult, "model_fields")
        assert hasattr(Webhook, "model_fields")
        assert hasattr(WebhookDelivery, "model_fields")
        assert hasattr(WebhookPayload, "model_fields")
        assert hasattr(AuditLogEntry, "model_fields")
        assert hasattr(PaymentAttemptStatus, "CAPTURED")
        assert hasattr(PaymentProvider, "BKASH")
        assert hasattr(PaymentTransactionType, "REFUND")
        assert hasattr(WebhookEventType, "ORDER_PAID")
        assert issubclass(CommerceError, Exception)
        assert ErrorCode.STORE_REQUIRED.value == "ERR_REQ_001"

    def test_can_import_services(self):
        """Key services should be importable from stormcom.services."""
        from stormcom.services import (
            AuditLogService,
            DynamoDBService,
            PaymentService,
            WebhookDispatcher,
            WebhookService,
            get_dynamodb_service,
        )

        assert callable(get_dynamodb_service)
        for service in (
            AuditLogService,
            DynamoDBService,
            PaymentService,
            WebhookDispatcher,
            WebhookService,
        ):
            assert isinstance(service, type)


class TestApiPackageImports:
    """Tests for the stormcom_api package public interface."""

    def test_can_import_api_package(self):
        import stormcom_api

        assert hasattr(stormcom_api, "__version__")

    def test_can_import_fastapi_app(self):
        from stormcom_api.main import app, handler

        assert hasattr(app, "routes")
        assert callable(handler)

    def test_routes_registered(self):
        from stormcom_api.main import app

        paths = {route.path for route in app.routes}

        assert "/api/ping" in paths
        assert "/api/payments/attempts" in paths
        assert "/api/payments/attempts/{attempt_id}/capture" in paths
        assert "/api/payments/reconciliation" in paths
        assert "/api/webhooks" in paths
        assert "/api/webhooks/{webhook_id}/deliveries" in paths
