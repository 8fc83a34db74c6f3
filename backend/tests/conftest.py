"""Pytest configuration and fixtures for StormCom backend tests.

This module provides reusable fixtures for testing:
- DynamoDB mocking with moto (all payment, webhook and audit tables)
- Service instances wired to the mocked tables
- Sample payment attempt data
"""

import os
from typing import Any, Generator

import boto3
import pytest
from moto import mock_aws

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ.setdefault("DYNAMODB_TABLE_PREFIX", "test-stormcom")
os.environ.setdefault("ENVIRONMENT", "test")

# Only set fake credentials for moto if no real credentials are present
if not os.environ.get("AWS_PROFILE") and not os.environ.get("AWS_ACCESS_KEY_ID"):
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

TABLE_PREFIX = "test-stormcom"

TEST_STORE_ID = "store-alpha"
OTHER_STORE_ID = "store-beta"


def _table(
    name: str,
    keys: list[tuple[str, str]],
    attributes: dict[str, str],
    indexes: dict[str, list[tuple[str, str]]] | None = None,
) -> dict[str, Any]:
    """Build a create_table request; keys are (attribute, HASH|RANGE) pairs."""
    table: dict[str, Any] = {
        "TableName": f"{TABLE_PREFIX}-{name}",
        "KeySchema": [{"AttributeName": a, "KeyType": t} for a, t in keys],
        "AttributeDefinitions": [
            {"AttributeName": a, "AttributeType": t} for a, t in attributes.items()
        ],
        "BillingMode": "PAY_PER_REQUEST",
    }
    if indexes:
        table["GlobalSecondaryIndexes"] = [
            {
                "IndexName": index_name,
                "KeySchema": [{"AttributeName": a, "KeyType": t} for a, t in index_keys],
                "Projection": {"ProjectionType": "ALL"},
            }
            for index_name, index_keys in indexes.items()
        ]
    return table


TABLES = [
    _table(
        "payment-attempts",
        [("attempt_id", "HASH")],
        {
            "attempt_id": "S",
            "store_id": "S",
            "order_id": "S",
            "status": "S",
            "created_at": "S",
        },
        {
            "store-order-index": [("store_id", "HASH"), ("order_id", "RANGE")],
            "status-created-index": [("status", "HASH"), ("created_at", "RANGE")],
        },
    ),
    _table(
        "payment-idempotency-keys",
        [("idempotency_key", "HASH")],
        {"idempotency_key": "S"},
    ),
    _table(
        "payment-transactions",
        [("attempt_id", "HASH"), ("transaction_id", "RANGE")],
        {"attempt_id": "S", "transaction_id": "S"},
    ),
    _table(
        "webhooks",
        [("webhook_id", "HASH")],
        {"webhook_id": "S", "store_id": "S"},
        {"store-index": [("store_id", "HASH")]},
    ),
    _table(
        "webhook-deliveries",
        [("webhook_id", "HASH"), ("delivery_key", "RANGE")],
        {"webhook_id": "S", "delivery_key": "S"},
    ),
    _table(
        "audit-logs",
        [("audit_id", "HASH")],
        {"audit_id": "S", "entity_id": "S"},
        {"entity-index": [("entity_id", "HASH")]},
    ),
]


# === Singleton reset ===


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset DynamoDB and service singletons before and after each test.

    Tests using mock_aws get a fresh service instance inside the mock
    context rather than reusing one from a previous test.
    """
    from stormcom_api.dependencies import reset_services

    reset_services()
    yield
    reset_services()


# === DynamoDB Fixtures ===


@pytest.fixture
def aws_credentials() -> None:
    """Mocked AWS credentials for moto."""
    if not os.environ.get("AWS_PROFILE"):
        os.environ["AWS_ACCESS_KEY_ID"] = "testing"
        os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
        os.environ["AWS_SECURITY_TOKEN"] = "testing"
        os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "eu-west-1"
    os.environ["DYNAMODB_TABLE_PREFIX"] = TABLE_PREFIX


@pytest.fixture
def dynamodb_tables(aws_credentials: None) -> Generator[Any, None, None]:
    """Create all StormCom tables inside a mock_aws context.

    Yields the low-level DynamoDB client for tests that seed items directly.
    """
    with mock_aws():
        client = boto3.client("dynamodb", region_name="eu-west-1")
        for table in TABLES:
            client.create_table(**table)
        yield client


@pytest.fixture
def db(dynamodb_tables: Any) -> Any:
    from stormcom.services.dynamodb import DynamoDBService

    return DynamoDBService()


@pytest.fixture
def audit_service(db: Any) -> Any:
    from stormcom.services.audit_log import AuditLogService

    return AuditLogService(db)


@pytest.fixture
def payment_service(db: Any, audit_service: Any) -> Any:
    from stormcom.services.payment_service import PaymentService

    return PaymentService(db, audit_service)


@pytest.fixture
def webhook_service(db: Any) -> Any:
    from stormcom.services.webhook_service import WebhookService

    return WebhookService(db)


# === Sample data ===


@pytest.fixture
def attempt_data() -> dict[str, Any]:
    """Creation data for a 100.00 USD attempt."""
    return {
        "store_id": TEST_STORE_ID,
        "order_id": "ORD-1001",
        "provider": "stripe",
        "amount": 10000,
        "currency": "usd",
    }
