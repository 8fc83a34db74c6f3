"""E2E test configuration.

This conftest overrides fixtures from the parent conftest.py that are not
needed for E2E tests (which make HTTP calls to a live API, not mocked services).
"""

from typing import Generator

import pytest


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Override parent fixture - E2E tests don't use mocked DynamoDB."""
    yield
