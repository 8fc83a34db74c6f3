"""API routes package.

Routers are organized by domain:

- payments: Payment attempts, ledger and reconciliation
- webhooks: Webhook subscriptions and delivery logs

All routers are registered in main.py with /api prefix.
"""

from stormcom_api.routes.payments import router as payments_router
from stormcom_api.routes.webhooks import router as webhooks_router

__all__ = [
    "payments_router",
    "webhooks_router",
]
