"""API-specific request/response models.

Domain models (PaymentAttempt, Webhook, ...) live in stormcom.models and are
reused as response models here.

Modules:
- payments: Payment attempt request bodies
- webhooks: Webhook registration request bodies
"""

__all__: list[str] = []
