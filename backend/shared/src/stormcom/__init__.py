"""StormCom payments and webhooks core."""

__version__ = "0.1.0"
