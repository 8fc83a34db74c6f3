"""FastAPI application for the StormCom payments and webhooks API.

This package provides REST endpoints for:
- Health checks
- Payment attempts (authorize, capture, refund, void, reconciliation)
- Webhook subscriptions and delivery logs

The webhook dispatcher's background worker runs for the lifetime of the app.
"""

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from mangum import Mangum

from stormcom.utils.logging import configure_logging, get_logger
from stormcom_api.dependencies import get_webhook_dispatcher
from stormcom_api.exceptions import register_exception_handlers
from stormcom_api.middleware.correlation import CorrelationIdMiddleware
from stormcom_api.routes.payments import router as payments_router
from stormcom_api.routes.webhooks import router as webhooks_router

configure_logging(os.getenv("LOG_LEVEL", "INFO"))
logger = get_logger(__name__)


def _cors_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    dispatcher = get_webhook_dispatcher()
    await dispatcher.start()
    try:
        yield
    finally:
        await dispatcher.stop()


app = FastAPI(
    title="StormCom Commerce API",
    description="REST API for payment attempts and outbound webhooks",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)

# Register exception handlers for consistent error responses
register_exception_handlers(app)

# Include routers under /api prefix
app.include_router(payments_router, prefix="/api")
app.include_router(webhooks_router, prefix="/api")


@app.get("/api/ping")
async def ping() -> dict[str, Any]:
    """Health check endpoint at /api/ping."""
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
        "service": "stormcom-api",
    }


# Lambda handler; the lifespan cycle wraps each invocation, so queued
# webhooks are delivered before the invocation returns
handler = Mangum(app, lifespan="auto")


def run_server(host: str = "0.0.0.0", port: int = 8080, reload: bool = True) -> None:
    """Run the FastAPI server.

    Args:
        host: Host to bind to (default: 0.0.0.0)
        port: Port to listen on (default: 8080)
        reload: Enable hot reload for development (default: True)
    """
    import uvicorn

    if reload:
        # Use string reference for reload mode (uvicorn requirement)
        uvicorn.run(
            "stormcom_api.main:app",
            host=host,
            port=port,
            reload=True,
            reload_dirs=["backend/api/src", "backend/shared/src"],
        )
    else:
        uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
