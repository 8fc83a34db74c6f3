"""Correlation ID middleware for request tracing.

Reuses a well-formed X-Correlation-ID header from the caller or generates a
new one, and logs one line per request with the store, status and duration.
"""

import re
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from stormcom.utils.logging import (
    clear_correlation_id,
    get_logger,
    set_correlation_id,
)

CORRELATION_ID_HEADER = "X-Correlation-ID"
STORE_ID_HEADER = "X-Store-ID"

# Incoming IDs end up in log lines; anything else is replaced
_VALID_CORRELATION_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")

logger = get_logger(__name__)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Middleware that manages correlation IDs for request tracing."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        incoming_id = request.headers.get(CORRELATION_ID_HEADER)
        if incoming_id and not _VALID_CORRELATION_ID.match(incoming_id):
            incoming_id = None
        correlation_id = set_correlation_id(incoming_id)

        start = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = correlation_id

            logger.info(
                "%s %s -> %d (%dms, store=%s)",
                request.method,
                request.url.path,
                response.status_code,
                int((time.perf_counter() - start) * 1000),
                request.headers.get(STORE_ID_HEADER, "-"),
            )
            return response
        finally:
            clear_correlation_id()
