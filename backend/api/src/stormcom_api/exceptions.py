"""FastAPI exception handlers for converting CommerceError to HTTP responses.

The ErrorCode-to-HTTP status mapping:
- 400 Bad Request: Validation and business rule violations (default)
- 404 Not Found: Payment attempt or webhook not found
- 409 Conflict: Double capture, concurrent modification, idempotency key
  owned by another store

Usage:
    from stormcom_api.exceptions import register_exception_handlers
    register_exception_handlers(app)
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_500_INTERNAL_SERVER_ERROR,
)

from stormcom.models.errors import CommerceError, ErrorCode
from stormcom.utils.logging import get_logger

logger = get_logger(__name__)

# Map ErrorCode to HTTP status codes
ERROR_CODE_TO_HTTP_STATUS: dict[ErrorCode, int] = {
    # Not found errors -> 404 Not Found
    ErrorCode.PAYMENT_ATTEMPT_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.WEBHOOK_NOT_FOUND: HTTP_404_NOT_FOUND,
    # Conflicts -> 409 Conflict
    ErrorCode.ALREADY_CAPTURED: HTTP_409_CONFLICT,
    ErrorCode.CONCURRENT_MODIFICATION: HTTP_409_CONFLICT,
    ErrorCode.IDEMPOTENCY_CONFLICT: HTTP_409_CONFLICT,
}


def get_http_status_for_error(code: ErrorCode) -> int:
    """Get HTTP status code for an ErrorCode, defaulting to 400."""
    return ERROR_CODE_TO_HTTP_STATUS.get(code, HTTP_400_BAD_REQUEST)


async def commerce_error_handler(request: Request, exc: CommerceError) -> JSONResponse:
    """Convert a CommerceError to a JSON error response.

    Args:
        request: The incoming request (unused but required by FastAPI)
        exc: The CommerceError exception

    Returns:
        JSONResponse with the ErrorResponse body and mapped status code.
    """
    status_code = get_http_status_for_error(exc.code)
    if status_code == HTTP_409_CONFLICT:
        logger.warning(
            "%s %s -> %s: %s",
            request.method,
            request.url.path,
            exc.code.value,
            exc.message,
        )

    return JSONResponse(
        status_code=status_code,
        content=exc.to_response().model_dump(mode="json"),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions without exposing internals."""
    logger.exception("Unhandled exception: %s", exc)

    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error_code": "ERR_INTERNAL",
            "message": "An unexpected error occurred",
            "details": None,
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(CommerceError, commerce_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)
