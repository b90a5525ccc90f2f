"""Error handling middleware for consistent JSON error responses.

All errors are converted to one JSON structure:
- error: Error type/code
- message: Human-readable description
- detail: Optional additional information
- request_id: Correlation ID for debugging

Pickup domain errors map to HTTP as follows:

    InvalidInputError         400 validation_error
    ForbiddenTransitionError  403 forbidden
    RequestNotFoundError      404 not_found
    InvalidTransitionError    409 invalid_transition
    ConflictError             409 conflict (detail.retryable = true)
    StoreUnavailableError     503 store_unavailable
"""

import logging
from collections.abc import Callable
from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from pharmapickup.api.middleware.request_id import get_request_id
from pharmapickup.services.errors import (
    ConflictError,
    ForbiddenTransitionError,
    InvalidInputError,
    InvalidTransitionError,
    PickupError,
    RequestNotFoundError,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)

# Domain error class -> (HTTP status, error code)
PICKUP_ERROR_STATUS: dict[type[PickupError], tuple[int, str]] = {
    InvalidInputError: (400, "validation_error"),
    ForbiddenTransitionError: (403, "forbidden"),
    RequestNotFoundError: (404, "not_found"),
    InvalidTransitionError: (409, "invalid_transition"),
    ConflictError: (409, "conflict"),
    StoreUnavailableError: (503, "store_unavailable"),
}


class APIError(Exception):
    """Base exception for API errors with structured details.

    Use this exception to raise errors with consistent formatting.
    Subclass for specific error categories.
    """

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int = 400,
        detail: dict[str, Any] | None = None,
    ) -> None:
        """Initialize API error.

        Args:
            error: Machine-readable error code (e.g., "validation_error").
            message: Human-readable error description.
            status_code: HTTP status code to return.
            detail: Optional additional details for debugging.
        """
        self.error = error
        self.message = message
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)


class AuthorizationError(APIError):
    """Authorization/permission error (403)."""

    def __init__(self, message: str, detail: dict[str, Any] | None = None) -> None:
        super().__init__(
            error="forbidden",
            message=message,
            status_code=403,
            detail=detail,
        )


class AuthenticationError(APIError):
    """Authentication error (401)."""

    def __init__(
        self, message: str = "Authentication required", detail: dict[str, Any] | None = None
    ) -> None:
        super().__init__(
            error="unauthorized",
            message=message,
            status_code=401,
            detail=detail,
        )


def build_error_response(
    error: str,
    message: str,
    status_code: int,
    detail: dict[str, Any] | None = None,
) -> JSONResponse:
    """Build a standardized error response.

    Args:
        error: Machine-readable error code.
        message: Human-readable description.
        status_code: HTTP status code.
        detail: Optional additional details.

    Returns:
        JSONResponse with consistent error structure.
    """
    body: dict[str, Any] = {
        "error": error,
        "message": message,
    }

    # Include request ID for correlation
    request_id = get_request_id()
    if request_id:
        body["request_id"] = request_id

    if detail:
        body["detail"] = detail

    return JSONResponse(status_code=status_code, content=body)


def pickup_error_response(exc: PickupError) -> JSONResponse:
    """Translate a pickup domain error into its JSON error response."""
    status_code, code = 500, "internal_error"
    for error_type in type(exc).__mro__:
        if error_type in PICKUP_ERROR_STATUS:
            status_code, code = PICKUP_ERROR_STATUS[error_type]
            break

    detail: dict[str, Any] = {}
    if exc.retryable:
        detail["retryable"] = True
    if isinstance(exc, InvalidInputError) and exc.field:
        detail["field"] = exc.field
    if isinstance(exc, InvalidTransitionError):
        detail["from_status"] = exc.from_status.value
        detail["to_status"] = exc.to_status.value

    return build_error_response(
        error=code,
        message=exc.message,
        status_code=status_code,
        detail=detail or None,
    )


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Middleware that catches exceptions and returns consistent JSON errors.

    Handles:
    - APIError and subclasses: Custom application errors
    - PickupError and subclasses: Lifecycle domain errors
    - HTTPException: FastAPI's built-in HTTP errors
    - ValidationError: Pydantic validation failures
    - Generic exceptions: Unexpected errors (logged, returns 500)
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        """Process request and handle any exceptions.

        Args:
            request: The incoming HTTP request.
            call_next: The next middleware/handler in the chain.

        Returns:
            The response, or an error response if an exception occurred.
        """
        try:
            return await call_next(request)
        except APIError as exc:
            return build_error_response(
                error=exc.error,
                message=exc.message,
                status_code=exc.status_code,
                detail=exc.detail,
            )
        except PickupError as exc:
            if isinstance(exc, StoreUnavailableError):
                logger.error(
                    "Store unavailable: %s %s",
                    request.method,
                    request.url.path,
                )
            return pickup_error_response(exc)
        except HTTPException as exc:
            return build_error_response(
                error="http_error",
                message=str(exc.detail),
                status_code=exc.status_code,
            )
        except ValidationError as exc:
            return build_error_response(
                error="validation_error",
                message="Request validation failed",
                status_code=422,
                detail={"errors": exc.errors(include_url=False, include_context=False)},
            )
        except Exception:
            # Unexpected errors - log and return generic 500
            logger.exception(
                "Unexpected error processing request: %s %s",
                request.method,
                request.url.path,
            )
            return build_error_response(
                error="internal_error",
                message="An internal error occurred",
                status_code=500,
            )
