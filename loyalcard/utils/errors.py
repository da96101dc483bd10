"""
Standardized error response utilities for the loyalcard API.

Provides consistent error response format across all endpoints:
{
    "error": {
        "message": "User-friendly error message",
        "code": "ERROR_CODE"
    }
}

Usage:
    from loyalcard.utils.errors import error_response, ErrorCode

    return error_response("Card not found", ErrorCode.NOT_FOUND, 404)

Business logic raises exceptions from ``loyalcard.utils.exceptions``; the handlers
registered by ``register_error_handlers`` turn them into this envelope.
"""
import logging
from enum import Enum
from flask import jsonify, request
from typing import Optional
from werkzeug.exceptions import HTTPException

from .exceptions import LoyaltyError, RateLimitExceededError, ValidationError

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # Authentication & Authorization (401, 403)
    AUTH_REQUIRED = "AUTH_REQUIRED"
    PERMISSION_DENIED = "PERMISSION_DENIED"

    # Validation Errors (400)
    INVALID_REQUEST = "INVALID_REQUEST"
    MISSING_FIELD = "MISSING_FIELD"
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Not Found (404)
    NOT_FOUND = "NOT_FOUND"

    # Conflict (409)
    STATE_CONFLICT = "STATE_CONFLICT"

    # Server Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"


def error_response(
    message: str,
    code: ErrorCode = ErrorCode.INTERNAL_ERROR,
    status_code: int = 500,
    log_error: bool = True,
    details: Optional[dict] = None,
    field: Optional[str] = None
) -> tuple:
    """
    Create a standardized error response.

    Args:
        message: User-friendly error message
        code: Error code from ErrorCode enum or a domain error code string
        status_code: HTTP status code
        log_error: Whether to log the error (default True for 500s)
        details: Optional additional details (only logged, not returned to user)
        field: Offending input field for validation errors

    Returns:
        Tuple of (response, status_code) for Flask
    """
    if log_error and status_code >= 500:
        logger.error(f"API Error [{code}]: {message}", extra={"details": details})
    elif log_error and status_code >= 400:
        logger.warning(f"API Error [{code}]: {message}", extra={"details": details})

    body = {
        "message": message,
        "code": code.value if isinstance(code, ErrorCode) else code
    }
    if field:
        body["field"] = field

    return jsonify({"error": body}), status_code


def bad_request(message: str, code: ErrorCode = ErrorCode.INVALID_REQUEST, field: str = None) -> tuple:
    """400 Bad Request error."""
    return error_response(message, code, 400, log_error=False, field=field)


def unauthorized(message: str = "Authentication required", code: ErrorCode = ErrorCode.AUTH_REQUIRED) -> tuple:
    """401 Unauthorized error."""
    return error_response(message, code, 401, log_error=False)


def internal_error(message: str = "An unexpected error occurred", details: Optional[dict] = None) -> tuple:
    """500 Internal Server Error."""
    return error_response(message, ErrorCode.INTERNAL_ERROR, 500, log_error=True, details=details)


def register_error_handlers(app) -> None:
    """Map domain exceptions and unexpected failures onto the error envelope."""

    @app.errorhandler(LoyaltyError)
    def handle_loyalty_error(error: LoyaltyError):
        if error.status_code >= 500:
            # Internal classes never expose their message to the caller
            logger.error(
                "Internal failure [%s] on %s %s: %s",
                error.code, request.method, request.path, error.message
            )
            return internal_error()

        field = error.field if isinstance(error, ValidationError) else None
        response, status = error_response(
            error.message, error.code, error.status_code, log_error=True, field=field
        )
        if isinstance(error, RateLimitExceededError):
            response.headers['Retry-After'] = str(error.retry_after)
        return response, status

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return error_response(
            error.description or error.name,
            error.name.upper().replace(' ', '_'),
            error.code or 500,
            log_error=False
        )

    @app.errorhandler(Exception)
    def handle_unexpected(error: Exception):
        logger.exception(
            "Unhandled error on %s %s", request.method, request.path
        )
        return internal_error()
