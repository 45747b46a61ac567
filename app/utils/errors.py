"""
Standardized error response utilities for the rewards API.

Provides consistent error response format across all endpoints:
{
    "error": {
        "message": "User-friendly error message",
        "code": "ERROR_CODE"
    }
}

Usage:
    from app.utils.errors import error_response, ErrorCode

    return error_response("Rule not found", ErrorCode.NOT_FOUND, 404)
"""
import logging
from enum import Enum
from flask import jsonify
from typing import Optional

from .exceptions import (
    RewardsError,
    NotFoundError,
    UnknownMetricError,
    UnsupportedWindowError,
    UnsupportedFilterError,
    InvalidRuleShapeError,
    InsufficientPopulationError,
    MetricResolutionError,
)

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # Authentication (401)
    AUTH_REQUIRED = "AUTH_REQUIRED"

    # Validation Errors (400)
    INVALID_REQUEST = "INVALID_REQUEST"
    MISSING_FIELD = "MISSING_FIELD"
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Not Found (404)
    NOT_FOUND = "NOT_FOUND"

    # Upstream data (503)
    METRIC_RESOLUTION_FAILED = "METRIC_RESOLUTION_FAILED"

    # Server Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Domain exception -> HTTP status
EXCEPTION_STATUS = (
    (NotFoundError, 404),
    (InvalidRuleShapeError, 400),
    (UnknownMetricError, 400),
    (UnsupportedWindowError, 400),
    (UnsupportedFilterError, 400),
    (InsufficientPopulationError, 400),
    (MetricResolutionError, 503),
)


def error_response(
    message: str,
    code: ErrorCode = ErrorCode.INTERNAL_ERROR,
    status_code: int = 500,
    log_error: bool = True,
    details: Optional[dict] = None
) -> tuple:
    """
    Create a standardized error response.

    Args:
        message: User-friendly error message
        code: Error code from ErrorCode enum (or a domain error code string)
        status_code: HTTP status code
        log_error: Whether to log the error (default True for 500s)
        details: Optional additional details (only logged, not returned to user)

    Returns:
        Tuple of (response, status_code) for Flask
    """
    if log_error and status_code >= 500:
        logger.error(f"API Error [{code}]: {message}", extra={"details": details})
    elif log_error and status_code >= 400:
        logger.warning(f"API Error [{code}]: {message}", extra={"details": details})

    response = {
        "error": {
            "message": message,
            "code": code.value if isinstance(code, ErrorCode) else code
        }
    }

    return jsonify(response), status_code


def rewards_error_response(error: RewardsError) -> tuple:
    """Translate a domain exception into the error envelope."""
    status_code = 500
    for exc_type, status in EXCEPTION_STATUS:
        if isinstance(error, exc_type):
            status_code = status
            break
    return error_response(error.message, error.code, status_code, log_error=status_code >= 500)


def bad_request(message: str, code: ErrorCode = ErrorCode.INVALID_REQUEST) -> tuple:
    """400 Bad Request error."""
    return error_response(message, code, 400, log_error=False)


def unauthorized(message: str = "Authentication required", code: ErrorCode = ErrorCode.AUTH_REQUIRED) -> tuple:
    """401 Unauthorized error."""
    return error_response(message, code, 401, log_error=False)


def not_found(message: str, code: ErrorCode = ErrorCode.NOT_FOUND) -> tuple:
    """404 Not Found error."""
    return error_response(message, code, 404, log_error=False)


def internal_error(message: str = "An unexpected error occurred", details: Optional[dict] = None) -> tuple:
    """500 Internal Server Error."""
    return error_response(message, ErrorCode.INTERNAL_ERROR, 500, log_error=True, details=details)
