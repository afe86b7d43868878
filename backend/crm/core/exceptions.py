"""
Custom exception hierarchy for structured error handling.

WHY: Every route family answers failures with the same JSON body
(``error``, ``message``, ``status_code``, ``details``). Raising one of these
exceptions anywhere below the route layer is enough; the handlers in
``crm.core.exception_handlers`` translate them into responses.

IMPORTANT: Raise these instead of bare Exception or HTTPException.
"""

from typing import Any, Dict, Optional


class AppException(Exception):
    """
    Base exception class for all application exceptions.

    WHY: Centralizing exception handling in a base class ensures consistent
    error responses, HTTP status code mapping, and prevents sensitive data
    leaks in error messages.
    """

    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        """
        Initialize exception with message and context.

        Args:
            message: Human-readable error message
            status_code: HTTP status code (overrides class default)
            **context: Additional structured details (filtered in to_dict)
        """
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize exception to dictionary for JSON response.

        Returns:
            Dictionary with error details (sensitive fields filtered out)
        """
        sensitive_fields = {"password", "token", "secret", "key", "api_key"}
        filtered_context = {
            k: v for k, v in self.context.items() if k.lower() not in sensitive_fields
        }

        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": filtered_context if filtered_context else None,
        }


# ============================================================================
# Authentication & Authorization Exceptions
# ============================================================================


class AuthenticationError(AppException):
    """
    Raised when the bearer token cannot be verified or the user is unknown.

    HTTP Status: 401 Unauthorized
    """

    status_code = 401
    default_message = "Authentication failed"


class AuthorizationError(AppException):
    """
    Raised when user lacks permissions for an action.

    WHY: Distinguishing authorization (403) from authentication (401) helps
    frontends show appropriate messages.

    HTTP Status: 403 Forbidden
    """

    status_code = 403
    default_message = "You do not have permission to perform this action"


class TokenExpiredError(AuthenticationError):
    """Raised when JWT token has expired."""

    default_message = "Token has expired"


class TokenInvalidError(AuthenticationError):
    """Raised when JWT token is malformed or has invalid signature."""

    default_message = "Token is invalid"


# ============================================================================
# Validation Exceptions
# ============================================================================


class ValidationError(AppException):
    """
    Raised when input validation fails.

    WHY: Missing fields, non-positive amounts, unknown enum values and
    malformed numbers are all caller mistakes that are never retried
    automatically; the message tells the user what to fix.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Validation failed"


class OverpaymentError(ValidationError):
    """
    Raised when a payment would push the amount paid above the invoice total.

    The remaining balance is reported in ``details.max_allowed``.

    HTTP Status: 400 Bad Request
    """

    default_message = "Payment amount would exceed invoice total"


# ============================================================================
# Resource Exceptions
# ============================================================================


class ResourceNotFoundError(AppException):
    """
    Raised when a requested resource doesn't exist in the caller's organization.

    WHY: Records belonging to another organization are reported as missing,
    never as forbidden, so ids from other tenants cannot be probed.

    HTTP Status: 404 Not Found
    """

    status_code = 404
    default_message = "Resource not found"


class ResourceAlreadyExistsError(AppException):
    """
    Raised when attempting to create a resource that already exists.

    HTTP Status: 409 Conflict
    """

    status_code = 409
    default_message = "Resource already exists"


# ============================================================================
# Business Logic Exceptions
# ============================================================================


class InvalidStateTransitionError(AppException):
    """
    Raised when an invalid state transition is attempted.

    WHY: Invoice workflow has valid transitions (draft -> sent -> viewed,
    anything unpaid -> cancelled). Paying a cancelled invoice or editing a
    paid one should fail with a clear error message.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Invalid state transition"


# ============================================================================
# Database Exceptions
# ============================================================================


class DatabaseError(AppException):
    """
    Raised when database operations fail.

    WHY: Database errors are converted to application exceptions with safe
    error messages (no SQL exposed).

    HTTP Status: 500 Internal Server Error
    """

    status_code = 500
    default_message = "Database error"
