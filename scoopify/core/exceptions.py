"""
Custom exception classes for the application.
Provides structured error handling across all modules.
"""

from typing import Any, Optional, Dict


class ScoopifyException(Exception):
    """Base exception class for Scoopify backend."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(ScoopifyException):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class DatabaseError(ScoopifyException):
    """Raised when there's a database error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "DATABASE_ERROR", details)


class ValidationError(ScoopifyException):
    """Raised when input data fails validation. Never retried."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: str = "VALIDATION_ERROR"
    ):
        super().__init__(message, code, details)


class ConflictError(ScoopifyException):
    """Raised when a concurrent actor already handled the operation."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: str = "CONFLICT"
    ):
        super().__init__(message, code, details)


class NotFoundError(ScoopifyException):
    """Raised when a requested resource is not found."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "NOT_FOUND", details)


class AuthenticationError(ScoopifyException):
    """Raised when authentication fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "AUTHENTICATION_ERROR", details)


class AuthorizationError(ScoopifyException):
    """Raised when authorization fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "AUTHORIZATION_ERROR", details)


class ExternalServiceError(ScoopifyException):
    """Raised when an external service error occurs."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "EXTERNAL_SERVICE_ERROR", details)


class InvariantViolation(ScoopifyException):
    """Raised when a computed value breaks a domain invariant."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "INVARIANT_VIOLATION", details)


# Domain-specific exceptions
class InvalidAmount(ValidationError):
    """Raised when a monetary amount is zero or negative."""

    def __init__(self, amount: Any):
        super().__init__(
            f"Amount must be positive, got {amount}",
            {"amount": str(amount)},
            code="INVALID_AMOUNT"
        )


class InvalidTransitionError(ConflictError):
    """Raised when a state machine transition is not allowed from the current state."""

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(
            f"Illegal {entity} transition: {current} -> {target}",
            {"entity": entity, "current": current, "target": target},
            code="INVALID_TRANSITION"
        )


class JobNotAvailableError(ConflictError):
    """Raised when a claim loses the race for a service instance."""

    def __init__(self, service_id: int):
        super().__init__(
            "Job no longer available",
            {"service_id": service_id},
            code="JOB_NOT_AVAILABLE"
        )


class ServiceNotFoundError(NotFoundError):
    """Raised when a service instance is not found."""

    def __init__(self, service_id: int):
        super().__init__(
            f"Service not found: {service_id}",
            {"service_id": service_id}
        )


class EmployeeNotFoundError(AuthorizationError):
    """Raised when the caller has no employee record."""

    def __init__(self, user_id: str):
        super().__init__(
            f"Employee record not found for user: {user_id}",
            {"user_id": user_id}
        )


class PayoutMismatchError(ValidationError):
    """Raised when a requested payout total differs from the computed total."""

    def __init__(self, computed_cents: int, requested_cents: int):
        super().__init__(
            f"Requested payout {requested_cents / 100:.2f} does not match "
            f"computed earnings {computed_cents / 100:.2f}",
            {
                "computed_cents": computed_cents,
                "requested_cents": requested_cents,
                "discrepancy_cents": requested_cents - computed_cents,
            },
            code="PAYOUT_MISMATCH"
        )
