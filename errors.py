"""Custom exceptions for the storefront API."""
from typing import List, Optional


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class RequestValidationFailed(StorefrontError):
    """Raised when request fields are missing or malformed."""

    def __init__(self, message: str = "Validation failed", errors: Optional[List[dict]] = None):
        self.errors = errors or []
        super().__init__(message)


class AuthenticationFailed(StorefrontError):
    """Raised when the bearer token is missing, invalid or expired."""


class PermissionDenied(StorefrontError):
    """Raised when a non-admin reaches an admin route."""


class NotFound(StorefrontError):
    """Raised when a product, order, address or route doesn't exist."""


class BusinessRuleViolation(StorefrontError):
    """Raised when a request is well-formed but not allowed in the current state."""


class ConfigurationError(StorefrontError):
    """Raised when required runtime configuration is missing."""


# Map exception types to HTTP status codes
ERROR_STATUS_CODES = {
    RequestValidationFailed: 400,
    AuthenticationFailed: 401,
    PermissionDenied: 403,
    NotFound: 404,
    BusinessRuleViolation: 400,
    ConfigurationError: 500,
}


def invalid_field(field: str, message: str) -> RequestValidationFailed:
    return RequestValidationFailed(errors=[{"field": field, "message": message}])
