"""
Service exceptions.

Each error carries the HTTP status code and a short error code so the API
layer can render it as ``{"error": message}`` without re-classifying it.
"""

from typing import Any, Dict, Optional


class BizDataError(Exception):
    """Base exception for the business data service."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class ValidationError(BizDataError):
    """Raised when input is missing or malformed."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, 400, "validation_error", details)


class AuthenticationError(BizDataError):
    """Raised for bad credentials or a missing, invalid or expired token."""

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message, 401, "authentication_error")


class AuthorizationError(BizDataError):
    """Raised when the identity lacks the role or ownership required."""

    def __init__(self, message: str = "Forbidden") -> None:
        super().__init__(message, 403, "authorization_error")


class NotFoundError(BizDataError):
    def __init__(self, message: str = "Not found") -> None:
        super().__init__(message, 404, "not_found")


class ConflictError(BizDataError):
    def __init__(self, message: str) -> None:
        super().__init__(message, 409, "conflict")


class StoreError(BizDataError):
    """Raised when the backing store fails unexpectedly."""

    def __init__(self, message: str = "Database error") -> None:
        super().__init__(message, 500, "store_error")


class ConfigurationError(RuntimeError):
    """Raised at startup when the deployment configuration is unsafe."""
