"""
Shared error handling for the marketplace session client.
"""

from enum import Enum
from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = {}


class SessionClientError(Exception):
    """Base exception for session client errors."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )


class ProviderAuthReason(str, Enum):
    """Coarse reason codes reported by the identity provider."""
    INVALID_CREDENTIAL = "invalid-credential"
    USER_NOT_FOUND = "user-not-found"
    WRONG_PASSWORD = "wrong-password"
    EMAIL_ALREADY_IN_USE = "email-already-in-use"
    WEAK_PASSWORD = "weak-password"
    TOO_MANY_REQUESTS = "too-many-requests"
    NETWORK_ERROR = "network-error"
    DISABLED = "disabled"
    INVALID_EMAIL = "invalid-email"
    OPERATION_NOT_ALLOWED = "operation-not-allowed"
    UNKNOWN = "unknown"


class ProviderAuthError(SessionClientError):
    """Credential rejected, rate limited, disabled account or provider unreachable."""

    def __init__(self, reason: ProviderAuthReason, message: str = "Identity provider error",
                 details: Optional[Dict[str, Any]] = None):
        self.reason = reason
        details = dict(details or {})
        details["reason"] = reason.value
        super().__init__("PROVIDER_AUTH_ERROR", message, details)


class RoleMismatch(SessionClientError):
    """Backend profile role disagrees with the role asserted by the caller."""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(
            "ROLE_MISMATCH",
            f"Account is registered as {actual}, not {expected}",
            {"expected": expected, "actual": actual}
        )


class BackendRequestError(SessionClientError):
    """Non-2xx or failed backend response."""

    def __init__(self, message: str = "Backend request failed", status_code: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.status_code = status_code
        details = dict(details or {})
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__("BACKEND_REQUEST_ERROR", message, details)


class StorageError(SessionClientError):
    """Persistence read/write failure."""

    def __init__(self, message: str = "Credential storage failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORAGE_ERROR", message, details)


class UnauthenticatedError(SessionClientError):
    """The session is no longer authenticated."""

    def __init__(self, message: str = "Session is not authenticated", details: Optional[Dict[str, Any]] = None):
        super().__init__("UNAUTHENTICATED", message, details)


class InvalidTransitionError(SessionClientError):
    """Attempted session transition outside the allowed set."""

    def __init__(self, current: str, target: str):
        super().__init__(
            "INVALID_TRANSITION",
            f"Cannot move session from {current} to {target}",
            {"current": current, "target": target}
        )
