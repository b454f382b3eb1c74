"""
User-facing messages for session errors.

Provider text is never shown; errors are mapped by reason or code.
"""

from shared.errors import (
    BackendRequestError,
    ProviderAuthError,
    ProviderAuthReason,
    RoleMismatch,
    StorageError,
    UnauthenticatedError,
)

GENERIC_MESSAGE = "Something went wrong. Please try again."

PROVIDER_MESSAGES = {
    ProviderAuthReason.INVALID_CREDENTIAL: "Invalid credentials. Please check your email and password.",
    ProviderAuthReason.USER_NOT_FOUND: "No account found with this email. Please sign up first.",
    ProviderAuthReason.WRONG_PASSWORD: "Incorrect password. Please try again or reset your password.",
    ProviderAuthReason.EMAIL_ALREADY_IN_USE: "This email is already registered. Would you like to sign in instead?",
    ProviderAuthReason.WEAK_PASSWORD: "Password is too weak. Please use at least 6 characters.",
    ProviderAuthReason.TOO_MANY_REQUESTS: "Too many failed attempts. Please try again later or reset your password.",
    ProviderAuthReason.NETWORK_ERROR: "Network error. Please check your internet connection.",
    ProviderAuthReason.DISABLED: "This account has been disabled. Please contact support.",
    ProviderAuthReason.INVALID_EMAIL: "Invalid email address. Please check and try again.",
    ProviderAuthReason.OPERATION_NOT_ALLOWED: "Sign in is currently disabled. Please contact support.",
    ProviderAuthReason.UNKNOWN: "Unable to authenticate. Please try again.",
}

ROLE_LABELS = {
    "customer": "customer",
    "provider": "service provider",
}


def role_mismatch_message(error: RoleMismatch) -> str:
    actual = ROLE_LABELS.get(error.actual, error.actual)
    expected = ROLE_LABELS.get(error.expected, error.expected)
    return (
        f"This account is registered as a {actual}, but you're trying to sign in as a {expected}. "
        "Please select the correct role or create a new account."
    )


def user_message(error: BaseException) -> str:
    """Text to show the user for an error raised by a session operation."""
    if isinstance(error, ProviderAuthError):
        return PROVIDER_MESSAGES.get(error.reason, PROVIDER_MESSAGES[ProviderAuthReason.UNKNOWN])
    if isinstance(error, RoleMismatch):
        return role_mismatch_message(error)
    if isinstance(error, UnauthenticatedError):
        return "Your session has expired. Please sign in again."
    if isinstance(error, StorageError):
        return "Unable to save your session on this device. Please try again."
    if isinstance(error, BackendRequestError):
        return error.message
    return GENERIC_MESSAGE
