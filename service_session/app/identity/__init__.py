"""Identity provider access."""

from .gateway import Identity, IdentityProviderGateway, AuthListener, Unsubscribe
from .firebase import FirebaseIdentity, FirebaseIdentityGateway, classify_provider_error

__all__ = [
    "Identity",
    "IdentityProviderGateway",
    "AuthListener",
    "Unsubscribe",
    "FirebaseIdentity",
    "FirebaseIdentityGateway",
    "classify_provider_error",
]
