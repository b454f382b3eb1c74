"""Credential persistence."""

from .backends import (
    KeyValueBackend,
    MemoryKeyValueBackend,
    FileKeyValueBackend,
    KeyringKeyValueBackend,
    get_key_value_backend,
)
from .credential_store import CredentialStore, StoredCredential

__all__ = [
    "KeyValueBackend",
    "MemoryKeyValueBackend",
    "FileKeyValueBackend",
    "KeyringKeyValueBackend",
    "get_key_value_backend",
    "CredentialStore",
    "StoredCredential",
]
