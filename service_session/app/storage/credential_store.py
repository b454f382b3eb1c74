"""
Secure credential store.

Persists the session token, the provider subject id and the cached user
profile under three namespaced keys. Multi-key sequences hold the store lock
so no in-process reader observes a token without its subject id.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError

from shared.errors import StorageError
from shared.logging import get_logger
from ..models import UserProfile
from .backends import KeyValueBackend

AUTH_TOKEN_KEY = "authToken"
PROVIDER_UID_KEY = "providerUid"
USER_DATA_KEY = "userData"


@dataclass(frozen=True)
class StoredCredential:
    """Persisted session tuple. Any field may be absent after a partial write."""
    token: Optional[str] = None
    provider_subject_id: Optional[str] = None
    profile: Optional[UserProfile] = None

    @property
    def restorable(self) -> bool:
        return bool(self.token) and self.profile is not None


class CredentialStore:
    """Namespaced three-key credential persistence over a KeyValueBackend."""

    def __init__(self, backend: KeyValueBackend, namespace: str = "marketplace"):
        self.backend = backend
        self.namespace = namespace
        self.logger = get_logger("session.storage")
        self._lock = asyncio.Lock()

    def _key(self, name: str) -> str:
        return f"{self.namespace}.{name}"

    async def _write(self, name: str, value: str) -> None:
        try:
            await self.backend.set(self._key(name), value)
        except Exception as e:
            self.logger.error("Credential write failed", key=name, error=str(e))
            raise StorageError(f"Failed to write {name}", {"key": name}) from e

    async def _read(self, name: str) -> Optional[str]:
        try:
            return await self.backend.get(self._key(name))
        except Exception as e:
            # Read failures degrade to absent
            self.logger.warning("Credential read failed", key=name, error=str(e))
            return None

    async def _remove(self, name: str) -> None:
        try:
            await self.backend.delete(self._key(name))
        except Exception as e:
            self.logger.error("Credential delete failed", key=name, error=str(e))
            raise StorageError(f"Failed to delete {name}", {"key": name}) from e

    async def _read_profile(self) -> Optional[UserProfile]:
        raw = await self._read(USER_DATA_KEY)
        if not raw:
            return None
        try:
            return UserProfile.from_cache(raw)
        except ValidationError as e:
            self.logger.warning("Cached profile is unreadable", error=str(e))
            return None

    async def set_token(self, token: str) -> None:
        async with self._lock:
            await self._write(AUTH_TOKEN_KEY, token)

    async def get_token(self) -> Optional[str]:
        async with self._lock:
            return await self._read(AUTH_TOKEN_KEY)

    async def set_provider_subject_id(self, subject_id: str) -> None:
        async with self._lock:
            await self._write(PROVIDER_UID_KEY, subject_id)

    async def get_provider_subject_id(self) -> Optional[str]:
        async with self._lock:
            return await self._read(PROVIDER_UID_KEY)

    async def set_profile(self, profile: UserProfile) -> None:
        async with self._lock:
            await self._write(USER_DATA_KEY, profile.to_cache())

    async def get_profile(self) -> Optional[UserProfile]:
        async with self._lock:
            return await self._read_profile()

    async def save_credential(self, credential: StoredCredential) -> None:
        """Write token, subject id and profile.

        A failure part way through removes whatever was written and raises
        StorageError.
        """
        if not credential.token or not credential.provider_subject_id or credential.profile is None:
            raise StorageError("Refusing to store an incomplete credential")

        async with self._lock:
            try:
                await self._write(AUTH_TOKEN_KEY, credential.token)
                await self._write(PROVIDER_UID_KEY, credential.provider_subject_id)
                await self._write(USER_DATA_KEY, credential.profile.to_cache())
            except StorageError:
                await self._clear_best_effort()
                raise

        self.logger.info("Credential stored", subject_id=credential.provider_subject_id)

    async def load_credential(self) -> StoredCredential:
        async with self._lock:
            return StoredCredential(
                token=await self._read(AUTH_TOKEN_KEY),
                provider_subject_id=await self._read(PROVIDER_UID_KEY),
                profile=await self._read_profile(),
            )

    async def clear(self) -> None:
        """Delete all three keys; every key is attempted before raising."""
        async with self._lock:
            first_error: Optional[StorageError] = None
            for name in (AUTH_TOKEN_KEY, PROVIDER_UID_KEY, USER_DATA_KEY):
                try:
                    await self._remove(name)
                except StorageError as e:
                    first_error = first_error or e
            if first_error is not None:
                raise first_error

        self.logger.info("Credential cleared")

    async def _clear_best_effort(self) -> None:
        for name in (AUTH_TOKEN_KEY, PROVIDER_UID_KEY, USER_DATA_KEY):
            try:
                await self._remove(name)
            except StorageError:
                self.logger.warning("Cleanup after failed write left a key behind", key=name)
