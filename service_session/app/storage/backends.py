"""
Key/value persistence backends for credentials.

Every backend exposes the same async set/get/delete contract so the
credential store behaves identically whether the medium is process memory,
a plain file on disk or the OS keychain.
"""

import asyncio
import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

import keyring
from keyring.errors import PasswordDeleteError

from shared.logging import get_logger


class KeyValueBackend(ABC):
    """Abstract single-key persistence."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the value stored under key, or None."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove key. Deleting a missing key is not an error."""


class MemoryKeyValueBackend(KeyValueBackend):
    """In-memory backend for tests and ephemeral sessions."""

    def __init__(self) -> None:
        self._values: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            self._values[key] = value

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            return self._values.get(key)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._values.pop(key, None)

    def snapshot(self) -> Dict[str, str]:
        """Copy of the stored values."""
        return dict(self._values)


class FileKeyValueBackend(KeyValueBackend):
    """Plain persistent storage: a single JSON document on disk.

    Writes go to a temporary file in the same directory which then replaces
    the document, so a reader sees either the old or the new document.
    """

    def __init__(self, path: str) -> None:
        self.path = Path(path).expanduser()
        self._lock = asyncio.Lock()
        self.logger = get_logger("session.storage.file")

    def _read_document(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        with self.path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        if not isinstance(data, dict):
            raise ValueError(f"Credential file {self.path} is not a JSON object")
        return data

    def _write_document(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".credentials-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _set(self, key: str, value: str) -> None:
        data = self._read_document()
        data[key] = value
        self._write_document(data)

    def _delete(self, key: str) -> None:
        data = self._read_document()
        if key in data:
            del data[key]
            self._write_document(data)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            await asyncio.to_thread(self._set, key, value)

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            data = await asyncio.to_thread(self._read_document)
        return data.get(key)

    async def delete(self, key: str) -> None:
        async with self._lock:
            await asyncio.to_thread(self._delete, key)


class KeyringKeyValueBackend(KeyValueBackend):
    """OS keychain backed storage via the keyring library."""

    def __init__(self, service_name: str = "marketplace-session") -> None:
        self.service_name = service_name

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(keyring.set_password, self.service_name, key, value)

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(keyring.get_password, self.service_name, key)

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(keyring.delete_password, self.service_name, key)
        except PasswordDeleteError:
            # keyring raises for a missing entry
            pass


def get_key_value_backend(backend: str = "memory", **kwargs) -> KeyValueBackend:
    """Factory for key/value backends.

    Parameters
    ----------
    backend : str
        "memory", "file" or "keyring".
    **kwargs
        ``path`` for the file backend, ``service_name`` for keyring.
    """
    if backend == "memory":
        return MemoryKeyValueBackend()
    if backend == "file":
        path = kwargs.get("path") or os.path.join("~", ".marketplace", "credentials.json")
        return FileKeyValueBackend(path)
    if backend == "keyring":
        return KeyringKeyValueBackend(service_name=kwargs.get("service_name", "marketplace-session"))
    raise ValueError(f"Unknown key/value backend: {backend}")
