"""
Unit tests for CredentialStore and key/value backends.
"""

import json

import pytest

from service_session.app.storage.backends import (
    FileKeyValueBackend,
    KeyringKeyValueBackend,
    MemoryKeyValueBackend,
    get_key_value_backend,
)
from service_session.app.storage.credential_store import CredentialStore, StoredCredential
from shared.errors import StorageError
from shared.test_helpers import RecordingKeyValueBackend, test_data_factory


class TestCredentialStore:
    """Test cases for CredentialStore."""

    @pytest.fixture
    def backend(self):
        return RecordingKeyValueBackend()

    @pytest.fixture
    def store(self, backend):
        return CredentialStore(backend, namespace="marketplace")

    @pytest.fixture
    def profile(self):
        return test_data_factory.create_test_profiles()[0]

    @pytest.mark.asyncio
    async def test_token_round_trip(self, store):
        """Test token is read back unchanged."""
        await store.set_token("t1")

        assert await store.get_token() == "t1"

    @pytest.mark.asyncio
    async def test_subject_id_round_trip(self, store):
        """Test provider subject id is read back unchanged."""
        await store.set_provider_subject_id("uid-1")

        assert await store.get_provider_subject_id() == "uid-1"

    @pytest.mark.asyncio
    async def test_profile_round_trip(self, store, profile):
        """Test cached profile is read back equal."""
        await store.set_profile(profile)

        assert await store.get_profile() == profile

    @pytest.mark.asyncio
    async def test_keys_are_namespaced(self, store, backend, profile):
        """Test the three logical keys live under the namespace."""
        await store.save_credential(StoredCredential("t1", "uid-1", profile))

        assert set(backend.snapshot()) == {
            "marketplace.authToken",
            "marketplace.providerUid",
            "marketplace.userData",
        }
        assert json.loads(backend.snapshot()["marketplace.userData"])["id"] == profile.id

    @pytest.mark.asyncio
    async def test_save_and_load_credential(self, store, profile):
        """Test full credential round trip."""
        await store.save_credential(StoredCredential("t1", "uid-1", profile))

        credential = await store.load_credential()

        assert credential.token == "t1"
        assert credential.provider_subject_id == "uid-1"
        assert credential.profile == profile
        assert credential.restorable

    @pytest.mark.asyncio
    async def test_save_rejects_incomplete_credential(self, store, backend):
        """Test incomplete credentials are never written."""
        with pytest.raises(StorageError):
            await store.save_credential(StoredCredential("t1", None, None))

        assert backend.writes == []

    @pytest.mark.asyncio
    async def test_failed_write_mid_sequence_cleans_up(self, store, backend, profile):
        """Test a failure on the last key removes the keys already written."""
        backend.fail_set.add("userData")

        with pytest.raises(StorageError):
            await store.save_credential(StoredCredential("t1", "uid-1", profile))

        assert backend.snapshot() == {}
        credential = await store.load_credential()
        assert credential.token is None
        assert credential.provider_subject_id is None

    @pytest.mark.asyncio
    async def test_read_failure_is_absent(self, store, backend, profile):
        """Test read errors degrade to absent values."""
        await store.save_credential(StoredCredential("t1", "uid-1", profile))
        backend.fail_get.add("authToken")

        assert await store.get_token() is None
        credential = await store.load_credential()
        assert credential.token is None
        assert credential.profile == profile
        assert not credential.restorable

    @pytest.mark.asyncio
    async def test_unreadable_profile_is_absent(self, store, backend):
        """Test corrupt profile JSON is treated as missing."""
        await backend.set("marketplace.userData", "{not json")

        assert await store.get_profile() is None

    @pytest.mark.asyncio
    async def test_clear_removes_all_keys(self, store, backend, profile):
        """Test clear deletes token, subject id and profile."""
        await store.save_credential(StoredCredential("t1", "uid-1", profile))

        await store.clear()

        assert backend.snapshot() == {}

    @pytest.mark.asyncio
    async def test_clear_attempts_every_key_before_raising(self, store, backend, profile):
        """Test one failing delete does not stop the others."""
        await store.save_credential(StoredCredential("t1", "uid-1", profile))
        backend.fail_delete.add("authToken")

        with pytest.raises(StorageError):
            await store.clear()

        assert backend.snapshot() == {"marketplace.authToken": "t1"}

    @pytest.mark.asyncio
    async def test_write_failure_is_surfaced(self, store, backend):
        """Test single-key write errors reach the caller."""
        backend.fail_set.add("authToken")

        with pytest.raises(StorageError):
            await store.set_token("t1")


class TestKeyValueBackends:
    """Test cases for the concrete backends."""

    @pytest.mark.asyncio
    async def test_memory_backend(self):
        """Test memory backend set/get/delete."""
        backend = MemoryKeyValueBackend()

        await backend.set("k", "v")
        assert await backend.get("k") == "v"

        await backend.delete("k")
        await backend.delete("k")
        assert await backend.get("k") is None

    @pytest.mark.asyncio
    async def test_file_backend_persists_across_instances(self, tmp_path):
        """Test file backend survives a new instance on the same path."""
        path = tmp_path / "session" / "credentials.json"
        await FileKeyValueBackend(str(path)).set("marketplace.authToken", "t1")

        reopened = FileKeyValueBackend(str(path))

        assert await reopened.get("marketplace.authToken") == "t1"
        await reopened.delete("marketplace.authToken")
        assert await reopened.get("marketplace.authToken") is None
        assert json.loads(path.read_text()) == {}

    @pytest.mark.asyncio
    async def test_file_backend_missing_file(self, tmp_path):
        """Test reading before any write returns None."""
        backend = FileKeyValueBackend(str(tmp_path / "absent.json"))

        assert await backend.get("anything") is None

    @pytest.mark.asyncio
    async def test_file_backend_rejects_non_object(self, tmp_path):
        """Test a corrupt document raises instead of being overwritten."""
        path = tmp_path / "credentials.json"
        path.write_text("[]")

        with pytest.raises(ValueError):
            await FileKeyValueBackend(str(path)).get("k")

    @pytest.mark.asyncio
    async def test_keyring_backend_delegates(self, monkeypatch):
        """Test keyring backend calls the keyring API with its service name."""
        saved = {}
        monkeypatch.setattr("keyring.set_password", lambda service, key, value: saved.__setitem__((service, key), value))
        monkeypatch.setattr("keyring.get_password", lambda service, key: saved.get((service, key)))
        monkeypatch.setattr("keyring.delete_password", lambda service, key: saved.pop((service, key)))

        backend = KeyringKeyValueBackend("svc")
        await backend.set("k", "v")

        assert saved == {("svc", "k"): "v"}
        assert await backend.get("k") == "v"
        await backend.delete("k")
        assert saved == {}

    def test_factory(self, tmp_path):
        """Test backend factory selection."""
        assert isinstance(get_key_value_backend("memory"), MemoryKeyValueBackend)
        assert isinstance(get_key_value_backend("file", path=str(tmp_path / "c.json")), FileKeyValueBackend)
        assert isinstance(get_key_value_backend("keyring", service_name="svc"), KeyringKeyValueBackend)
        with pytest.raises(ValueError):
            get_key_value_backend("sqlite")
