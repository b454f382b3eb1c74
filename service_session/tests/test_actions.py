"""
Unit tests for AuthActions.
"""

import httpx
import pytest

from service_session.app.backend.client import BackendSessionClient
from service_session.app.models import UserRole
from service_session.app.session.actions import AuthActions
from service_session.app.session.observer import ObserverSynchronizer
from service_session.app.session.state import SessionStateMachine, SessionStatus
from service_session.app.storage.credential_store import CredentialStore, StoredCredential
from shared.errors import (
    BackendRequestError,
    ProviderAuthError,
    ProviderAuthReason,
    RoleMismatch,
    StorageError,
    UnauthenticatedError,
)
from shared.metrics import SessionMetrics
from shared.test_helpers import (
    FakeIdentityProvider,
    MockBackendServer,
    RecordingKeyValueBackend,
    test_data_factory,
)


class TestAuthActions:
    """Test cases for AuthActions."""

    @pytest.fixture
    def server(self):
        return MockBackendServer()

    @pytest.fixture
    def kv_backend(self):
        return RecordingKeyValueBackend()

    @pytest.fixture
    def store(self, kv_backend):
        return CredentialStore(kv_backend)

    @pytest.fixture
    def state(self):
        state = SessionStateMachine(SessionMetrics())
        state.set_unauthenticated()
        return state

    @pytest.fixture
    def gateway(self):
        gateway = FakeIdentityProvider()
        gateway.add_account("a@b.com", "secret1", uid="uid-1", display_name="Ama Mensah")
        gateway.add_account("kofi@tailors.test", "secret2", uid="uid-2", display_name="Kofi Boateng")
        return gateway

    @pytest.fixture
    def backend(self, server, store, gateway):
        return BackendSessionClient(
            "https://api.example.test",
            store,
            gateway,
            transport=server.transport(),
            metrics=SessionMetrics()
        )

    @pytest.fixture
    def actions(self, gateway, backend, store, state):
        actions = AuthActions(gateway, backend, store, state)
        backend.on_session_expired = actions.expire_session
        backend.on_token_refreshed = actions.on_token_refreshed
        return actions

    @pytest.fixture
    def customer(self):
        return test_data_factory.create_test_profiles()[0]

    @pytest.fixture
    def provider(self):
        return test_data_factory.create_test_profiles()[1]

    @pytest.mark.asyncio
    async def test_sign_in_success(self, actions, server, store, gateway, customer):
        """Test sign-in persists the credential then authenticates."""
        await gateway.initialize()
        server.queue(httpx.Response(200, json=test_data_factory.profile_payload(customer)))

        session = await actions.sign_in("a@b.com", "secret1", UserRole.CUSTOMER)

        identity = gateway.identities["uid-1"]
        assert session.status == SessionStatus.AUTHENTICATED
        assert session.user == customer
        assert session.token == identity.token
        credential = await store.load_credential()
        assert credential.token == identity.token
        assert credential.provider_subject_id == "uid-1"
        assert credential.profile == customer

    @pytest.mark.asyncio
    async def test_sign_in_role_mismatch(self, actions, server, kv_backend, state, gateway, provider):
        """Test a role mismatch leaves store and session untouched and signs out of the provider."""
        await gateway.initialize()
        server.queue(httpx.Response(200, json=test_data_factory.profile_payload(provider)))

        with pytest.raises(RoleMismatch) as exc_info:
            await actions.sign_in("kofi@tailors.test", "secret2", UserRole.CUSTOMER)

        assert exc_info.value.actual == "provider"
        assert kv_backend.writes == []
        assert state.status == SessionStatus.UNAUTHENTICATED
        assert gateway.sign_out_calls == 1
        assert gateway.current_identity() is None

    @pytest.mark.asyncio
    async def test_sign_in_wrong_password(self, actions, server, kv_backend, state, gateway):
        """Test provider rejection makes no backend call."""
        await gateway.initialize()

        with pytest.raises(ProviderAuthError) as exc_info:
            await actions.sign_in("a@b.com", "nope", UserRole.CUSTOMER)

        assert exc_info.value.reason == ProviderAuthReason.WRONG_PASSWORD
        assert server.requests == []
        assert kv_backend.writes == []
        assert state.status == SessionStatus.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_sign_in_backend_failure(self, actions, server, kv_backend, state, gateway):
        """Test a backend error surfaces and nothing is persisted."""
        await gateway.initialize()
        server.queue(httpx.Response(500, json={"message": "Database unavailable"}))

        with pytest.raises(BackendRequestError) as exc_info:
            await actions.sign_in("a@b.com", "secret1", UserRole.CUSTOMER)

        assert exc_info.value.message == "Database unavailable"
        assert kv_backend.writes == []
        assert state.status == SessionStatus.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_sign_in_storage_failure(self, actions, server, kv_backend, state, gateway, customer):
        """Test a failed persist leaves the session Unauthenticated and the store empty."""
        await gateway.initialize()
        server.queue(httpx.Response(200, json=test_data_factory.profile_payload(customer)))
        kv_backend.fail_set.add("userData")

        with pytest.raises(StorageError):
            await actions.sign_in("a@b.com", "secret1", UserRole.CUSTOMER)

        assert state.status == SessionStatus.UNAUTHENTICATED
        assert kv_backend.snapshot() == {}

    @pytest.mark.asyncio
    async def test_sign_up_registers_profile(self, actions, server, store, gateway, customer):
        """Test sign-up creates the account and the backend profile."""
        await gateway.initialize()
        server.queue(httpx.Response(201, json=test_data_factory.profile_payload(customer)))

        session = await actions.sign_up("new@b.com", "secret1", "Ama Mensah", "+233200000001", UserRole.CUSTOMER)

        assert session.is_authenticated
        assert "new@b.com" in gateway.accounts
        assert server.requests[0].url.path == "/api/auth/register"
        assert await store.get_profile() == customer

    @pytest.mark.asyncio
    async def test_sign_up_email_in_use(self, actions, server, gateway):
        """Test an existing email is reported by the provider."""
        await gateway.initialize()

        with pytest.raises(ProviderAuthError) as exc_info:
            await actions.sign_up("a@b.com", "secret1", "Ama", "", UserRole.CUSTOMER)

        assert exc_info.value.reason == ProviderAuthReason.EMAIL_ALREADY_IN_USE
        assert server.requests == []

    @pytest.mark.asyncio
    async def test_sign_out_clears_everything(self, actions, server, store, kv_backend, state, gateway, customer):
        """Test sign-out ends the provider session, the store and the session."""
        await gateway.initialize()
        server.queue(httpx.Response(200, json=test_data_factory.profile_payload(customer)))
        await actions.sign_in("a@b.com", "secret1", UserRole.CUSTOMER)

        session = await actions.sign_out()

        assert session.status == SessionStatus.UNAUTHENTICATED
        assert kv_backend.snapshot() == {}
        assert gateway.current_identity() is None

    @pytest.mark.asyncio
    async def test_sign_out_storage_failure_still_unauthenticates(self, actions, kv_backend, state, store, customer):
        """Test the session ends even when the store cannot be cleared."""
        await store.save_credential(StoredCredential("t1", "uid-1", customer))
        state.set_authenticated(customer, "t1")
        kv_backend.fail_delete.add("authToken")

        with pytest.raises(StorageError):
            await actions.sign_out()

        assert state.status == SessionStatus.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_reset_password(self, actions, gateway):
        """Test reset requests are passed to the provider."""
        await actions.reset_password("a@b.com")

        assert gateway.reset_requests == ["a@b.com"]

    @pytest.mark.asyncio
    async def test_update_profile(self, actions, server, store, state, customer):
        """Test an accepted update replaces the cached and session profile."""
        await store.save_credential(StoredCredential("t1", "uid-1", customer))
        state.set_authenticated(customer, "t1")
        updated = customer.model_copy(update={"name": "Ama K. Mensah"})
        server.queue(httpx.Response(200, json=test_data_factory.profile_payload(updated)))

        profile = await actions.update_profile({"name": "Ama K. Mensah"})

        assert profile == updated
        assert state.session.user == updated
        assert state.session.token == "t1"
        assert await store.get_profile() == updated

    @pytest.mark.asyncio
    async def test_update_profile_rejected(self, actions, server, store, state, customer):
        """Test a rejected update leaves the profile unchanged."""
        await store.save_credential(StoredCredential("t1", "uid-1", customer))
        state.set_authenticated(customer, "t1")
        server.queue(httpx.Response(422, json={"message": "Phone number is invalid"}))

        with pytest.raises(BackendRequestError):
            await actions.update_profile({"phone": "x"})

        assert state.session.user == customer
        assert await store.get_profile() == customer

    @pytest.mark.asyncio
    async def test_refresh_profile_requires_session(self, actions, server, customer):
        """Test a profile fetched while Unauthenticated is not cached."""
        server.queue(httpx.Response(200, json=test_data_factory.profile_payload(customer)))

        with pytest.raises(UnauthenticatedError):
            await actions.refresh_profile()

    @pytest.mark.asyncio
    async def test_refresh_failure_expires_session(self, actions, server, store, kv_backend, state, gateway, customer):
        """Test a failed token refresh ends the session and the provider session."""
        await gateway.initialize()
        server.queue(
            httpx.Response(200, json=test_data_factory.profile_payload(customer)),
            httpx.Response(401),
        )
        await actions.sign_in("a@b.com", "secret1", UserRole.CUSTOMER)
        gateway.identities["uid-1"].refresh_error = ProviderAuthError(ProviderAuthReason.NETWORK_ERROR)

        with pytest.raises(UnauthenticatedError):
            await actions.backend.authorized_request("/api/orders")

        assert state.status == SessionStatus.UNAUTHENTICATED
        assert kv_backend.snapshot() == {}
        assert gateway.current_identity() is None

    @pytest.mark.asyncio
    async def test_refreshed_token_updates_session(self, actions, server, state, gateway, customer):
        """Test a successful refresh rotates the session token."""
        await gateway.initialize()
        server.queue(
            httpx.Response(200, json=test_data_factory.profile_payload(customer)),
            httpx.Response(401),
            httpx.Response(200, json={"orders": []}),
        )
        await actions.sign_in("a@b.com", "secret1", UserRole.CUSTOMER)
        before = state.session.token

        await actions.backend.authorized_request("/api/orders")

        assert state.session.token == gateway.identities["uid-1"].token
        assert state.session.token != before

    @pytest.mark.asyncio
    async def test_role_mismatch_with_observer_and_cached_profile(
            self, actions, server, store, kv_backend, state, gateway, provider):
        """Test the observer cannot adopt a sign-in that the backend rejects."""
        await store.save_credential(StoredCredential("t-old", "uid-2", provider))
        observer = ObserverSynchronizer(gateway, store, state, SessionMetrics(), lock=actions.lock)
        observer.start()
        await gateway.initialize()
        await gateway.drain()
        stored_before = kv_backend.snapshot()
        server.delay = 0.01
        server.queue(httpx.Response(200, json=test_data_factory.profile_payload(provider)))

        with pytest.raises(RoleMismatch):
            await actions.sign_in("kofi@tailors.test", "secret2", UserRole.CUSTOMER)
        await gateway.drain()

        assert state.status == SessionStatus.UNAUTHENTICATED
        assert kv_backend.snapshot() == stored_before
        assert gateway.current_identity() is None
        assert gateway.sign_out_calls == 1
        assert gateway.identities["uid-2"].get_token_calls == [False]
        observer.stop()
