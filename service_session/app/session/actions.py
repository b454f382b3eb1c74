"""
Explicit user actions that move the session.
"""

import asyncio
from typing import Any, Dict

from shared.errors import ProviderAuthError, SessionClientError, UnauthenticatedError
from shared.logging import clear_context, get_logger, set_subject_context
from ..backend.client import BackendSessionClient
from ..identity.gateway import Identity, IdentityProviderGateway
from ..models import ProfileFields, UserProfile, UserRole
from ..storage.credential_store import CredentialStore, StoredCredential
from .state import Session, SessionStateMachine


class AuthActions:
    """Sign-in, sign-up, sign-out and profile round trips."""

    def __init__(self,
                 gateway: IdentityProviderGateway,
                 backend: BackendSessionClient,
                 store: CredentialStore,
                 state: SessionStateMachine):
        self.gateway = gateway
        self.backend = backend
        self.store = store
        self.state = state
        self.logger = get_logger("session.actions")
        # Held by explicit sign-in/out and by the observer while handling events
        self.lock = asyncio.Lock()

    async def sign_up(self, email: str, password: str, name: str, phone: str, role: UserRole) -> Session:
        """Create the provider account and the backend profile."""
        fields = ProfileFields(name=name, email=email, phone=phone, role=role)
        async with self.lock:
            before = self.state.session
            identity = await self.gateway.sign_up(email, password, name)
            try:
                profile = await self.backend.register(identity, fields)
                return await self._establish(identity, profile)
            except SessionClientError as e:
                await self._abandon_provider_sign_in("sign_up", e, before)
                raise

    async def sign_in(self, email: str, password: str, role: UserRole) -> Session:
        """Authenticate with the provider and fetch the backend profile for ``role``."""
        async with self.lock:
            before = self.state.session
            identity = await self.gateway.sign_in(email, password)
            try:
                profile = await self.backend.login(identity, role)
                return await self._establish(identity, profile)
            except SessionClientError as e:
                await self._abandon_provider_sign_in("sign_in", e, before)
                raise

    async def _establish(self, identity: Identity, profile: UserProfile) -> Session:
        token = await identity.get_token()
        await self.store.save_credential(StoredCredential(token, identity.uid, profile))
        set_subject_context(subject_id=identity.uid)
        self.logger.info("Signed in", user_id=profile.id, role=profile.role.value)
        return self.state.set_authenticated(profile, token)

    async def _abandon_provider_sign_in(self, operation: str, error: SessionClientError, before: Session) -> None:
        self.logger.warning(f"{operation} failed after provider sign-in", error_code=error.code)
        if before.is_authenticated:
            return
        try:
            await self.gateway.sign_out()
        except ProviderAuthError as e:
            self.logger.warning("Provider sign-out after failed sign-in failed", reason=e.reason.value)

    async def sign_out(self) -> Session:
        async with self.lock:
            try:
                await self.gateway.sign_out()
            except ProviderAuthError as e:
                self.logger.warning("Provider sign-out failed", reason=e.reason.value)
            try:
                await self.store.clear()
            finally:
                session = self.state.set_unauthenticated()
                clear_context()
                self.logger.info("Signed out")
            return session

    async def reset_password(self, email: str) -> None:
        await self.gateway.reset_password(email)

    async def refresh_profile(self) -> UserProfile:
        """Fetch the profile from the backend and cache it."""
        return await self._replace_profile(await self.backend.get_profile())

    async def update_profile(self, fields: Dict[str, Any]) -> UserProfile:
        """Send a profile update; the session only changes after the backend accepts it."""
        return await self._replace_profile(await self.backend.update_profile(fields))

    async def _replace_profile(self, profile: UserProfile) -> UserProfile:
        if not self.state.session.is_authenticated:
            raise UnauthenticatedError()
        await self.store.set_profile(profile)
        self.state.update_user(profile)
        return profile

    async def expire_session(self, cause: str = "refresh_failed") -> None:
        """Forced sign-out after the backend refused a refreshed token."""
        if self.state.session.is_authenticated:
            self.state.set_unauthenticated()
        self.logger.warning("Session expired", cause=cause)
        try:
            await self.gateway.sign_out()
        except ProviderAuthError as e:
            self.logger.warning("Provider sign-out after expiry failed", reason=e.reason.value)

    def on_token_refreshed(self, token: str) -> None:
        if self.state.session.is_authenticated:
            self.state.update_token(token)
