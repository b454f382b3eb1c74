"""
Startup restoration.

Waits for the identity provider's first auth-state event so a returning user
never sees a signed-out UI while the provider is still initializing, then
reconciles that event with the persisted credential.
"""

import asyncio
from typing import Optional

from shared.errors import StorageError
from shared.logging import get_logger
from ..identity.gateway import Identity, IdentityProviderGateway
from ..storage.credential_store import CredentialStore
from .state import Session, SessionStateMachine


class RestorationCoordinator:
    """Resolves the Restoring session exactly once."""

    def __init__(self, gateway: IdentityProviderGateway, store: CredentialStore, state: SessionStateMachine):
        self.gateway = gateway
        self.store = store
        self.state = state
        self.logger = get_logger("session.restoration")
        self._started = False

    async def restore(self) -> Session:
        if self._started:
            raise RuntimeError("Session restoration already ran")
        self._started = True

        identity = await self._first_event()
        try:
            if identity is None:
                self.logger.info("No provider identity at startup")
                return self.state.set_unauthenticated()
            return await self._restore_identity(identity)
        except Exception as e:
            self.logger.error("Session restoration failed", error=str(e))
            return self.state.set_unauthenticated()

    async def _first_event(self) -> Optional[Identity]:
        """Subscribe, take the first delivered event, unsubscribe."""
        first_event: asyncio.Future = asyncio.get_running_loop().create_future()

        def on_change(identity: Optional[Identity]):
            # Only event #1 belongs to restoration
            if not first_event.done():
                first_event.set_result(identity)

        unsubscribe = self.gateway.subscribe(on_change)
        try:
            return await first_event
        finally:
            unsubscribe()

    async def _restore_identity(self, identity: Identity) -> Session:
        credential = await self.store.load_credential()
        if not credential.restorable:
            # No implicit backend login from a bare provider identity
            self.logger.info(
                "Provider identity without local session",
                has_token=bool(credential.token),
                has_profile=credential.profile is not None
            )
            return self.state.set_unauthenticated()
        if credential.provider_subject_id and credential.provider_subject_id != identity.uid:
            self.logger.warning("Stored session belongs to another provider account")
            return self.state.set_unauthenticated()

        token = await identity.get_token(force_refresh=False)
        if token != credential.token:
            try:
                await self.store.set_token(token)
            except StorageError as e:
                # The next authorized request refreshes again
                self.logger.warning("Restored token not persisted", error=e.message)

        self.logger.info("Session restored", user_id=credential.profile.id)
        return self.state.set_authenticated(credential.profile, token)
