"""
Continuous synchronization with identity provider events.
"""

import asyncio
from typing import Callable, Optional

from shared.errors import StorageError
from shared.logging import get_logger
from shared.metrics import SessionMetrics, get_session_metrics
from ..identity.gateway import Identity, IdentityProviderGateway
from ..storage.credential_store import CredentialStore
from .state import SessionStateMachine


class ObserverSynchronizer:
    """Keeps the session aligned with provider events after restoration.

    Subscribes independently of the RestorationCoordinator. The first event
    delivered on this subscription is the provider's replayed state, which
    restoration owns, so it is skipped through a one-shot latch.
    """

    def __init__(self,
                 gateway: IdentityProviderGateway,
                 store: CredentialStore,
                 state: SessionStateMachine,
                 metrics: Optional[SessionMetrics] = None,
                 lock: Optional[asyncio.Lock] = None):
        self.gateway = gateway
        self.store = store
        self.state = state
        self.metrics = metrics or get_session_metrics()
        self.lock = lock or asyncio.Lock()
        self.logger = get_logger("session.observer")
        self._first_event_seen = False
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def running(self) -> bool:
        return self._unsubscribe is not None

    def start(self) -> None:
        if self._unsubscribe is not None:
            return
        self._first_event_seen = False
        self._unsubscribe = self.gateway.subscribe(self._on_change)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def _on_change(self, identity: Optional[Identity]) -> None:
        if not self._first_event_seen:
            self._first_event_seen = True
            return

        # Later events wait for restoration to settle
        await self.state.wait_until_resolved()

        try:
            async with self.lock:
                if identity is not None:
                    await self._on_signed_in(identity)
                else:
                    await self._on_signed_out()
        except Exception as e:
            self.logger.error("Auth state sync failed", signed_in=identity is not None, error=str(e))

    async def _on_signed_in(self, identity: Identity) -> None:
        if self.state.session.is_authenticated:
            return
        if self.gateway.current_identity() is not identity:
            # Superseded by a later sign-out or sign-in
            return

        credential = await self.store.load_credential()
        if credential.profile is None:
            return
        if credential.provider_subject_id and credential.provider_subject_id != identity.uid:
            self.logger.warning("Cached profile belongs to another provider account")
            return

        token = await identity.get_token()
        if self.gateway.current_identity() is not identity:
            return
        await self.store.set_token(token)
        if not self.state.session.is_authenticated:
            self.state.set_authenticated(credential.profile, token)
            self.logger.info("Session recovered from provider event", user_id=credential.profile.id)

    async def _on_signed_out(self) -> None:
        if not self.state.session.is_authenticated:
            return
        if self.gateway.current_identity() is not None:
            return

        self.metrics.record_forced_sign_out("provider_signed_out")
        try:
            await self.store.clear()
        except StorageError as e:
            self.logger.error("Credential not cleared on remote sign-out", error=e.message)
        self.state.set_unauthenticated()
        self.logger.info("Session ended by provider")
