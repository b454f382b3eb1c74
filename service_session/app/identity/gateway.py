"""
Identity provider gateway contract.

Consumers see the provider through sign-in/up/out, token issuance and an
auth-state subscription. Each subscription has its own queue and delivery
task: events reach a subscriber one at a time, in emission order, and the
provider's current state is replayed as the first event once the gateway
has initialized.
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Optional, Union

from shared.logging import get_logger


class Identity(ABC):
    """A signed-in provider account."""

    @property
    @abstractmethod
    def uid(self) -> str:
        """Stable provider subject identifier."""

    @property
    @abstractmethod
    def email(self) -> Optional[str]:
        ...

    @property
    @abstractmethod
    def display_name(self) -> Optional[str]:
        ...

    @abstractmethod
    async def get_token(self, force_refresh: bool = False) -> str:
        """Return a bearer token, raising ProviderAuthError on failure."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} uid={self.uid!r}>"


AuthListener = Callable[[Optional[Identity]], Union[None, Awaitable[None]]]
Unsubscribe = Callable[[], None]


class _Subscription:
    """Ordered delivery of auth events to a single listener."""

    def __init__(self, listener: AuthListener, logger):
        self.listener = listener
        self.logger = logger
        self.queue: "asyncio.Queue[Optional[Identity]]" = asyncio.Queue()
        self.task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self):
        while True:
            identity = await self.queue.get()
            try:
                result = self.listener(identity)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error(
                    "Auth state listener failed",
                    listener=getattr(self.listener, "__qualname__", repr(self.listener)),
                    error=str(e)
                )
            finally:
                self.queue.task_done()

    def deliver(self, identity: Optional[Identity]):
        self.queue.put_nowait(identity)

    def close(self):
        self.task.cancel()


class IdentityProviderGateway(ABC):
    """Narrow interface over an external identity provider."""

    def __init__(self):
        self.logger = get_logger("session.identity")
        self._subscriptions: List[_Subscription] = []
        self._current: Optional[Identity] = None
        self._ready = False

    async def initialize(self) -> None:
        """Load provider state; subscribers receive nothing until this completes."""
        self._mark_ready()

    @abstractmethod
    async def sign_up(self, email: str, password: str, display_name: str) -> Identity:
        ...

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> Identity:
        ...

    @abstractmethod
    async def sign_out(self) -> None:
        ...

    @abstractmethod
    async def reset_password(self, email: str) -> None:
        ...

    @property
    def ready(self) -> bool:
        return self._ready

    def current_identity(self) -> Optional[Identity]:
        return self._current

    def subscribe(self, on_change: AuthListener) -> Unsubscribe:
        """Register a listener; must be called from a running event loop.

        The current state is replayed to the new listener immediately if the
        gateway is ready, otherwise as soon as initialization completes.
        """
        subscription = _Subscription(on_change, self.logger)
        self._subscriptions.append(subscription)
        if self._ready:
            subscription.deliver(self._current)

        def unsubscribe():
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
            subscription.close()

        return unsubscribe

    def _mark_ready(self) -> None:
        """Finish initialization and replay the state to early subscribers."""
        if self._ready:
            return
        self._ready = True
        self.logger.info("Identity provider ready", signed_in=self._current is not None)
        for subscription in list(self._subscriptions):
            subscription.deliver(self._current)

    def _set_current(self, identity: Optional[Identity]) -> None:
        """Replace the current identity and notify every subscriber."""
        self._current = identity
        if not self._ready:
            return
        for subscription in list(self._subscriptions):
            subscription.deliver(identity)

    async def drain(self) -> None:
        """Wait until every subscriber has handled all queued events."""
        while True:
            for subscription in list(self._subscriptions):
                await subscription.queue.join()
            # A handler may have emitted to a subscriber drained earlier
            if all(s.queue.empty() for s in self._subscriptions):
                return

    async def close(self) -> None:
        """Cancel every subscription."""
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            subscription.close()
        await asyncio.gather(*(s.task for s in subscriptions), return_exceptions=True)
