"""
Session state machine.

Holds the reconciled ``{status, user, token}`` snapshot. Writers replace the
whole snapshot; readers always see a complete one.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from shared.errors import InvalidTransitionError
from shared.logging import get_logger
from shared.metrics import SessionMetrics, get_session_metrics
from ..models import UserProfile


class SessionStatus(str, Enum):
    """Session states."""
    UNAUTHENTICATED = "unauthenticated"
    RESTORING = "restoring"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class Session:
    status: SessionStatus
    user: Optional[UserProfile] = None
    token: Optional[str] = None

    def __post_init__(self):
        complete = self.user is not None and bool(self.token)
        if (self.status == SessionStatus.AUTHENTICATED) != complete:
            raise ValueError("Session must carry both user and token exactly when authenticated")

    @property
    def is_authenticated(self) -> bool:
        return self.status == SessionStatus.AUTHENTICATED


SessionListener = Callable[[Session, Session], None]


class SessionStateMachine:
    """Single-writer container for the current Session."""

    def __init__(self, metrics: Optional[SessionMetrics] = None):
        self._session = Session(SessionStatus.RESTORING)
        self._listeners: List[SessionListener] = []
        self._resolved = asyncio.Event()
        self.metrics = metrics or get_session_metrics()
        self.logger = get_logger("session.state")

    @property
    def session(self) -> Session:
        return self._session

    @property
    def status(self) -> SessionStatus:
        return self._session.status

    @property
    def is_resolved(self) -> bool:
        return self._resolved.is_set()

    async def wait_until_resolved(self) -> Session:
        """Wait for restoration to leave the Restoring state."""
        await self._resolved.wait()
        return self._session

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a (previous, current) change listener."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_authenticated(self, user: UserProfile, token: str) -> Session:
        if user is None or not token:
            raise InvalidTransitionError(self.status.value, "authenticated without user and token")
        return self._replace(Session(SessionStatus.AUTHENTICATED, user, token))

    def set_unauthenticated(self) -> Session:
        return self._replace(Session(SessionStatus.UNAUTHENTICATED))

    def update_token(self, token: str) -> Session:
        """Rotate the token of an authenticated session."""
        current = self._session
        if not current.is_authenticated:
            raise InvalidTransitionError(current.status.value, "token rotation")
        return self._replace(Session(SessionStatus.AUTHENTICATED, current.user, token))

    def update_user(self, user: UserProfile) -> Session:
        """Replace the profile of an authenticated session."""
        current = self._session
        if not current.is_authenticated:
            raise InvalidTransitionError(current.status.value, "profile update")
        return self._replace(Session(SessionStatus.AUTHENTICATED, user, current.token))

    def _replace(self, new: Session) -> Session:
        previous = self._session
        self._session = new
        if not self._resolved.is_set():
            self._resolved.set()

        if previous.status != new.status:
            self.metrics.record_transition(new.status.value)
            self.logger.info(
                "Session transition",
                previous=previous.status.value,
                current=new.status.value,
                user_id=new.user.id if new.user else None
            )

        for listener in list(self._listeners):
            try:
                listener(previous, new)
            except Exception as e:
                self.logger.error("Session listener failed", error=str(e))
        return new
