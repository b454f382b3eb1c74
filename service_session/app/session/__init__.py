"""Session state, restoration, synchronization and user actions."""

from .state import Session, SessionStatus, SessionStateMachine
from .restoration import RestorationCoordinator
from .observer import ObserverSynchronizer
from .actions import AuthActions

__all__ = [
    "Session",
    "SessionStatus",
    "SessionStateMachine",
    "RestorationCoordinator",
    "ObserverSynchronizer",
    "AuthActions",
]
