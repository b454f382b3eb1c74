"""
Session service for the marketplace client.

Wires storage, the identity provider, the backend client and the session
engine together, and runs startup restoration.
"""

import argparse
import asyncio
import getpass
import json
import sys
from typing import Optional

import httpx

from shared.config import SessionConfig, get_config
from shared.errors import SessionClientError
from shared.logging import configure_logging, get_logger, set_subject_context
from shared.metrics import SessionMetrics, get_session_metrics
from .backend.client import BackendSessionClient
from .identity.firebase import FirebaseIdentityGateway
from .identity.gateway import IdentityProviderGateway
from .messages import user_message
from .models import UserRole
from .session.actions import AuthActions
from .session.observer import ObserverSynchronizer
from .session.restoration import RestorationCoordinator
from .session.state import Session, SessionStateMachine
from .storage.backends import KeyValueBackend, get_key_value_backend
from .storage.credential_store import CredentialStore


class SessionService:
    """Session engine assembled from configuration."""

    def __init__(self,
                 config: Optional[SessionConfig] = None,
                 credential_backend: Optional[KeyValueBackend] = None,
                 gateway: Optional[IdentityProviderGateway] = None,
                 backend_transport: Optional[httpx.AsyncBaseTransport] = None,
                 metrics: Optional[SessionMetrics] = None):
        self.config = config or get_config()
        self.logger = get_logger("session.service")
        self.metrics = metrics or get_session_metrics()

        kv_backend = credential_backend or get_key_value_backend(
            self.config.storage_backend,
            path=self.config.storage_path,
            service_name=self.config.keyring_service
        )
        self.store = CredentialStore(kv_backend, self.config.storage_namespace)
        self.gateway = gateway or FirebaseIdentityGateway(
            api_key=self.config.firebase_api_key,
            persistence=kv_backend,
            namespace=self.config.storage_namespace,
            identity_toolkit_url=self.config.identity_toolkit_url,
            secure_token_url=self.config.secure_token_url,
            timeout=self.config.http_timeout,
            refresh_skew_seconds=self.config.token_refresh_skew_seconds
        )
        self.state = SessionStateMachine(self.metrics)
        self.backend = BackendSessionClient(
            self.config.api_base_url,
            self.store,
            self.gateway,
            timeout=self.config.http_timeout,
            transport=backend_transport,
            metrics=self.metrics
        )
        self.actions = AuthActions(self.gateway, self.backend, self.store, self.state)
        self.backend.on_session_expired = self.actions.expire_session
        self.backend.on_token_refreshed = self.actions.on_token_refreshed

        self.restoration = RestorationCoordinator(self.gateway, self.store, self.state)
        self.observer = ObserverSynchronizer(
            self.gateway, self.store, self.state, self.metrics, lock=self.actions.lock
        )

    @property
    def session(self) -> Session:
        return self.state.session

    async def start(self) -> Session:
        """Start synchronization and resolve the startup session."""
        self.observer.start()
        await self.gateway.initialize()
        session = await self.restoration.restore()
        self.logger.info("Session service started", status=session.status.value)
        return session

    async def stop(self) -> None:
        self.observer.stop()
        await self.gateway.close()
        self.logger.info("Session service stopped")


def _print_session(session: Session) -> None:
    print(json.dumps({
        "status": session.status.value,
        "user": session.user.model_dump(mode="json") if session.user else None,
    }, indent=2))


async def run_command(args: argparse.Namespace, service: SessionService) -> int:
    set_subject_context(operation=args.command)
    await service.start()
    try:
        if args.command == "sign-in":
            password = getpass.getpass("Password: ")
            await service.actions.sign_in(args.email, password, UserRole(args.role))
        elif args.command == "sign-out":
            await service.actions.sign_out()
        elif args.command == "reset-password":
            await service.actions.reset_password(args.email)
            print("Password reset email sent.")
            return 0
        elif args.command == "profile":
            await service.actions.refresh_profile()
        await service.gateway.drain()
        _print_session(service.session)
        return 0
    except SessionClientError as e:
        print(user_message(e), file=sys.stderr)
        return 1
    finally:
        await service.stop()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Marketplace session client",
        epilog=(
            "Credentials are stored in the OS keyring by default. On hosts without a keyring "
            "set MARKETPLACE_STORAGE_BACKEND=file (see MARKETPLACE_STORAGE_PATH)."
        )
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("status", help="Restore and print the current session")
    sign_in = subparsers.add_parser("sign-in", help="Sign in with email and password")
    sign_in.add_argument("--email", required=True)
    sign_in.add_argument("--role", required=True, choices=[role.value for role in UserRole])
    subparsers.add_parser("sign-out", help="Sign out and clear stored credentials")
    reset = subparsers.add_parser("reset-password", help="Send a password reset email")
    reset.add_argument("--email", required=True)
    subparsers.add_parser("profile", help="Refresh the profile from the backend")

    args = parser.parse_args(argv)

    config = get_config()
    configure_logging("marketplace-session", config.log_level)
    if config.enable_metrics and config.metrics_port:
        get_session_metrics().start_metrics_server(config.metrics_port)
    return asyncio.run(run_command(args, SessionService(config)))


if __name__ == "__main__":
    sys.exit(main())
