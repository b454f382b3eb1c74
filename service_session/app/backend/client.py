"""
Backend session client.

Exchanges provider credentials for the backend profile and performs
authorized requests with a single refresh-and-retry cycle on 401.
"""

import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from pydantic import ValidationError

from shared.errors import (
    BackendRequestError,
    ProviderAuthError,
    RoleMismatch,
    StorageError,
    UnauthenticatedError,
)
from shared.logging import get_logger
from shared.metrics import SessionMetrics, get_session_metrics
from ..identity.gateway import Identity, IdentityProviderGateway
from ..models import ProfileFields, UserProfile, UserRole
from ..storage.credential_store import CredentialStore

DEFAULT_ERROR_MESSAGE = "Backend request failed"

JSON_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
}

# Invoked with the cause after the stored credential has been cleared
SessionExpiredHook = Callable[[str], Awaitable[None]]
# Invoked with the new token after a successful refresh
TokenRefreshedHook = Callable[[str], None]


def extract_error_message(response: httpx.Response) -> str:
    """Message from a JSON error body, or the generic fallback."""
    try:
        body = response.json()
    except ValueError:
        return DEFAULT_ERROR_MESSAGE
    if isinstance(body, dict) and isinstance(body.get("message"), str) and body["message"]:
        return body["message"]
    return DEFAULT_ERROR_MESSAGE


def parse_profile(payload: Any, status_code: Optional[int] = None) -> UserProfile:
    try:
        return UserProfile.from_backend(payload if isinstance(payload, dict) else {})
    except ValidationError as e:
        raise BackendRequestError("Unexpected response from server", status_code) from e


def check_role(profile: UserProfile, expected: UserRole) -> UserProfile:
    if profile.role != UserRole(expected):
        raise RoleMismatch(UserRole(expected).value, profile.role.value)
    return profile


class BackendSessionClient:
    """HTTP client for the marketplace backend."""

    def __init__(self,
                 base_url: str,
                 store: CredentialStore,
                 gateway: IdentityProviderGateway,
                 timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 metrics: Optional[SessionMetrics] = None):
        self.base_url = base_url.rstrip("/")
        self.store = store
        self.gateway = gateway
        self.timeout = timeout
        self.transport = transport
        self.metrics = metrics or get_session_metrics()
        self.logger = get_logger("session.backend")
        self.on_session_expired: Optional[SessionExpiredHook] = None
        self.on_token_refreshed: Optional[TokenRefreshedHook] = None

    async def _send(self, path: str, method: str, token: Optional[str],
                    body: Optional[Any] = None) -> httpx.Response:
        headers = dict(JSON_HEADERS)
        if token:
            headers["Authorization"] = f"Bearer {token}"

        start_time = time.time()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(
                    method.upper(),
                    f"{self.base_url}{path}",
                    headers=headers,
                    json=body
                )
        except httpx.RequestError as e:
            self.metrics.record_backend_request(method.upper(), None, time.time() - start_time)
            self.logger.error("Backend unreachable", path=path, method=method.upper(), error=str(e))
            raise BackendRequestError("Unable to reach the server. Please check your connection.") from e

        self.metrics.record_backend_request(method.upper(), response.status_code, time.time() - start_time)
        self.logger.debug("Backend response", path=path, method=method.upper(), status_code=response.status_code)
        return response

    async def _exchange(self, path: str, identity: Identity, body: Dict[str, Any]) -> UserProfile:
        token = await identity.get_token()
        response = await self._send(path, "POST", token, body)
        if response.is_error:
            raise BackendRequestError(extract_error_message(response), response.status_code)
        try:
            payload = response.json()
        except ValueError:
            payload = None
        return parse_profile(payload, response.status_code)

    async def register(self, identity: Identity, profile_fields: ProfileFields) -> UserProfile:
        """Create the backend profile for a freshly signed-up identity."""
        profile = await self._exchange("/api/auth/register", identity, {
            "firebaseUid": identity.uid,
            "email": profile_fields.email,
            "name": profile_fields.name,
            "phone": profile_fields.phone,
            "role": profile_fields.role.value,
        })
        self.logger.info("Backend profile registered", user_id=profile.id, role=profile.role.value)
        return check_role(profile, profile_fields.role)

    async def login(self, identity: Identity, role: UserRole) -> UserProfile:
        """Fetch the backend profile for a signed-in identity asserting ``role``."""
        body: Dict[str, Any] = {
            "firebaseUid": identity.uid,
            "email": identity.email,
            "role": UserRole(role).value,
        }
        profile = await self._exchange("/api/auth/login", identity, body)
        self.logger.info("Backend login", user_id=profile.id, role=profile.role.value)
        return check_role(profile, role)

    async def authorized_request(self, path: str, method: str = "GET",
                                 body: Optional[Any] = None) -> httpx.Response:
        """Send a request with the stored bearer token.

        A 401 triggers one forced token refresh and one retry. If that cycle
        fails the stored credential is cleared and UnauthenticatedError is
        raised.
        """
        token = await self.store.get_token()
        response = await self._send(path, method, token, body)
        if response.status_code != 401:
            return response

        self.logger.info("Backend rejected token, refreshing", path=path)
        refreshed = await self._refresh_token()
        if refreshed is None:
            await self._expire("refresh_failed")
            raise UnauthenticatedError("Session expired. Please sign in again.")

        response = await self._send(path, method, refreshed, body)
        if response.status_code == 401:
            self.logger.warning("Backend rejected refreshed token", path=path)
            await self._expire("retry_unauthorized")
            raise UnauthenticatedError("Session expired. Please sign in again.")
        return response

    async def _refresh_token(self) -> Optional[str]:
        identity = self.gateway.current_identity()
        if identity is None:
            self.metrics.record_refresh("no_identity")
            self.logger.warning("No provider identity to refresh")
            return None

        try:
            token = await identity.get_token(force_refresh=True)
            await self.store.set_token(token)
        except (ProviderAuthError, StorageError) as e:
            self.metrics.record_refresh("failed")
            self.logger.warning("Token refresh failed", error_code=e.code, error=e.message)
            return None

        self.metrics.record_refresh("succeeded")
        if self.on_token_refreshed is not None:
            self.on_token_refreshed(token)
        return token

    async def _expire(self, cause: str) -> None:
        self.metrics.record_forced_sign_out(cause)
        try:
            await self.store.clear()
        except StorageError as e:
            self.logger.error("Failed to clear credential after refresh failure", error=e.message)
        if self.on_session_expired is not None:
            await self.on_session_expired(cause)

    async def request_json(self, path: str, method: str = "GET", body: Optional[Any] = None) -> Any:
        """Authorized request returning the decoded JSON body."""
        response = await self.authorized_request(path, method, body)
        if response.is_error:
            raise BackendRequestError(extract_error_message(response), response.status_code)
        if not response.content:
            return None
        return response.json()

    async def get_profile(self) -> UserProfile:
        return parse_profile(await self.request_json("/api/users/profile"))

    async def update_profile(self, fields: Dict[str, Any]) -> UserProfile:
        payload = await self.request_json("/api/users/profile", "PUT", fields)
        return parse_profile(payload)
