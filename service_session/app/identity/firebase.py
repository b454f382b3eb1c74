"""
Firebase Authentication gateway over the public REST API.
"""

import json
import time
from typing import Any, Dict, Optional

import httpx
import jwt

from shared.errors import ProviderAuthError, ProviderAuthReason
from shared.logging import get_logger
from ..storage.backends import KeyValueBackend
from .gateway import Identity, IdentityProviderGateway

# Firebase error messages look like "EMAIL_EXISTS" or
# "TOO_MANY_ATTEMPTS_TRY_LATER : Access to this account has been ..."
FIREBASE_ERROR_CODES: Dict[str, ProviderAuthReason] = {
    "EMAIL_EXISTS": ProviderAuthReason.EMAIL_ALREADY_IN_USE,
    "EMAIL_NOT_FOUND": ProviderAuthReason.USER_NOT_FOUND,
    "USER_NOT_FOUND": ProviderAuthReason.USER_NOT_FOUND,
    "INVALID_PASSWORD": ProviderAuthReason.WRONG_PASSWORD,
    "INVALID_LOGIN_CREDENTIALS": ProviderAuthReason.INVALID_CREDENTIAL,
    "INVALID_IDP_RESPONSE": ProviderAuthReason.INVALID_CREDENTIAL,
    "INVALID_ID_TOKEN": ProviderAuthReason.INVALID_CREDENTIAL,
    "INVALID_REFRESH_TOKEN": ProviderAuthReason.INVALID_CREDENTIAL,
    "TOKEN_EXPIRED": ProviderAuthReason.INVALID_CREDENTIAL,
    "CREDENTIAL_TOO_OLD_LOGIN_AGAIN": ProviderAuthReason.INVALID_CREDENTIAL,
    "USER_DISABLED": ProviderAuthReason.DISABLED,
    "TOO_MANY_ATTEMPTS_TRY_LATER": ProviderAuthReason.TOO_MANY_REQUESTS,
    "WEAK_PASSWORD": ProviderAuthReason.WEAK_PASSWORD,
    "INVALID_EMAIL": ProviderAuthReason.INVALID_EMAIL,
    "MISSING_EMAIL": ProviderAuthReason.INVALID_EMAIL,
    "OPERATION_NOT_ALLOWED": ProviderAuthReason.OPERATION_NOT_ALLOWED,
    "PASSWORD_LOGIN_DISABLED": ProviderAuthReason.OPERATION_NOT_ALLOWED,
}

# Refresh rejections that mean the provider no longer recognizes the account
REVOKING_REASONS = frozenset({
    ProviderAuthReason.USER_NOT_FOUND,
    ProviderAuthReason.DISABLED,
    ProviderAuthReason.INVALID_CREDENTIAL,
})


def classify_provider_error(response: httpx.Response) -> ProviderAuthError:
    """Translate a Firebase error response into a ProviderAuthError."""
    code = ""
    try:
        message = response.json().get("error", {}).get("message", "")
        code = message.split(":", 1)[0].strip()
    except (ValueError, AttributeError):
        pass

    reason = FIREBASE_ERROR_CODES.get(code, ProviderAuthReason.UNKNOWN)
    return ProviderAuthError(
        reason,
        f"Identity provider rejected the request ({reason.value})",
        {"status_code": response.status_code, "provider_code": code or None}
    )


class FirebaseIdentity(Identity):
    """Signed-in Firebase account with its ID and refresh tokens."""

    def __init__(self, gateway: "FirebaseIdentityGateway", uid: str, email: Optional[str],
                 display_name: Optional[str], refresh_token: str,
                 id_token: Optional[str] = None, expires_in: Optional[float] = None):
        self._gateway = gateway
        self._uid = uid
        self._email = email
        self._display_name = display_name
        self.refresh_token = refresh_token
        self.id_token = id_token
        self.expires_at = time.time() + expires_in if expires_in else None

    @property
    def uid(self) -> str:
        return self._uid

    @property
    def email(self) -> Optional[str]:
        return self._email

    @property
    def display_name(self) -> Optional[str]:
        return self._display_name

    def _token_expiry(self) -> Optional[float]:
        if not self.id_token:
            return None
        try:
            claims = jwt.decode(self.id_token, options={"verify_signature": False})
        except jwt.PyJWTError:
            return self.expires_at
        exp = claims.get("exp")
        return float(exp) if exp is not None else self.expires_at

    def needs_refresh(self, skew_seconds: float) -> bool:
        expiry = self._token_expiry()
        return expiry is None or expiry - skew_seconds <= time.time()

    def apply_tokens(self, id_token: str, refresh_token: Optional[str], expires_in: Optional[Any]):
        self.id_token = id_token
        if refresh_token:
            self.refresh_token = refresh_token
        self.expires_at = time.time() + float(expires_in) if expires_in else None

    async def get_token(self, force_refresh: bool = False) -> str:
        if not force_refresh and not self.needs_refresh(self._gateway.refresh_skew_seconds):
            return self.id_token
        return await self._gateway.refresh(self)

    def to_record(self) -> Dict[str, Any]:
        return {
            "uid": self._uid,
            "email": self._email,
            "displayName": self._display_name,
            "refreshToken": self.refresh_token,
            "idToken": self.id_token,
        }


class FirebaseIdentityGateway(IdentityProviderGateway):
    """Identity provider gateway backed by Firebase Authentication.

    The provider's own session (refresh token and account identifiers) is
    kept in ``persistence`` under ``<namespace>.provider.session`` and
    reloaded by initialize(), which is what makes the first auth event
    arrive asynchronously after startup.
    """

    def __init__(self,
                 api_key: str,
                 persistence: KeyValueBackend,
                 namespace: str = "marketplace",
                 identity_toolkit_url: str = "https://identitytoolkit.googleapis.com/v1",
                 secure_token_url: str = "https://securetoken.googleapis.com/v1",
                 timeout: float = 10.0,
                 refresh_skew_seconds: float = 300,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__()
        self.api_key = api_key
        self.persistence = persistence
        self.session_key = f"{namespace}.provider.session"
        self.identity_toolkit_url = identity_toolkit_url.rstrip("/")
        self.secure_token_url = secure_token_url.rstrip("/")
        self.timeout = timeout
        self.refresh_skew_seconds = refresh_skew_seconds
        self.transport = transport
        self.logger = get_logger("session.identity.firebase")

    async def initialize(self) -> None:
        """Reload the persisted provider session, then start emitting events."""
        try:
            raw = await self.persistence.get(self.session_key)
            if raw:
                record = json.loads(raw)
                self._current = FirebaseIdentity(
                    self,
                    uid=record["uid"],
                    email=record.get("email"),
                    display_name=record.get("displayName"),
                    refresh_token=record["refreshToken"],
                    id_token=record.get("idToken"),
                )
        except (ValueError, KeyError) as e:
            self.logger.warning("Discarding unreadable provider session", error=str(e))
        except Exception as e:
            self.logger.warning("Provider session could not be loaded", error=str(e))
        self._mark_ready()

    async def _post(self, url: str, *, json_body: Optional[Dict[str, Any]] = None,
                    form: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, params={"key": self.api_key}, json=json_body, data=form)
        except httpx.RequestError as e:
            self.logger.warning("Identity provider unreachable", url=url, error=str(e))
            raise ProviderAuthError(ProviderAuthReason.NETWORK_ERROR, "Identity provider unreachable") from e

        if response.status_code >= 400:
            error = classify_provider_error(response)
            self.logger.warning(
                "Identity provider request rejected",
                status_code=response.status_code,
                reason=error.reason.value
            )
            raise error

        return response.json()

    def _identity_from(self, payload: Dict[str, Any], display_name: Optional[str] = None) -> FirebaseIdentity:
        return FirebaseIdentity(
            self,
            uid=payload["localId"],
            email=payload.get("email"),
            display_name=display_name or payload.get("displayName"),
            refresh_token=payload["refreshToken"],
            id_token=payload["idToken"],
            expires_in=float(payload.get("expiresIn", 3600)),
        )

    async def _persist(self, identity: FirebaseIdentity) -> None:
        try:
            await self.persistence.set(self.session_key, json.dumps(identity.to_record()))
        except Exception as e:
            self.logger.warning("Provider session not persisted", error=str(e))

    async def _forget(self) -> None:
        try:
            await self.persistence.delete(self.session_key)
        except Exception as e:
            self.logger.warning("Provider session not removed", error=str(e))

    async def _adopt(self, identity: FirebaseIdentity) -> FirebaseIdentity:
        await self._persist(identity)
        self._set_current(identity)
        self.logger.info("Provider signed in", uid=identity.uid)
        return identity

    async def sign_up(self, email: str, password: str, display_name: str) -> Identity:
        payload = await self._post(
            f"{self.identity_toolkit_url}/accounts:signUp",
            json_body={"email": email, "password": password, "returnSecureToken": True}
        )
        if display_name:
            updated = await self._post(
                f"{self.identity_toolkit_url}/accounts:update",
                json_body={"idToken": payload["idToken"], "displayName": display_name, "returnSecureToken": True}
            )
            payload = {**payload, **{k: v for k, v in updated.items() if v}}
        return await self._adopt(self._identity_from(payload, display_name))

    async def sign_in(self, email: str, password: str) -> Identity:
        payload = await self._post(
            f"{self.identity_toolkit_url}/accounts:signInWithPassword",
            json_body={"email": email, "password": password, "returnSecureToken": True}
        )
        return await self._adopt(self._identity_from(payload))

    async def sign_out(self) -> None:
        await self._forget()
        self._set_current(None)
        self.logger.info("Provider signed out")

    async def reset_password(self, email: str) -> None:
        await self._post(
            f"{self.identity_toolkit_url}/accounts:sendOobCode",
            json_body={"requestType": "PASSWORD_RESET", "email": email}
        )
        self.logger.info("Password reset requested")

    async def refresh(self, identity: FirebaseIdentity) -> str:
        """Exchange the refresh token for a new ID token."""
        try:
            payload = await self._post(
                f"{self.secure_token_url}/token",
                form={"grant_type": "refresh_token", "refresh_token": identity.refresh_token}
            )
        except ProviderAuthError as e:
            if e.reason in REVOKING_REASONS and self._current is identity:
                self.logger.warning("Provider revoked the session", reason=e.reason.value)
                await self._forget()
                self._set_current(None)
            raise

        identity.apply_tokens(payload["id_token"], payload.get("refresh_token"), payload.get("expires_in"))
        if self._current is identity:
            await self._persist(identity)
        return identity.id_token
