"""Credential provider contracts and the Identity Toolkit implementation.

The provider owns password hashing, OAuth token exchange and token issuance.
This module only consumes it: every verify operation yields a ``Principal``
describing the authenticated subject.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from config import require_firebase_api_key, settings
from services.accounts.types import (
    CredentialConflictError,
    CredentialProviderError,
    InvalidCredentialsError,
    SocialProvider,
)

logger = logging.getLogger(__name__)

OAUTH_PROVIDER_IDS: Dict[str, str] = {
    "google": "google.com",
    "facebook": "facebook.com",
}
# Google hands the client an OpenID id_token, Facebook an access_token.
OAUTH_TOKEN_PARAMS: Dict[str, str] = {
    "google": "id_token",
    "facebook": "access_token",
}
INVALID_CREDENTIAL_CODES = {
    "EMAIL_NOT_FOUND",
    "INVALID_PASSWORD",
    "INVALID_LOGIN_CREDENTIALS",
    "INVALID_EMAIL",
    "USER_DISABLED",
    "INVALID_IDP_RESPONSE",
    "INVALID_ID_TOKEN",
}


@dataclass(frozen=True)
class Principal:
    uid: str
    email: str
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    email_verified: bool = False
    provider_id: str = "password"
    id_token: Optional[str] = None
    refresh_token: Optional[str] = None

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "uid": self.uid,
            "email": self.email,
            "displayName": self.display_name,
            "photoURL": self.photo_url,
            "emailVerified": self.email_verified,
            "providerId": self.provider_id,
        }


AuthObserver = Callable[[Optional[Principal]], Any]


class AuthSubscription:
    """Handle returned by ``on_auth_state_changed``; call ``unsubscribe`` to stop."""

    def __init__(self, provider: "CredentialProvider", observer: AuthObserver) -> None:
        self._provider = provider
        self._observer = observer
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._provider._remove_observer(self._observer)
            self.active = False


class CredentialProvider(ABC):
    """Base provider: auth-state fan-out around the provider-specific calls."""

    def __init__(self) -> None:
        self._observers: List[AuthObserver] = []

    def on_auth_state_changed(self, observer: AuthObserver) -> AuthSubscription:
        self._observers.append(observer)
        return AuthSubscription(self, observer)

    def _remove_observer(self, observer: AuthObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def _notify(self, principal: Optional[Principal]) -> None:
        for observer in list(self._observers):
            try:
                observer(principal)
            except Exception:
                logger.exception("Auth state observer failed")

    async def create_with_password(self, email: str, password: str) -> Principal:
        principal = await self._create_with_password(email, password)
        self._notify(principal)
        return principal

    async def sign_in_with_password(self, email: str, password: str) -> Principal:
        principal = await self._sign_in_with_password(email, password)
        self._notify(principal)
        return principal

    async def sign_in_with_oauth(self, provider: SocialProvider, oauth_token: str) -> Principal:
        if provider not in OAUTH_PROVIDER_IDS:
            raise ValueError(f"Unsupported OAuth provider: {provider}")
        principal = await self._sign_in_with_oauth(provider, oauth_token)
        self._notify(principal)
        return principal

    async def sign_out(self, principal: Optional[Principal] = None) -> None:
        await self._sign_out(principal)
        self._notify(None)

    @abstractmethod
    async def _create_with_password(self, email: str, password: str) -> Principal:
        raise NotImplementedError

    @abstractmethod
    async def _sign_in_with_password(self, email: str, password: str) -> Principal:
        raise NotImplementedError

    @abstractmethod
    async def _sign_in_with_oauth(self, provider: SocialProvider, oauth_token: str) -> Principal:
        raise NotImplementedError

    async def _sign_out(self, principal: Optional[Principal]) -> None:
        return None

    @abstractmethod
    async def send_email_verification(self, principal: Principal) -> None:
        raise NotImplementedError

    @abstractmethod
    async def send_password_reset(self, email: str) -> None:
        raise NotImplementedError


def _error_code(response: httpx.Response) -> str:
    try:
        message = str(response.json().get("error", {}).get("message", ""))
    except ValueError:
        message = response.text
    # Messages look like "WEAK_PASSWORD : Password should be at least 6 characters".
    return message.split(":", 1)[0].strip() or f"HTTP_{response.status_code}"


class IdentityToolkitCredentialProvider(CredentialProvider):
    """Credential provider speaking the Identity Toolkit REST API.

    Sign-out has no server-side call: ID and refresh tokens are held by the
    client, so signing out only notifies auth-state observers.
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://identitytoolkit.googleapis.com/v1",
        request_uri: str = "http://localhost",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__()
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.request_uri = request_uri
        self.timeout = timeout
        self._transport = transport

    async def _post(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                f"{self.base_url}/accounts:{method}",
                params={"key": self.api_key},
                json=payload,
            )
        if response.status_code < 400:
            return response.json()

        code = _error_code(response)
        logger.info("Identity Toolkit %s rejected: %s", method, code)
        if code == "EMAIL_EXISTS":
            raise CredentialConflictError("An account with this email already exists.")
        if code in INVALID_CREDENTIAL_CODES:
            raise InvalidCredentialsError(code)
        raise CredentialProviderError(f"Identity Toolkit {method} failed: {code}")

    async def _lookup(self, id_token: str) -> Dict[str, Any]:
        payload = await self._post("lookup", {"idToken": id_token})
        users = payload.get("users") or []
        if not users:
            raise InvalidCredentialsError("INVALID_ID_TOKEN")
        return users[0]

    async def _create_with_password(self, email: str, password: str) -> Principal:
        payload = await self._post(
            "signUp",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        return Principal(
            uid=payload["localId"],
            email=payload.get("email") or email,
            email_verified=False,
            provider_id="password",
            id_token=payload.get("idToken"),
            refresh_token=payload.get("refreshToken"),
        )

    async def _sign_in_with_password(self, email: str, password: str) -> Principal:
        payload = await self._post(
            "signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        account = await self._lookup(payload["idToken"])
        return Principal(
            uid=payload["localId"],
            email=payload.get("email") or email,
            display_name=account.get("displayName") or payload.get("displayName") or None,
            photo_url=account.get("photoUrl"),
            email_verified=bool(account.get("emailVerified", False)),
            provider_id="password",
            id_token=payload.get("idToken"),
            refresh_token=payload.get("refreshToken"),
        )

    async def _sign_in_with_oauth(self, provider: SocialProvider, oauth_token: str) -> Principal:
        provider_id = OAUTH_PROVIDER_IDS[provider]
        token_param = OAUTH_TOKEN_PARAMS[provider]
        payload = await self._post(
            "signInWithIdp",
            {
                "postBody": urlencode({token_param: oauth_token, "providerId": provider_id}),
                "requestUri": self.request_uri,
                "returnIdpCredential": True,
                "returnSecureToken": True,
            },
        )
        return Principal(
            uid=payload["localId"],
            email=payload.get("email") or "",
            display_name=payload.get("displayName") or None,
            photo_url=payload.get("photoUrl"),
            email_verified=bool(payload.get("emailVerified", False)),
            provider_id=provider_id,
            id_token=payload.get("idToken"),
            refresh_token=payload.get("refreshToken"),
        )

    async def send_email_verification(self, principal: Principal) -> None:
        if not principal.id_token:
            raise CredentialProviderError("Email verification requires a signed-in principal.")
        await self._post("sendOobCode", {"requestType": "VERIFY_EMAIL", "idToken": principal.id_token})

    async def send_password_reset(self, email: str) -> None:
        await self._post("sendOobCode", {"requestType": "PASSWORD_RESET", "email": email})


def build_credential_provider() -> CredentialProvider:
    """Build the credential provider from settings."""
    try:
        api_key = require_firebase_api_key()
    except ValueError as exc:
        raise CredentialProviderError(str(exc)) from exc
    return IdentityToolkitCredentialProvider(
        api_key=api_key,
        base_url=settings.IDENTITY_TOOLKIT_URL,
        request_uri=settings.APP_URL,
        timeout=settings.IDENTITY_TOOLKIT_TIMEOUT_SECONDS,
    )
