from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import uuid
from collections.abc import Callable
from typing import Any, Protocol

import httpx

from frontend.models import Identity
from frontend.subscriptions import Listeners, Subscription

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"
FEDERATED_PROVIDER_ID = "google.com"
NETWORK_REQUEST_FAILED = "network-request-failed"
INVALID_RESPONSE = "invalid-response"
LOGGER = logging.getLogger("jobboard.frontend")


class AuthError(Exception):
    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class IdentityProvider(Protocol):
    async def create_user(self, email: str, password: str) -> Identity: ...

    async def sign_in(self, email: str, password: str) -> Identity: ...

    async def sign_in_with_federated(self, credential: str) -> Identity: ...

    async def sign_out(self) -> None: ...

    async def send_password_reset(self, email: str) -> None: ...

    async def update_profile(
        self,
        *,
        display_name: str | None = None,
        photo_url: str | None = None,
    ) -> Identity: ...

    def on_identity_changed(
        self, callback: Callable[[Identity | None], None]
    ) -> Subscription: ...


class _IdentityChanges:
    """Shared change-stream plumbing for providers.

    New listeners get the current identity on the next loop iteration, then
    every later change.
    """

    def __init__(self) -> None:
        self.current: Identity | None = None
        self._listeners: Listeners[Identity | None] = Listeners("identity")

    def on_identity_changed(self, callback: Callable[[Identity | None], None]) -> Subscription:
        subscription = self._listeners.add(callback)

        def deliver_initial() -> None:
            if subscription.active:
                callback(self.current)

        asyncio.get_running_loop().call_soon(deliver_initial)
        return subscription

    def _set_current(self, identity: Identity | None) -> None:
        self.current = identity
        self._listeners.emit(identity)


class FirebaseIdentityProvider(_IdentityChanges):
    """Email/password and federated sign-in through the Identity Toolkit REST API."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = IDENTITY_TOOLKIT_URL,
        timeout: float = 15,
        request_uri: str = "http://localhost",
    ) -> None:
        super().__init__()
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.request_uri = request_uri
        self.id_token: str | None = None

    async def create_user(self, email: str, password: str) -> Identity:
        payload = await self._call(
            "accounts:signUp",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        return self._signed_in(payload)

    async def sign_in(self, email: str, password: str) -> Identity:
        payload = await self._call(
            "accounts:signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        return self._signed_in(payload)

    async def sign_in_with_federated(self, credential: str) -> Identity:
        payload = await self._call(
            "accounts:signInWithIdp",
            {
                "postBody": f"id_token={credential}&providerId={FEDERATED_PROVIDER_ID}",
                "requestUri": self.request_uri,
                "returnSecureToken": True,
                "returnIdpCredential": True,
            },
        )
        return self._signed_in(payload)

    async def sign_out(self) -> None:
        self.id_token = None
        self._set_current(None)

    async def send_password_reset(self, email: str) -> None:
        await self._call("accounts:sendOobCode", {"requestType": "PASSWORD_RESET", "email": email})

    async def update_profile(
        self,
        *,
        display_name: str | None = None,
        photo_url: str | None = None,
    ) -> Identity:
        if self.current is None or self.id_token is None:
            raise AuthError("No user is signed in.", code="no-current-user")
        body: dict[str, Any] = {"idToken": self.id_token, "returnSecureToken": True}
        if display_name is not None:
            body["displayName"] = display_name
        if photo_url is not None:
            body["photoUrl"] = photo_url
        payload = await self._call("accounts:update", body)
        if payload.get("idToken"):
            self.id_token = payload["idToken"]
        identity = self.current.model_copy(
            update={
                "display_name": payload.get("displayName", self.current.display_name),
                "photo_url": payload.get("photoUrl", self.current.photo_url),
            }
        )
        self._set_current(identity)
        return identity

    def _signed_in(self, payload: dict[str, Any]) -> Identity:
        if not payload.get("localId"):
            raise AuthError("Identity provider returned no user id.", code=INVALID_RESPONSE)
        self.id_token = payload.get("idToken")
        identity = Identity(
            uid=payload["localId"],
            email=payload.get("email"),
            display_name=payload.get("displayName") or None,
            photo_url=payload.get("photoUrl") or None,
        )
        self._set_current(identity)
        return identity

    async def _call(self, endpoint: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/{endpoint}",
                    params={"key": self.api_key},
                    json=body,
                )
        except httpx.RequestError as exc:
            LOGGER.warning(
                json.dumps({"event": "identity_unreachable", "endpoint": endpoint, "error": str(exc)})
            )
            raise AuthError("Identity provider is unavailable", code=NETWORK_REQUEST_FAILED) from exc

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.status_code >= 400:
            error = payload.get("error") if isinstance(payload, dict) else None
            if not isinstance(error, dict):
                error = {}
            code = str(error.get("message") or f"http-{response.status_code}")
            LOGGER.info(json.dumps({"event": "identity_rejected", "endpoint": endpoint, "code": code}))
            raise AuthError(code.replace("_", " ").capitalize(), code=code)

        if not isinstance(payload, dict):
            LOGGER.warning(json.dumps({"event": "identity_invalid_response", "endpoint": endpoint}))
            raise AuthError("Identity provider returned an invalid response.", code=INVALID_RESPONSE)
        return payload


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode()).hexdigest()


class InMemoryIdentityProvider(_IdentityChanges):
    """Process-local accounts for development and tests."""

    def __init__(self) -> None:
        super().__init__()
        self.accounts: dict[str, tuple[str, Identity]] = {}
        self.password_resets: list[str] = []

    async def create_user(self, email: str, password: str) -> Identity:
        key = email.strip().lower()
        if key in self.accounts:
            raise AuthError("The email address is already in use.", code="EMAIL_EXISTS")
        if len(password) < 6:
            raise AuthError("Password should be at least 6 characters.", code="WEAK_PASSWORD")
        identity = Identity(uid=uuid.uuid4().hex, email=key)
        self.accounts[key] = (hash_password(password), identity)
        self._set_current(identity)
        return identity

    async def sign_in(self, email: str, password: str) -> Identity:
        account = self.accounts.get(email.strip().lower())
        if account is None or account[0] != hash_password(password):
            raise AuthError("Invalid login credentials.", code="INVALID_LOGIN_CREDENTIALS")
        self._set_current(account[1])
        return account[1]

    async def sign_in_with_federated(self, credential: str) -> Identity:
        key = credential.strip().lower()
        if not key:
            raise AuthError("Missing federated credential.", code="INVALID_IDP_RESPONSE")
        account = self.accounts.get(key)
        if account is None:
            identity = Identity(uid=uuid.uuid4().hex, email=key)
            account = ("", identity)
            self.accounts[key] = account
        self._set_current(account[1])
        return account[1]

    async def sign_out(self) -> None:
        self._set_current(None)

    async def send_password_reset(self, email: str) -> None:
        key = email.strip().lower()
        if key not in self.accounts:
            raise AuthError("There is no user record for this email.", code="EMAIL_NOT_FOUND")
        self.password_resets.append(key)

    async def update_profile(
        self,
        *,
        display_name: str | None = None,
        photo_url: str | None = None,
    ) -> Identity:
        if self.current is None:
            raise AuthError("No user is signed in.", code="no-current-user")
        updates: dict[str, Any] = {}
        if display_name is not None:
            updates["display_name"] = display_name
        if photo_url is not None:
            updates["photo_url"] = photo_url
        identity = self.current.model_copy(update=updates)
        key = (identity.email or "").lower()
        if key in self.accounts:
            self.accounts[key] = (self.accounts[key][0], identity)
        self._set_current(identity)
        return identity
