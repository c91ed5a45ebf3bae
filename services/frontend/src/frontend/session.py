from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Literal, TypeVar

from pydantic import BaseModel

from frontend.identity import AuthError, IdentityProvider
from frontend.models import Identity
from frontend.notifications import Notifier
from frontend.subscriptions import Listeners, Subscription

T = TypeVar("T")
LOGGER = logging.getLogger("jobboard.frontend")


class AuthState(BaseModel):
    status: Literal["loading", "authenticated", "anonymous"] = "loading"
    identity: Identity | None = None


class SessionStore:
    """Current identity for the whole process plus the account operations.

    The state starts as ``loading`` and only changes when the provider reports
    an identity; operations never set it directly.
    """

    def __init__(self, provider: IdentityProvider, notifier: Notifier) -> None:
        self.provider = provider
        self.notifier = notifier
        self.state = AuthState()
        self._ready = asyncio.Event()
        self._provider_subscription: Subscription | None = None
        self._listeners: Listeners[Identity | None] = Listeners("session")

    @property
    def current_identity(self) -> Identity | None:
        return self.state.identity

    @property
    def current_uid(self) -> str | None:
        identity = self.state.identity
        return identity.uid if identity else None

    def start(self) -> None:
        if self._provider_subscription is None:
            self._provider_subscription = self.provider.on_identity_changed(self._on_identity)

    def close(self) -> None:
        if self._provider_subscription is not None:
            self._provider_subscription.unsubscribe()
            self._provider_subscription = None

    async def wait_until_ready(self, timeout: float | None = None) -> AuthState:
        await asyncio.wait_for(self._ready.wait(), timeout=timeout)
        return self.state

    def subscribe(self, callback: Callable[[Identity | None], None]) -> Subscription:
        return self._listeners.add(callback)

    async def register(self, email: str, password: str, display_name: str) -> Identity:
        async def create() -> Identity:
            await self.provider.create_user(email, password)
            return await self.provider.update_profile(display_name=display_name)

        return await self._run(
            "register",
            create,
            success="Account created successfully!",
            failure=None,
        )

    async def login(self, email: str, password: str) -> Identity:
        return await self._run(
            "login",
            lambda: self.provider.sign_in(email, password),
            success="Logged in successfully!",
            failure="Failed to login. Please check your credentials.",
        )

    async def login_with_federated_provider(self, credential: str) -> Identity:
        return await self._run(
            "login_federated",
            lambda: self.provider.sign_in_with_federated(credential),
            success="Logged in with Google successfully!",
            failure="Failed to login with Google.",
        )

    async def logout(self) -> None:
        await self._run(
            "logout",
            self.provider.sign_out,
            success="Logged out successfully!",
            failure="Failed to logout.",
        )

    async def request_password_reset(self, email: str) -> None:
        await self._run(
            "password_reset",
            lambda: self.provider.send_password_reset(email),
            success="Password reset email sent!",
            failure="Failed to send password reset email.",
        )

    async def update_profile(
        self,
        *,
        display_name: str | None = None,
        photo_url: str | None = None,
    ) -> Identity:
        return await self._run(
            "update_profile",
            lambda: self.provider.update_profile(display_name=display_name, photo_url=photo_url),
            success="Profile updated successfully!",
            failure="Failed to update profile.",
        )

    async def _run(
        self,
        action: str,
        operation: Callable[[], Awaitable[T]],
        *,
        success: str,
        failure: str | None,
    ) -> T:
        try:
            result = await operation()
        except AuthError as exc:
            LOGGER.info(json.dumps({"event": "auth_failed", "action": action, "code": exc.code}))
            self.notifier.error(failure or exc.message)
            raise
        self.notifier.success(success)
        return result

    def _on_identity(self, identity: Identity | None) -> None:
        if identity is None:
            self.state = AuthState(status="anonymous")
        else:
            self.state = AuthState(status="authenticated", identity=identity)
        self._ready.set()
        LOGGER.info(
            json.dumps(
                {
                    "event": "identity_changed",
                    "status": self.state.status,
                    "uid": identity.uid if identity else None,
                }
            )
        )
        self._listeners.emit(identity)
