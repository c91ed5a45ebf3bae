from __future__ import annotations

import asyncio
from typing import Any

import frontend.identity as identity_module
import httpx
import pytest
from frontend.identity import (
    INVALID_RESPONSE,
    NETWORK_REQUEST_FAILED,
    AuthError,
    FirebaseIdentityProvider,
    InMemoryIdentityProvider,
)

pytestmark = pytest.mark.unit


class StubResponse:
    def __init__(self, status_code: int, payload: dict[str, Any]) -> None:
        self.status_code = status_code
        self._payload = payload

    def json(self) -> dict[str, Any]:
        return self._payload


class StubAsyncClient:
    def __init__(self, responses: list[StubResponse], calls: list[dict[str, Any]]) -> None:
        self.responses = responses
        self.calls = calls

    async def __aenter__(self) -> StubAsyncClient:
        return self

    async def __aexit__(self, *_: object) -> bool:
        return False

    async def post(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> StubResponse:
        self.calls.append({"url": url, "params": params or {}, "json": json or {}})
        return self.responses.pop(0)


class UnreachableAsyncClient:
    async def __aenter__(self) -> UnreachableAsyncClient:
        return self

    async def __aexit__(self, *_: object) -> bool:
        return False

    async def post(self, url: str, **_: Any) -> StubResponse:
        raise httpx.ConnectError("connection refused", request=httpx.Request("POST", url))


def install_responses(
    monkeypatch: pytest.MonkeyPatch, *responses: StubResponse
) -> list[dict[str, Any]]:
    calls: list[dict[str, Any]] = []
    queue = list(responses)
    monkeypatch.setattr(
        identity_module.httpx,
        "AsyncClient",
        lambda *_, **__: StubAsyncClient(queue, calls),
    )
    return calls


@pytest.mark.asyncio
async def test_firebase_sign_in_posts_credentials_with_api_key(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    calls = install_responses(
        monkeypatch,
        StubResponse(
            200,
            {"localId": "uid-42", "email": "ada@example.com", "idToken": "token-1"},
        ),
    )
    provider = FirebaseIdentityProvider("api-key", base_url="https://identity.example/v1/")

    identity = await provider.sign_in("ada@example.com", "s3cret!")

    assert identity.uid == "uid-42"
    assert identity.display_name is None
    assert provider.current == identity
    assert provider.id_token == "token-1"
    assert calls == [
        {
            "url": "https://identity.example/v1/accounts:signInWithPassword",
            "params": {"key": "api-key"},
            "json": {"email": "ada@example.com", "password": "s3cret!", "returnSecureToken": True},
        }
    ]


@pytest.mark.asyncio
async def test_firebase_rejection_carries_provider_code(monkeypatch: pytest.MonkeyPatch) -> None:
    install_responses(
        monkeypatch,
        StubResponse(400, {"error": {"code": 400, "message": "EMAIL_EXISTS"}}),
    )
    provider = FirebaseIdentityProvider("api-key")

    with pytest.raises(AuthError) as exc_info:
        await provider.create_user("ada@example.com", "s3cret!")

    assert exc_info.value.code == "EMAIL_EXISTS"
    assert exc_info.value.message == "Email exists"
    assert provider.current is None


@pytest.mark.asyncio
async def test_firebase_unreachable_maps_to_network_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        identity_module.httpx, "AsyncClient", lambda *_, **__: UnreachableAsyncClient()
    )
    provider = FirebaseIdentityProvider("api-key")

    with pytest.raises(AuthError) as exc_info:
        await provider.send_password_reset("ada@example.com")

    assert exc_info.value.code == NETWORK_REQUEST_FAILED


@pytest.mark.asyncio
async def test_firebase_update_profile_uses_current_token(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = install_responses(
        monkeypatch,
        StubResponse(200, {"localId": "uid-42", "email": "ada@example.com", "idToken": "token-1"}),
        StubResponse(200, {"localId": "uid-42", "displayName": "Ada", "idToken": "token-2"}),
    )
    provider = FirebaseIdentityProvider("api-key")
    await provider.sign_in("ada@example.com", "s3cret!")

    updated = await provider.update_profile(display_name="Ada")

    assert updated.display_name == "Ada"
    assert updated.uid == "uid-42"
    assert calls[1]["json"]["idToken"] == "token-1"
    assert calls[1]["json"]["displayName"] == "Ada"
    assert "photoUrl" not in calls[1]["json"]
    assert provider.id_token == "token-2"


@pytest.mark.asyncio
async def test_firebase_federated_sign_in_wraps_credential(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = install_responses(
        monkeypatch,
        StubResponse(
            200,
            {
                "localId": "uid-7",
                "email": "grace@example.com",
                "displayName": "Grace",
                "photoUrl": "https://img.example/grace.png",
                "idToken": "token-9",
            },
        ),
    )
    provider = FirebaseIdentityProvider("api-key", request_uri="http://localhost:8000")

    identity = await provider.sign_in_with_federated("google-id-token")

    assert identity.display_name == "Grace"
    assert identity.photo_url == "https://img.example/grace.png"
    body = calls[0]["json"]
    assert body["postBody"] == "id_token=google-id-token&providerId=google.com"
    assert body["requestUri"] == "http://localhost:8000"


@pytest.mark.asyncio
async def test_listeners_receive_current_identity_then_changes() -> None:
    provider = InMemoryIdentityProvider()
    seen: list[str | None] = []

    subscription = provider.on_identity_changed(
        lambda identity: seen.append(identity.email if identity else None)
    )
    assert seen == []
    await asyncio.sleep(0)
    assert seen == [None]

    await provider.create_user("Ada@Example.com", "s3cret!")
    await provider.sign_out()
    subscription.unsubscribe()
    await provider.sign_in("ada@example.com", "s3cret!")

    assert seen == [None, "ada@example.com", None]


@pytest.mark.asyncio
async def test_in_memory_provider_rejects_weak_password_and_bad_login() -> None:
    provider = InMemoryIdentityProvider()

    with pytest.raises(AuthError) as weak:
        await provider.create_user("ada@example.com", "123")
    assert weak.value.code == "WEAK_PASSWORD"

    await provider.create_user("ada@example.com", "s3cret!")
    with pytest.raises(AuthError) as bad_login:
        await provider.sign_in("ada@example.com", "wrong-password")
    assert bad_login.value.code == "INVALID_LOGIN_CREDENTIALS"

    with pytest.raises(AuthError) as missing_credential:
        await provider.sign_in_with_federated("  ")
    assert missing_credential.value.code == "INVALID_IDP_RESPONSE"


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{"idToken": "token-1"}, ["unexpected"]])
async def test_firebase_sign_in_rejects_responses_without_user(
    payload: Any, monkeypatch: pytest.MonkeyPatch
) -> None:
    install_responses(monkeypatch, StubResponse(200, payload))
    provider = FirebaseIdentityProvider("api-key")

    with pytest.raises(AuthError) as exc_info:
        await provider.sign_in("ada@example.com", "s3cret!")

    assert exc_info.value.code == INVALID_RESPONSE
    assert provider.current is None
    assert provider.id_token is None
