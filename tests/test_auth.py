from __future__ import annotations

import time
from typing import Any

import httpx
import jwt
import pytest

from botframe.auth import (
    AppCredentials,
    AuthenticationConfiguration,
    AuthenticationConstants,
    ClaimsIdentity,
    JwtIdentityValidator,
    SimpleChannelProvider,
    SimpleCredentialProvider,
)
from botframe.errors import AuthenticationError
from botframe.schema import Activity

SIGNING_KEY = "test-signing-key-with-enough-length-for-hs256"
CONFIG = AuthenticationConfiguration(signing_key=SIGNING_KEY, algorithms=("HS256",), valid_issuers=("https://issuer.test",))


def _token(**claims: Any) -> str:
    payload: dict[str, Any] = {
        "iss": "https://issuer.test",
        "aud": "app-1",
        "serviceurl": "https://smba.example.com",
        "exp": int(time.time()) + 600,
    }
    payload.update(claims)
    return jwt.encode({key: value for key, value in payload.items() if value is not None}, SIGNING_KEY, algorithm="HS256")


def _activity() -> Activity:
    return Activity(type="message", service_url="https://smba.example.com")


async def _authenticate(header: str | None, provider: SimpleCredentialProvider | None = None) -> ClaimsIdentity:
    return await JwtIdentityValidator().authenticate(
        _activity(),
        header,
        provider or SimpleCredentialProvider("app-1", "secret"),
        SimpleChannelProvider(),
        CONFIG,
    )


@pytest.mark.asyncio
async def test_valid_bearer_token_yields_claims_identity() -> None:
    identity = await _authenticate(f"Bearer {_token()}")

    assert identity.authentication_type == AuthenticationConstants.BEARER_AUTH_TYPE
    assert identity.is_authenticated
    assert identity.get_claim_value("aud") == "app-1"
    assert identity.get_claim_value("serviceurl") == "https://smba.example.com"


@pytest.mark.asyncio
async def test_list_audience_accepts_the_configured_app_id() -> None:
    identity = await _authenticate(f"Bearer {_token(aud=['other-app', 'app-1'])}")

    assert identity.is_authenticated
    assert identity.get_claim_value("aud") == "app-1"


@pytest.mark.asyncio
async def test_empty_header_is_anonymous_when_auth_disabled() -> None:
    identity = await _authenticate("  ", SimpleCredentialProvider())

    assert identity == ClaimsIdentity.anonymous()
    assert identity.claims == {}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "header",
    [
        None,
        "Basic abc",
        "Bearer ",
        "Bearer not-a-jwt",
        f"Bearer {_token(aud='other-app')}",
        f"Bearer {_token(aud=['other-app', 'another-app'])}",
        f"Bearer {_token(iss='https://evil.test')}",
        f"Bearer {_token(serviceurl='https://elsewhere.example.com')}",
        f"Bearer {_token(exp=int(time.time()) - 3600)}",
    ],
)
async def test_invalid_headers_are_rejected(header: str | None) -> None:
    with pytest.raises(AuthenticationError):
        await _authenticate(header)


@pytest.mark.asyncio
async def test_missing_signing_key_rejects_tokens() -> None:
    with pytest.raises(AuthenticationError, match="signing key"):
        await JwtIdentityValidator().authenticate(
            _activity(),
            f"Bearer {_token()}",
            SimpleCredentialProvider("app-1", "secret"),
            None,
            AuthenticationConfiguration(),
        )


def test_claims_identity_is_read_only() -> None:
    identity = ClaimsIdentity.for_bot("app-1")

    assert identity.authentication_type == AuthenticationConstants.EXTERNAL_BEARER_AUTH_TYPE
    assert identity.get_claim_value("appid") == "app-1"
    with pytest.raises(TypeError):
        identity.claims["aud"] = "other"  # type: ignore[index]


def test_channel_provider_detects_government_cloud() -> None:
    assert SimpleChannelProvider(AuthenticationConstants.GOVERNMENT_CHANNEL_SERVICE).is_government()
    assert not SimpleChannelProvider().is_government()


@pytest.mark.asyncio
async def test_empty_credentials_have_no_token() -> None:
    assert await AppCredentials.empty().get_token() is None


@pytest.mark.asyncio
async def test_app_credentials_fetch_and_cache_token(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[dict[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(dict(httpx.QueryParams(request.content.decode())))
        return httpx.Response(200, json={"access_token": "tok-1", "expires_in": 3600})

    transport = httpx.MockTransport(handler)
    real_client = httpx.AsyncClient

    def client_factory(**kwargs: Any) -> httpx.AsyncClient:
        return real_client(transport=transport, **kwargs)

    monkeypatch.setattr("botframe.auth.httpx.AsyncClient", client_factory)
    credentials = AppCredentials("app-1", "secret", token_endpoint="https://login.test/token")

    assert await credentials.get_token() == "tok-1"
    assert await credentials.get_token() == "tok-1"
    assert len(calls) == 1
    assert calls[0]["grant_type"] == "client_credentials"
    assert calls[0]["client_id"] == "app-1"
    assert calls[0]["scope"] == AuthenticationConstants.TO_CHANNEL_FROM_BOT_OAUTH_SCOPE


@pytest.mark.asyncio
async def test_app_credentials_token_failure_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(401, json={"error": "invalid_client"}))
    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        "botframe.auth.httpx.AsyncClient",
        lambda **kwargs: real_client(transport=transport, **kwargs),
    )

    with pytest.raises(AuthenticationError):
        await AppCredentials("app-1", "wrong").get_token()
