"""Identities, credentials and the request authentication collaborator."""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Protocol

import httpx
import jwt
from loguru import logger

from botframe.errors import AuthenticationError
from botframe.schema import Activity


class AuthenticationConstants:
    AUDIENCE_CLAIM = "aud"
    APPID_CLAIM = "appid"
    SERVICE_URL_CLAIM = "serviceurl"
    VERSION_CLAIM = "ver"
    AUTHORIZED_PARTY = "azp"
    ANONYMOUS_AUTH_TYPE = "anonymous"
    EXTERNAL_BEARER_AUTH_TYPE = "ExternalBearer"
    BEARER_AUTH_TYPE = "Bearer"
    TO_CHANNEL_FROM_BOT_LOGIN_URL = "https://login.microsoftonline.com/botframework.com/oauth2/v2.0/token"
    TO_CHANNEL_FROM_BOT_OAUTH_SCOPE = "https://api.botframework.com/.default"
    OAUTH_URL = "https://api.botframework.com"
    GOVERNMENT_CHANNEL_SERVICE = "https://botframework.azure.us"


@dataclass(frozen=True)
class ClaimsIdentity:
    """Authenticated identity of a request and its claims."""

    authentication_type: str | None
    claims: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "claims", MappingProxyType(dict(self.claims)))

    @property
    def is_authenticated(self) -> bool:
        return bool(self.authentication_type)

    def get_claim_value(self, claim_type: str) -> str | None:
        return self.claims.get(claim_type)

    @classmethod
    def anonymous(cls) -> ClaimsIdentity:
        return cls(AuthenticationConstants.ANONYMOUS_AUTH_TYPE, {})

    @classmethod
    def for_bot(cls, app_id: str, authentication_type: str = AuthenticationConstants.EXTERNAL_BEARER_AUTH_TYPE) -> ClaimsIdentity:
        return cls(
            authentication_type,
            {AuthenticationConstants.AUDIENCE_CLAIM: app_id, AuthenticationConstants.APPID_CLAIM: app_id},
        )


class AppCredentials:
    """Bot application id and secret, able to mint connector access tokens.

    Tokens come from the client-credentials grant of the login service and are
    kept until shortly before they expire.
    """

    REFRESH_MARGIN_SECONDS = 300

    def __init__(
        self,
        app_id: str | None,
        password: str | None,
        *,
        token_endpoint: str = AuthenticationConstants.TO_CHANNEL_FROM_BOT_LOGIN_URL,
        oauth_scope: str = AuthenticationConstants.TO_CHANNEL_FROM_BOT_OAUTH_SCOPE,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.app_id = app_id
        self.password = password
        self.token_endpoint = token_endpoint
        self.oauth_scope = oauth_scope
        self.timeout_seconds = timeout_seconds
        self._token: str | None = None
        self._expires_at = 0.0

    @classmethod
    def empty(cls) -> AppCredentials:
        return cls(None, None)

    @property
    def is_empty(self) -> bool:
        return not self.app_id

    async def get_token(self, *, force_refresh: bool = False) -> str | None:
        """Return a bearer token, or None for empty credentials."""

        if self.is_empty:
            return None
        if not force_refresh and self._token and time.monotonic() < self._expires_at:
            return self._token

        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.post(
                self.token_endpoint,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.app_id,
                    "client_secret": self.password or "",
                    "scope": self.oauth_scope,
                },
            )
        if response.status_code >= 400:
            raise AuthenticationError(f"Token request for app {self.app_id} failed ({response.status_code})")
        payload = response.json()
        self._token = payload["access_token"]
        expires_in = float(payload.get("expires_in", 3600))
        self._expires_at = time.monotonic() + max(expires_in - self.REFRESH_MARGIN_SECONDS, 0)
        logger.debug("auth.token_refreshed app_id={} expires_in={}", self.app_id, expires_in)
        return self._token

    def __repr__(self) -> str:
        return f"AppCredentials(app_id={self.app_id!r})"


class CredentialProvider(Protocol):
    """Source of bot application secrets."""

    async def is_valid_app_id(self, app_id: str) -> bool: ...

    async def get_app_password(self, app_id: str) -> str | None: ...

    async def is_authentication_disabled(self) -> bool: ...


class SimpleCredentialProvider:
    """Credential provider for a single configured app id and password."""

    def __init__(self, app_id: str | None = None, password: str | None = None) -> None:
        self.app_id = app_id
        self.password = password

    async def is_valid_app_id(self, app_id: str) -> bool:
        return app_id == self.app_id

    async def get_app_password(self, app_id: str) -> str | None:
        return self.password if app_id == self.app_id else None

    async def is_authentication_disabled(self) -> bool:
        return not self.app_id


class ChannelProvider(Protocol):
    def get_channel_service(self) -> str | None: ...

    def is_government(self) -> bool: ...


class SimpleChannelProvider:
    def __init__(self, channel_service: str | None = None) -> None:
        self.channel_service = channel_service

    def get_channel_service(self) -> str | None:
        return self.channel_service

    def is_government(self) -> bool:
        return self.channel_service == AuthenticationConstants.GOVERNMENT_CHANNEL_SERVICE


@dataclass(frozen=True)
class AuthenticationConfiguration:
    """Key material and token rules used by the identity validator."""

    signing_key: str | None = None
    algorithms: tuple[str, ...] = ("RS256",)
    valid_issuers: tuple[str, ...] = ()
    leeway_seconds: float = 300.0


class IdentityValidator(Protocol):
    """Turns an inbound request's auth header into a claims identity."""

    async def authenticate(
        self,
        activity: Activity,
        auth_header: str | None,
        credential_provider: CredentialProvider,
        channel_provider: ChannelProvider | None,
        auth_configuration: AuthenticationConfiguration,
    ) -> ClaimsIdentity: ...


class JwtIdentityValidator:
    """Validate bearer tokens with PyJWT against a configured key."""

    async def authenticate(
        self,
        activity: Activity,
        auth_header: str | None,
        credential_provider: CredentialProvider,
        channel_provider: ChannelProvider | None,
        auth_configuration: AuthenticationConfiguration,
    ) -> ClaimsIdentity:
        if not auth_header or not auth_header.strip():
            if await credential_provider.is_authentication_disabled():
                return ClaimsIdentity.anonymous()
            raise AuthenticationError("Unauthorized Access. Request is not authorized")

        scheme, _, token = auth_header.strip().partition(" ")
        if scheme.casefold() != "bearer" or not token.strip():
            raise AuthenticationError("Authorization header must use the Bearer scheme")
        if not auth_configuration.signing_key:
            raise AuthenticationError("No signing key configured for token validation")

        try:
            decoded: dict[str, Any] = jwt.decode(
                token.strip(),
                auth_configuration.signing_key,
                algorithms=list(auth_configuration.algorithms),
                options={"verify_aud": False},
                leeway=auth_configuration.leeway_seconds,
            )
        except jwt.PyJWTError as exc:
            raise AuthenticationError(f"Invalid token: {exc}") from exc

        if auth_configuration.valid_issuers and decoded.get("iss") not in auth_configuration.valid_issuers:
            raise AuthenticationError(f"Invalid token issuer: {decoded.get('iss')}")

        audience = await _accepted_audience(decoded.get(AuthenticationConstants.AUDIENCE_CLAIM), credential_provider)
        if audience is None:
            raise AuthenticationError(f"Invalid AppId passed on token: {decoded.get(AuthenticationConstants.AUDIENCE_CLAIM)}")

        service_url = decoded.get(AuthenticationConstants.SERVICE_URL_CLAIM)
        if service_url and activity.service_url and service_url != activity.service_url:
            raise AuthenticationError(f"Service URL claim {service_url} does not match activity")

        channel = channel_provider.get_channel_service() if channel_provider is not None else None
        logger.debug("auth.token_validated aud={} channel_service={}", audience, channel or "<public>")
        claims = {key: str(value) for key, value in decoded.items() if value is not None}
        claims[AuthenticationConstants.AUDIENCE_CLAIM] = audience
        return ClaimsIdentity(AuthenticationConstants.BEARER_AUTH_TYPE, claims)


async def _accepted_audience(audience: Any, credential_provider: CredentialProvider) -> str | None:
    """Return the first `aud` value the provider accepts; `aud` may be a list."""
    candidates = audience if isinstance(audience, list) else [audience]
    for candidate in candidates:
        if candidate and await credential_provider.is_valid_app_id(str(candidate)):
            return str(candidate)
    return None
