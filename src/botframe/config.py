"""Configuration management for botframe."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from botframe.auth import AuthenticationConstants


class Settings(BaseSettings):
    """Adapter settings, read from `BOTFRAME_*` environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_prefix="BOTFRAME_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Bot registration
    app_id: str | None = Field(default=None, description="Bot application id; empty disables authentication")
    app_password: SecretStr | None = Field(default=None, description="Bot application secret")
    channel_service: str | None = Field(default=None, description="Channel service URL for sovereign clouds")

    # Token service
    token_endpoint: str = Field(default=AuthenticationConstants.TO_CHANNEL_FROM_BOT_LOGIN_URL)
    oauth_scope: str = Field(default=AuthenticationConstants.TO_CHANNEL_FROM_BOT_OAUTH_SCOPE)
    oauth_endpoint: str = Field(default=AuthenticationConstants.OAUTH_URL)

    # Inbound token validation
    jwt_signing_key: SecretStr | None = Field(default=None, description="Key used to verify inbound bearer tokens")
    jwt_algorithms: list[str] = Field(default_factory=lambda: ["RS256"])
    jwt_issuers: list[str] = Field(default_factory=list)

    # Credential cache
    credential_cache_max_entries: int | None = Field(default=None, ge=1)
    credential_cache_ttl_seconds: float | None = Field(default=None, gt=0)

    # Connector
    connector_retry_attempts: int = Field(default=2, ge=0)
    connector_timeout_seconds: float = Field(default=30.0, gt=0)
    connector_max_clients: int = Field(default=256, ge=1)

    # Logging
    log_level: str = Field(default="INFO")
    log_profile: str = Field(default="default")


def load_settings(env_file: Path | None = None) -> Settings:
    """Load settings, optionally from a specific `.env` file."""

    if env_file is not None:
        return Settings(_env_file=env_file)  # type: ignore[call-arg]
    return Settings()
