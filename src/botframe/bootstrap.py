"""Build a configured adapter from settings."""

from __future__ import annotations

from functools import partial

import pluggy

from botframe.adapter import BotFrameworkAdapter
from botframe.auth import AppCredentials, AuthenticationConfiguration, SimpleChannelProvider, SimpleCredentialProvider
from botframe.config import Settings, load_settings
from botframe.connector import PooledConnectorClientFactory
from botframe.credentials import AppCredentialCache, EvictionPolicy, LRUPolicy, TTLPolicy, UnboundedPolicy
from botframe.errors import ConfigurationError
from botframe.hook_runtime import create_plugin_manager


def build_eviction_policy(settings: Settings) -> EvictionPolicy:
    if settings.credential_cache_max_entries and settings.credential_cache_ttl_seconds:
        raise ConfigurationError("Configure either credential_cache_max_entries or credential_cache_ttl_seconds, not both")
    if settings.credential_cache_max_entries:
        return LRUPolicy(settings.credential_cache_max_entries)
    if settings.credential_cache_ttl_seconds:
        return TTLPolicy(settings.credential_cache_ttl_seconds)
    return UnboundedPolicy()


def build_adapter(
    settings: Settings | None = None,
    *,
    plugin_manager: pluggy.PluginManager | None = None,
    load_entrypoints: bool = True,
) -> BotFrameworkAdapter:
    """Wire providers, credential cache and connector pool into an adapter."""

    settings = settings or load_settings()
    password = settings.app_password.get_secret_value() if settings.app_password else None
    if settings.app_id and not password:
        raise ConfigurationError("BOTFRAME_APP_PASSWORD is required when BOTFRAME_APP_ID is set")

    credential_provider = SimpleCredentialProvider(settings.app_id, password)
    credential_cache = AppCredentialCache(
        credential_provider,
        policy=build_eviction_policy(settings),
        credentials_factory=partial(
            AppCredentials,
            token_endpoint=settings.token_endpoint,
            oauth_scope=settings.oauth_scope,
            timeout_seconds=settings.connector_timeout_seconds,
        ),
    )
    signing_key = settings.jwt_signing_key.get_secret_value() if settings.jwt_signing_key else None
    auth_configuration = AuthenticationConfiguration(
        signing_key=signing_key,
        algorithms=tuple(settings.jwt_algorithms),
        valid_issuers=tuple(settings.jwt_issuers),
    )
    connector_factory = PooledConnectorClientFactory(
        retry_attempts=settings.connector_retry_attempts,
        timeout_seconds=settings.connector_timeout_seconds,
        max_clients=settings.connector_max_clients,
    )
    return BotFrameworkAdapter(
        credential_provider,
        auth_configuration=auth_configuration,
        channel_provider=SimpleChannelProvider(settings.channel_service),
        credential_cache=credential_cache,
        connector_factory=connector_factory,
        plugin_manager=plugin_manager or create_plugin_manager(load_entrypoints=load_entrypoints),
    )
