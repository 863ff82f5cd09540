from __future__ import annotations

import pytest

from botframe.adapter import BotFrameworkAdapter
from botframe.bootstrap import build_adapter
from botframe.config import Settings
from botframe.errors import ConfigurationError
from botframe.hook_runtime import create_plugin_manager
from botframe.middleware import TenantIdWorkaroundForTeamsMiddleware


def _settings(**values: object) -> Settings:
    return Settings(_env_file=None, **values)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_build_adapter_wires_configured_credentials() -> None:
    adapter = build_adapter(
        _settings(app_id="app-1", app_password="secret", credential_cache_max_entries=3),
        load_entrypoints=False,
    )

    assert isinstance(adapter, BotFrameworkAdapter)
    assert isinstance(adapter.middleware[0], TenantIdWorkaroundForTeamsMiddleware)

    credentials = await adapter.credential_cache.get_app_credentials("app-1")
    assert credentials.password == "secret"
    assert credentials.token_endpoint.endswith("/oauth2/v2.0/token")


def test_build_adapter_requires_password_for_app_id() -> None:
    with pytest.raises(ConfigurationError, match="BOTFRAME_APP_PASSWORD"):
        build_adapter(_settings(app_id="app-1"), load_entrypoints=False)


def test_build_adapter_uses_given_plugin_manager() -> None:
    plugin_manager = create_plugin_manager()

    adapter = build_adapter(_settings(), plugin_manager=plugin_manager)

    assert adapter.hook_runtime.plugin_manager is plugin_manager


def test_settings_read_prefixed_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BOTFRAME_CONNECTOR_RETRY_ATTEMPTS", "5")
    monkeypatch.setenv("BOTFRAME_JWT_ALGORITHMS", '["HS256"]')

    settings = _settings()

    assert settings.connector_retry_attempts == 5
    assert settings.jwt_algorithms == ["HS256"]
    assert settings.app_password is None


def test_build_adapter_bounds_the_connector_pool() -> None:
    adapter = build_adapter(_settings(connector_max_clients=8), load_entrypoints=False)

    assert adapter.connector_factory.max_clients == 8
