"""Command line entry point for running and inspecting an adapter."""

from __future__ import annotations

import importlib
from pathlib import Path
from typing import Any

import typer
from pydantic import SecretStr

from botframe.bootstrap import build_adapter
from botframe.config import load_settings
from botframe.errors import ConfigurationError
from botframe.integration import DEFAULT_ROUTE, create_app
from botframe.logging_utils import configure_logging

app = typer.Typer(name="botframe", help="Bot Framework channel adapter", add_completion=False)


def load_bot(target: str) -> Any:
    """Resolve a `module:attribute` reference to the bot callback."""

    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(f"Bot reference must look like 'module:attribute', got '{target}'")
    module = importlib.import_module(module_name)
    bot: Any = module
    for part in attr.split("."):
        bot = getattr(bot, part)
    if not callable(bot):
        raise ConfigurationError(f"Bot reference '{target}' is not callable")
    return bot


@app.command()
def serve(
    bot: str = typer.Option(..., "--bot", help="Bot callback as module:attribute"),
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(3978, "--port"),
    route: str = typer.Option(DEFAULT_ROUTE, "--route", help="Webhook path"),
    env_file: Path | None = typer.Option(None, "--env-file", help="Settings file"),  # noqa: B008
) -> None:
    """Serve the messaging webhook."""

    import uvicorn

    settings = load_settings(env_file)
    configure_logging(profile="console" if settings.log_profile == "console" else "default", level=settings.log_level)
    try:
        callback = load_bot(bot)
        adapter = build_adapter(settings)
    except ConfigurationError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    uvicorn.run(create_app(adapter, callback, route=route), host=host, port=port, log_level=settings.log_level.lower())


@app.command("hooks")
def list_hooks() -> None:
    """Show hook implementation mapping."""

    try:
        adapter = build_adapter(load_settings())
    except ConfigurationError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    report = adapter.hook_report()
    if not report:
        typer.echo("(no hook implementations)")
        return
    for hook_name, plugin_names in report.items():
        typer.echo(f"{hook_name}: {', '.join(plugin_names)}")


@app.command("settings")
def show_settings(
    env_file: Path | None = typer.Option(None, "--env-file", help="Settings file"),  # noqa: B008
) -> None:
    """Print the effective settings with secrets masked."""

    settings = load_settings(env_file)
    for name, value in settings.model_dump().items():
        if isinstance(value, SecretStr):
            value = "**********" if value.get_secret_value() else ""
        typer.echo(f"{name}={'' if value is None else value}")
