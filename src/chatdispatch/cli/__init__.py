from __future__ import annotations

from pathlib import Path

import anyio
import typer

from .. import __version__
from ..cache import TenantSettings
from ..config import ConfigError
from ..errors import TransientStoreError
from ..logging import get_logger, setup_logging
from ..settings import load_settings
from ..store import SqliteSettingsStore
from .replay import replay_cmd

logger = get_logger(__name__)

app = typer.Typer(
    add_completion=False,
    invoke_without_command=True,
    help="Inbound event dispatch for multi-tenant chat sessions.",
)
settings_app = typer.Typer(help="Read and write tenant settings.")
app.add_typer(settings_app, name="settings")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def app_main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        help="Show the version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    debug: bool = typer.Option(False, "--debug", help="Log to the console at debug level."),
) -> None:
    setup_logging(debug=debug)
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


app.command(name="replay")(replay_cmd)


def _open_store(config_path: Path | None) -> SqliteSettingsStore:
    settings, _ = load_settings(config_path)
    return SqliteSettingsStore(settings.store_path)


@settings_app.command(name="get")
def settings_get(
    tenant: str = typer.Argument(..., help="Tenant id."),
    config_path: Path | None = typer.Option(
        None, "--config", help="Path to chatdispatch.toml."
    ),
) -> None:
    """Print every stored setting for a tenant."""
    store = _open_store(config_path)
    try:
        rows = store.rows(tenant)
    except TransientStoreError as exc:
        raise ConfigError(f"Failed to read settings for {tenant}: {exc}") from exc
    if not rows:
        typer.echo(f"no settings stored for {tenant}")
        return
    for key, value in rows.items():
        typer.echo(f"{key} = {value!r}")


@settings_app.command(name="set")
def settings_set(
    tenant: str = typer.Argument(..., help="Tenant id."),
    key: str = typer.Argument(..., help="Setting name."),
    value: str = typer.Argument(..., help="New value."),
    config_path: Path | None = typer.Option(
        None, "--config", help="Path to chatdispatch.toml."
    ),
) -> None:
    """Validate and store one tenant setting."""
    settings, _ = load_settings(config_path)
    tenant_settings = TenantSettings(
        SqliteSettingsStore(settings.store_path),
        default_prefix=settings.default_prefix,
        ttl_s=settings.cache_ttl_s,
    )
    cache = tenant_settings.cache_for(key)
    if cache is None:
        raise ConfigError(f"Unknown setting {key!r}.")
    parsed = cache.coerce(value)
    if parsed is None:
        raise ConfigError(f"Invalid value {value!r} for {key}.")

    async def _write() -> None:
        await cache.set(tenant, parsed)

    try:
        anyio.run(_write)
    except TransientStoreError as exc:
        raise ConfigError(f"Failed to store {key} for {tenant}: {exc}") from exc
    typer.echo(f"{key} = {parsed!r}")


def main() -> None:
    try:
        app()
    except ConfigError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise SystemExit(1) from None
