"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import json
import logging
import os
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from frontcache import __version__
from frontcache.core.runtime import CacheRuntime
from frontcache.exceptions import ConfigurationError, FrontcacheError
from frontcache.models.config import CacheConfig
from frontcache.models.entries import CacheEntry, now_ms
from frontcache.storage.config_manager import ConfigManager
from frontcache.storage.encrypted_store import EncryptedStore
from frontcache.utils.formatting import format_duration, format_size
from frontcache.utils.structured_logger import StructuredLogger

from .formatters import (
    print_config,
    print_entry,
    print_manifest,
    print_replay_summary,
    print_stats_table,
    print_validation_table,
)

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("frontcache")

app = typer.Typer(
    name="frontcache",
    help=(
        "An encrypted offline cache for frontend pages and assets. Use"
        " 'frontcache <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)
store_app = typer.Typer(help="Read and write raw values in the encrypted store.")
app.add_typer(store_app, name="store")


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "frontcache"


CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"

# Directory for JSONL event logs, set by the --log-dir option.
_log_dir: Path | None = None


def _load_config(cli_options: dict | None = None) -> CacheConfig:
    return ConfigManager(CONFIG_FILE).load_config(cli_options)


def _build_runtime(config: CacheConfig) -> CacheRuntime:
    event_log = None
    if _log_dir is not None:
        event_log = StructuredLogger("frontcache.events", log_dir=_log_dir)
    return CacheRuntime(config, event_log=event_log)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the current configuration."
    ),
    log_dir: Path | None = typer.Option(  # noqa: B008
        None, "--log-dir", help="Write structured JSONL event logs to this directory."
    ),
):
    """Frontend Cache CLI"""
    global _log_dir

    if version:
        console.print(f"[bold]frontcache[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "INFO"
    if verbose >= 2:
        log_level = "DEBUG"
    logging.getLogger("frontcache").setLevel(log_level)
    _log_dir = log_dir

    if show_config:
        print_config(CONFIG_FILE, _load_config())
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    base_url: str = typer.Option(
        CacheConfig().base_url, "--base-url", "-u", help="Frontend API base URL."
    ),
    mode: str = typer.Option(
        "hash", "--mode", "-m", help="Validation mode: 'hash' or 'time'."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing file without asking."
    ),
):
    """Write a configuration file with default values."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    settings = {"base_url": base_url, "validation_mode": mode}
    try:
        CacheConfig(**settings)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings:\n{e}") from e
    ConfigManager(CONFIG_FILE).save_new_config(settings)
    console.print(
        f"\n[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]"
    )
    console.print("Try: [cyan]frontcache fetch login/index.html[/cyan]")


@app.command()
def validate():
    """Validate the current configuration."""
    try:
        print_validation_table(_load_config())
    except FrontcacheError as e:
        console.print(f"[red]✗ Configuration is invalid: {e}[/red]")
        raise typer.Exit(code=1) from e


async def _fetch_and_show(
    path: str, asset: bool, ttl: int | None, show: bool, mode: str | None
) -> None:
    config = _load_config({"validation_mode": mode} if mode else None)
    async with _build_runtime(config) as runtime:
        if asset:
            entry = await runtime.cache.fetch_asset(path, ttl)
        else:
            entry = await runtime.cache.fetch_file(path, ttl)
        print_entry(path, entry, now_ms(), show_content=show)
        print_stats_table(runtime.cache.stats)


@app.command()
def fetch(
    path: str = typer.Argument(..., help="Page file, e.g. login/index.html."),
    ttl: int | None = typer.Option(
        None, "--ttl", help="Max age in milliseconds (time mode)."
    ),
    show: bool = typer.Option(False, "--show", "-s", help="Print the content."),
    mode: str | None = typer.Option(
        None, "--mode", "-m", help="Override the validation mode."
    ),
):
    """Fetch a page file through the cache."""
    asyncio.run(_fetch_and_show(path, False, ttl, show, mode))


@app.command(name="fetch-asset")
def fetch_asset(
    path: str = typer.Argument(..., help="Asset path, e.g. assets/css/main.css."),
    ttl: int | None = typer.Option(
        None, "--ttl", help="Max age in milliseconds (time mode)."
    ),
    show: bool = typer.Option(False, "--show", "-s", help="Print the content."),
    mode: str | None = typer.Option(
        None, "--mode", "-m", help="Override the validation mode."
    ),
):
    """Fetch a shared asset through the cache."""
    asyncio.run(_fetch_and_show(path, True, ttl, show, mode))


@app.command()
def clear(path: str = typer.Argument(..., help="Logical path to drop.")):
    """Remove one cached file."""
    config = _load_config()
    with EncryptedStore(Path(config.data_dir), config.encryption_key or None) as store:
        store.remove(config.storage_prefix + path)
    console.print(f"[green]✓ Cleared {path}.[/green]")


@app.command(name="clear-all")
def clear_all(
    force: bool = typer.Option(
        False, "--force", "-f", help="Bypass the confirmation prompt."
    ),
):
    """Remove every cached file. Other store values are kept."""
    if not force and not typer.confirm("Remove every cached file?"):
        console.print("[yellow]Operation cancelled.[/yellow]")
        raise typer.Abort()

    config = _load_config()
    with EncryptedStore(Path(config.data_dir), config.encryption_key or None) as store:
        keys = store.keys(config.storage_prefix)
        for key in keys:
            store.remove(key)
    console.print(f"[green]✓ Removed {len(keys)} cached files.[/green]")


@app.command()
def sweep():
    """Remove cached files older than the retention window."""

    async def _sweep():
        async with _build_runtime(_load_config()) as runtime:
            removed = runtime.cache.sweep()
        console.print(f"[green]✓ Sweep removed {removed} entries.[/green]")

    asyncio.run(_sweep())


@app.command()
def manifest(
    refresh: bool = typer.Option(
        False, "--refresh", "-r", help="Fetch a new manifest from the server."
    ),
):
    """Show the hash manifest."""

    async def _manifest():
        config = _load_config({"validation_mode": "hash"})
        async with _build_runtime(config) as runtime:
            registry = runtime.hash_registry
            if refresh:
                registry.invalidate()
            print_manifest(await registry.get_manifest(), now_ms())

    asyncio.run(_manifest())


@app.command()
def sync(
    pages: list[str] | None = typer.Option(  # noqa: B008
        None, "--page", "-p", help="Page to preload (repeatable)."
    ),
):
    """Preload pages and refresh every CSS/JS asset."""

    async def _sync():
        async with _build_runtime(_load_config()) as runtime:
            console.print("[cyan]Preloading pages...[/cyan]")
            loaded = await runtime.cache.preload_pages(pages or None)
            console.print("[cyan]Refreshing assets...[/cyan]")
            warmed = await runtime.cache.refresh_assets()
            print_stats_table(
                runtime.cache.stats,
                {"Pages Loaded": len(loaded), "Assets Warmed": warmed},
            )

    asyncio.run(_sync())


@app.command()
def replay(
    paths: list[str] = typer.Argument(  # noqa: B008
        ..., help="Page files requested while offline."
    ),
):
    """Queue page requests offline, then reconnect and replay them once."""

    async def _replay():
        async with _build_runtime(_load_config()) as runtime:
            cache = runtime.cache
            await cache.set_online_status(False)
            for path in paths:
                try:
                    await cache.fetch_file(path)
                except FrontcacheError as e:
                    log.debug(f"Offline fetch of {path} failed: {e}")
            console.print(f"[dim]{len(cache.offline_queue)} requests queued.[/dim]")
            print_replay_summary(await cache.set_online_status(True))

    asyncio.run(_replay())


@app.command()
def stats():
    """Show what is held in the cache."""
    config = _load_config()
    with EncryptedStore(Path(config.data_dir), config.encryption_key or None) as store:
        keys = store.keys(config.storage_prefix)
        entries = [CacheEntry.from_dict(store.get(key)) for key in keys]
    valid = [e for e in entries if e]
    total_bytes = sum(len(e.content.encode("utf-8")) for e in valid)
    now = now_ms()
    oldest = max((e.age_ms(now) for e in valid), default=0)

    console.print(f"[bold]Cached files:[/bold] {len(valid)}")
    console.print(f"[bold]Total size:[/bold] {format_size(total_bytes)}")
    console.print(f"[bold]Oldest entry:[/bold] {format_duration(oldest / 1000)}")
    for key in sorted(keys):
        console.print(f"  [cyan]{key[len(config.storage_prefix):]}[/cyan]")


@store_app.command("get")
def store_get(key: str = typer.Argument(..., help="Store key.")):
    """Print a decrypted value."""
    config = _load_config()
    with EncryptedStore(Path(config.data_dir), config.encryption_key or None) as store:
        value = store.get(key)
    if value is None:
        console.print(f"[yellow]No value for '{key}'.[/yellow]")
        raise typer.Exit(code=1)
    console.print_json(json.dumps(value))


@store_app.command("set")
def store_set(
    key: str = typer.Argument(..., help="Store key."),
    value: str = typer.Argument(..., help="JSON value (bare strings are accepted)."),
):
    """Encrypt and store a value."""
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        parsed = value
    config = _load_config()
    with EncryptedStore(Path(config.data_dir), config.encryption_key or None) as store:
        store.set(key, parsed)
    console.print(f"[green]✓ Stored '{key}'.[/green]")


@store_app.command("remove")
def store_remove(key: str = typer.Argument(..., help="Store key.")):
    """Delete a value. Missing keys are ignored."""
    config = _load_config()
    with EncryptedStore(Path(config.data_dir), config.encryption_key or None) as store:
        store.remove(key)
    console.print(f"[green]✓ Removed '{key}'.[/green]")
