"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from frontcache.models.config import CacheConfig
from frontcache.models.entries import CacheEntry, HashManifest, ReplaySummary
from frontcache.models.stats import CacheStats
from frontcache.utils.formatting import format_duration, format_size, format_ttl


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "ConfigurationError": [
            "• Check the values in your configuration file.",
            "• Run `frontcache init --force` to write a fresh default file.",
        ],
        "NotFoundError": [
            "• Verify the path; pages live under `pages/`, assets under `assets/`.",
            "• The file may have been removed from the server.",
        ],
        "RateLimitedError": [
            "• The server is throttling requests. Wait a minute and retry.",
        ],
        "TransientFetchError": [
            "• Check your internet connection.",
            "• The frontend API might be temporarily unavailable.",
            "• Please try again in a few minutes.",
        ],
        "UnsafeUrlError": [
            "• The request URL is not on the allow-list.",
            "• Add the host to `allowed_domains` or use HTTPS.",
        ],
        "StoreError": [
            "• The store file could not be written. Check disk space and permissions.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    suggestion_text = Text("\n".join(suggestions))

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(suggestion_text)

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config: CacheConfig):
    """Displays the current configuration, hiding sensitive data."""
    console = Console()
    content = ""
    for key, value in config.model_dump().items():
        if key == "encryption_key":
            value = "[hidden]" if value else "(key file)"
        elif isinstance(value, list):
            value = ", ".join(value)
        content += f"{key} = {value}\n"

    console.print(
        Panel(
            content.strip(),
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_validation_table(config: CacheConfig):
    """Displays a summary of the current settings."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    table.add_row("API:", f"[green]{config.base_url}[/green]")
    table.add_row("Validation:", config.validation_mode)
    if config.validation_mode == "time":
        table.add_row("Page TTL:", format_ttl(config.page_ttl))
        table.add_row("Asset TTL:", format_ttl(config.asset_ttl))
    else:
        table.add_row("Manifest TTL:", format_ttl(config.manifest_ttl))
        table.add_row(
            "Unmapped Paths:",
            "trusted" if config.trust_unmapped_paths else "always refetched",
        )
    table.add_row("Retention:", format_ttl(config.max_cache_age))
    table.add_row("Attempts:", str(config.max_attempts))
    table.add_row("Data Dir:", f"[dim]{config.data_dir}[/dim]")

    console.print(
        Panel(
            table,
            title="[bold green]✓ Validated Settings[/bold green]",
            border_style="green",
        )
    )


def print_entry(path: str, entry: CacheEntry, now_ms: int, show_content: bool = False):
    """Displays one cache entry, optionally with its content."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan", justify="right")
    table.add_column()

    table.add_row("Size:", format_size(len(entry.content.encode("utf-8"))))
    table.add_row("ETag:", entry.etag or "[dim]none[/dim]")
    table.add_row("Hash:", entry.hash or "[dim]none[/dim]")
    table.add_row("Age:", format_duration(max(entry.age_ms(now_ms), 0) / 1000))

    title = f"[bold]{path}[/bold]"
    border = "green"
    if entry.stale:
        title += " [yellow](stale)[/yellow]"
        border = "yellow"

    console.print(Panel(table, title=title, border_style=border, expand=False))
    if show_content:
        lexer = Path(path).suffix.lstrip(".") or "text"
        console.print(Syntax(entry.content, lexer, word_wrap=True))


def print_manifest(manifest: HashManifest | None, now_ms: int):
    """Displays the hash manifest."""
    console = Console()
    if manifest is None:
        console.print("[yellow]No hash manifest available.[/yellow]")
        return

    table = Table(
        title=f"Hash Manifest {manifest.version} "
        f"([dim]{format_duration(max(now_ms - manifest.fetched_at, 0) / 1000)} old[/dim])",
        box=box.ROUNDED,
    )
    table.add_column("Path", style="cyan")
    table.add_column("Digest", style="magenta", no_wrap=True)
    for path, digest in sorted(manifest.assets.items()):
        table.add_row(path, digest)
    console.print(table)


def print_stats_table(stats: CacheStats, extra: dict[str, Any] | None = None):
    """Displays cache statistics for this run."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan", justify="right", width=18)
    table.add_column(justify="left")

    table.add_row("Hits:", f"[green]{stats.hits}[/green]")
    table.add_row("Misses:", f"[yellow]{stats.misses}[/yellow]")
    table.add_row("Hit Rate:", f"{stats.hit_rate:.0%}")
    if stats.stale_served:
        table.add_row("Stale Served:", f"[yellow]{stats.stale_served}[/yellow]")
    if stats.queued_offline:
        table.add_row("Queued Offline:", str(stats.queued_offline))
    for key, value in (extra or {}).items():
        table.add_row(f"{key}:", str(value))

    console.print(
        Panel(
            table,
            title="[bold]Cache Summary[/bold]",
            border_style="cyan",
            box=box.DOUBLE,
            expand=False,
        )
    )


def print_replay_summary(summary: ReplaySummary):
    console = Console()
    if not summary.total:
        console.print("[dim]Offline queue was empty.[/dim]")
        return
    console.print(
        f"[green]✓ {len(summary.synced)} synced[/green], "
        f"[red]✗ {len(summary.failed)} failed[/red]"
    )
