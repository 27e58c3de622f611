"""
Console entry point: runs the Typer app and turns failures into error panels.
"""

import asyncio
import logging
import os
import sys

import typer
from rich.console import Console

import frontcache.cli.app as cli
from frontcache.cli.formatters import format_error_with_suggestions
from frontcache.exceptions import ConfigurationError, FetchError, FrontcacheError

log = logging.getLogger("frontcache")


def _error_context(error: FrontcacheError) -> dict | None:
    """Extra detail shown under the suggestions for known error kinds."""
    if isinstance(error, FetchError) and error.path:
        return {"path": error.path}
    if isinstance(error, ConfigurationError):
        return {"config_file": str(cli.CONFIG_FILE)}
    return None


def main() -> None:
    # Windows consoles default to a legacy code page; the panels need UTF-8.
    if os.name == "nt":
        for stream in (sys.stdout, sys.stderr):
            reconfigure = getattr(stream, "reconfigure", None)
            if reconfigure:
                reconfigure(encoding="utf-8")

    console = Console()
    try:
        cli.app()
    except (typer.Exit, typer.Abort):
        pass
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("\n[yellow]Interrupted, cache left as is.[/yellow]")
        sys.exit(0)
    except FrontcacheError as e:
        console.print()
        console.print(format_error_with_suggestions(e, _error_context(e)))
        sys.exit(1)
    except Exception as e:
        console.print()
        console.print(format_error_with_suggestions(e, {"type": "Unexpected"}))
        log.debug("Full traceback:", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
