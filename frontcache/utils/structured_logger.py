"""
Machine-readable event log for the cache and the store.

Every event goes to the standard logger as ``[event] key=value`` text and,
when a log directory is given, to a JSON-lines file with one object per event.
"""

import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any, TextIO


class StructuredLogger:
    """
    Writes named events with keyword context.

    Usage:
        events = StructuredLogger("frontcache.events", log_dir=Path("logs"))
        events.info("cache_miss", path="pages/login/index.html", size_bytes=1532)
    """

    def __init__(
        self,
        name: str,
        log_dir: Path | None = None,
        enable_console: bool = True,
    ):
        """
        Args:
            name: Name of the standard logger that receives the text form.
            log_dir: Directory for the JSONL file; None keeps events in memory
                only as log records.
            enable_console: Also emit each event through ``logging``.
        """
        self.name = name
        self.enable_console = enable_console
        self._logger = logging.getLogger(name)
        self._context: dict[str, Any] = {"session_id": f"{int(time.time())}_{id(self)}"}

        self.json_path: Path | None = None
        self._json_file: TextIO | None = None
        if log_dir is not None:
            log_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.json_path = log_dir / f"frontcache_{stamp}.jsonl"
            self._json_file = open(self.json_path, "a", encoding="utf-8")  # noqa: SIM115

    def set_session_context(self, **context) -> None:
        """Adds fields that are attached to every following event."""
        self._context.update(context)

    def _emit(self, level: int, event: str, context: dict[str, Any]) -> None:
        if self.enable_console and self._logger.isEnabledFor(level):
            fields = " ".join(f"{k}={v}" for k, v in context.items())
            self._logger.log(level, f"[{event}] {fields}".rstrip())

        if self._json_file is None or self._json_file.closed:
            return
        record = {
            "timestamp": datetime.now().isoformat(),
            "level": logging.getLevelName(level),
            "event": event,
            **self._context,
            **context,
        }
        try:
            self._json_file.write(json.dumps(record, default=str) + "\n")
            self._json_file.flush()
        except (OSError, ValueError) as e:
            print(f"JSON logging failed: {e}", file=sys.stderr)

    def debug(self, event: str, **context) -> None:
        self._emit(logging.DEBUG, event, context)

    def info(self, event: str, **context) -> None:
        self._emit(logging.INFO, event, context)

    def warning(self, event: str, **context) -> None:
        self._emit(logging.WARNING, event, context)

    def error(self, event: str, **context) -> None:
        self._emit(logging.ERROR, event, context)

    def close(self) -> None:
        if self._json_file and not self._json_file.closed:
            self._json_file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class CacheEventLogger:
    """Events emitted by the content cache."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def cache_hit(self, path: str, age_s: float, reason: str):
        self.logger.debug("cache_hit", path=path, age_s=round(age_s, 1), reason=reason)

    def cache_miss(self, path: str, status_code: int, size_bytes: int):
        self.logger.debug(
            "cache_miss", path=path, status_code=status_code, size_bytes=size_bytes
        )

    def retry_scheduled(self, path: str, attempt: int, delay_s: float, error: str):
        self.logger.debug(
            "fetch_retry_scheduled",
            path=path,
            attempt=attempt,
            delay_s=round(delay_s, 2),
            error=error,
        )

    def stale_served(self, path: str, error: str):
        self.logger.warning("stale_served", path=path, error=error)

    def queued_offline(self, path: str, queue_size: int):
        self.logger.info("queued_offline", path=path, queue_size=queue_size)

    def replay_finished(self, path: str, ok: bool, error: str | None = None):
        """One replay attempt of a queued request."""
        if ok:
            self.logger.info("offline_replay_synced", path=path)
        else:
            self.logger.warning("offline_replay_failed", path=path, error=error)

    def sweep_completed(self, removed: int, remaining: int):
        self.logger.debug("cache_sweep_completed", removed=removed, remaining=remaining)


class StoreEventLogger:
    """Events emitted by the encrypted store."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def migrated(self, from_version: Any, to_version: int, migrated: int):
        self.logger.info(
            "store_migrated",
            from_version=from_version,
            to_version=to_version,
            migrated_entries=migrated,
        )

    def migration_failed(self, error: str):
        self.logger.error("store_migration_failed", error=error)

    def wiped(self, reason: str):
        self.logger.warning("store_wiped", reason=reason)
