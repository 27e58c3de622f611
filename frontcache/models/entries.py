"""
Records persisted by the content cache and the hash registry.

Field names on disk follow the camelCase layout of the desktop shell store file
so existing stores remain readable.
"""

import time
from dataclasses import dataclass, field
from typing import Any


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


@dataclass
class CacheEntry:
    """One cached remote file."""

    content: str
    etag: str | None = None
    fetched_at: int = 0
    hash: str | None = None
    # Set when the entry was returned by the stale fallback. Never persisted.
    stale: bool = field(default=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "etag": self.etag,
            "fetchedAt": self.fetched_at,
            "hash": self.hash,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "CacheEntry | None":
        """Builds an entry from a stored document, or None if it is not one."""
        if not isinstance(data, dict) or not isinstance(data.get("content"), str):
            return None
        fetched_at = data.get("fetchedAt")
        return cls(
            content=data["content"],
            etag=data.get("etag"),
            fetched_at=int(fetched_at) if isinstance(fetched_at, (int, float)) else 0,
            hash=data.get("hash"),
        )

    def age_ms(self, now: int) -> int:
        return now - self.fetched_at


@dataclass
class HashManifest:
    """Server-supplied mapping of logical file paths to content digests."""

    version: str
    assets: dict[str, str] = field(default_factory=dict)
    fetched_at: int = 0

    def is_fresh(self, now: int, ttl_ms: int) -> bool:
        return now - self.fetched_at < ttl_ms

    def get(self, path: str) -> str | None:
        return self.assets.get(normalize_path(path))

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "data": {"assets": dict(self.assets)},
            "fetchedAt": self.fetched_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "HashManifest | None":
        if not isinstance(data, dict):
            return None
        inner = data.get("data")
        assets = inner.get("assets") if isinstance(inner, dict) else None
        if not isinstance(assets, dict):
            return None
        return cls(
            version=str(data.get("version", "")),
            assets={
                normalize_path(str(k)): str(v)
                for k, v in assets.items()
                if isinstance(v, str)
            },
            fetched_at=int(data.get("fetchedAt") or 0),
        )


@dataclass(frozen=True)
class OfflineQueueEntry:
    """A request that failed while offline and waits for a single replay."""

    path_rel: str
    base_path: str
    ttl: int | None


@dataclass
class ReplaySummary:
    """Outcome of draining the offline queue."""

    synced: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.synced) + len(self.failed)


def normalize_path(path: str) -> str:
    """Strips leading slashes so manifest lookups are layout independent."""
    return path.lstrip("/")
