"""
Cache outcome statistics; the default metrics sink for the content cache.
"""

from dataclasses import dataclass
from typing import Protocol


class MetricsSink(Protocol):
    """Receives one observation per served request."""

    def record_cache_outcome(self, hit: bool) -> None: ...


@dataclass
class CacheStats:
    """Tracks cache hits and misses plus fallback outcomes for a session."""

    hits: int = 0
    misses: int = 0
    stale_served: int = 0
    queued_offline: int = 0
    replayed: int = 0

    def record_cache_outcome(self, hit: bool) -> None:
        if hit:
            self.hits += 1
        else:
            self.misses += 1

    def record_stale(self) -> None:
        self.stale_served += 1

    def record_queued(self) -> None:
        self.queued_offline += 1

    def record_replay(self, count: int) -> None:
        self.replayed += count

    @property
    def total_requests(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Fraction of served requests answered from cache (0.0 when idle)."""
        if not self.total_requests:
            return 0.0
        return self.hits / self.total_requests
