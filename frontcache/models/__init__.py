"""
Data Models Layer.

This package contains the Pydantic configuration model and the records the
cache persists, such as cache entries and the hash manifest.
"""

from .config import CacheConfig
from .entries import CacheEntry, HashManifest, OfflineQueueEntry, ReplaySummary
from .stats import CacheStats, MetricsSink

__all__ = [
    "CacheConfig",
    "CacheEntry",
    "CacheStats",
    "HashManifest",
    "MetricsSink",
    "OfflineQueueEntry",
    "ReplaySummary",
]
