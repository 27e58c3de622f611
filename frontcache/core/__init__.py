"""
Core Runtime Layer.

Wires the storage and API layers together for a running process.
"""

from .runtime import CacheRuntime

__all__ = ["CacheRuntime"]
