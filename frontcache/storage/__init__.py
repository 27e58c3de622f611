"""
Storage Layer.

This package handles all data persistence: the encrypted key-value store,
the content cache and hash registry built on it, and the configuration file.
"""

from .config_manager import ConfigManager
from .content_cache import ContentCache
from .encrypted_store import EncryptedStore
from .hash_registry import HashRegistry, compute_digest

__all__ = [
    "ConfigManager",
    "ContentCache",
    "EncryptedStore",
    "HashRegistry",
    "compute_digest",
]
