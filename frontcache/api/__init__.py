"""
Frontend API Layer.

This package handles all communication with the remote frontend API.
"""

from .backoff import ExponentialBackoff
from .client import AssetLister, FileResponse, FrontendAPIClient

__all__ = ["AssetLister", "ExponentialBackoff", "FileResponse", "FrontendAPIClient"]
