"""
Request Safety Layer.

This package holds the policies that gate outbound requests.
"""

from .url_policy import AllowListUrlValidator, UrlValidator

__all__ = ["AllowListUrlValidator", "UrlValidator"]
