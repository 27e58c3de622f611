"""
Allow-list URL policy applied before any network request leaves the process.
"""

import logging
from typing import Iterable, Protocol
from urllib.parse import urlparse

log = logging.getLogger(__name__)

LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1", "0.0.0.0"})  # noqa: S104


class UrlValidator(Protocol):
    """Decides whether a URL may be requested."""

    def is_safe(self, url: str) -> bool: ...


class AllowListUrlValidator:
    """
    Accepts local development hosts on any scheme, and remote hosts only over
    HTTPS when they equal, or are a subdomain of, an allowed domain.
    """

    def __init__(self, allowed_domains: Iterable[str]):
        self.allowed_domains = tuple(
            d.lower().strip(".") for d in allowed_domains if d and d.strip(".")
        )

    def is_safe(self, url: str) -> bool:
        try:
            parsed = urlparse(url)
            hostname = (parsed.hostname or "").lower()
        except ValueError as e:
            log.debug(f"Invalid URL '{url}': {e}")
            return False

        if not hostname:
            log.debug(f"Blocked URL without host: {url}")
            return False

        if hostname in LOCAL_HOSTS:
            return True

        if parsed.scheme != "https":
            log.warning(f"Blocked non-HTTPS URL: {url}")
            return False

        if not any(
            hostname == domain or hostname.endswith("." + domain)
            for domain in self.allowed_domains
        ):
            log.warning(f"Blocked non-whitelisted domain: {hostname}")
            return False

        return True
