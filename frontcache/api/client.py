"""
Async client for the frontend content API.

The client only speaks HTTP; deciding what a status code means for the cache
is left to :class:`frontcache.storage.content_cache.ContentCache`.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol

import aiohttp

from frontcache import __version__

log = logging.getLogger(__name__)


@dataclass
class FileResponse:
    """The parts of a file response the cache cares about."""

    status: int
    text: str
    etag: str | None
    reason: str = ""


class AssetLister(Protocol):
    """Provides the names of the stylesheets and scripts the frontend ships."""

    async def list_css_files(self) -> list[str]: ...

    async def list_js_files(self) -> list[str]: ...


class FrontendAPIClient:
    """
    Async client for the frontend API.

    Features:
    - Conditional GETs with If-None-Match for file content
    - Hash manifest and file listing endpoints
    - Shared, lazily created connection pool
    """

    def __init__(
        self,
        base_url: str,
        files_endpoint: str = "/files",
        hashes_endpoint: str = "/api/hashes",
        list_endpoint: str = "/api/list",
        cache_buster: str = "",
        session: aiohttp.ClientSession | None = None,
    ):
        """
        Initializes the API client.

        Args:
            base_url: Root of the frontend API, without a trailing slash.
            files_endpoint: Path under which raw files are served.
            hashes_endpoint: Path of the content hash manifest.
            list_endpoint: Path of the file listing.
            cache_buster: Optional value sent as the ``v`` query parameter.
            session: Optional externally owned session.
        """
        self.base_url = base_url.rstrip("/")
        self.files_endpoint = files_endpoint
        self.hashes_endpoint = hashes_endpoint
        self.list_endpoint = list_endpoint
        self.cache_buster = cache_buster

        self._session = session
        self._owns_session = session is None

    @property
    def hashes_url(self) -> str:
        return f"{self.base_url}{self.hashes_endpoint}"

    @property
    def list_url(self) -> str:
        return f"{self.base_url}{self.list_endpoint}"

    async def _initialize_session(self) -> aiohttp.ClientSession:
        """Ensures an active aiohttp session is available with compression enabled."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=16,
                limit_per_host=8,
                ttl_dns_cache=300,
                enable_cleanup_closed=True,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                headers={
                    "User-Agent": f"frontcache/{__version__}",
                    "Accept-Encoding": "gzip, deflate, br",
                },
                timeout=aiohttp.ClientTimeout(total=60, connect=15, sock_read=30),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Gracefully closes the aiohttp session if this client created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    def file_url(self, file_path: str) -> str:
        """Builds the content URL for a path relative to the files root."""
        url = f"{self.base_url}{self.files_endpoint}/{file_path.lstrip('/')}"
        if self.cache_buster:
            url += f"?v={self.cache_buster}"
        return url

    async def get_file(self, url: str, etag: str | None = None) -> FileResponse:
        """
        Issues one GET for a file. Network errors propagate to the caller.

        Args:
            url: Absolute file URL (see :meth:`file_url`).
            etag: Previously seen ETag, sent as ``If-None-Match``.

        Raises:
            aiohttp.ClientPayloadError: A 2xx body could not be decoded as text.
        """
        session = await self._initialize_session()
        headers = {"If-None-Match": etag} if etag else {}

        start_time = time.monotonic()
        async with session.get(url, headers=headers) as r:
            text = ""
            if 200 <= r.status < 300:
                try:
                    text = await r.text()
                except UnicodeDecodeError as e:
                    raise aiohttp.ClientPayloadError(
                        f"Undecodable response body from {url}: {e}"
                    ) from e
            duration_ms = (time.monotonic() - start_time) * 1000
            log.debug(f"GET {url} -> {r.status} in {duration_ms:.0f}ms")
            return FileResponse(
                status=r.status,
                text=text,
                etag=r.headers.get("ETag"),
                reason=r.reason or "",
            )

    async def get_json(self, url: str) -> Any:
        """GETs a JSON document, raising ``aiohttp.ClientResponseError`` on non-2xx."""
        session = await self._initialize_session()
        async with session.get(url) as r:
            r.raise_for_status()
            return await r.json(content_type=None)

    async def fetch_hashes(self) -> dict[str, Any]:
        """Fetches the raw hash manifest response."""
        return await self.get_json(self.hashes_url)

    async def list_files(self) -> list[str]:
        """
        Fetches the server's file listing.

        Raises:
            ValueError: If the response is not a successful listing.
        """
        data = await self.get_json(self.list_url)
        if not (
            isinstance(data, dict)
            and data.get("success")
            and isinstance(data.get("files"), list)
        ):
            raise ValueError("File listing response is malformed or unsuccessful.")
        return [f for f in data["files"] if isinstance(f, str)]

    async def _list_assets(self, directory: str, extension: str) -> list[str]:
        prefix = f"assets/{directory}/"
        try:
            files = await self.list_files()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            log.warning(f"Could not list {directory} assets: {e}")
            return []
        return [
            f[len(prefix) :]
            for f in files
            if f.startswith(prefix) and f.endswith(extension)
        ]

    async def list_css_files(self) -> list[str]:
        """Stylesheet names under ``assets/css``, or [] when the listing fails."""
        return await self._list_assets("css", ".css")

    async def list_js_files(self) -> list[str]:
        """Script names under ``assets/js``, or [] when the listing fails."""
        return await self._list_assets("js", ".js")
