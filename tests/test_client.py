import aiohttp
import pytest
from aioresponses import aioresponses

from frontcache.api.client import FrontendAPIClient
from tests.conftest import BASE_URL

LISTING = {
    "success": True,
    "files": [
        "assets/css/main.css",
        "assets/css/notes.txt",
        "assets/js/app.js",
        "assets/js/vendor/lib.js",
        "pages/login/index.html",
    ],
}


def test_file_url_appends_cache_buster_only_when_set():
    plain = FrontendAPIClient(BASE_URL)
    busted = FrontendAPIClient(f"{BASE_URL}/", cache_buster="42")

    assert plain.file_url("/pages/a.html") == f"{BASE_URL}/files/pages/a.html"
    assert busted.file_url("pages/a.html") == f"{BASE_URL}/files/pages/a.html?v=42"


@pytest.mark.asyncio
async def test_asset_listing_is_filtered_and_stripped(client):
    with aioresponses() as mock_http:
        mock_http.get(client.list_url, payload=LISTING, repeat=True)

        assert await client.list_css_files() == ["main.css"]
        assert await client.list_js_files() == ["app.js", "vendor/lib.js"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        {"status": 500},
        {"payload": {"success": False, "files": []}},
        {"payload": {"success": True}},
    ],
)
async def test_asset_listing_failures_yield_empty_lists(client, response):
    with aioresponses() as mock_http:
        mock_http.get(client.list_url, **response)
        assert await client.list_css_files() == []


@pytest.mark.asyncio
async def test_get_file_reads_etag_and_skips_body_on_304(client):
    url = client.file_url("pages/a.html")
    with aioresponses() as mock_http:
        mock_http.get(url, status=200, body="<p>a</p>", headers={"ETag": '"v1"'})
        mock_http.get(url, status=304)

        ok = await client.get_file(url)
        not_modified = await client.get_file(url, etag='"v1"')

    assert (ok.status, ok.text, ok.etag) == (200, "<p>a</p>", '"v1"')
    assert (not_modified.status, not_modified.text) == (304, "")


@pytest.mark.asyncio
async def test_get_file_maps_undecodable_body_to_payload_error(client):
    url = client.file_url("pages/a.html")
    with aioresponses() as mock_http:
        mock_http.get(url, status=200, body=b"\xff\xfe\xfa bad")

        with pytest.raises(aiohttp.ClientPayloadError):
            await client.get_file(url)
