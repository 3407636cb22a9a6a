from __future__ import annotations

import asyncio

import httpx
import pytest

from iptv_hub.errors import InvalidURLError, NoCatalogsError, NoStreamsAvailableError
from iptv_hub.services.stremio_parser import AddonCatalog, StremioParser, addon_base_url, manifest_url

MANIFEST = {
    "id": "org.example.addon",
    "name": "Example",
    "version": "1.2.0",
    "catalogs": [
        {"id": "top", "type": "movie", "name": "Top Movies"},
        {"id": "popular", "type": "series", "name": "Popular"},
        {"id": "tv", "type": "tv"},
    ],
}


def addon(manifest=MANIFEST, metas=None, streams=None):
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/manifest.json"):
            return httpx.Response(200, json=manifest)
        if "/catalog/" in path:
            return httpx.Response(200, json={"metas": metas or []})
        if "/stream/" in path:
            return httpx.Response(200, json={"streams": streams or []})
        return httpx.Response(404)

    return handler


def test_addon_urls() -> None:
    assert manifest_url("https://addon.example/abc") == "https://addon.example/abc/manifest.json"
    assert manifest_url("stremio://addon.example/abc/manifest.json") == "https://addon.example/abc/manifest.json"
    assert addon_base_url("https://addon.example/abc/manifest.json?x=1") == "https://addon.example/abc"
    with pytest.raises(InvalidURLError):
        manifest_url("ftp://addon.example")


def test_one_placeholder_per_catalog(make_client) -> None:
    parser = StremioParser(make_client(addon()))
    channels = asyncio.run(parser.parse("https://addon.example/abc/manifest.json"))

    assert [c.name for c in channels] == ["Example - Top Movies", "Example - Popular", "Example - tv"]
    assert [c.content_type for c in channels] == ["movie", "series", "live"]
    first = channels[0]
    assert first.url == "https://addon.example/abc/stream/movie/top"
    assert first.group == "Stremio - Example"
    assert first.tvg_id == "org.example.addon:movie:top"


def test_manifest_without_catalogs(make_client) -> None:
    parser = StremioParser(make_client(addon(manifest={"id": "x", "name": "Empty", "catalogs": []})))
    with pytest.raises(NoCatalogsError):
        asyncio.run(parser.parse("https://addon.example"))


def test_fetch_catalog_items(make_client) -> None:
    metas = [{"id": "tt1", "type": "movie", "name": "One", "poster": "http://p/1.jpg", "genres": ["Drama"]},
             {"name": "missing id"}]
    parser = StremioParser(make_client(addon(metas=metas)))
    catalog = AddonCatalog(id="top", type="movie", name="Top Movies")
    items = asyncio.run(parser.fetch_catalog("https://addon.example", catalog))
    assert len(items) == 1
    assert items[0].url == "https://addon.example/stream/movie/tt1"
    assert items[0].genre == "Drama"
    assert items[0].logo == "http://p/1.jpg"


def test_fetch_streams(make_client) -> None:
    parser = StremioParser(make_client(addon(streams=[{"url": "http://s/1.mp4"}, {"title": "magnet only"}])))
    assert asyncio.run(parser.fetch_streams("https://addon.example", "movie", "tt1")) == ["http://s/1.mp4"]


def test_fetch_streams_empty(make_client) -> None:
    parser = StremioParser(make_client(addon(streams=[])))
    with pytest.raises(NoStreamsAvailableError):
        asyncio.run(parser.fetch_streams("https://addon.example", "movie", "tt1"))
