"""Stremio add-on parser.

The bulk pass turns each catalog declared by the add-on manifest into one
placeholder channel. Catalog items and their streams are only resolved on
demand through :meth:`StremioParser.fetch_catalog` and
:meth:`StremioParser.fetch_streams`.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional
from urllib.parse import quote, urlsplit, urlunsplit

from ..errors import InvalidURLError, NoCatalogsError, NoStreamsAvailableError
from ..models.channel import Channel, LIVE, MOVIE, SERIES
from .fetch_client import FetchClient

log = logging.getLogger(__name__)

MANIFEST_PATH = "/manifest.json"


@dataclass
class AddonCatalog:
    id: str
    type: str
    name: str

    @classmethod
    def from_dict(cls, data: dict) -> "AddonCatalog":
        return cls(id=str(data["id"]), type=str(data["type"]), name=str(data.get("name") or data["id"]))


@dataclass
class AddonManifest:
    id: str
    name: str
    version: str
    description: Optional[str] = None
    catalogs: List[AddonCatalog] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "AddonManifest":
        if not isinstance(data, dict):
            raise TypeError("manifest must be a JSON object")
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            version=str(data.get("version", "")),
            description=data.get("description"),
            catalogs=[AddonCatalog.from_dict(c) for c in data.get("catalogs") or []],
        )


def _split_addon_url(addon_url: str):
    url = (addon_url or "").strip()
    # stremio:// links are the https endpoint under another scheme
    if url.lower().startswith("stremio://"):
        url = "https://" + url[len("stremio://"):]
    try:
        parts = urlsplit(url)
    except ValueError as e:
        raise InvalidURLError(f"Invalid add-on URL: {addon_url!r}") from e
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise InvalidURLError(f"Invalid add-on URL: {addon_url!r}")
    return parts


def addon_base_url(addon_url: str) -> str:
    """Add-on root without ``/manifest.json``, query or fragment."""
    parts = _split_addon_url(addon_url)
    path = parts.path
    if path.endswith(MANIFEST_PATH):
        path = path[: -len(MANIFEST_PATH)]
    return urlunsplit((parts.scheme, parts.netloc, path.rstrip("/"), "", ""))


def manifest_url(addon_url: str) -> str:
    """Ensure the URL ends with /manifest.json."""
    return addon_base_url(addon_url) + MANIFEST_PATH


def content_type_for(addon_type: str) -> str:
    addon_type = (addon_type or "").lower()
    if addon_type == "movie":
        return MOVIE
    if addon_type == "series":
        return SERIES
    return LIVE


class StremioParser:
    """Parses a Stremio add-on into channels."""

    def __init__(self, fetch_client: FetchClient):
        self._fetch = fetch_client

    async def fetch_manifest(self, addon_url: str) -> AddonManifest:
        url = manifest_url(addon_url)
        log.info("StremioParser: fetching manifest from %s", url)
        manifest = await self._fetch.fetch_json(url, decoder=AddonManifest.from_dict)
        log.info("StremioParser: loaded add-on '%s' v%s", manifest.name, manifest.version)
        return manifest

    async def parse(self, addon_url: str) -> List[Channel]:
        """One placeholder channel per declared catalog."""
        manifest = await self.fetch_manifest(addon_url)
        if not manifest.catalogs:
            raise NoCatalogsError(f"Add-on '{manifest.name}' declares no catalogs")

        base = addon_base_url(addon_url)
        channels = [
            Channel(
                name=f"{manifest.name} - {catalog.name}",
                url=f"{base}/stream/{catalog.type}/{catalog.id}",
                group=f"Stremio - {manifest.name}",
                # Catalog ids like "top" repeat across add-ons
                tvg_id=f"{manifest.id}:{catalog.type}:{catalog.id}",
                content_type=content_type_for(catalog.type),
            )
            for catalog in manifest.catalogs
        ]
        log.info("StremioParser: created %d placeholder channels from catalogs", len(channels))
        return channels

    async def fetch_catalog(self, addon_url: str, catalog: AddonCatalog) -> List[Channel]:
        """Resolve a catalog into one channel per meta item."""
        base = addon_base_url(addon_url)
        url = f"{base}/catalog/{quote(catalog.type)}/{quote(catalog.id)}.json"
        metas = await self._fetch.fetch_json(url, decoder=_metas)

        channels = []
        for meta in metas:
            genres = meta.get("genres") or []
            channels.append(Channel(
                name=str(meta.get("name") or meta["id"]),
                url=f"{base}/stream/{catalog.type}/{meta['id']}",
                logo=meta.get("logo") or meta.get("poster") or None,
                group=f"Stremio - {catalog.name}",
                tvg_id=str(meta["id"]),
                content_type=content_type_for(meta.get("type") or catalog.type),
                plot=meta.get("description"),
                genre=", ".join(str(g) for g in genres) or None,
                cover=meta.get("poster") or None,
                backdrop=meta.get("background") or None,
            ))
        return channels

    async def fetch_streams(self, addon_url: str, addon_type: str, item_id: str) -> List[str]:
        """Playable stream URLs for one item, in add-on order."""
        base = addon_base_url(addon_url)
        url = f"{base}/stream/{quote(addon_type)}/{quote(item_id)}.json"
        streams = await self._fetch.fetch_json(url, decoder=_streams)
        urls = [str(stream["url"]) for stream in streams if stream.get("url")]
        if not urls:
            raise NoStreamsAvailableError(f"No streams for {addon_type}/{item_id}")
        return urls


def _metas(payload: Any) -> List[dict]:
    metas = payload["metas"]
    if not isinstance(metas, list):
        raise TypeError("'metas' must be a list")
    return [meta for meta in metas if isinstance(meta, dict) and meta.get("id")]


def _streams(payload: Any) -> List[dict]:
    if not isinstance(payload, dict):
        raise TypeError("stream response must be a JSON object")
    streams = payload.get("streams") or []
    if not isinstance(streams, list):
        raise TypeError("'streams' must be a list")
    return [stream for stream in streams if isinstance(stream, dict)]
