"""Recently added items from personal media servers (Emby, Plex)."""
import asyncio
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any, List, Optional
from urllib.parse import urlencode, urlsplit

from ..errors import DecodeError
from ..models.channel import Channel, MOVIE, SERIES
from .fetch_client import CachePolicy, FetchClient

log = logging.getLogger(__name__)


@dataclass
class ServerConnectionConfig:
    base_url: str
    token: str

    @classmethod
    def make(cls, url: Optional[str], token: Optional[str]) -> Optional["ServerConnectionConfig"]:
        """Config for a server, or None when URL or token is blank."""
        url = (url or "").strip()
        token = (token or "").strip()
        if not url or not token:
            return None
        if not url.lower().startswith("http"):
            url = f"http://{url}"
        return cls(base_url=url.rstrip("/"), token=token)


def format_duration(seconds: float) -> str:
    hours = int(seconds) // 3600
    minutes = (int(seconds) % 3600) // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


class ServerLibraryService:
    """Fetches libraries from Emby and Plex; each server is best-effort."""

    LIMIT = 60

    def __init__(self, fetch_client: FetchClient):
        self._fetch = fetch_client

    async def fetch_libraries(
        self,
        emby: Optional[ServerConnectionConfig] = None,
        plex: Optional[ServerConnectionConfig] = None,
    ) -> List[Channel]:
        jobs = []
        if emby is not None:
            jobs.append(("Emby", self.fetch_emby_items(emby)))
        if plex is not None:
            jobs.append(("Plex", self.fetch_plex_items(plex)))
        if not jobs:
            return []

        results = await asyncio.gather(*(job for _, job in jobs), return_exceptions=True)
        aggregated: List[Channel] = []
        for (name, _), result in zip(jobs, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                log.warning("%s library unavailable: %s", name, result)
                continue
            aggregated.extend(result)
        return aggregated

    async def fetch_emby_items(self, config: ServerConnectionConfig) -> List[Channel]:
        base = config.base_url
        if "/emby" not in urlsplit(base).path.lower():
            base += "/emby"
        params = {
            "IncludeItemTypes": "Movie,Series",
            "Recursive": "true",
            "Limit": str(self.LIMIT),
            "Fields": "Overview,CommunityRating,RunTimeTicks,PremiereDate",
            "SortBy": "DateCreated",
            "SortOrder": "Descending",
            "api_key": config.token,
        }
        url = f"{base}/Items?{urlencode(params)}"
        items = await self._fetch.fetch_json(url, decoder=_emby_items, cache_policy=CachePolicy.RELOAD_IGNORING_CACHE)

        channels = []
        for item in items:
            item_id = str(item["Id"])
            image_tags = item.get("ImageTags") or {}
            backdrop_tags = item.get("BackdropImageTags") or []
            poster = None
            if image_tags.get("Primary"):
                poster = f"{base}/Items/{item_id}/Images/Primary?tag={image_tags['Primary']}&api_key={config.token}"
            backdrop = None
            if backdrop_tags:
                backdrop = f"{base}/Items/{item_id}/Images/Backdrop/0?tag={backdrop_tags[0]}&api_key={config.token}"
            ticks = item.get("RunTimeTicks")
            item_type = str(item.get("Type", "")).lower()
            channels.append(Channel(
                name=item.get("Name") or "Unknown",
                # Download endpoint gives a direct file URL
                url=f"{base}/Items/{item_id}/Download?api_key={config.token}",
                logo=poster,
                group="My Server (Emby)",
                tvg_id=item_id,
                content_type=SERIES if item_type in ("series", "episode") else MOVIE,
                duration=format_duration(ticks / 10_000_000) if isinstance(ticks, (int, float)) else None,
                rating=item.get("CommunityRating"),
                release_date=item.get("PremiereDate"),
                plot=item.get("Overview"),
                genre=", ".join(item.get("Genres") or []) or None,
                cover=poster,
                backdrop=backdrop,
            ))
        return channels

    async def fetch_plex_items(self, config: ServerConnectionConfig) -> List[Channel]:
        base = config.base_url
        params = {"X-Plex-Token": config.token, "X-Plex-Container-Size": str(self.LIMIT)}
        data = await self._fetch.fetch(
            f"{base}/library/recentlyAdded?{urlencode(params)}",
            cache_policy=CachePolicy.RELOAD_IGNORING_CACHE,
        )
        try:
            root = ET.fromstring(data)
        except ET.ParseError as e:
            raise DecodeError(f"Invalid Plex response: {e}") from e

        channels = []
        for video in root.iter("Video"):
            part = video.find(".//Part")
            part_key = part.get("key") if part is not None else None
            if not part_key:
                continue
            part_key = part_key if part_key.startswith("/") else "/" + part_key
            separator = "&" if "?" in part_key else "?"
            content_type = SERIES if video.get("type", "").lower() == "episode" else MOVIE
            title = video.get("title") or "Unknown"
            if content_type == SERIES and video.get("grandparentTitle"):
                title = f"{video.get('grandparentTitle')} • {title}"
            duration = None
            try:
                duration = format_duration(float(video.get("duration")) / 1000)
            except (TypeError, ValueError):
                pass
            poster = _plex_asset(base, video.get("thumb"), config.token)
            channels.append(Channel(
                name=title,
                url=f"{base}{part_key}{separator}X-Plex-Token={config.token}",
                logo=poster,
                group="My Server (Plex)",
                tvg_id=video.get("ratingKey") or "",
                content_type=content_type,
                duration=duration,
                release_date=video.get("addedAt"),
                plot=video.get("summary"),
                cover=poster,
                backdrop=_plex_asset(base, video.get("art"), config.token),
            ))
        return channels


def _plex_asset(base: str, path: Optional[str], token: str) -> Optional[str]:
    if not path:
        return None
    path = path if path.startswith("/") else "/" + path
    return f"{base}{path}?X-Plex-Token={token}"


def _emby_items(payload: Any) -> List[dict]:
    items = payload["Items"]
    if not isinstance(items, list):
        raise TypeError("'Items' must be a list")
    return [item for item in items if isinstance(item, dict) and item.get("Id")]
