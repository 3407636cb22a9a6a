"""Xtream Codes API client for IPTV providers."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlencode, urlsplit

from ..errors import AuthenticationError, DecodeError, InvalidEndpointError
from ..models.channel import Channel, Episode, Season, LIVE, MOVIE, SERIES
from .fetch_client import FetchClient

log = logging.getLogger(__name__)


@dataclass
class XtreamCredentials:
    """Xtream Codes API credentials."""
    name: str
    server: str  # e.g., http://example.com:8080
    username: str
    password: str


@dataclass
class XtreamAccountInfo:
    """Xtream Codes account information."""
    username: str
    status: str
    exp_date: Optional[str]
    is_trial: bool
    active_cons: int
    max_connections: int
    created_at: Optional[str]


@dataclass
class SubSource:
    """One catalog query of the bulk pass.

    A ``required`` source fails the whole pass; the others degrade to an
    empty contribution.
    """
    name: str
    load: Callable[[], Awaitable[List[Channel]]]
    required: bool = False


class XtreamCodesClient:
    """Client for Xtream Codes API."""

    DEFAULT_MOVIE_EXTENSION = "mp4"

    def __init__(self, credentials: XtreamCredentials, fetch_client: FetchClient):
        self.credentials = credentials
        self._fetch = fetch_client
        self._base_url = normalize_server_url(credentials.server)
        if not credentials.username or not credentials.password:
            raise InvalidEndpointError("Xtream username and password are required")

    @property
    def base_url(self) -> str:
        return self._base_url

    def _get_api_url(self, action: Optional[str] = None, extra_params: Optional[Dict[str, Any]] = None) -> str:
        """Build API URL with authentication."""
        params = {
            "username": self.credentials.username,
            "password": self.credentials.password,
        }
        if action:
            params["action"] = action
        if extra_params:
            params.update({key: str(value) for key, value in extra_params.items()})
        return f"{self._base_url}/player_api.php?{urlencode(params)}"

    def build_stream_url(self, kind: str, stream_id: Any, extension: Optional[str] = None) -> str:
        """Build a playback URL: ``<base>/<kind>/<user>/<pass>/<id>[.<ext>]``."""
        url = f"{self._base_url}/{kind}/{self.credentials.username}/{self.credentials.password}/{stream_id}"
        if extension:
            url += f".{extension}"
        return url

    def build_series_episode_url(self, episode_id: str, extension: str = "mp4") -> str:
        """Build URL for a series episode."""
        return self.build_stream_url("series", episode_id, extension)

    async def authenticate(self) -> XtreamAccountInfo:
        """Test connection and get account information."""
        data = await self._fetch.fetch_json(self._get_api_url())

        if not isinstance(data, dict) or "user_info" not in data:
            keys = list(data.keys()) if isinstance(data, dict) else type(data).__name__
            raise DecodeError(f"Invalid response: expected 'user_info' in response. Got: {keys}")

        user_info = data["user_info"]

        # Check for authentication errors
        status = str(user_info.get("status", ""))
        if status.lower() in ["disabled", "banned", "expired"]:
            raise AuthenticationError(f"Account status: {status}")

        return XtreamAccountInfo(
            username=user_info.get("username", ""),
            status=status or "Unknown",
            exp_date=user_info.get("exp_date"),
            is_trial=str(user_info.get("is_trial", "0")) == "1",
            active_cons=_to_int(user_info.get("active_cons")) or 0,
            max_connections=_to_int(user_info.get("max_connections")) or 1,
            created_at=user_info.get("created_at"),
        )

    async def _get_list(self, action: str) -> List[Dict[str, Any]]:
        data = await self._fetch.fetch_json(self._get_api_url(action))
        if not isinstance(data, list):
            raise DecodeError(f"{action}: expected a JSON array, got {type(data).__name__}")
        return [item for item in data if isinstance(item, dict)]

    async def get_live_streams(self) -> List[Channel]:
        """Get all live streams."""
        channels = []
        for item in await self._get_list("get_live_streams"):
            stream_id = _to_int(item.get("stream_id"))
            if stream_id is None:
                continue
            channels.append(Channel(
                name=_text(item.get("name"), "Unknown"),
                url=self.build_stream_url("live", stream_id, "ts"),
                logo=item.get("stream_icon") or None,
                group=_text(item.get("category_name"), "Live TV"),
                tvg_id=_text(item.get("epg_channel_id")),
                content_type=LIVE,
                stream_id=stream_id,
            ))
        log.info("XtreamCodesClient: parsed %d live channels", len(channels))
        return channels

    async def get_vod_streams(self) -> List[Channel]:
        """Get all VOD streams (movies)."""
        movies = []
        for item in await self._get_list("get_vod_streams"):
            stream_id = _to_int(item.get("stream_id"))
            if stream_id is None:
                continue
            extension = item.get("container_extension") or self.DEFAULT_MOVIE_EXTENSION
            movies.append(Channel(
                name=_text(item.get("name"), "Unknown"),
                url=self.build_stream_url("movie", stream_id, extension),
                logo=item.get("stream_icon") or None,
                group=_text(item.get("category_name"), "Movies"),
                content_type=MOVIE,
                stream_id=stream_id,
                container_extension=item.get("container_extension"),
                duration=item.get("duration"),
                rating=_to_float(item.get("rating_5based")),
                release_date=item.get("releasedate"),
                plot=item.get("plot"),
                director=item.get("director"),
                cast=item.get("cast"),
                genre=item.get("genre"),
                cover=item.get("cover") or None,
                backdrop=_first(item.get("backdrop_path")),
            ))
        log.info("XtreamCodesClient: parsed %d movies", len(movies))
        return movies

    async def get_series(self) -> List[Channel]:
        """Get the series list; seasons are fetched later by get_series_info."""
        series = []
        for item in await self._get_list("get_series"):
            series_id = _to_int(item.get("series_id"))
            if series_id is None:
                continue
            series.append(Channel(
                name=_text(item.get("name"), "Unknown Series"),
                # Placeholder; episodes carry their own URLs
                url=self.build_stream_url("series", series_id),
                logo=item.get("cover") or None,
                group=_text(item.get("category_name"), "Series"),
                content_type=SERIES,
                rating=_to_float(item.get("rating_5based")),
                release_date=item.get("releaseDate") or item.get("release_date"),
                plot=item.get("plot"),
                director=item.get("director"),
                cast=item.get("cast"),
                genre=item.get("genre"),
                cover=item.get("cover") or None,
                backdrop=_first(item.get("backdrop_path")),
                series_id=series_id,
            ))
        log.info("XtreamCodesClient: parsed %d series", len(series))
        return series

    async def get_series_info(self, series_id: Any) -> List[Season]:
        """Get seasons and episodes of one series, both in ascending order."""
        data = await self._fetch.fetch_json(self._get_api_url("get_series_info", {"series_id": series_id}))
        if not isinstance(data, dict):
            raise DecodeError(f"get_series_info: expected a JSON object, got {type(data).__name__}")

        season_meta: Dict[int, Dict[str, Any]] = {}
        for raw in data.get("seasons") or []:
            if isinstance(raw, dict):
                number = _to_int(raw.get("season_number"))
                if number is not None:
                    season_meta[number] = raw

        episodes_by_season: Dict[int, List[Episode]] = {}
        for number, raw_episodes in _iter_episode_groups(data.get("episodes")):
            episodes = [ep for ep in (self._parse_episode(raw) for raw in raw_episodes) if ep is not None]
            episodes.sort(key=lambda ep: ep.episode_num)
            episodes_by_season[number] = episodes

        seasons = []
        for number in sorted(set(season_meta) | set(episodes_by_season)):
            meta = season_meta.get(number, {})
            seasons.append(Season(
                id=f"{series_id}-{number}",
                season_number=number,
                name=meta.get("name") or f"Season {number}",
                episodes=episodes_by_season.get(number, []),
                cover=meta.get("cover_big") or meta.get("cover") or None,
            ))
        return seasons

    def _parse_episode(self, raw: Any) -> Optional[Episode]:
        if not isinstance(raw, dict) or raw.get("id") in (None, ""):
            return None
        episode_id = str(raw["id"])
        extension = raw.get("container_extension") or self.DEFAULT_MOVIE_EXTENSION
        info = raw.get("info") if isinstance(raw.get("info"), dict) else {}
        return Episode(
            id=episode_id,
            episode_num=_to_int(raw.get("episode_num")) or 0,
            title=raw.get("title") or "",
            container_extension=extension,
            url=self.build_series_episode_url(episode_id, extension),
            plot=info.get("plot"),
            duration=info.get("duration"),
            release_date=info.get("release_date") or info.get("releasedate"),
            rating=_to_float(info.get("rating")),
        )

    def sub_sources(self) -> List[SubSource]:
        """The bulk-pass queries; only live channels are load-bearing."""
        return [
            SubSource("live", self.get_live_streams, required=True),
            SubSource("movies", self.get_vod_streams, required=False),
            SubSource("series", self.get_series, required=False),
        ]

    async def get_all_channels(self) -> List[Channel]:
        """Get all live streams, VODs, and Series concurrently."""
        sources = self.sub_sources()
        results = await asyncio.gather(*(source.load() for source in sources), return_exceptions=True)

        channels: List[Channel] = []
        for source, result in zip(sources, results):
            if isinstance(result, BaseException):
                if source.required or not isinstance(result, Exception):
                    raise result
                log.warning("Error fetching %s, continuing without it: %s", source.name, result)
                continue
            channels.extend(result)
        return channels


def normalize_server_url(server: Optional[str]) -> str:
    """Trim, drop trailing slashes and default to http://."""
    server = (server or "").strip().rstrip("/")
    if not server:
        raise InvalidEndpointError("Xtream server URL is empty")
    # Add http:// if no protocol specified
    if not server.startswith("http://") and not server.startswith("https://"):
        server = f"http://{server}"
    try:
        host = urlsplit(server).hostname
    except ValueError as e:
        raise InvalidEndpointError(f"Invalid Xtream server URL: {server}") from e
    if not host:
        raise InvalidEndpointError(f"Invalid Xtream server URL: {server}")
    return server


def _iter_episode_groups(episodes: Any):
    # Portals send either {"1": [...], "2": [...]} or a list of per-season lists
    if isinstance(episodes, dict):
        for key, items in episodes.items():
            number = _to_int(key)
            if number is not None and isinstance(items, list):
                yield number, items
    elif isinstance(episodes, list):
        for index, items in enumerate(episodes, start=1):
            if isinstance(items, list):
                number = index
                for raw in items:
                    if isinstance(raw, dict) and _to_int(raw.get("season")) is not None:
                        number = _to_int(raw.get("season"))
                        break
                yield number, items


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _first(value: Any) -> Optional[str]:
    # backdrop_path is a list on most portals, a plain string on some
    if isinstance(value, list):
        return value[0] if value else None
    return value or None


def _text(value: Any, default: str = "") -> str:
    # Portals send ids and names as numbers as often as strings
    if value is None:
        return default
    return str(value).strip() or default
