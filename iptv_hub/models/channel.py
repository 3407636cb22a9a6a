"""Channel model for live channels, movies and series."""
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Set
from urllib.parse import urlsplit, urlunsplit


LIVE = "live"
MOVIE = "movie"
SERIES = "series"
CONTENT_TYPES = (LIVE, MOVIE, SERIES)


def new_id() -> str:
    """Mint a fresh surrogate id."""
    return str(uuid.uuid4())


@dataclass
class Episode:
    """A single episode of a series season."""

    id: str
    episode_num: int
    title: str
    container_extension: Optional[str] = None
    url: Optional[str] = None
    plot: Optional[str] = None
    duration: Optional[str] = None
    release_date: Optional[str] = None
    rating: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "episode_num": self.episode_num,
            "title": self.title,
            "container_extension": self.container_extension,
            "url": self.url,
            "plot": self.plot,
            "duration": self.duration,
            "release_date": self.release_date,
            "rating": self.rating,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Episode":
        return cls(
            id=str(data.get("id", "")),
            episode_num=int(data.get("episode_num") or 0),
            title=data.get("title") or "",
            container_extension=data.get("container_extension"),
            url=data.get("url"),
            plot=data.get("plot"),
            duration=data.get("duration"),
            release_date=data.get("release_date"),
            rating=data.get("rating"),
        )


@dataclass
class Season:
    """A season holding its episodes in playback order."""

    id: str
    season_number: int
    name: str
    episodes: List[Episode] = field(default_factory=list)
    cover: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "season_number": self.season_number,
            "name": self.name,
            "episodes": [ep.to_dict() for ep in self.episodes],
            "cover": self.cover,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Season":
        number = int(data.get("season_number") or 0)
        return cls(
            id=str(data.get("id", "")),
            season_number=number,
            name=data.get("name") or f"Season {number}",
            episodes=[Episode.from_dict(ep) for ep in data.get("episodes", [])],
            cover=data.get("cover"),
        )


@dataclass
class Channel:
    """Represents a channel, movie or series root item.

    ``id`` is minted fresh on every parse and only identifies the record
    within one in-memory collection. Persisted user state is matched through
    :attr:`stable_key` instead.
    """

    name: str
    url: str
    logo: Optional[str] = None
    group: str = "Uncategorized"
    tvg_id: str = ""  # source channel reference (EPG id, catalog id, ...)
    id: str = field(default_factory=new_id)
    is_favorite: bool = False
    category_ids: Set[str] = field(default_factory=set)
    playlist_id: Optional[str] = None
    content_type: str = LIVE
    # VoD fields
    stream_id: Optional[int] = None
    container_extension: Optional[str] = None
    duration: Optional[str] = None
    rating: Optional[float] = None
    release_date: Optional[str] = None
    plot: Optional[str] = None
    director: Optional[str] = None
    cast: Optional[str] = None
    genre: Optional[str] = None
    cover: Optional[str] = None
    backdrop: Optional[str] = None
    # Series fields
    series_id: Optional[int] = None
    seasons: List[Season] = field(default_factory=list)

    @property
    def stable_key(self) -> str:
        return stable_key(self)

    def to_dict(self) -> dict:
        """Convert channel to dictionary for serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "logo": self.logo,
            "group": self.group,
            "tvg_id": self.tvg_id,
            "is_favorite": self.is_favorite,
            "category_ids": sorted(self.category_ids),
            "playlist_id": self.playlist_id,
            "content_type": self.content_type,
            "stream_id": self.stream_id,
            "container_extension": self.container_extension,
            "duration": self.duration,
            "rating": self.rating,
            "release_date": self.release_date,
            "plot": self.plot,
            "director": self.director,
            "cast": self.cast,
            "genre": self.genre,
            "cover": self.cover,
            "backdrop": self.backdrop,
            "series_id": self.series_id,
            "seasons": [season.to_dict() for season in self.seasons],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Channel":
        """Create channel from dictionary."""
        content_type = data.get("content_type") or LIVE
        if content_type not in CONTENT_TYPES:
            content_type = LIVE

        return cls(
            id=str(data.get("id") or new_id()),
            name=data.get("name", "Unknown"),
            url=data.get("url", ""),
            logo=data.get("logo"),
            group=data.get("group", "Uncategorized"),
            tvg_id=data.get("tvg_id") or "",
            is_favorite=bool(data.get("is_favorite", False)),
            category_ids=set(data.get("category_ids") or []),
            playlist_id=data.get("playlist_id"),
            content_type=content_type,
            stream_id=data.get("stream_id"),
            container_extension=data.get("container_extension"),
            duration=data.get("duration"),
            rating=data.get("rating"),
            release_date=data.get("release_date"),
            plot=data.get("plot"),
            director=data.get("director"),
            cast=data.get("cast"),
            genre=data.get("genre"),
            cover=data.get("cover"),
            backdrop=data.get("backdrop"),
            series_id=data.get("series_id"),
            seasons=[Season.from_dict(s) for s in data.get("seasons", [])],
        )


def normalize_url(url: str) -> Optional[str]:
    """Strip query and fragment so rotating tokens don't change identity."""
    url = (url or "").strip()
    if not url:
        return None
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", "")).lower()


def stable_key(channel: Channel) -> str:
    """Identifier that survives re-parsing the same source.

    Tried in order of stability: the source EPG id, the playback URL without
    query/fragment, the name/group pair, and finally the surrogate id, which
    never matches across parses.
    """
    tvg_id = str(channel.tvg_id or "").strip()
    if tvg_id:
        return f"tvg:{tvg_id.lower()}"

    normalized = normalize_url(str(channel.url or ""))
    if normalized:
        return f"url:{normalized}"

    name_key = str(channel.name or "").strip().lower()
    group_key = str(channel.group or "").strip().lower()
    if name_key or group_key:
        return f"name:{name_key}|group:{group_key}"

    return f"id:{str(channel.id).lower()}"
