"""State management service: owns channels, playlists and categories."""
import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set, Tuple
from urllib.parse import urlsplit

import aiofiles

from ..config import Settings
from ..errors import InvalidURLError
from ..models.category import Category
from ..models.channel import Channel, Season, LIVE, CONTENT_TYPES
from ..models.epg import EPGProgram
from ..models.playlist import Playlist, M3U, XTREAM, STREMIO
from .background import TaskSlots
from .epg_parser import EPGParser
from .fetch_client import CachePolicy, FetchClient
from .m3u_parser import M3UParser
from .reconciler import reconcile
from .server_library import ServerConnectionConfig, ServerLibraryService
from .storage import ChannelStore, KeyValueStore
from .stremio_parser import StremioParser
from .xtream_client import XtreamCodesClient, XtreamCredentials

log = logging.getLogger(__name__)

EPG_TASK = "epg"
SERVER_LIBRARY_TASK = "server_libraries"


class StateManager:
    """Manages application state and persistence.

    This object is the only writer of the in-memory channel collection.
    Ingestion runs under a lock so two loads never interleave their merges.
    """

    def __init__(
        self,
        data_dir: Optional[str] = None,
        settings: Optional[Settings] = None,
        fetch_client: Optional[FetchClient] = None,
        kv_store: Optional[KeyValueStore] = None,
        channel_store: Optional[ChannelStore] = None,
    ):
        """Initialize state manager."""
        self.settings = settings or Settings.from_env(data_dir)
        self.data_dir = Path(data_dir) if data_dir else self.settings.data_dir
        self.data_dir.mkdir(parents=True, exist_ok=True)

        self._kv = kv_store or KeyValueStore(self.data_dir)
        self._channel_store = channel_store or ChannelStore(self.data_dir, self._kv, delay=self.settings.save_delay)
        self._fetch = fetch_client or FetchClient.from_settings(self.settings)
        self._stremio = StremioParser(self._fetch)
        self._server_library = ServerLibraryService(self._fetch)
        self._background = TaskSlots()
        self._ingest_lock = asyncio.Lock()

        # In-memory state
        self._playlists: List[Playlist] = []
        self._categories: List[Category] = []
        self._memberships: Dict[str, Set[str]] = {}
        self._channels: List[Channel] = []
        self._server_channels: List[Channel] = []
        self._epg_data: Dict[str, List[EPGProgram]] = {}  # channel_id -> programs

        # Callbacks
        self._on_channels_change: List[Callable] = []
        self._on_playlist_change: List[Callable] = []
        self._on_categories_change: List[Callable] = []

    async def load(self) -> None:
        """Load persisted playlists, categories, memberships and channels."""
        self._playlists = self._kv.load_playlists()
        self._categories = self._kv.load_categories()
        self._memberships = self._kv.load_memberships()

        channels = await self._channel_store.load()
        last_playlist = self.get_last_playlist()
        changed = False

        if last_playlist is not None:
            missing = [ch for ch in channels if ch.playlist_id is None]
            if missing:
                log.info("Assigning %d channels without playlist to %s", len(missing), last_playlist.name)
                for channel in missing:
                    channel.playlist_id = last_playlist.id
                changed = True

        valid_ids = {p.id for p in self._playlists}
        kept = [ch for ch in channels if ch.playlist_id is None or ch.playlist_id in valid_ids]
        if len(kept) != len(channels):
            log.info("Removed %d orphaned channels", len(channels) - len(kept))
            changed = True

        self._channels = kept
        if changed:
            self._channel_store.save(self._channels)

        log.info(
            "Loaded %d channels, %d playlists, %d categories",
            len(self._channels), len(self._playlists), len(self._categories),
        )
        self._notify(self._on_channels_change)

    async def close(self) -> None:
        """Flush pending writes and stop background work."""
        await self._background.cancel_all()
        await self._channel_store.flush()

    # Playlist management
    def get_playlists(self) -> List[Playlist]:
        """Get all playlists."""
        return list(self._playlists)

    def get_playlist(self, playlist_id: Optional[str]) -> Optional[Playlist]:
        return next((p for p in self._playlists if p.id == playlist_id), None)

    def find_playlist(self, name: str) -> Optional[Playlist]:
        return next((p for p in self._playlists if p.name == name), None)

    def add_playlist(self, playlist: Playlist) -> None:
        """Add a playlist to the state."""
        self._playlists.append(playlist)
        self._kv.save_playlists(self._playlists)
        self._notify(self._on_playlist_change)

    def update_playlist(self, playlist: Playlist) -> None:
        for index, existing in enumerate(self._playlists):
            if existing.id == playlist.id:
                self._playlists[index] = playlist
                self._kv.save_playlists(self._playlists)
                self._notify(self._on_playlist_change)
                return

    def remove_playlist(self, playlist_id: str) -> None:
        """Remove a playlist and the channels it produced."""
        remaining = [p for p in self._playlists if p.id != playlist_id]
        if len(remaining) == len(self._playlists):
            return
        self._playlists = remaining
        self._kv.save_playlists(self._playlists)
        if self._kv.get_last_playlist_id() == playlist_id:
            self._kv.delete(KeyValueStore.LAST_PLAYLIST_KEY)

        self._channels = [ch for ch in self._channels if ch.playlist_id != playlist_id]
        self._channel_store.save(self._channels)
        self._notify(self._on_playlist_change)
        self._notify(self._on_channels_change)

    def get_last_playlist(self) -> Optional[Playlist]:
        return self.get_playlist(self._kv.get_last_playlist_id())

    # Ingestion
    async def load_playlist(self, playlist: Playlist, append: bool = False) -> List[Channel]:
        """Fetch, parse and reconcile a playlist into the collection.

        Errors from load-bearing sources propagate and leave the collection
        untouched. Returns the channels this playlist contributed.
        """
        log.info("Loading playlist: %s", playlist.name)
        async with self._ingest_lock:
            snapshot = list(self._channels)
            if not snapshot:
                snapshot = await self._channel_store.load()

            parsed, epg_url = await self._parse_playlist(playlist)
            for channel in parsed:
                channel.playlist_id = playlist.id

            merged = reconcile(parsed, snapshot, self._memberships)

            if append:
                kept = list(self._channels)
            else:
                kept = [ch for ch in self._channels if ch.playlist_id != playlist.id]
            self._channels = kept + merged

            self._channel_store.save(self._channels)
            self._kv.set_last_playlist_id(playlist.id)

        log.info("Loaded %d channels (Total: %d)", len(merged), len(self._channels))
        self._notify(self._on_channels_change)

        if epg_url:
            self.refresh_epg(epg_url)
        return merged

    async def _parse_playlist(self, playlist: Playlist) -> Tuple[List[Channel], Optional[str]]:
        if playlist.kind == XTREAM:
            client = XtreamCodesClient(self._credentials_for(playlist), self._fetch)
            return await client.get_all_channels(), None

        if playlist.kind == STREMIO:
            if not playlist.addon_url:
                raise InvalidURLError("Invalid Stremio add-on URL")
            return await self._stremio.parse(playlist.addon_url), None

        if playlist.kind == M3U:
            if not playlist.m3u_url:
                raise InvalidURLError("Invalid M3U URL")
            data = await self._read_m3u(playlist.m3u_url)
            channels = M3UParser.parse(data)
            log.info("M3UParser: successfully parsed %d channels", len(channels))
            return channels, playlist.epg_url or M3UParser.epg_url(data)

        raise ValueError(f"Unknown playlist kind: {playlist.kind}")

    async def _read_m3u(self, location: str) -> bytes:
        scheme = urlsplit(location).scheme.lower()
        if scheme in ("http", "https"):
            return await self._fetch.fetch(location, cache_policy=CachePolicy.RELOAD_IGNORING_CACHE)
        if scheme in ("", "file"):
            path = urlsplit(location).path if scheme == "file" else location

            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        raise InvalidURLError(f"Unsupported M3U location: {location}")

    @staticmethod
    def _credentials_for(playlist: Playlist) -> XtreamCredentials:
        return XtreamCredentials(
            name=playlist.name,
            server=playlist.server or "",
            username=playlist.username or "",
            password=playlist.password or "",
        )

    async def get_series_seasons(self, channel: Channel) -> List[Season]:
        """Fetch seasons for a portal series on demand and keep them on the channel."""
        playlist = self.get_playlist(channel.playlist_id)
        if playlist is None or playlist.kind != XTREAM or channel.series_id is None:
            return channel.seasons
        client = XtreamCodesClient(self._credentials_for(playlist), self._fetch)
        seasons = await client.get_series_info(channel.series_id)

        for existing in self._channels:
            if existing.id == channel.id:
                existing.seasons = seasons
        channel.seasons = seasons
        self._channel_store.save(self._channels)
        return seasons

    # Channel queries
    def get_all_channels(self, playlist_id: Optional[str] = None) -> List[Channel]:
        """Get all channels, optionally filtered by playlist id."""
        if playlist_id is None:
            return list(self._channels)
        return [ch for ch in self._channels if ch.playlist_id == playlist_id]

    def get_all_groups(self, playlist_id: Optional[str] = None) -> List[str]:
        """Get all unique groups, optionally filtered by playlist."""
        return sorted({ch.group for ch in self.get_all_channels(playlist_id) if ch.group})

    def get_channels_by_group(self, group: str, playlist_id: Optional[str] = None) -> List[Channel]:
        return [ch for ch in self.get_all_channels(playlist_id) if ch.group == group]

    def get_channels_by_type(self, content_type: str, playlist_id: Optional[str] = None) -> List[Channel]:
        """Get all channels of a specific content type."""
        return [ch for ch in self.get_all_channels(playlist_id) if ch.content_type == content_type]

    def search_channels(self, query: str) -> List[Channel]:
        """Search channels by name."""
        query = query.lower()
        return [ch for ch in self._channels if query in ch.name.lower()]

    def get_content_counts(self) -> dict:
        """Get counts of channels by content type."""
        counts = {content_type: 0 for content_type in CONTENT_TYPES}
        for channel in self._channels:
            counts[channel.content_type if channel.content_type in counts else LIVE] += 1
        return counts

    # Favorites management
    def toggle_favorite(self, channel: Channel) -> bool:
        """Toggle favorite status of a channel."""
        target = self._find(channel) or channel
        target.is_favorite = not target.is_favorite
        channel.is_favorite = target.is_favorite
        self._channel_store.save(self._channels)
        self._notify(self._on_channels_change)
        return target.is_favorite

    def get_favorites(self) -> List[Channel]:
        """Get all favorite channels."""
        return [ch for ch in self._channels if ch.is_favorite]

    # Categories
    def get_categories(self) -> List[Category]:
        return list(self._categories)

    def get_memberships(self) -> Dict[str, Set[str]]:
        return {cid: set(keys) for cid, keys in self._memberships.items()}

    def add_category(self, name: str) -> Category:
        category = Category(name=name, order=len(self._categories))
        self._categories.append(category)
        self._save_categories()
        return category

    def rename_category(self, category_id: str, new_name: str) -> None:
        for category in self._categories:
            if category.id == category_id:
                category.name = new_name
                self._save_categories()
                return

    def move_category(self, category_id: str, new_index: int) -> None:
        for index, category in enumerate(self._categories):
            if category.id == category_id:
                self._categories.insert(max(0, new_index), self._categories.pop(index))
                self._save_categories()
                return

    def delete_category(self, category_id: str) -> None:
        """Delete a category and every membership pointing at it."""
        self._categories = [c for c in self._categories if c.id != category_id]
        if self._memberships.pop(category_id, None) is not None:
            self._kv.save_memberships(self._memberships)

        touched = False
        for channel in self._channels:
            if category_id in channel.category_ids:
                channel.category_ids.discard(category_id)
                touched = True
        if touched:
            self._channel_store.save(self._channels)
            self._notify(self._on_channels_change)
        self._save_categories()

    def toggle_channel_in_category(self, channel: Channel, category_id: str) -> Optional[Channel]:
        """Add or remove a channel from a category; returns the updated channel."""
        target = self._find(channel)
        if target is None:
            return None

        is_member = category_id not in target.category_ids
        if is_member:
            target.category_ids.add(category_id)
        else:
            target.category_ids.discard(category_id)

        keys = self._memberships.setdefault(category_id, set())
        if is_member:
            keys.add(target.stable_key)
        else:
            keys.discard(target.stable_key)
            if not keys:
                del self._memberships[category_id]
        self._kv.save_memberships(self._memberships)

        self._channel_store.save(self._channels)
        self._notify(self._on_channels_change)
        return target

    def get_channels_for_category(self, category_id: str) -> List[Channel]:
        return [ch for ch in self._channels if category_id in ch.category_ids]

    def _save_categories(self) -> None:
        self._kv.save_categories(self._categories)
        self._notify(self._on_categories_change)

    def _find(self, channel: Channel) -> Optional[Channel]:
        return next((ch for ch in self._channels if ch.id == channel.id), None)

    # EPG Management
    def refresh_epg(self, url: str) -> None:
        """Load the guide in the background, replacing any load in progress."""
        self._background.start(EPG_TASK, lambda: self._load_epg(url))

    async def _load_epg(self, url: str) -> None:
        data = await self._fetch.fetch(url)
        programs = EPGParser.parse(data)
        self._epg_data = EPGParser.group_by_channel(programs)
        log.info("EPG loaded: %d programmes for %d channels", len(programs), len(self._epg_data))

    def get_epg_for_channel(self, channel_id: str) -> List[EPGProgram]:
        """Get EPG programs for a channel."""
        return self._epg_data.get(channel_id, [])

    def get_current_program(self, channel_id: str, now: Optional[datetime] = None) -> Optional[EPGProgram]:
        """Get currently airing program for a channel."""
        now = now or datetime.now(timezone.utc)
        for program in self.get_epg_for_channel(channel_id):
            if program.is_airing(now):
                return program
        return None

    def get_next_program(self, channel_id: str, now: Optional[datetime] = None) -> Optional[EPGProgram]:
        """Get next program for a channel."""
        now = now or datetime.now(timezone.utc)
        for program in self.get_epg_for_channel(channel_id):
            if program.start > now:
                return program
        return None

    # Server libraries
    def refresh_server_libraries(
        self,
        emby_url: str = "",
        emby_token: str = "",
        plex_url: str = "",
        plex_token: str = "",
    ) -> Optional[asyncio.Task]:
        """Refresh Emby/Plex items in the background; a newer refresh cancels the older one."""
        emby = ServerConnectionConfig.make(emby_url, emby_token)
        plex = ServerConnectionConfig.make(plex_url, plex_token)
        if emby is None and plex is None:
            self._background.cancel(SERVER_LIBRARY_TASK)
            self._server_channels = []
            return None

        async def run():
            channels = await self._server_library.fetch_libraries(emby=emby, plex=plex)
            self._server_channels = channels
            self._notify(self._on_channels_change)

        return self._background.start(SERVER_LIBRARY_TASK, run)

    def get_server_channels(self) -> List[Channel]:
        return list(self._server_channels)

    def background_task(self, key: str) -> Optional[asyncio.Task]:
        """The running background task for ``key`` (EPG_TASK, SERVER_LIBRARY_TASK)."""
        return self._background.get(key)

    # Callbacks
    def on_channels_change(self, callback: Callable):
        """Register callback for channel collection changes."""
        self._on_channels_change.append(callback)

    def on_playlist_change(self, callback: Callable):
        """Register callback for playlist changes."""
        self._on_playlist_change.append(callback)

    def on_categories_change(self, callback: Callable):
        """Register callback for category changes."""
        self._on_categories_change.append(callback)

    @staticmethod
    def _notify(callbacks: List[Callable]):
        for callback in callbacks:
            callback()
