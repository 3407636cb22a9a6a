"""Persistence: a small JSON key-value store and the debounced channel file."""
import asyncio
import json
import logging
import os
import tempfile
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

import aiofiles
import aiofiles.os

from ..models.category import Category, renumber
from ..models.channel import Channel
from ..models.playlist import Playlist

log = logging.getLogger(__name__)


def atomic_write_text(path: Path, text: str) -> None:
    """Write ``text`` to a temp file beside ``path`` and move it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = tempfile.NamedTemporaryFile("w", delete=False, dir=path.parent, encoding="utf-8", suffix=".tmp")
    try:
        with tmp:
            tmp.write(text)
        os.replace(tmp.name, path)
    except Exception:
        if os.path.exists(tmp.name):
            os.unlink(tmp.name)
        raise


class KeyValueStore:
    """Small structured state kept in one JSON document.

    Holds playlists, categories, the category membership index and the
    last loaded playlist id.
    """

    FILE_NAME = "state.json"
    PLAYLISTS_KEY = "playlists"
    CATEGORIES_KEY = "categories"
    MEMBERSHIPS_KEY = "category_memberships"
    LAST_PLAYLIST_KEY = "last_playlist_id"

    def __init__(self, data_dir: Path):
        self.path = Path(data_dir) / self.FILE_NAME
        self._data: Optional[Dict[str, Any]] = None

    def _load(self) -> Dict[str, Any]:
        if self._data is None:
            self._data = {}
            if self.path.exists():
                try:
                    data = json.loads(self.path.read_text(encoding="utf-8"))
                    if isinstance(data, dict):
                        self._data = data
                    else:
                        log.error("Ignoring %s: expected a JSON object", self.path)
                except (OSError, ValueError) as e:
                    log.error("Failed to read %s: %s", self.path, e)
        return self._data

    def _save(self) -> None:
        try:
            atomic_write_text(self.path, json.dumps(self._load(), indent=2))
        except (OSError, TypeError, ValueError) as e:
            log.error("Failed to save %s: %s", self.path, e)

    def get(self, key: str, default: Any = None) -> Any:
        return self._load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._load()[key] = value
        self._save()

    def delete(self, key: str) -> None:
        if self._load().pop(key, None) is not None:
            self._save()

    # Playlists
    def load_playlists(self) -> List[Playlist]:
        playlists = []
        for data in self.get(self.PLAYLISTS_KEY, []) or []:
            try:
                playlists.append(Playlist.from_dict(data))
            except (AttributeError, ValueError) as e:
                log.warning("Skipping unreadable playlist entry: %s", e)
        return playlists

    def save_playlists(self, playlists: Iterable[Playlist]) -> None:
        self.set(self.PLAYLISTS_KEY, [p.to_dict() for p in playlists])

    # Categories
    def load_categories(self) -> List[Category]:
        categories = []
        for data in self.get(self.CATEGORIES_KEY, []) or []:
            try:
                categories.append(Category.from_dict(data))
            except (KeyError, TypeError, ValueError) as e:
                log.warning("Skipping unreadable category entry: %s", e)
        return sorted(categories, key=lambda c: c.order)

    def save_categories(self, categories: List[Category]) -> None:
        """Persist categories; ``order`` is rewritten from list position first."""
        renumber(categories)
        self.set(self.CATEGORIES_KEY, [c.to_dict() for c in categories])

    # Category membership index
    def load_memberships(self) -> Dict[str, Set[str]]:
        raw = self.get(self.MEMBERSHIPS_KEY, {}) or {}
        if not isinstance(raw, dict):
            log.error("Ignoring malformed category memberships")
            return {}
        return {str(cid): set(keys or []) for cid, keys in raw.items()}

    def save_memberships(self, memberships: Dict[str, Set[str]]) -> None:
        self.set(self.MEMBERSHIPS_KEY, {cid: sorted(keys) for cid, keys in memberships.items() if keys})

    # Last loaded playlist
    def get_last_playlist_id(self) -> Optional[str]:
        return self.get(self.LAST_PLAYLIST_KEY)

    def set_last_playlist_id(self, playlist_id: str) -> None:
        self.set(self.LAST_PLAYLIST_KEY, playlist_id)


class ChannelStore:
    """The full channel collection in ``channels.json``.

    :meth:`save` is debounced: each call replaces any write that is still
    waiting out the quiet period, so a burst of saves ends in one write.
    Writes go through a temp file and ``os.replace``.
    """

    FILE_NAME = "channels.json"
    LEGACY_KEY = "SavedChannels"
    SAVE_DELAY = 0.4

    def __init__(self, data_dir: Path, kv_store: Optional[KeyValueStore] = None, delay: Optional[float] = None):
        self.path = Path(data_dir) / self.FILE_NAME
        self.delay = self.SAVE_DELAY if delay is None else delay
        self._kv = kv_store
        self._migrated = False
        self._pending: Optional[asyncio.Task] = None
        self._pending_channels: Optional[List[Channel]] = None
        self._write_lock: Optional[asyncio.Lock] = None

    @property
    def has_pending_write(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def _lock(self) -> asyncio.Lock:
        if self._write_lock is None:
            self._write_lock = asyncio.Lock()
        return self._write_lock

    async def load(self) -> List[Channel]:
        """Read the saved collection; a missing or unreadable file means no channels."""
        await self._migrate_legacy()

        if not await aiofiles.os.path.exists(self.path):
            log.info("No saved channels file found.")
            return []
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                text = await f.read()
            data = json.loads(text)
            if not isinstance(data, list):
                raise ValueError("expected a JSON array")
            channels = [Channel.from_dict(item) for item in data]
        except (OSError, ValueError, TypeError, AttributeError) as e:
            log.error("Failed to load channels: %s", e)
            return []
        log.info("%d channels loaded from %s", len(channels), self.path)
        return channels

    def save(self, channels: Iterable[Channel]) -> None:
        """Schedule a write of ``channels`` after the quiet period."""
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending_channels = list(channels)
        self._pending = asyncio.get_running_loop().create_task(self._delayed_write())

    async def flush(self) -> None:
        """Write any scheduled collection now and wait for in-flight writes."""
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
            self._pending = None
            channels, self._pending_channels = self._pending_channels, None
            if channels is not None:
                await self._guarded_write(channels)
                return
        # Wait for a write that already started
        async with self._lock():
            pass

    async def save_now(self, channels: Iterable[Channel]) -> None:
        await self._guarded_write(list(channels))

    async def _delayed_write(self) -> None:
        await asyncio.sleep(self.delay)
        # Past this point a newer save() no longer cancels this write
        self._pending = None
        channels, self._pending_channels = self._pending_channels, None
        if channels is not None:
            await self._guarded_write(channels)

    async def _guarded_write(self, channels: List[Channel]) -> None:
        async with self._lock():
            try:
                await self._write_file(channels)
            except (OSError, TypeError, ValueError) as e:
                log.error("Failed to save channels: %s", e)

    async def _write_file(self, channels: List[Channel]) -> None:
        payload = json.dumps([channel.to_dict() for channel in channels])
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f".{self.path.name}.{uuid.uuid4().hex}.tmp")
        try:
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(payload)
            await aiofiles.os.replace(tmp_path, self.path)
        finally:
            if await aiofiles.os.path.exists(tmp_path):
                await aiofiles.os.remove(tmp_path)
        log.info("%d channels saved to file (%d bytes)", len(channels), len(payload))

    async def _migrate_legacy(self) -> None:
        """Move a channel list kept in the key-value store into the channel file (once)."""
        if self._migrated or self._kv is None:
            return
        self._migrated = True

        legacy = self._kv.get(self.LEGACY_KEY)
        if legacy is None:
            return
        log.info("Migrating channels from key-value store to %s", self.path)
        try:
            if isinstance(legacy, str):
                legacy = json.loads(legacy)
            if not isinstance(legacy, list):
                raise ValueError("legacy channels must be a list")
            if not self.path.exists():
                await self._write_file([Channel.from_dict(item) for item in legacy])
        except (OSError, ValueError, TypeError, AttributeError) as e:
            log.error("Migration failed: %s", e)
            return
        self._kv.delete(self.LEGACY_KEY)
