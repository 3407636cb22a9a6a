"""Playlist model for saved sources."""
import uuid
from dataclasses import dataclass, field
from typing import Optional


M3U = "m3u"
XTREAM = "xtream"
STREMIO = "stremio"
PLAYLIST_KINDS = (M3U, XTREAM, STREMIO)


@dataclass
class Playlist:
    """Represents a saved playlist source (M3U file, Xtream portal or Stremio add-on)."""

    name: str
    kind: str = M3U
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    # M3U fields
    m3u_url: Optional[str] = None
    epg_url: Optional[str] = None
    # Xtream fields
    server: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    # Stremio fields
    addon_url: Optional[str] = None

    @property
    def display_url(self) -> str:
        """URL shown for this playlist, depending on its kind."""
        if self.kind == XTREAM:
            return self.server or ""
        if self.kind == STREMIO:
            return self.addon_url or ""
        return self.m3u_url or ""

    def to_dict(self) -> dict:
        """Convert playlist to dictionary for serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind,
            "m3u_url": self.m3u_url,
            "epg_url": self.epg_url,
            "server": self.server,
            "username": self.username,
            "password": self.password,
            "addon_url": self.addon_url,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Playlist":
        """Create playlist from dictionary."""
        kind = data.get("kind") or M3U
        if kind not in PLAYLIST_KINDS:
            raise ValueError(f"Unknown playlist kind: {kind}")
        return cls(
            id=str(data.get("id") or uuid.uuid4()),
            name=data.get("name", "Unknown Playlist"),
            kind=kind,
            m3u_url=data.get("m3u_url"),
            epg_url=data.get("epg_url"),
            server=data.get("server"),
            username=data.get("username"),
            password=data.get("password"),
            addon_url=data.get("addon_url"),
        )
