"""M3U/M3U8 playlist parser with content type detection."""
import logging
import posixpath
import re
from typing import Dict, Iterator, List, Optional, Union
from urllib.parse import urlsplit

import aiofiles

from ..errors import FormatError
from ..models.channel import Channel, LIVE, MOVIE, SERIES
from .fetch_client import CachePolicy, FetchClient

log = logging.getLogger(__name__)

HEADER = "#EXTM3U"
EXTINF = "#EXTINF:"

_ATTRIBUTE_RE = re.compile(r'([A-Za-z0-9_-]+)="([^"]*)"')


def parse_attributes(line: str) -> Dict[str, str]:
    """Extract ``key="value"`` pairs from a metadata line.

    Keys are lower-cased; a repeated key keeps its last value.
    """
    return {key.lower(): value for key, value in _ATTRIBUTE_RE.findall(line)}


def decode_playlist(data: Union[bytes, str]) -> str:
    """Decode playlist bytes as UTF-8, falling back to latin-1."""
    if isinstance(data, str):
        text = data
    else:
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            text = data.decode("latin-1")
    return text.lstrip("\ufeff")


class M3UParser:
    """Parser for M3U and M3U8 playlist files."""

    VIDEO_EXTENSIONS = frozenset({"mp4", "mkv", "avi", "mov", "m4v", "wmv", "flv", "webm"})
    SERIES_GROUP_KEYWORDS = ("series", "season", "episode")

    @classmethod
    async def parse_from_url(cls, url: str, fetch_client: FetchClient) -> List[Channel]:
        """Download and parse an M3U playlist."""
        data = await fetch_client.fetch(url, cache_policy=CachePolicy.RELOAD_IGNORING_CACHE)
        channels = cls.parse(data)
        log.info("M3UParser: parsed %d channels from %s", len(channels), url)
        return channels

    @classmethod
    async def parse_from_file(cls, file_path: str) -> List[Channel]:
        """Parse an M3U playlist from a local file."""
        async with aiofiles.open(file_path, "rb") as f:
            data = await f.read()
        return cls.parse(data)

    @classmethod
    def parse(cls, data: Union[bytes, str]) -> List[Channel]:
        """Parse a whole playlist into a list of channels."""
        return list(cls.iter_channels(data))

    @classmethod
    def header_attributes(cls, data: Union[bytes, str]) -> Dict[str, str]:
        """Attributes of the ``#EXTM3U`` header line (e.g. ``url-tvg``)."""
        for raw in decode_playlist(data).splitlines():
            line = raw.strip()
            if not line:
                continue
            if _is_header(line):
                return parse_attributes(line)
            break
        return {}

    @classmethod
    def epg_url(cls, data: Union[bytes, str]) -> Optional[str]:
        """EPG location advertised by the playlist header, if any."""
        attributes = cls.header_attributes(data)
        return attributes.get("url-tvg") or attributes.get("x-tvg-url") or None

    @classmethod
    def iter_channels(cls, data: Union[bytes, str]) -> Iterator[Channel]:
        """Lazily yield channels; raises FormatError if the header is missing.

        A URL line that has no preceding ``#EXTINF`` line is dropped.
        """
        lines = iter(decode_playlist(data).splitlines())

        for raw in lines:
            line = raw.strip()
            if not line:
                continue
            if not _is_header(line):
                raise FormatError("A valid #EXTM3U header was not found.")
            break
        else:
            raise FormatError("A valid #EXTM3U header was not found.")

        pending_extinf = None
        for raw in lines:
            line = raw.strip()
            if not line:
                continue

            if line.startswith("#"):
                if line.upper().startswith(EXTINF):
                    pending_extinf = line
                continue

            if pending_extinf is None:
                continue

            extinf_line, pending_extinf = pending_extinf, None
            channel = cls._parse_channel(extinf_line, line)
            if channel is not None:
                yield channel

    @classmethod
    def detect_content_type(cls, url: str, group: str) -> str:
        """Classify by container extension, then by group keywords."""
        try:
            path = urlsplit(url).path
        except ValueError:
            return LIVE
        extension = posixpath.splitext(path)[1].lstrip(".").lower()
        if extension not in cls.VIDEO_EXTENSIONS:
            return LIVE

        group_lower = group.lower()
        if any(keyword in group_lower for keyword in cls.SERIES_GROUP_KEYWORDS):
            return SERIES
        return MOVIE

    @classmethod
    def _parse_channel(cls, extinf_line: str, url: str) -> Optional[Channel]:
        """Build a channel from an EXTINF line and its URL line."""
        try:
            urlsplit(url)
        except ValueError:
            log.debug("Skipping malformed URL line: %r", url)
            return None

        attributes = parse_attributes(extinf_line)
        name = _display_name(extinf_line) or attributes.get("tvg-name", "").strip() or "Unknown Channel"
        group = attributes.get("group-title", "").strip() or "Uncategorized"
        logo = attributes.get("tvg-logo") or attributes.get("logo") or None
        content_type = cls.detect_content_type(url, group)

        genre = None
        if content_type != LIVE:
            # Parse genre from group-title (e.g. "Action;Comedy;Thriller")
            genres = [part.strip() for part in group.split(";") if part.strip()]
            if genres:
                genre = ", ".join(genres)

        return Channel(
            name=name,
            url=url,
            logo=logo,
            group=group,
            tvg_id=attributes.get("tvg-id", "").strip(),
            content_type=content_type,
            genre=genre,
        )


def _is_header(line: str) -> bool:
    return line.split(None, 1)[0].upper() == HEADER


def _display_name(extinf_line: str) -> str:
    # The name follows the first comma after the last attribute, so commas
    # inside quoted attribute values are not mistaken for the separator.
    last_end = 0
    for match in _ATTRIBUTE_RE.finditer(extinf_line):
        last_end = match.end()
    comma = extinf_line.find(",", last_end)
    if comma == -1:
        return ""
    return re.sub(r"\s+", " ", extinf_line[comma + 1:]).strip()
