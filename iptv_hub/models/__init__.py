# Models package
from .channel import Channel, Episode, Season, stable_key, normalize_url, LIVE, MOVIE, SERIES
from .category import Category, renumber
from .playlist import Playlist, M3U, XTREAM, STREMIO
from .epg import EPGProgram
