"""Runtime settings read from the environment."""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass
class Settings:
    """Tunables for fetching and persistence."""

    data_dir: Path
    timeout: float = 60.0
    max_retries: int = 3
    backoff: float = 0.5
    save_delay: float = 0.4
    cache_ttl: float = 300.0
    cache_max_mb: int = 50

    @classmethod
    def from_env(cls, data_dir: Optional[str] = None) -> "Settings":
        """Build settings from IPTV_HUB_* environment variables."""
        directory = data_dir or os.getenv("IPTV_HUB_DATA_DIR") or str(Path.home() / ".iptv-hub")
        return cls(
            data_dir=Path(directory).expanduser(),
            timeout=_env_float("IPTV_HUB_TIMEOUT", 60.0),
            max_retries=max(1, _env_int("IPTV_HUB_MAX_RETRIES", 3)),
            backoff=_env_float("IPTV_HUB_BACKOFF", 0.5),
            save_delay=_env_float("IPTV_HUB_SAVE_DELAY", 0.4),
            cache_ttl=_env_float("IPTV_HUB_CACHE_TTL", 300.0),
            cache_max_mb=_env_int("IPTV_HUB_CACHE_MB", 50),
        )
