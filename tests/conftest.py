from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable

import httpx
import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from iptv_hub.services.fetch_client import FetchClient, ResponseCache  # noqa: E402


@pytest.fixture()
def make_client() -> Callable[..., FetchClient]:
    """Build a FetchClient whose requests are answered by ``handler``."""

    def factory(handler, **kwargs) -> FetchClient:
        kwargs.setdefault("backoff", 0)
        kwargs.setdefault("cache", ResponseCache())
        return FetchClient(transport=httpx.MockTransport(handler), **kwargs)

    return factory


@pytest.fixture()
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("IPTV_HUB_DATA_DIR", str(tmp_path))
    return tmp_path
