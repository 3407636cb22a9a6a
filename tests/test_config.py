from __future__ import annotations

import logging
from pathlib import Path

import pytest

from iptv_hub.config import Settings
from iptv_hub.logging_conf import configure_logging


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("IPTV_HUB_DATA_DIR", "IPTV_HUB_TIMEOUT", "IPTV_HUB_MAX_RETRIES", "IPTV_HUB_SAVE_DELAY"):
        monkeypatch.delenv(name, raising=False)
    settings = Settings.from_env()
    assert settings.data_dir == Path.home() / ".iptv-hub"
    assert settings.timeout == 60.0
    assert settings.max_retries == 3
    assert settings.save_delay == 0.4


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("IPTV_HUB_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("IPTV_HUB_TIMEOUT", "5")
    monkeypatch.setenv("IPTV_HUB_MAX_RETRIES", "not-a-number")
    settings = Settings.from_env()
    assert settings.data_dir == tmp_path
    assert settings.timeout == 5.0
    assert settings.max_retries == 3


def test_explicit_data_dir_wins(data_dir: Path, tmp_path: Path) -> None:
    other = tmp_path / "other"
    assert Settings.from_env(str(other)).data_dir == other


def test_configure_logging_level(monkeypatch: pytest.MonkeyPatch) -> None:
    root = logging.getLogger()
    previous = root.level
    monkeypatch.setenv("IPTV_HUB_LOGLEVEL", "debug")
    try:
        configure_logging()
        assert root.level == logging.DEBUG
    finally:
        root.setLevel(previous)
