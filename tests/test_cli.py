from __future__ import annotations

from pathlib import Path

import main
from iptv_hub.models import Playlist
from iptv_hub.services.storage import KeyValueStore


def test_loads_named_local_playlist(tmp_path: Path) -> None:
    source = tmp_path / "home.m3u"
    source.write_text('#EXTM3U\n#EXTINF:-1 tvg-id="x" group-title="News",Ch1\nhttp://a/b\n', encoding="utf-8")
    KeyValueStore(tmp_path).save_playlists([Playlist(name="Home", m3u_url=str(source))])

    assert main.main(["--data-dir", str(tmp_path), "Home"]) == 0
    assert (tmp_path / "channels.json").exists()
    assert KeyValueStore(tmp_path).get_last_playlist_id() is not None


def test_unknown_playlist_fails(tmp_path: Path) -> None:
    assert main.main(["--data-dir", str(tmp_path), "Missing"]) == 1
