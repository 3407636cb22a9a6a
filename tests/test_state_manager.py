from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path

import httpx
import pytest

from iptv_hub.config import Settings
from iptv_hub.errors import ServerError
from iptv_hub.models import Channel, Playlist
from iptv_hub.models.playlist import XTREAM, STREMIO
from iptv_hub.services.state_manager import EPG_TASK, StateManager
from iptv_hub.services.storage import ChannelStore, KeyValueStore

PLAYLIST = """#EXTM3U url-tvg="http://example.com/guide.xml"
#EXTINF:-1 tvg-id="bbc1" group-title="UK",BBC One
http://example.com/live/bbc1.m3u8?token=1
#EXTINF:-1 group-title="UK",Local
http://example.com/live/local.m3u8
#EXTINF:-1 group-title="Films",Film
http://example.com/vod/film.mkv
"""
GUIDE = b"""<tv>
  <programme channel="bbc1" start="20240101120000 +0000" stop="20240101130000 +0000"><title>News</title></programme>
  <programme channel="bbc1" start="20240101130000 +0000" stop="20240101140000 +0000"><title>Afternoon</title></programme>
</tv>"""


def m3u_server(status: int = 200):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/list.m3u":
            return httpx.Response(status, text=PLAYLIST)
        if request.url.path == "/guide.xml":
            return httpx.Response(200, content=GUIDE)
        return httpx.Response(404)

    return handler


def xtream_server(failures=()):
    def handler(request: httpx.Request) -> httpx.Response:
        action = request.url.params.get("action")
        if action in failures:
            return httpx.Response(500)
        payload = {
            "get_live_streams": [{"stream_id": 1, "name": "Live", "epg_channel_id": "live1"}],
            "get_vod_streams": [{"stream_id": 2, "name": "Movie"}],
            "get_series": [{"series_id": 3, "name": "Show"}],
            "get_series_info": {"episodes": {"1": [{"id": "31", "episode_num": 1, "title": "Pilot"}]}},
        }[action]
        return httpx.Response(200, json=payload)

    return handler


@pytest.fixture()
def new_manager(tmp_path: Path, make_client):
    def factory(handler) -> StateManager:
        return StateManager(settings=Settings(data_dir=tmp_path, save_delay=0), fetch_client=make_client(handler))

    return factory


def home_playlist() -> Playlist:
    return Playlist(name="Home", m3u_url="http://example.com/list.m3u")


def test_categories_and_favorites_survive_reload(new_manager) -> None:
    async def first_session():
        manager = new_manager(m3u_server())
        await manager.load()
        playlist = home_playlist()
        manager.add_playlist(playlist)
        news = manager.add_category("News")
        channels = await manager.load_playlist(playlist)
        bbc = next(c for c in channels if c.tvg_id == "bbc1")
        manager.toggle_channel_in_category(bbc, news.id)
        manager.toggle_favorite(bbc)
        await manager.close()
        return news.id

    async def second_session():
        manager = new_manager(m3u_server())
        await manager.load()
        reloaded = await manager.load_playlist(manager.get_last_playlist())
        await manager.close()
        return manager, reloaded

    news_id = asyncio.run(first_session())
    manager, reloaded = asyncio.run(second_session())

    bbc = next(c for c in reloaded if c.tvg_id == "bbc1")
    assert bbc.category_ids == {news_id}
    assert bbc.is_favorite is True
    assert len(manager.get_all_channels()) == 3
    assert manager.get_channels_for_category(news_id) == [bbc]
    assert manager.get_favorites() == [bbc]


def test_membership_index_restores_category_without_snapshot(new_manager, tmp_path: Path) -> None:
    async def scenario():
        manager = new_manager(m3u_server())
        await manager.load()
        playlist = home_playlist()
        manager.add_playlist(playlist)
        news = manager.add_category("News")
        bbc = next(c for c in await manager.load_playlist(playlist) if c.tvg_id == "bbc1")
        manager.toggle_channel_in_category(bbc, news.id)
        await manager.close()

        (tmp_path / "channels.json").unlink()

        manager = new_manager(m3u_server())
        await manager.load()
        reloaded = await manager.load_playlist(playlist)
        await manager.close()
        return news.id, reloaded

    news_id, reloaded = asyncio.run(scenario())
    assert next(c for c in reloaded if c.tvg_id == "bbc1").category_ids == {news_id}


def test_reload_replaces_playlist_channels(new_manager) -> None:
    async def scenario():
        manager = new_manager(m3u_server())
        playlist = home_playlist()
        manager.add_playlist(playlist)
        await manager.load_playlist(playlist)
        await manager.load_playlist(playlist)
        replaced = len(manager.get_all_channels())
        await manager.load_playlist(playlist, append=True)
        appended = len(manager.get_all_channels())
        await manager.close()
        return replaced, appended

    assert asyncio.run(scenario()) == (3, 6)


def test_failed_load_leaves_collection_untouched(new_manager) -> None:
    status = {"code": 200}

    def handler(request):
        return m3u_server(status["code"])(request)

    async def scenario():
        manager = new_manager(handler)
        playlist = home_playlist()
        manager.add_playlist(playlist)
        await manager.load_playlist(playlist)

        status["code"] = 500
        with pytest.raises(ServerError):
            await manager.load_playlist(playlist)
        count = len(manager.get_all_channels())
        await manager.close()
        return count

    assert asyncio.run(scenario()) == 3


def test_epg_loaded_in_background(new_manager) -> None:
    async def scenario():
        manager = new_manager(m3u_server())
        playlist = home_playlist()
        manager.add_playlist(playlist)
        await manager.load_playlist(playlist)
        await manager.background_task(EPG_TASK)
        await manager.close()
        return manager

    manager = asyncio.run(scenario())
    now = datetime(2024, 1, 1, 12, 30, tzinfo=timezone.utc)
    assert manager.get_current_program("bbc1", now=now).title == "News"
    assert manager.get_next_program("bbc1", now=now).title == "Afternoon"
    assert manager.get_epg_for_channel("unknown") == []


def test_xtream_live_failure_is_terminal(new_manager) -> None:
    playlist = Playlist(name="Portal", kind=XTREAM, server="http://portal", username="u", password="p")

    async def scenario():
        manager = new_manager(xtream_server(failures={"get_live_streams"}))
        manager.add_playlist(playlist)
        try:
            await manager.load_playlist(playlist)
        finally:
            await manager.close()

    with pytest.raises(ServerError) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.status_code == 500


def test_xtream_movie_failure_degrades(new_manager) -> None:
    playlist = Playlist(name="Portal", kind=XTREAM, server="http://portal", username="u", password="p")

    async def scenario():
        manager = new_manager(xtream_server(failures={"get_vod_streams"}))
        manager.add_playlist(playlist)
        await manager.load_playlist(playlist)
        await manager.close()
        return manager

    manager = asyncio.run(scenario())
    assert manager.get_content_counts() == {"live": 1, "movie": 0, "series": 1}
    assert manager.get_channels_by_type("movie") == []
    assert all(c.playlist_id == playlist.id for c in manager.get_all_channels())


def test_series_seasons_on_demand(new_manager) -> None:
    playlist = Playlist(name="Portal", kind=XTREAM, server="http://portal", username="u", password="p")

    async def scenario():
        manager = new_manager(xtream_server())
        manager.add_playlist(playlist)
        await manager.load_playlist(playlist)
        show = manager.get_channels_by_type("series")[0]
        seasons = await manager.get_series_seasons(show)
        await manager.close()
        return seasons, show

    seasons, show = asyncio.run(scenario())
    assert [e.title for e in seasons[0].episodes] == ["Pilot"]
    assert show.seasons == seasons


def test_stremio_playlist(new_manager) -> None:
    manifest = {"id": "a", "name": "Addon", "catalogs": [{"id": "top", "type": "movie", "name": "Top"}]}
    playlist = Playlist(name="Addon", kind=STREMIO, addon_url="https://addon.example/manifest.json")

    async def scenario():
        manager = new_manager(lambda request: httpx.Response(200, json=manifest))
        manager.add_playlist(playlist)
        channels = await manager.load_playlist(playlist)
        await manager.close()
        return channels

    channels = asyncio.run(scenario())
    assert [c.name for c in channels] == ["Addon - Top"]


def test_load_adopts_and_prunes(new_manager, tmp_path: Path) -> None:
    playlist = home_playlist()
    kv = KeyValueStore(tmp_path)
    kv.save_playlists([playlist])
    kv.set_last_playlist_id(playlist.id)
    saved = [
        Channel(name="Kept", url="http://h/1", playlist_id=playlist.id),
        Channel(name="Adopted", url="http://h/2"),
        Channel(name="Orphan", url="http://h/3", playlist_id="deleted"),
    ]

    async def scenario():
        await ChannelStore(tmp_path).save_now(saved)
        manager = new_manager(m3u_server())
        await manager.load()
        await manager.close()
        return manager

    manager = asyncio.run(scenario())
    assert [c.name for c in manager.get_all_channels()] == ["Kept", "Adopted"]
    assert all(c.playlist_id == playlist.id for c in manager.get_all_channels())
    on_disk = json.loads((tmp_path / "channels.json").read_text(encoding="utf-8"))
    assert [c["name"] for c in on_disk] == ["Kept", "Adopted"]


def test_remove_playlist_drops_its_channels(new_manager) -> None:
    async def scenario():
        manager = new_manager(m3u_server())
        playlist = home_playlist()
        manager.add_playlist(playlist)
        await manager.load_playlist(playlist)
        manager.remove_playlist(playlist.id)
        await manager.close()
        return manager

    manager = asyncio.run(scenario())
    assert manager.get_all_channels() == []
    assert manager.get_playlists() == []
    assert manager.get_last_playlist() is None


def test_update_playlist(new_manager, tmp_path: Path) -> None:
    manager = new_manager(m3u_server())
    playlist = home_playlist()
    manager.add_playlist(playlist)
    playlist.name = "Renamed"
    manager.update_playlist(playlist)
    assert [p.name for p in KeyValueStore(tmp_path).load_playlists()] == ["Renamed"]


def test_delete_middle_category_renumbers(new_manager, tmp_path: Path) -> None:
    async def scenario():
        manager = new_manager(m3u_server())
        playlist = home_playlist()
        manager.add_playlist(playlist)
        first, second, third = (manager.add_category(name) for name in ("A", "B", "C"))
        channel = (await manager.load_playlist(playlist))[0]
        manager.toggle_channel_in_category(channel, second.id)
        manager.delete_category(second.id)
        await manager.close()
        return manager, channel, second

    manager, channel, second = asyncio.run(scenario())
    assert [(c.name, c.order) for c in manager.get_categories()] == [("A", 0), ("C", 1)]
    assert [(c.name, c.order) for c in KeyValueStore(tmp_path).load_categories()] == [("A", 0), ("C", 1)]
    assert second.id not in channel.category_ids
    assert second.id not in manager.get_memberships()


def test_rename_and_move_category(new_manager) -> None:
    manager = new_manager(m3u_server())
    a, b, c = (manager.add_category(name) for name in ("A", "B", "C"))
    manager.rename_category(b.id, "Bee")
    manager.move_category(c.id, 0)
    assert [(cat.name, cat.order) for cat in manager.get_categories()] == [("C", 0), ("A", 1), ("Bee", 2)]


def test_toggle_channel_in_category_twice_removes(new_manager) -> None:
    async def scenario():
        manager = new_manager(m3u_server())
        playlist = home_playlist()
        manager.add_playlist(playlist)
        channel = (await manager.load_playlist(playlist))[0]
        category = manager.add_category("Sport")
        manager.toggle_channel_in_category(channel, category.id)
        added = manager.get_memberships()
        manager.toggle_channel_in_category(channel, category.id)
        await manager.close()
        return added, manager.get_memberships(), channel, category

    added, removed, channel, category = asyncio.run(scenario())
    assert added == {category.id: {channel.stable_key}}
    assert removed == {}
    assert channel.category_ids == set()


def test_queries_and_callbacks(new_manager) -> None:
    events = []

    async def scenario():
        manager = new_manager(m3u_server())
        manager.on_playlist_change(lambda: events.append("playlist"))
        manager.on_channels_change(lambda: events.append("channels"))
        manager.on_categories_change(lambda: events.append("categories"))
        playlist = home_playlist()
        manager.add_playlist(playlist)
        await manager.load_playlist(playlist)
        manager.add_category("News")
        await manager.close()
        return manager

    manager = asyncio.run(scenario())
    assert events == ["playlist", "channels", "categories"]
    assert [c.name for c in manager.search_channels("bbc")] == ["BBC One"]
    assert manager.get_all_groups() == ["Films", "UK"]
    assert [c.name for c in manager.get_channels_by_group("UK")] == ["BBC One", "Local"]
    assert [c.name for c in manager.get_channels_by_type("movie")] == ["Film"]


def test_server_libraries_without_config(new_manager) -> None:
    async def scenario():
        manager = new_manager(m3u_server())
        task = manager.refresh_server_libraries()
        await manager.close()
        return task, manager.get_server_channels()

    assert asyncio.run(scenario()) == (None, [])


def test_server_libraries_refresh(new_manager) -> None:
    def handler(request):
        return httpx.Response(200, json={"Items": [{"Id": "1", "Name": "Film", "Type": "Movie"}]})

    async def scenario():
        manager = new_manager(handler)
        await manager.refresh_server_libraries(emby_url="http://emby.local", emby_token="t")
        await manager.close()
        return manager.get_server_channels()

    assert [c.name for c in asyncio.run(scenario())] == ["Film"]
