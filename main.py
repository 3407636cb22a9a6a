#!/usr/bin/env python3
"""IPTV Hub - ingest a saved playlist and report what it contains."""
import argparse
import asyncio
import logging
import sys

from iptv_hub.errors import IPTVHubError
from iptv_hub.logging_conf import configure_logging
from iptv_hub.services import StateManager

log = logging.getLogger("iptv_hub")


async def run(data_dir, playlist_name):
    manager = StateManager(data_dir=data_dir)
    await manager.load()
    try:
        if playlist_name:
            playlist = manager.find_playlist(playlist_name)
        else:
            playlist = manager.get_last_playlist()
        if playlist is None:
            log.error("No playlist to load (saved playlists: %s)",
                      ", ".join(p.name for p in manager.get_playlists()) or "none")
            return 1

        try:
            channels = await manager.load_playlist(playlist)
        except IPTVHubError as e:
            log.error("Failed to load %s: %s", playlist.name, e)
            return 1

        log.info("%s: %d channels", playlist.name, len(channels))
        for content_type, count in manager.get_content_counts().items():
            log.info("  %-7s %d", content_type, count)
        return 0
    finally:
        await manager.close()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Load an IPTV playlist into the local library.")
    parser.add_argument("--data-dir", help="state directory (default: $IPTV_HUB_DATA_DIR or ~/.iptv-hub)")
    parser.add_argument("playlist", nargs="?", help="name of a saved playlist (default: last loaded)")
    args = parser.parse_args(argv)

    configure_logging()
    return asyncio.run(run(args.data_dir, args.playlist))


if __name__ == "__main__":
    sys.exit(main())
