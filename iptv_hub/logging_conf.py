"""Logging configuration helpers."""
import logging
import os


def configure_logging(default_level: str = "INFO") -> None:
    """Configure the root logger once, level taken from IPTV_HUB_LOGLEVEL."""
    level_name = os.getenv("IPTV_HUB_LOGLEVEL", default_level).upper()
    level = getattr(logging, level_name, logging.INFO)

    if len(logging.getLogger().handlers) > 0:
        logging.getLogger().setLevel(level)
        return

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
    )
