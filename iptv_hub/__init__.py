"""IPTV Hub - playlist ingestion and reconciliation core."""

__version__ = "0.1.0"
