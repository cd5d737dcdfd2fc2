"""Plex catalog mirror: device pairing, catalog client and local library sync."""

__version__ = "0.1.0"
