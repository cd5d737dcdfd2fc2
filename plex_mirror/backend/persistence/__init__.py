"""SQLite-backed persistence for the local catalog mirror."""

from .sqlite import (
    SqliteLocalStore,
    connect,
    connection,
    migrate,
)

__all__ = [
    "SqliteLocalStore",
    "connect",
    "connection",
    "migrate",
]
