"""SQLite connection helpers and the LocalStore used by library sync."""

from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from plex_mirror.backend.common.logging import get_logger
from plex_mirror.backend.library.entities import Entity, EntityKind, Episode, Movie, Show
from plex_mirror.config.settings import get_database_path

log = get_logger(__name__)


def _resolve_path(path: Optional[Path]) -> Path:
    db_path = Path(path or get_database_path())
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return db_path


def connect(path: Optional[Path] = None, *, apply_migrations: bool = True) -> sqlite3.Connection:
    """Create a SQLite connection and ensure the schema exists."""

    db_path = _resolve_path(path)
    connection = sqlite3.connect(str(db_path), check_same_thread=False)
    connection.row_factory = sqlite3.Row
    connection.execute("PRAGMA foreign_keys = ON")
    connection.execute("PRAGMA journal_mode = WAL")
    if apply_migrations:
        migrate(connection)
    return connection


@contextmanager
def connection(path: Optional[Path] = None) -> Iterator[sqlite3.Connection]:
    conn = connect(path)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def migrate(connection: sqlite3.Connection) -> None:
    """Create required tables if they are missing."""

    connection.executescript(
        """
        CREATE TABLE IF NOT EXISTS movies (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            remote_key TEXT,
            server_identity TEXT,
            library_section_id TEXT,
            title TEXT NOT NULL,
            watched INTEGER NOT NULL DEFAULT 0,
            progress_minutes INTEGER NOT NULL DEFAULT 0 CHECK (progress_minutes >= 0),
            artwork BLOB,
            last_synced_at TEXT,
            genres TEXT NOT NULL DEFAULT '[]',
            duration_minutes INTEGER NOT NULL DEFAULT 0,
            release_date TEXT,
            summary TEXT,
            cast_members TEXT NOT NULL DEFAULT '[]',
            producers TEXT NOT NULL DEFAULT '[]',
            directors TEXT NOT NULL DEFAULT '[]',
            screenwriters TEXT NOT NULL DEFAULT '[]',
            studio TEXT,
            video_quality TEXT,
            content_rating TEXT,
            languages TEXT NOT NULL DEFAULT '[]',
            stream_key TEXT,
            UNIQUE(server_identity, remote_key)
        );

        CREATE TABLE IF NOT EXISTS shows (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            remote_key TEXT,
            server_identity TEXT,
            library_section_id TEXT,
            title TEXT NOT NULL,
            year INTEGER NOT NULL,
            watched INTEGER NOT NULL DEFAULT 0,
            progress_minutes INTEGER NOT NULL DEFAULT 0 CHECK (progress_minutes >= 0),
            artwork BLOB,
            last_synced_at TEXT,
            genres TEXT NOT NULL DEFAULT '[]',
            summary TEXT,
            UNIQUE(server_identity, remote_key)
        );

        CREATE TABLE IF NOT EXISTS episodes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            show_id INTEGER NOT NULL REFERENCES shows(id) ON DELETE CASCADE,
            remote_key TEXT,
            server_identity TEXT,
            title TEXT NOT NULL,
            season INTEGER NOT NULL DEFAULT 1,
            episode_index INTEGER NOT NULL DEFAULT 1,
            watched INTEGER NOT NULL DEFAULT 0,
            progress_minutes INTEGER NOT NULL DEFAULT 0 CHECK (progress_minutes >= 0),
            artwork BLOB,
            last_synced_at TEXT,
            duration_minutes INTEGER NOT NULL DEFAULT 0,
            release_date TEXT,
            summary TEXT,
            cast_members TEXT NOT NULL DEFAULT '[]',
            producers TEXT NOT NULL DEFAULT '[]',
            directors TEXT NOT NULL DEFAULT '[]',
            screenwriters TEXT NOT NULL DEFAULT '[]',
            studio TEXT,
            content_rating TEXT,
            languages TEXT NOT NULL DEFAULT '[]',
            stream_key TEXT,
            UNIQUE(server_identity, remote_key)
        );

        CREATE INDEX IF NOT EXISTS idx_episodes_show ON episodes(show_id);
        """
    )


# ---------------- Column codecs ----------------

def _enc_json(value: Any) -> str:
    return json.dumps(list(value or []), ensure_ascii=False)


def _dec_json(value: Any) -> List[str]:
    if not value:
        return []
    try:
        data = json.loads(value)
    except json.JSONDecodeError:
        log.warning("sqlite_invalid_json_column", extra={"value": str(value)[:64]})
        return []
    return [str(v) for v in data] if isinstance(data, list) else []


def _enc_date(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def _dec_date(value: Any) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _dec_datetime(value: Any) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _enc_bool(value: Any) -> int:
    return 1 if value else 0


def _dec_bool(value: Any) -> bool:
    return bool(value)


def _enc_blob(value: Optional[bytes]) -> Optional[sqlite3.Binary]:
    return sqlite3.Binary(value) if value is not None else None


def _dec_blob(value: Any) -> Optional[bytes]:
    return bytes(value) if value is not None else None


def _same(value: Any) -> Any:
    return value


_CODECS: Dict[str, Tuple[Callable[[Any], Any], Callable[[Any], Any]]] = {
    "plain": (_same, _same),
    "json": (_enc_json, _dec_json),
    "date": (_enc_date, _dec_date),
    "datetime": (_enc_date, _dec_datetime),
    "bool": (_enc_bool, _dec_bool),
    "blob": (_enc_blob, _dec_blob),
}


@dataclass(frozen=True)
class _Table:
    name: str
    factory: Callable[..., Entity]
    # (dataclass field, column, codec)
    columns: Tuple[Tuple[str, str, str], ...]

    def encode(self, entity: Entity) -> Dict[str, Any]:
        return {col: _CODECS[codec][0](getattr(entity, attr)) for attr, col, codec in self.columns}

    def decode(self, row: sqlite3.Row) -> Entity:
        values = {attr: _CODECS[codec][1](row[col]) for attr, col, codec in self.columns}
        return self.factory(id=int(row["id"]), **values)


_COMMON = (
    ("remote_key", "remote_key", "plain"),
    ("server_identity", "server_identity", "plain"),
    ("title", "title", "plain"),
    ("watched", "watched", "bool"),
    ("progress_minutes", "progress_minutes", "plain"),
    ("artwork", "artwork", "blob"),
    ("last_synced_at", "last_synced_at", "datetime"),
)

_CREDITS = (
    ("duration_minutes", "duration_minutes", "plain"),
    ("release_date", "release_date", "date"),
    ("summary", "summary", "plain"),
    ("cast", "cast_members", "json"),
    ("producers", "producers", "json"),
    ("directors", "directors", "json"),
    ("screenwriters", "screenwriters", "json"),
    ("studio", "studio", "plain"),
    ("content_rating", "content_rating", "plain"),
    ("languages", "languages", "json"),
    ("stream_key", "stream_key", "plain"),
)

_TABLES: Dict[EntityKind, _Table] = {
    EntityKind.MOVIE: _Table(
        "movies",
        Movie,
        _COMMON + _CREDITS + (
            ("library_section_id", "library_section_id", "plain"),
            ("genres", "genres", "json"),
            ("video_quality", "video_quality", "plain"),
        ),
    ),
    EntityKind.SHOW: _Table(
        "shows",
        Show,
        _COMMON + (
            ("library_section_id", "library_section_id", "plain"),
            ("year", "year", "plain"),
            ("genres", "genres", "json"),
            ("summary", "summary", "plain"),
        ),
    ),
    EntityKind.EPISODE: _Table(
        "episodes",
        Episode,
        _COMMON + _CREDITS + (
            ("show_id", "show_id", "plain"),
            ("season", "season", "plain"),
            ("index", "episode_index", "plain"),
        ),
    ),
}


class SqliteLocalStore:
    """
    All writes go into the connection's open transaction; nothing is durable until
    :meth:`commit`. :meth:`rollback` discards everything since the last commit.
    """

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn
        self._lock = threading.RLock()

    @classmethod
    def open(cls, path: Optional[Path] = None) -> "SqliteLocalStore":
        return cls(connect(path))

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def _load(self, kind: EntityKind, row: sqlite3.Row) -> Entity:
        entity = _TABLES[kind].decode(row)
        if kind is EntityKind.SHOW:
            entity.episodes = self.episodes_for(entity)
        return entity

    def find(self, kind: EntityKind, server_identity: str, remote_key: str) -> Optional[Entity]:
        table = _TABLES[kind]
        with self._lock:
            row = self._conn.execute(
                f"SELECT * FROM {table.name} WHERE server_identity = ? AND remote_key = ?",
                (server_identity, remote_key),
            ).fetchone()
            return None if row is None else self._load(kind, row)

    def get(self, kind: EntityKind, entity_id: int) -> Optional[Entity]:
        table = _TABLES[kind]
        with self._lock:
            row = self._conn.execute(f"SELECT * FROM {table.name} WHERE id = ?", (entity_id,)).fetchone()
            return None if row is None else self._load(kind, row)

    def episodes_for(self, show: Show) -> List[Episode]:
        if show.id is None:
            return []
        table = _TABLES[EntityKind.EPISODE]
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM episodes WHERE show_id = ? ORDER BY season, episode_index, id",
                (show.id,),
            ).fetchall()
            return [table.decode(row) for row in rows]

    def list_for_server(self, kind: EntityKind, server_identity: str) -> List[Entity]:
        table = _TABLES[kind]
        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM {table.name} WHERE server_identity = ? ORDER BY title, id",
                (server_identity,),
            ).fetchall()
            return [self._load(kind, row) for row in rows]

    def insert(self, entity: Entity) -> Entity:
        table = _TABLES[entity.kind]
        values = table.encode(entity)
        columns = ", ".join(values)
        marks = ", ".join("?" for _ in values)
        with self._lock:
            cursor = self._conn.execute(
                f"INSERT INTO {table.name} ({columns}) VALUES ({marks})",
                tuple(values.values()),
            )
        entity.id = int(cursor.lastrowid)
        return entity

    def update(self, entity: Entity) -> None:
        if entity.id is None:
            raise ValueError(f"Cannot update unsaved {entity.kind.value} '{entity.title}'")
        table = _TABLES[entity.kind]
        values = table.encode(entity)
        assignments = ", ".join(f"{col} = ?" for col in values)
        with self._lock:
            self._conn.execute(
                f"UPDATE {table.name} SET {assignments} WHERE id = ?",
                (*values.values(), entity.id),
            )

    def delete(self, entity: Entity) -> None:
        if entity.id is None:
            return
        table = _TABLES[entity.kind]
        with self._lock:
            self._conn.execute(f"DELETE FROM {table.name} WHERE id = ?", (entity.id,))

    def counts(self, server_identity: Optional[str] = None) -> Dict[str, int]:
        result: Dict[str, int] = {}
        with self._lock:
            for kind, table in _TABLES.items():
                if server_identity is None:
                    row = self._conn.execute(f"SELECT COUNT(*) FROM {table.name}").fetchone()
                else:
                    row = self._conn.execute(
                        f"SELECT COUNT(*) FROM {table.name} WHERE server_identity = ?",
                        (server_identity,),
                    ).fetchone()
                result[kind.value] = int(row[0])
        return result

    def commit(self) -> None:
        with self._lock:
            self._conn.commit()

    def rollback(self) -> None:
        with self._lock:
            self._conn.rollback()

    def close(self) -> None:
        with self._lock:
            self._conn.close()


__all__ = [
    "SqliteLocalStore",
    "connect",
    "connection",
    "migrate",
]
