"""Ordinary (non-secret) preference storage backed by a JSON file."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .paths import get_preferences_path


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def read_json_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, json.JSONDecodeError):
        return {}

    return data if isinstance(data, dict) else {}


def write_json_file(path: Path, payload: Mapping[str, Any]) -> None:
    ensure_parent(path)
    temp = path.with_suffix(".tmp")
    with temp.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, ensure_ascii=False, sort_keys=True)
    temp.replace(path)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass
class Preferences:
    """Server selection, library selection and last-sync bookkeeping."""

    path: Path
    active_server_url: Optional[str] = None
    server_identity: Optional[str] = None
    server_name: Optional[str] = None
    selected_library_ids: List[str] = field(default_factory=list)
    last_sync_at: Optional[datetime] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Preferences":
        target = Path(path or get_preferences_path())
        data = read_json_file(target)
        libraries = data.get("selected_library_ids") or []
        return cls(
            path=target,
            active_server_url=data.get("active_server_url") or None,
            server_identity=data.get("server_identity") or None,
            server_name=data.get("server_name") or None,
            selected_library_ids=[str(v) for v in libraries if v is not None],
            last_sync_at=_parse_timestamp(data.get("last_sync_at")),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "active_server_url": self.active_server_url,
            "server_identity": self.server_identity,
            "server_name": self.server_name,
            "selected_library_ids": list(self.selected_library_ids),
            "last_sync_at": self.last_sync_at.isoformat() if self.last_sync_at else None,
        }

    def save(self) -> None:
        with self._lock:
            write_json_file(self.path, self.as_dict())

    def set_server(self, *, url: str, identity: str, name: Optional[str]) -> None:
        self.active_server_url = url.rstrip("/")
        self.server_identity = identity
        self.server_name = name
        self.save()

    def select_libraries(self, library_ids: Iterable[str]) -> None:
        self.selected_library_ids = sorted({str(v) for v in library_ids})
        self.save()

    def record_sync(self, when: datetime) -> None:
        self.last_sync_at = when
        self.save()

    def clear_server(self) -> None:
        """Forget everything tied to the signed-in account."""

        self.active_server_url = None
        self.server_identity = None
        self.server_name = None
        self.selected_library_ids = []
        self.last_sync_at = None
        self.save()


__all__ = [
    "Preferences",
    "ensure_parent",
    "read_json_file",
    "write_json_file",
]
