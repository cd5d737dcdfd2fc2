from __future__ import annotations

import os
import platform
import socket
import threading
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from plex_mirror import __version__
from plex_mirror.backend.common.logging import get_logger

from .paths import get_user_settings_path
from .preferences import read_json_file

log = get_logger(__name__)

_SETTINGS_LOCK = threading.Lock()
_SETTINGS_SINGLETON: Optional["Settings"] = None

_SECRET_BACKENDS = {"keyring", "file", "memory"}


@dataclass(frozen=True)
class ArtworkPolicy:
    downsize: bool = True
    max_width: int = 1000
    max_height: int = 1000
    jpeg_quality: int = 80

    def as_dict(self) -> Dict[str, Any]:
        return {
            "downsize": self.downsize,
            "max_width": self.max_width,
            "max_height": self.max_height,
            "jpeg_quality": self.jpeg_quality,
        }


@dataclass
class Settings:
    app_name: str
    version: str
    env: str
    log_level: str
    task_workers: int
    request_timeout: float
    device_name: str
    platform_name: str
    platform_version: str
    pin_poll_interval: float
    pin_poll_budget: float
    secret_backend: str
    artwork: ArtworkPolicy

    def as_dict(self) -> Dict[str, Any]:
        return {
            "app_name": self.app_name,
            "version": self.version,
            "env": self.env,
            "log_level": self.log_level,
            "task_workers": self.task_workers,
            "request_timeout": self.request_timeout,
            "device_name": self.device_name,
            "platform_name": self.platform_name,
            "platform_version": self.platform_version,
            "pin_poll_interval": self.pin_poll_interval,
            "pin_poll_budget": self.pin_poll_budget,
            "secret_backend": self.secret_backend,
            "artwork": self.artwork.as_dict(),
        }


def _env_or(user_cfg: Mapping[str, Any], env_key: str, cfg_key: str, default: Any) -> Any:
    value = os.getenv(env_key)
    if value is not None and value != "":
        return value

    return user_cfg.get(cfg_key, default)


def _as_int(value: Any, default: int, *, minimum: int = 1) -> int:
    try:
        return max(minimum, int(value))
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float, *, minimum: float = 0.0) -> float:
    try:
        return max(minimum, float(value))
    except (TypeError, ValueError):
        return default


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    normalized = str(value).strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False

    return default


def load_user_settings() -> Dict[str, Any]:
    return read_json_file(get_user_settings_path())


def _build_settings() -> Settings:
    user_cfg = load_user_settings()
    art_cfg = user_cfg.get("artwork") if isinstance(user_cfg.get("artwork"), Mapping) else {}

    secret_backend = str(_env_or(user_cfg, "PLEX_MIRROR_SECRET_BACKEND", "secret_backend", "keyring")).lower()
    if secret_backend not in _SECRET_BACKENDS:
        log.warning("settings_unknown_secret_backend", extra={"secret_backend": secret_backend})
        secret_backend = "keyring"

    artwork = ArtworkPolicy(
        downsize=_as_bool(_env_or(art_cfg, "PLEX_MIRROR_DOWNSIZE_ARTWORK", "downsize", True), True),
        max_width=_as_int(_env_or(art_cfg, "PLEX_MIRROR_ARTWORK_MAX_WIDTH", "max_width", 1000), 1000),
        max_height=_as_int(_env_or(art_cfg, "PLEX_MIRROR_ARTWORK_MAX_HEIGHT", "max_height", 1000), 1000),
        jpeg_quality=min(95, _as_int(art_cfg.get("jpeg_quality", 80), 80)),
    )

    return Settings(
        app_name=str(_env_or(user_cfg, "PLEX_MIRROR_APP_NAME", "app_name", "PlexMirror")),
        version=__version__,
        env=str(_env_or(user_cfg, "PLEX_MIRROR_ENV", "env", "development")),
        log_level=str(_env_or(user_cfg, "PLEX_MIRROR_LOG_LEVEL", "log_level", "INFO")).upper(),
        task_workers=_as_int(_env_or(user_cfg, "PLEX_MIRROR_TASK_WORKERS", "task_workers", 4), 4),
        request_timeout=_as_float(
            _env_or(user_cfg, "PLEX_MIRROR_REQUEST_TIMEOUT", "request_timeout", 30.0), 30.0, minimum=1.0
        ),
        device_name=str(_env_or(user_cfg, "PLEX_MIRROR_DEVICE_NAME", "device_name", socket.gethostname() or "Desktop")),
        platform_name=platform.system() or "Unknown",
        platform_version=platform.release() or "",
        pin_poll_interval=_as_float(user_cfg.get("pin_poll_interval", 2.0), 2.0, minimum=0.1),
        pin_poll_budget=_as_float(user_cfg.get("pin_poll_budget", 300.0), 300.0, minimum=1.0),
        secret_backend=secret_backend,
        artwork=artwork,
    )


def get_settings(*, reload: bool = False) -> Settings:
    global _SETTINGS_SINGLETON
    with _SETTINGS_LOCK:
        if _SETTINGS_SINGLETON is None or reload:
            _SETTINGS_SINGLETON = _build_settings()

        return _SETTINGS_SINGLETON


__all__ = [
    "ArtworkPolicy",
    "Settings",
    "get_settings",
    "load_user_settings",
]
