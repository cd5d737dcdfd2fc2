from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv

_CONFIG_DIR = Path(__file__).resolve().parent.parent
_PACKAGE_ROOT = _CONFIG_DIR.parent
_PATH_BASES = [_PACKAGE_ROOT, *_PACKAGE_ROOT.parents]

load_dotenv(_PACKAGE_ROOT / ".env")

_DATA_DIR_ENV = "PLEX_MIRROR_DATA_DIR"

_DEFAULT_RELATIVE_PATHS = {
    "database": "mirror.db",
    "secrets": "secrets",
    "user_settings": "user_settings.json",
    "preferences": "preferences.json",
}

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def expand_env_in_str(value: str) -> str:
    """Expand ``${VAR}`` tokens within a string."""

    def _repl(match: re.Match[str]) -> str:
        var = match.group(1)
        return os.getenv(var, "")

    return _ENV_PATTERN.sub(_repl, value)


def expand_env(obj: Any) -> Any:
    """Recursively expand environment variables in nested structures."""
    if isinstance(obj, str):
        return expand_env_in_str(obj)
    if isinstance(obj, list):
        return [expand_env(v) for v in obj]
    if isinstance(obj, dict):
        return {k: expand_env(v) for k, v in obj.items()}

    return obj


def read_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def get_data_dir() -> Path:
    override = os.getenv(_DATA_DIR_ENV)
    if override:
        return Path(override).expanduser().resolve()

    return (_PACKAGE_ROOT / "var").resolve()


def _resolve_candidate(value: str) -> str:
    candidate = Path(expand_env_in_str(value)).expanduser()
    if candidate.is_absolute():
        return str(candidate.resolve())

    for base in _PATH_BASES:
        resolved = (base / candidate).resolve()
        if resolved.exists() or resolved.parent.exists():
            return str(resolved)

    return str((_PACKAGE_ROOT / candidate).resolve())


def load_config_paths() -> Dict[str, str]:
    data_dir = get_data_dir()
    defaults = {key: str(data_dir / rel) for key, rel in _DEFAULT_RELATIVE_PATHS.items()}

    cfg_path = _CONFIG_DIR / "config_paths.json"
    if not cfg_path.exists():
        return defaults

    raw = read_json(cfg_path)
    merged = dict(defaults)
    for key, value in (raw or {}).items():
        merged[key] = _resolve_candidate(str(value))

    return merged


PATHS: Dict[str, str] = load_config_paths()


def reload_paths() -> Dict[str, str]:
    """Re-read path configuration, e.g. after changing ``PLEX_MIRROR_DATA_DIR``."""

    global PATHS
    PATHS = load_config_paths()
    return dict(PATHS)


def get_database_path() -> Path:
    path = Path(PATHS["database"])
    path.parent.mkdir(parents=True, exist_ok=True)

    return path


def get_secrets_dir() -> Path:
    path = Path(PATHS["secrets"])
    path.mkdir(parents=True, exist_ok=True)

    return path


def get_user_settings_path() -> Path:
    return Path(PATHS["user_settings"])


def get_preferences_path() -> Path:
    return Path(PATHS["preferences"])


__all__ = [
    "PATHS",
    "expand_env",
    "expand_env_in_str",
    "get_data_dir",
    "get_database_path",
    "get_preferences_path",
    "get_secrets_dir",
    "get_user_settings_path",
    "load_config_paths",
    "read_json",
    "reload_paths",
]
