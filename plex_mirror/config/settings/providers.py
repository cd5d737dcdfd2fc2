from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

from .paths import PATHS, _CONFIG_DIR, expand_env, read_json

_PLEX_SERVICE = "plex"

# Paths on the authentication host are relative to ``auth_base_url``; server paths are
# relative to whichever connection URI was resolved for the session.
_DEFAULT_PROVIDER_SETTINGS: Dict[str, Any] = {
    "providers": {
        _PLEX_SERVICE: {
            "auth_base_url": "https://plex.tv",
            "link_url": "https://plex.tv/link",
            "library_identifier": "com.plexapp.plugins.library",
            "default_headers": {
                "Accept": "application/json",
            },
            "endpoints": {
                "auth": {
                    "pins": "/api/v2/pins",
                    "pin_status": "/api/v2/pins/{pin_id}",
                    "resources": "/api/v2/resources",
                    "user": "/api/v2/user",
                },
                "server": {
                    "sections": "/library/sections",
                    "section_all": "/library/sections/{section_id}/all",
                    "recently_added": "/library/sections/{section_id}/recentlyAdded",
                    "on_deck": "/library/onDeck",
                    "metadata": "/library/metadata/{rating_key}",
                    "children": "/library/metadata/{rating_key}/children",
                    "all_leaves": "/library/metadata/{rating_key}/allLeaves",
                    "scrobble": "/:/scrobble",
                    "unscrobble": "/:/unscrobble",
                    "timeline": "/:/timeline",
                },
            },
        }
    }
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value

    return merged


def load_provider_settings() -> Dict[str, Any]:
    """Built-in endpoint table, overlaid with ``providersettings.json`` when present."""

    override_path = Path(PATHS.get("provider_settings") or (_CONFIG_DIR / "providersettings.json"))
    if not override_path.exists():
        return expand_env(_DEFAULT_PROVIDER_SETTINGS)

    return expand_env(_merge(_DEFAULT_PROVIDER_SETTINGS, read_json(override_path)))


PROVIDER_SETTINGS: Dict[str, Any] = load_provider_settings()


def get_service_config(service: str = _PLEX_SERVICE) -> Optional[Dict[str, Any]]:
    providers = PROVIDER_SETTINGS.get("providers", {}) if PROVIDER_SETTINGS else {}

    return providers.get(service)


def get_auth_base_url(service: str = _PLEX_SERVICE) -> str:
    cfg = get_service_config(service) or {}

    return str(cfg.get("auth_base_url") or "")


def get_link_url(service: str = _PLEX_SERVICE) -> str:
    cfg = get_service_config(service) or {}

    return str(cfg.get("link_url") or "")


def get_library_identifier(service: str = _PLEX_SERVICE) -> str:
    cfg = get_service_config(service) or {}

    return str(cfg.get("library_identifier") or "")


def get_default_headers(service: str = _PLEX_SERVICE) -> Dict[str, str]:
    cfg = get_service_config(service) or {}

    return {str(k): str(v) for k, v in (cfg.get("default_headers") or {}).items()}


def get_provider_endpoints(service: str = _PLEX_SERVICE) -> Dict[str, Dict[str, str]]:
    cfg = get_service_config(service) or {}

    return dict(cfg.get("endpoints") or {})


__all__ = [
    "PROVIDER_SETTINGS",
    "get_auth_base_url",
    "get_default_headers",
    "get_library_identifier",
    "get_link_url",
    "get_provider_endpoints",
    "get_service_config",
    "load_provider_settings",
]
