from __future__ import annotations

import importlib
from typing import TYPE_CHECKING, Any

__all__ = [
    "PATHS",
    "PROVIDER_SETTINGS",
    "ArtworkPolicy",
    "Preferences",
    "Settings",
    "core",
    "paths",
    "preferences",
    "providers",
    "get_auth_base_url",
    "get_data_dir",
    "get_database_path",
    "get_default_headers",
    "get_library_identifier",
    "get_link_url",
    "get_preferences_path",
    "get_provider_endpoints",
    "get_secrets_dir",
    "get_service_config",
    "get_settings",
    "get_user_settings_path",
    "load_user_settings",
    "reload_paths",
]

_MODULE_EXPORTS = {
    "core": {
        "ArtworkPolicy",
        "Settings",
        "get_settings",
        "load_user_settings",
    },
    "paths": {
        "PATHS",
        "get_data_dir",
        "get_database_path",
        "get_preferences_path",
        "get_secrets_dir",
        "get_user_settings_path",
        "reload_paths",
    },
    "preferences": {
        "Preferences",
    },
    "providers": {
        "PROVIDER_SETTINGS",
        "get_auth_base_url",
        "get_default_headers",
        "get_library_identifier",
        "get_link_url",
        "get_provider_endpoints",
        "get_service_config",
    },
}

_SUBMODULE_NAMES = {"core", "paths", "preferences", "providers"}

if TYPE_CHECKING:  # pragma: no cover - only for static analysis
    from . import core, paths, preferences, providers
    from .core import ArtworkPolicy, Settings, get_settings, load_user_settings
    from .paths import (
        PATHS,
        get_data_dir,
        get_database_path,
        get_preferences_path,
        get_secrets_dir,
        get_user_settings_path,
        reload_paths,
    )
    from .preferences import Preferences
    from .providers import (
        PROVIDER_SETTINGS,
        get_auth_base_url,
        get_default_headers,
        get_library_identifier,
        get_link_url,
        get_provider_endpoints,
        get_service_config,
    )


def __getattr__(name: str) -> Any:
    if name in _SUBMODULE_NAMES:
        module = importlib.import_module(f"{__name__}.{name}")
        globals()[name] = module
        return module

    for module_name, symbols in _MODULE_EXPORTS.items():
        if name in symbols:
            module = importlib.import_module(f"{__name__}.{module_name}")
            value = getattr(module, name)
            globals()[name] = value
            return value

    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


def __dir__() -> list[str]:
    exported = set(__all__)
    exported.update(_SUBMODULE_NAMES)
    for symbols in _MODULE_EXPORTS.values():
        exported.update(symbols)
    exported.update(globals().keys())
    return sorted(exported)
