from __future__ import annotations

import sqlite3
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import requests

from plex_mirror import __version__
from plex_mirror.backend.common.errors import MirrorError
from plex_mirror.backend.common.logging import get_logger, init_logging
from plex_mirror.backend.common.types import HealthReport
from plex_mirror.backend.library.artwork import ArtworkCache
from plex_mirror.backend.library.sync import SyncEngine
from plex_mirror.backend.network_handlers.session import PlexHttpSession
from plex_mirror.backend.persistence import SqliteLocalStore
from plex_mirror.backend.plex.auth import AuthFlow
from plex_mirror.backend.plex.catalog import CatalogClient
from plex_mirror.backend.plex.secrets import SecretStore, get_or_create_client_identifier, open_secret_store
from plex_mirror.config.settings import Preferences, Settings, get_settings


@dataclass
class Services:
    """Everything a front end needs, wired once and owned by the caller."""

    settings: Settings
    secrets: SecretStore
    preferences: Preferences
    gateway: PlexHttpSession
    auth: AuthFlow
    catalog: CatalogClient
    artwork: ArtworkCache
    store: Optional[SqliteLocalStore]
    sync: SyncEngine

    def close(self) -> None:
        self.gateway.close()
        if self.store is not None:
            self.store.close()


def build_services(
    settings: Optional[Settings] = None,
    *,
    secrets: Optional[SecretStore] = None,
    preferences: Optional[Preferences] = None,
    store: Optional[SqliteLocalStore] = None,
    database_path: Optional[Path] = None,
    http_session: Optional[requests.Session] = None,
) -> Services:
    settings = settings or get_settings()
    secrets = secrets if secrets is not None else open_secret_store(settings)
    preferences = preferences or Preferences.load()
    if store is None:
        store = SqliteLocalStore.open(database_path)

    gateway = PlexHttpSession(secrets, settings=settings, session=http_session)
    catalog = CatalogClient(gateway, preferences)
    artwork = ArtworkCache(catalog, settings.artwork)
    auth = AuthFlow(gateway, preferences, settings=settings)
    sync = SyncEngine(catalog, artwork, store, preferences, task_workers=settings.task_workers)

    return Services(
        settings=settings,
        secrets=secrets,
        preferences=preferences,
        gateway=gateway,
        auth=auth,
        catalog=catalog,
        artwork=artwork,
        store=store,
        sync=sync,
    )


def quick_self_check(services: Optional[Services] = None) -> HealthReport:
    components = {
        "python": "ok" if sys.version_info >= (3, 10) else "degraded",
        "logging": "ok",
        "config": "ok",
    }

    if services is None:
        status = "ok" if all(v == "ok" for v in components.values()) else "degraded"
        return {"status": status, "components": components}

    try:
        get_or_create_client_identifier(services.secrets)
        components["secrets"] = "ok"
    except MirrorError:
        components["secrets"] = "fail"

    if services.store is None:
        components["database"] = "fail"
    else:
        try:
            services.store.connection.execute("SELECT 1").fetchone()
            components["database"] = "ok"
        except sqlite3.Error:
            components["database"] = "fail"

    try:
        components["auth"] = "ok" if services.gateway.token else "degraded"
    except MirrorError:
        components["auth"] = "fail"
    components["server"] = "ok" if services.preferences.active_server_url else "degraded"

    if any(v == "fail" for v in components.values()):
        status = "fail"
    elif all(v == "ok" for v in components.values()):
        status = "ok"
    else:
        status = "degraded"

    return {"status": status, "components": components}


def main() -> int:
    settings = get_settings()

    init_logging(settings.log_level)
    log = get_logger("plex_mirror.startup")

    log.info("boot_begin", extra={"app": settings.app_name, "env": settings.env, "log_level": settings.log_level})

    services = build_services(settings)
    try:
        health = quick_self_check(services)
        log.info("health_report", extra=dict(health))
    finally:
        services.close()

    log.info("boot_ready", extra={"version": __version__})

    return 0 if health["status"] != "fail" else 1


if __name__ == "__main__":
    raise SystemExit(main())
