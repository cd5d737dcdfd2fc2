"""Shared fixtures for the Plex Mirror test suite."""

from __future__ import annotations

import os
import tempfile

# Keep every path the package resolves at import time out of the source tree.
os.environ.setdefault("PLEX_MIRROR_DATA_DIR", tempfile.mkdtemp(prefix="plex-mirror-tests-"))
os.environ.setdefault("PLEX_MIRROR_SECRET_BACKEND", "memory")

from pathlib import Path  # noqa: E402

import pytest  # noqa: E402

from plex_mirror.backend.network_handlers.session import PlexHttpSession  # noqa: E402
from plex_mirror.backend.persistence import SqliteLocalStore  # noqa: E402
from plex_mirror.backend.plex.secrets import InMemorySecretStore  # noqa: E402
from plex_mirror.config.settings import ArtworkPolicy, Preferences, Settings  # noqa: E402

from tests.fakes import FakeSession  # noqa: E402

SERVER_URL = "http://plex.local:32400"
SERVER_IDENTITY = "server-1"
TOKEN = "secret-token"
CLIENT_ID = "client-abc"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        app_name="PlexMirror",
        version="0.1.0",
        env="test",
        log_level="DEBUG",
        task_workers=4,
        request_timeout=5.0,
        device_name="test-box",
        platform_name="Linux",
        platform_version="6.0",
        pin_poll_interval=0.01,
        pin_poll_budget=0.3,
        secret_backend="memory",
        artwork=ArtworkPolicy(),
    )


@pytest.fixture
def secrets() -> InMemorySecretStore:
    return InMemorySecretStore({"client_identifier": CLIENT_ID, "auth_token": TOKEN})


@pytest.fixture
def anonymous_secrets() -> InMemorySecretStore:
    return InMemorySecretStore({"client_identifier": CLIENT_ID})


@pytest.fixture
def fake_http() -> FakeSession:
    return FakeSession()


@pytest.fixture
def gateway(secrets: InMemorySecretStore, settings: Settings, fake_http: FakeSession) -> PlexHttpSession:
    return PlexHttpSession(secrets, settings=settings, session=fake_http)


@pytest.fixture
def preferences(tmp_path: Path) -> Preferences:
    return Preferences(
        path=tmp_path / "preferences.json",
        active_server_url=SERVER_URL,
        server_identity=SERVER_IDENTITY,
        server_name="Home",
    )


@pytest.fixture
def store(tmp_path: Path):
    local = SqliteLocalStore.open(tmp_path / "mirror.db")
    yield local
    local.close()
