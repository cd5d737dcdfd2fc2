"""Tests for service wiring and the self check."""

from __future__ import annotations

from typing import Optional

from plex_mirror.backend.common.errors import SecretStoreError
from plex_mirror.backend.plex.secrets import AUTH_TOKEN_KEY, InMemorySecretStore
from plex_mirror.mirror_startup import build_services, quick_self_check


class TestQuickSelfCheck:
    """Tests for quick_self_check."""

    def test_without_services(self) -> None:
        """Should report the process level components only."""
        report = quick_self_check()

        assert report["status"] == "ok"
        assert set(report["components"]) == {"python", "logging", "config"}

    def test_signed_out_is_degraded(self, settings, preferences, tmp_path, fake_http) -> None:
        """Should report a missing token and server as degraded, not failed."""
        preferences.active_server_url = None
        services = build_services(
            settings,
            secrets=InMemorySecretStore(),
            preferences=preferences,
            database_path=tmp_path / "mirror.db",
            http_session=fake_http,
        )
        try:
            report = quick_self_check(services)
        finally:
            services.close()

        assert report["status"] == "degraded"
        assert report["components"]["auth"] == "degraded"
        assert report["components"]["server"] == "degraded"
        assert report["components"]["database"] == "ok"
        assert fake_http.closed is True

    def test_missing_database_fails(self, settings, secrets, preferences, store, fake_http) -> None:
        """Should fail when no store is wired."""
        services = build_services(settings, secrets=secrets, preferences=preferences, store=store,
                                  http_session=fake_http)
        services.store = None

        report = quick_self_check(services)

        assert report["status"] == "fail"
        assert report["components"]["database"] == "fail"

    def test_unreadable_token_fails_auth(self, settings, preferences, store, fake_http) -> None:
        """Should report the auth component as failed when the token cannot be read."""

        class LockedTokenStore(InMemorySecretStore):
            def get(self, key: str) -> Optional[str]:
                if key == AUTH_TOKEN_KEY:
                    raise SecretStoreError("keyring locked")
                return super().get(key)

        services = build_services(settings, secrets=LockedTokenStore(), preferences=preferences, store=store,
                                  http_session=fake_http)

        report = quick_self_check(services)

        assert report["status"] == "fail"
        assert report["components"]["auth"] == "fail"
        assert report["components"]["secrets"] == "ok"
