"""Tests for the plex-mirror command line."""

from __future__ import annotations

import json

import pytest

from plex_mirror.cli import media
from plex_mirror.mirror_startup import build_services

from tests.fakes import FakeResponse, json_response, metadata_container, movie_json, sections_container


@pytest.fixture
def services(settings, secrets, preferences, store, fake_http, monkeypatch):
    wired = build_services(settings, secrets=secrets, preferences=preferences, store=store, http_session=fake_http)
    monkeypatch.setattr(media, "_SERVICES", wired)
    return wired


def run(capsys, *argv: str):
    media.main(list(argv))
    return json.loads(capsys.readouterr().out)


class TestCli:
    """Tests for media.main."""

    def test_requires_command(self, capsys) -> None:
        """Should exit with a usage error when no command is given."""
        with pytest.raises(SystemExit) as exc_info:
            media.main([])

        assert exc_info.value.code == 2

    def test_select_libraries(self, services, capsys) -> None:
        """Should persist the library selection."""
        out = run(capsys, "libraries", "select", "2", "1")

        assert out == {"selected_library_ids": ["1", "2"]}
        assert services.preferences.selected_library_ids == ["1", "2"]

    def test_list_libraries(self, services, fake_http, capsys) -> None:
        """Should list libraries and flag the selected ones."""
        services.preferences.selected_library_ids = ["1"]
        fake_http.add("GET", "/library/sections", json_response(sections_container([
            {"key": "1", "title": "Movies", "type": "movie"},
            {"key": "2", "title": "TV Shows", "type": "show"},
        ])))

        out = run(capsys, "libraries", "list")

        assert out == [
            {"key": "1", "title": "Movies", "type": "movie", "selected": True},
            {"key": "2", "title": "TV Shows", "type": "show", "selected": False},
        ]

    def test_sync_then_mark_watched(self, services, fake_http, capsys) -> None:
        """Should sync a library and then toggle a mirrored item."""
        fake_http.add("GET", "/library/sections", json_response(sections_container([
            {"key": "1", "title": "Movies", "type": "movie"},
        ])))
        fake_http.add("GET", "/library/sections/1/all", json_response(metadata_container([movie_json("10", "Heat")])))
        fake_http.add("GET", "/:/scrobble", FakeResponse())

        result = run(capsys, "sync", "--library", "1")
        assert result["created"] == 1
        assert result["libraries"] == ["1"]

        out = run(capsys, "watched", "movie", "10")
        assert out["watched"] is True
        assert out["remote_synced"] is True
        assert fake_http.calls_to("/:/scrobble")[0].query["key"] == ["10"]

    def test_unknown_item(self, services, capsys) -> None:
        """Should report items that were never synced."""
        with pytest.raises(SystemExit) as exc_info:
            media.main(["watched", "movie", "999"])

        assert exc_info.value.code == 1
        assert "999" in capsys.readouterr().err

    def test_errors_are_reported(self, services, fake_http, capsys) -> None:
        """Should turn library errors into a clean exit."""
        fake_http.add("GET", "/library/sections", FakeResponse(status_code=401))

        with pytest.raises(SystemExit) as exc_info:
            media.main(["libraries", "list"])

        assert exc_info.value.code == 1
        assert "sign in again" in capsys.readouterr().err

    def test_auth_status(self, services, capsys) -> None:
        """Should describe the current session."""
        out = run(capsys, "auth", "status")

        assert out["authenticated"] is True
        assert out["active_server_url"] == services.preferences.active_server_url

    def test_health(self, services, capsys) -> None:
        """Should print the self check."""
        out = run(capsys, "health")

        assert out["status"] == "ok"
        assert out["components"]["database"] == "ok"
