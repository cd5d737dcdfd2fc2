"""Tests for the typed catalog client."""

from __future__ import annotations

import pytest

from plex_mirror.backend.common.errors import (
    ImageDownloadFailed,
    ItemNotFound,
    NoServerConfigured,
    NotAuthenticated,
    ServerError,
    Unauthorized,
)
from plex_mirror.backend.plex.catalog import CatalogClient, PlaybackState
from plex_mirror.backend.plex.models import VideoQuality

from tests.conftest import SERVER_URL, TOKEN
from tests.fakes import (
    FakeResponse,
    episode_json,
    json_response,
    metadata_container,
    movie_json,
    sections_container,
)


@pytest.fixture
def catalog(gateway, preferences) -> CatalogClient:
    return CatalogClient(gateway, preferences)


class TestServerSelection:
    """Tests for base URL handling."""

    def test_no_server_configured(self, gateway, preferences, fake_http) -> None:
        """Should fail every call when no server is active."""
        preferences.active_server_url = None
        catalog = CatalogClient(gateway, preferences)

        with pytest.raises(NoServerConfigured):
            catalog.list_libraries()
        with pytest.raises(NoServerConfigured):
            catalog.mark_watched("10")

        assert fake_http.calls == []

    def test_requests_go_to_active_server(self, catalog, fake_http) -> None:
        """Should build URLs on the active server."""
        fake_http.add("GET", "/library/sections", json_response(sections_container([])))

        catalog.list_libraries()

        assert fake_http.calls[0].url == f"{SERVER_URL}/library/sections"


class TestListing:
    """Tests for library and item listings."""

    def test_list_libraries(self, catalog, fake_http) -> None:
        """Should decode library sections."""
        fake_http.add("GET", "/library/sections", json_response(sections_container([
            {"key": "1", "title": "Movies", "type": "movie"},
            {"key": "2", "title": "TV Shows", "type": "show"},
            {"key": "3", "title": "Music", "type": "artist"},
        ])))

        sections = catalog.list_libraries()

        assert [s.key for s in sections] == ["1", "2", "3"]
        assert sections[0].is_movie_library
        assert sections[1].is_show_library
        assert not sections[2].is_movie_library and not sections[2].is_show_library

    def test_list_library_items(self, catalog, fake_http) -> None:
        """Should decode every metadata field the mirror uses."""
        fake_http.add("GET", "/library/sections/1/all", json_response(metadata_container([
            movie_json(
                "10",
                "Heat",
                year=1995,
                duration=10_200_000,
                viewCount=2,
                viewOffset=125_000,
                originallyAvailableAt="1995-12-15",
                studio="Warner",
                contentRating="R",
                Genre=[{"tag": "Crime"}, {"tag": "Thriller"}],
                Director=[{"tag": "Michael Mann"}],
                Writer=[{"tag": "Michael Mann"}],
                Role=[{"tag": "Al Pacino", "role": "Hanna"}, {"tag": "Robert De Niro"}],
                Producer=[{"tag": "Art Linson"}],
                Media=[{
                    "videoResolution": "1080",
                    "Part": [{
                        "key": "/library/parts/99/file.mkv",
                        "Stream": [
                            {"streamType": 1, "codec": "h264"},
                            {"streamType": 2, "languageCode": "eng"},
                            {"streamType": 2, "languageCode": "fra"},
                            {"streamType": 3, "languageCode": "deu"},
                        ],
                    }],
                }],
            ),
        ])))

        (item,) = catalog.list_library_items("1")

        assert item.rating_key == "10"
        assert item.is_movie and item.is_watched
        assert item.duration_minutes == 170
        assert item.progress_minutes == 2
        assert item.release_date.isoformat() == "1995-12-15"
        assert item.genre_names == ["Crime", "Thriller"]
        assert item.cast_names == ["Al Pacino", "Robert De Niro"]
        assert item.director_names == ["Michael Mann"]
        assert item.writer_names == ["Michael Mann"]
        assert item.producer_names == ["Art Linson"]
        assert item.video_quality is VideoQuality.HD_1080P
        assert item.audio_languages == ["eng", "fra"]
        assert item.streaming_part_key == "/library/parts/99/file.mkv"

    def test_list_unwatched_pages(self, catalog, fake_http) -> None:
        """Should filter unwatched items and page with container headers."""
        fake_http.add("GET", "/library/sections/1/all", json_response(metadata_container([])))

        catalog.list_unwatched("1", limit=25)

        assert fake_http.calls[0].query == {
            "unwatched": ["1"],
            "X-Plex-Container-Start": ["0"],
            "X-Plex-Container-Size": ["25"],
        }

    def test_recently_added_and_on_deck(self, catalog, fake_http) -> None:
        """Should hit the recently added and on deck endpoints."""
        fake_http.add("GET", "/library/sections/2/recentlyAdded", json_response(metadata_container([])))
        fake_http.add("GET", "/library/onDeck", json_response(metadata_container([])))

        catalog.recently_added("2")
        catalog.on_deck(limit=None)

        assert [c.path for c in fake_http.calls] == ["/library/sections/2/recentlyAdded", "/library/onDeck"]
        assert fake_http.calls[1].query == {}

    def test_fetch_all_episodes(self, catalog, fake_http) -> None:
        """Should flatten a show's episodes through allLeaves."""
        fake_http.add("GET", "/library/metadata/20/allLeaves", json_response(metadata_container([
            episode_json("21", "Pilot", 1, 1),
            episode_json("22", "Cat's in the Bag", 1, 2),
        ])))

        episodes = catalog.fetch_all_episodes("20")

        assert [(e.parent_index, e.index) for e in episodes] == [(1, 1), (1, 2)]

    def test_children(self, catalog, fake_http) -> None:
        """Should list seasons and episodes through children."""
        fake_http.add("GET", "/library/metadata/20/children", json_response(metadata_container([
            {"ratingKey": "30", "type": "season", "title": "Season 1", "index": 1},
        ])))

        (season,) = catalog.fetch_seasons("20")

        assert season.is_season

    def test_fetch_item(self, catalog, fake_http) -> None:
        """Should return the single item."""
        fake_http.add("GET", "/library/metadata/10", json_response(metadata_container([movie_json("10", "Heat")])))

        assert catalog.fetch_item("10").title == "Heat"

    def test_fetch_item_not_found(self, catalog, fake_http) -> None:
        """Should raise ItemNotFound for an empty container."""
        fake_http.add("GET", "/library/metadata/10", json_response(metadata_container([])))

        with pytest.raises(ItemNotFound) as exc_info:
            catalog.fetch_item("10")

        assert exc_info.value.rating_key == "10"

    def test_errors_pass_through(self, catalog, fake_http) -> None:
        """Should surface gateway errors unchanged."""
        fake_http.add("GET", "/library/sections", FakeResponse(status_code=401))

        with pytest.raises(Unauthorized):
            catalog.list_libraries()


class TestWatchState:
    """Tests for scrobble and timeline calls."""

    def test_mark_watched(self, catalog, fake_http) -> None:
        """Should scrobble with the rating key and library identifier."""
        fake_http.add("GET", "/:/scrobble", FakeResponse())

        catalog.mark_watched("10")

        call = fake_http.calls[0]
        assert call.path == "/:/scrobble"
        assert call.query == {"key": ["10"], "identifier": ["com.plexapp.plugins.library"]}

    def test_mark_unwatched(self, catalog, fake_http) -> None:
        """Should unscrobble with the rating key and library identifier."""
        fake_http.add("GET", "/:/unscrobble", FakeResponse())

        catalog.mark_unwatched("10")

        assert fake_http.calls[0].query["key"] == ["10"]

    def test_report_progress(self, catalog, fake_http) -> None:
        """Should send a timeline update with position and duration."""
        fake_http.add("GET", "/:/timeline", FakeResponse())

        catalog.report_progress("10", 90_000, 600_000, PlaybackState.PAUSED)

        assert fake_http.calls[0].query == {
            "ratingKey": ["10"],
            "key": ["/library/metadata/10"],
            "state": ["paused"],
            "time": ["90000"],
            "duration": ["600000"],
        }

    def test_scrobble_failure_raises(self, catalog, fake_http) -> None:
        """Should raise the gateway error on a failed scrobble."""
        fake_http.add("GET", "/:/scrobble", FakeResponse(status_code=500))

        with pytest.raises(ServerError):
            catalog.mark_watched("10")


class TestMediaUrls:
    """Tests for image and stream URLs."""

    def test_image_url(self, catalog) -> None:
        """Should join the path onto the server and append the token."""
        url = catalog.image_url("/library/metadata/10/thumb/1")

        assert url == f"{SERVER_URL}/library/metadata/10/thumb/1?X-Plex-Token={TOKEN}"

    def test_urls_need_path(self, catalog) -> None:
        """Should return None without a path."""
        assert catalog.image_url(None) is None
        assert catalog.streaming_url("") is None

    def test_urls_need_token(self, anonymous_secrets, settings, fake_http, preferences) -> None:
        """Should return None without a token."""
        from plex_mirror.backend.network_handlers.session import PlexHttpSession

        catalog = CatalogClient(PlexHttpSession(anonymous_secrets, settings=settings, session=fake_http), preferences)

        assert catalog.streaming_url("/library/parts/99/file.mkv") is None
        with pytest.raises(NotAuthenticated):
            catalog.download_image("/thumb")

    def test_download_image(self, catalog, fake_http) -> None:
        """Should return the raw image bytes."""
        fake_http.add("GET", "/library/metadata/10/thumb/1", FakeResponse(content=b"\x89PNG"))

        assert catalog.download_image("/library/metadata/10/thumb/1") == b"\x89PNG"

    def test_download_image_failure(self, catalog, fake_http) -> None:
        """Should wrap gateway failures in ImageDownloadFailed."""
        fake_http.add("GET", "/thumb", FakeResponse(status_code=404))

        with pytest.raises(ImageDownloadFailed) as exc_info:
            catalog.download_image("/thumb")

        assert exc_info.value.path == "/thumb"
        assert isinstance(exc_info.value.cause, ServerError)

    def test_test_connection(self, catalog, fake_http) -> None:
        """Should probe the given base URL."""
        fake_http.add("GET", "/library/sections", json_response(sections_container([])))

        assert catalog.test_connection("https://other:32400") is True
        assert fake_http.calls[0].host == "other:32400"
