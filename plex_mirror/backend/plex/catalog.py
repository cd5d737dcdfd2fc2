"""Typed read/write operations against the selected Plex Media Server."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from plex_mirror.backend.common.errors import (
    GatewayError,
    ImageDownloadFailed,
    ItemNotFound,
    NoServerConfigured,
    NotAuthenticated,
)
from plex_mirror.backend.common.logging import get_logger
from plex_mirror.backend.network_handlers.session import PlexHttpSession
from plex_mirror.backend.network_handlers.url_manager import join_url, with_query
from plex_mirror.backend.plex.models import (
    LibrarySection,
    MetadataItem,
    MetadataResponse,
    SectionsResponse,
)
from plex_mirror.config.settings import Preferences, get_library_identifier

log = get_logger(__name__)


class PlaybackState(str, Enum):
    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"
    BUFFERING = "buffering"


def _page(limit: Optional[int]) -> Dict[str, Any]:
    if limit is None:
        return {}
    return {"X-Plex-Container-Start": 0, "X-Plex-Container-Size": max(0, int(limit))}


class CatalogClient:
    """
    Every call goes to ``preferences.active_server_url``; without one the call fails
    with ``NoServerConfigured``. Errors from the gateway pass through untouched.
    """

    def __init__(self, gateway: PlexHttpSession, preferences: Preferences):
        self.gateway = gateway
        self.preferences = preferences
        self.urlm = gateway.urlm

    # -------- plumbing --------

    @property
    def base_url(self) -> str:
        base = self.preferences.active_server_url
        if not base:
            raise NoServerConfigured()
        return base

    @property
    def server_identity(self) -> str:
        return self.preferences.server_identity or ""

    def _url(self, name: str, **fmt: Any) -> str:
        return self.urlm.server_url(self.base_url, name, **fmt)

    def _metadata(self, name: str, *, params: Optional[Mapping[str, Any]] = None, **fmt: Any) -> List[MetadataItem]:
        resp = self.gateway.request_typed(MetadataResponse, "GET", self._url(name, **fmt), params=params)
        return list(resp.media_container.metadata)

    # -------- libraries --------

    def list_libraries(self) -> List[LibrarySection]:
        resp = self.gateway.request_typed(SectionsResponse, "GET", self._url("sections"))
        return list(resp.media_container.directory)

    def list_library_items(self, section_id: str) -> List[MetadataItem]:
        return self._metadata("section_all", section_id=section_id)

    def list_unwatched(self, section_id: str, limit: Optional[int] = 100) -> List[MetadataItem]:
        params = {"unwatched": 1, **_page(limit)}
        return self._metadata("section_all", params=params, section_id=section_id)

    def recently_added(self, section_id: str, limit: Optional[int] = 50) -> List[MetadataItem]:
        return self._metadata("recently_added", params=_page(limit), section_id=section_id)

    def on_deck(self, limit: Optional[int] = 50) -> List[MetadataItem]:
        return self._metadata("on_deck", params=_page(limit))

    # -------- items --------

    def fetch_item(self, rating_key: str) -> MetadataItem:
        items = self._metadata("metadata", rating_key=rating_key)
        if not items:
            raise ItemNotFound(rating_key)
        return items[0]

    def list_children(self, rating_key: str) -> List[MetadataItem]:
        return self._metadata("children", rating_key=rating_key)

    def fetch_seasons(self, show_key: str) -> List[MetadataItem]:
        return self.list_children(show_key)

    def fetch_episodes(self, season_key: str) -> List[MetadataItem]:
        return self.list_children(season_key)

    def fetch_all_episodes(self, show_key: str) -> List[MetadataItem]:
        """Every episode of a show in one request."""

        return self._metadata("all_leaves", rating_key=show_key)

    # -------- watch state --------

    def mark_watched(self, rating_key: str) -> None:
        params = {"key": rating_key, "identifier": get_library_identifier()}
        self.gateway.request("GET", self._url("scrobble"), params=params)
        log.info("catalog_marked_watched", extra={"rating_key": rating_key})

    def mark_unwatched(self, rating_key: str) -> None:
        params = {"key": rating_key, "identifier": get_library_identifier()}
        self.gateway.request("GET", self._url("unscrobble"), params=params)
        log.info("catalog_marked_unwatched", extra={"rating_key": rating_key})

    def report_progress(
        self,
        rating_key: str,
        position_ms: int,
        duration_ms: int,
        state: PlaybackState = PlaybackState.PLAYING,
    ) -> None:
        params = {
            "ratingKey": rating_key,
            "key": self.urlm.path("server", "metadata", rating_key=rating_key),
            "state": PlaybackState(state).value,
            "time": max(0, int(position_ms)),
            "duration": max(0, int(duration_ms)),
        }
        self.gateway.request("GET", self._url("timeline"), params=params)
        log.debug("catalog_progress_reported", extra={"rating_key": rating_key, "state": params["state"]})

    # -------- media URLs --------

    def _token_url(self, path: str) -> Optional[str]:
        token = self.gateway.token
        if not token:
            return None
        return with_query(join_url(self.base_url, path), {"X-Plex-Token": token})

    def image_url(self, path: Optional[str]) -> Optional[str]:
        if not path:
            return None
        return self._token_url(path)

    def streaming_url(self, part_key: Optional[str]) -> Optional[str]:
        if not part_key:
            return None
        return self._token_url(part_key)

    def download_image(self, path: str) -> bytes:
        url = self.image_url(path)
        if url is None:
            raise NotAuthenticated()
        try:
            return self.gateway.get_bytes(url)
        except NotAuthenticated:
            raise
        except GatewayError as e:
            raise ImageDownloadFailed(path, cause=e) from e

    def test_connection(self, base_url: str) -> bool:
        self.gateway.request_typed(
            SectionsResponse,
            "GET",
            self.urlm.server_url(base_url, "sections"),
        )
        return True


__all__ = ["CatalogClient", "PlaybackState"]
