"""User initiated watched/unwatched toggles and progress reports."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from plex_mirror.backend.common.errors import MirrorError
from plex_mirror.backend.common.logging import get_logger
from plex_mirror.backend.library.entities import Entity, EntityKind, LocalStore
from plex_mirror.backend.plex.catalog import CatalogClient, PlaybackState

log = get_logger(__name__)


@dataclass(frozen=True)
class WatchUpdate:
    entity: Entity
    remote_synced: bool
    remote_error: Optional[MirrorError] = None


def set_watched(store: LocalStore, catalog: CatalogClient, entity: Entity, watched: bool) -> WatchUpdate:
    """Apply the change locally and commit, then push it to the server.

    A failed push leaves the local change in place; the error is logged and returned.
    """

    if entity.kind is EntityKind.SHOW:
        for episode in entity.episodes:
            episode.watched = watched
            if not watched:
                episode.progress_minutes = 0
            store.update(episode)
    entity.watched = watched
    if not watched:
        entity.progress_minutes = 0
    store.update(entity)
    store.commit()

    if not entity.remote_key:
        return WatchUpdate(entity=entity, remote_synced=False)

    try:
        if watched:
            catalog.mark_watched(entity.remote_key)
        else:
            catalog.mark_unwatched(entity.remote_key)
    except MirrorError as e:
        log.warning(
            "watch_state_push_failed",
            extra={"rating_key": entity.remote_key, "watched": watched, "error": str(e)},
        )
        return WatchUpdate(entity=entity, remote_synced=False, remote_error=e)

    return WatchUpdate(entity=entity, remote_synced=True)


def report_progress(
    store: LocalStore,
    catalog: CatalogClient,
    entity: Entity,
    position_ms: int,
    duration_ms: int,
    state: PlaybackState = PlaybackState.PLAYING,
) -> WatchUpdate:
    """Record local progress (never backwards) and send a timeline update."""

    if entity.kind is EntityKind.SHOW:
        raise ValueError("Progress is tracked per movie or episode, not per show")

    minutes = max(0, int(position_ms)) // 60000
    if minutes > entity.progress_minutes:
        entity.progress_minutes = minutes
        store.update(entity)
        store.commit()

    if not entity.remote_key:
        return WatchUpdate(entity=entity, remote_synced=False)

    try:
        catalog.report_progress(entity.remote_key, position_ms, duration_ms, state)
    except MirrorError as e:
        log.warning("progress_push_failed", extra={"rating_key": entity.remote_key, "error": str(e)})
        return WatchUpdate(entity=entity, remote_synced=False, remote_error=e)

    return WatchUpdate(entity=entity, remote_synced=True)


__all__ = ["WatchUpdate", "report_progress", "set_watched"]
