"""Full reconciliation of selected Plex libraries into the local store.

One pass:

1. list the server's libraries and keep the selected ones
2. per library, create-or-merge every item keyed by ``(server_identity, remote_key)``;
   shows also get their flattened episode list, and episodes missing from it are
   removed from that show
3. delete movies and shows of this server that the pass did not see
4. commit once

Any failure in 1-4 rolls the store back to the last commit and is re-raised. A pass
cannot be cancelled once started. Artwork for a library is fetched in parallel ahead
of the merges, which themselves run one at a time in catalog order.
"""

from __future__ import annotations

import queue
import sqlite3
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

from plex_mirror.backend.common.errors import (
    AlreadySyncing,
    CommitFailed,
    LocalStoreFailed,
    NoLibrariesSelected,
    NoModelContext,
)
from plex_mirror.backend.common.logging import get_logger
from plex_mirror.backend.common.tasks import TaskRunner, TaskSpec
from plex_mirror.backend.common.types import Progress
from plex_mirror.backend.library.artwork import ArtworkCache
from plex_mirror.backend.library.entities import (
    EntityKind,
    Episode,
    LocalStore,
    Show,
    create_episode,
    create_movie,
    create_show,
    merge_episode,
    merge_movie,
    merge_show,
    utcnow,
)
from plex_mirror.backend.plex.catalog import CatalogClient
from plex_mirror.backend.plex.models import LibrarySection, MetadataItem
from plex_mirror.config.settings import Preferences

log = get_logger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    COMPLETED = "completed"
    ERROR = "error"


class SyncEventKind(str, Enum):
    PROGRESS = "progress"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class SyncResult:
    started_at: datetime
    finished_at: Optional[datetime] = None
    libraries: List[str] = field(default_factory=list)
    created: int = 0
    updated: int = 0
    deleted: int = 0
    movies_seen: int = 0
    shows_seen: int = 0
    episodes_seen: int = 0


@dataclass(frozen=True)
class SyncEvent:
    kind: SyncEventKind
    progress: Optional[Progress] = None
    result: Optional[SyncResult] = None
    error: Optional[BaseException] = None


class SyncEngine:
    def __init__(
        self,
        catalog: CatalogClient,
        artwork: ArtworkCache,
        store: Optional[LocalStore],
        preferences: Preferences,
        *,
        task_workers: int = 4,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.catalog = catalog
        self.artwork = artwork
        self.store = store
        self.preferences = preferences
        self.task_workers = max(1, task_workers)
        self._clock = clock

        self._run_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._state = SyncState.IDLE
        self._progress: Optional[Progress] = None
        self._last_error: Optional[BaseException] = None
        self._subscribers: List[queue.Queue] = []

    # -------- observation --------

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def progress(self) -> Optional[Progress]:
        return self._progress

    @property
    def last_error(self) -> Optional[BaseException]:
        return self._last_error

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def subscribe(self) -> "queue.Queue[SyncEvent]":
        q: "queue.Queue[SyncEvent]" = queue.Queue()
        with self._state_lock:
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q: "queue.Queue[SyncEvent]") -> None:
        with self._state_lock:
            if q in self._subscribers:
                self._subscribers.remove(q)

    def _emit(self, event: SyncEvent) -> None:
        with self._state_lock:
            subscribers = list(self._subscribers)
        for q in subscribers:
            q.put(event)

    def _report(self, phase: str, current: int, total: int) -> None:
        progress = Progress(phase=phase, current=current, total=total)
        self._progress = progress
        self._emit(SyncEvent(SyncEventKind.PROGRESS, progress=progress))

    def _fail(self, error: BaseException) -> None:
        self._state = SyncState.ERROR
        self._last_error = error
        self._progress = None
        self._emit(SyncEvent(SyncEventKind.ERROR, error=error))

    # -------- entry point --------

    def run_full_sync(self, selected_library_ids: Optional[Iterable[str]] = None) -> SyncResult:
        if not self._run_lock.acquire(blocking=False):
            log.info("sync_rejected_already_running")
            raise AlreadySyncing()

        try:
            if self.store is None:
                err = NoModelContext()
                self._fail(err)
                raise err

            ids = set(str(i) for i in (
                selected_library_ids if selected_library_ids is not None
                else self.preferences.selected_library_ids
            ))
            if not ids:
                err = NoLibrariesSelected()
                self._fail(err)
                raise err

            self._state = SyncState.SYNCING
            self._last_error = None
            return self._run_pass(self.store, ids)
        finally:
            self._run_lock.release()

    def _run_pass(self, store: LocalStore, library_ids: Set[str]) -> SyncResult:
        server_identity = self.preferences.server_identity or ""
        result = SyncResult(started_at=self._clock())
        log.info("sync_started", extra={"libraries": sorted(library_ids), "server": server_identity})
        self._report("Starting...", 0, 0)

        try:
            sections = [s for s in self.catalog.list_libraries() if s.key in library_ids]
            movie_keys: Set[str] = set()
            show_keys: Set[str] = set()

            with TaskRunner(self.task_workers, context="artwork_prefetch") as runner:
                for section in sections:
                    result.libraries.append(section.key)
                    if section.is_movie_library:
                        movie_keys |= self._sync_movies(store, runner, section, server_identity, result)
                    elif section.is_show_library:
                        show_keys |= self._sync_shows(store, runner, section, server_identity, result)
                    else:
                        log.info("sync_library_skipped", extra={"section": section.key, "type": section.type})

            self._report("Cleaning up...", 0, 0)
            result.deleted += self._remove_unseen(store, EntityKind.MOVIE, server_identity, movie_keys)
            result.deleted += self._remove_unseen(store, EntityKind.SHOW, server_identity, show_keys)

            try:
                store.commit()
            except sqlite3.Error as e:
                raise CommitFailed(e) from e
        except Exception as e:
            error = LocalStoreFailed(e) if isinstance(e, sqlite3.Error) else e
            log.error("sync_failed", extra={"error": str(error), "error_type": type(e).__name__})
            try:
                store.rollback()
            except sqlite3.Error as rollback_error:
                log.error("sync_rollback_failed", extra={"error": str(rollback_error)})
            self._fail(error)
            if error is e:
                raise
            raise error from e

        result.finished_at = self._clock()
        self.preferences.record_sync(result.finished_at)
        self._state = SyncState.COMPLETED
        self._progress = None
        log.info(
            "sync_completed",
            extra={
                "created": result.created,
                "updated": result.updated,
                "deleted": result.deleted,
                "movies": result.movies_seen,
                "shows": result.shows_seen,
                "episodes": result.episodes_seen,
            },
        )
        self._emit(SyncEvent(SyncEventKind.COMPLETED, result=result))
        return result

    # -------- artwork --------

    def _prefetch(self, runner: TaskRunner, items: Sequence[MetadataItem]) -> List[Future]:
        return [
            runner.submit(TaskSpec(fn=self.artwork.fetch, args=(item.thumb,), name=f"artwork:{item.rating_key}"))
            for item in items
        ]

    @staticmethod
    def _artwork(future: Future, item: MetadataItem) -> Optional[bytes]:
        # download failures already come back as None; anything else aborts the pass
        payload = future.result()
        if payload is None and item.thumb:
            log.debug("sync_artwork_skipped", extra={"rating_key": item.rating_key})
        return payload

    # -------- movies --------

    def _sync_movies(
        self,
        store: LocalStore,
        runner: TaskRunner,
        section: LibrarySection,
        server_identity: str,
        result: SyncResult,
    ) -> Set[str]:
        self._report("Fetching movies...", 0, 0)
        items = self.catalog.list_library_items(section.key)
        total = len(items)
        self._report("Syncing movies...", 0, total)

        artwork = self._prefetch(runner, items)
        seen: Set[str] = set()
        for index, (item, art) in enumerate(zip(items, artwork)):
            self._report(f"Syncing: {item.title}", index + 1, total)
            payload = self._artwork(art, item)
            existing = store.find(EntityKind.MOVIE, server_identity, item.rating_key)
            now = self._clock()
            if existing is not None:
                store.update(merge_movie(existing, item, artwork=payload, now=now))
                result.updated += 1
            else:
                store.insert(create_movie(
                    item, server_identity=server_identity, section_id=section.key, artwork=payload, now=now,
                ))
                result.created += 1
            seen.add(item.rating_key)

        result.movies_seen += len(seen)
        return seen

    # -------- shows --------

    def _sync_shows(
        self,
        store: LocalStore,
        runner: TaskRunner,
        section: LibrarySection,
        server_identity: str,
        result: SyncResult,
    ) -> Set[str]:
        self._report("Fetching TV shows...", 0, 0)
        items = self.catalog.list_library_items(section.key)
        total = len(items)
        self._report("Syncing TV shows...", 0, total)

        artwork = self._prefetch(runner, items)
        seen: Set[str] = set()
        for index, (item, art) in enumerate(zip(items, artwork)):
            self._report(f"Syncing: {item.title}", index + 1, total)
            payload = self._artwork(art, item)
            existing = store.find(EntityKind.SHOW, server_identity, item.rating_key)
            now = self._clock()
            if existing is not None:
                show = merge_show(existing, item, artwork=payload, now=now)
                store.update(show)
                result.updated += 1
            else:
                show = store.insert(create_show(
                    item, server_identity=server_identity, section_id=section.key, artwork=payload, now=now,
                ))
                result.created += 1

            self._sync_episodes(store, runner, show, item.rating_key, server_identity, result)
            seen.add(item.rating_key)

        result.shows_seen += len(seen)
        return seen

    def _sync_episodes(
        self,
        store: LocalStore,
        runner: TaskRunner,
        show: Show,
        show_key: str,
        server_identity: str,
        result: SyncResult,
    ) -> None:
        items = self.catalog.fetch_all_episodes(show_key)
        existing: Dict[str, Episode] = {e.remote_key: e for e in store.episodes_for(show) if e.remote_key}

        artwork = self._prefetch(runner, items)
        seen: Set[str] = set()
        for item, art in zip(items, artwork):
            payload = self._artwork(art, item)
            now = self._clock()
            episode = existing.get(item.rating_key)
            if episode is None:
                # the server may have moved the episode under a re-matched show
                episode = store.find(EntityKind.EPISODE, server_identity, item.rating_key)
                if episode is not None:
                    log.info(
                        "sync_episode_moved",
                        extra={"rating_key": item.rating_key, "from_show": episode.show_id, "to_show": show.id},
                    )
                    episode.show_id = show.id
            if episode is not None:
                store.update(merge_episode(episode, item, artwork=payload, now=now))
                result.updated += 1
            else:
                store.insert(create_episode(
                    item, server_identity=server_identity, show_id=show.id, artwork=payload, now=now,
                ))
                result.created += 1
            seen.add(item.rating_key)

        for key, episode in existing.items():
            if key not in seen:
                store.delete(episode)
                result.deleted += 1
                log.debug("sync_episode_removed", extra={"show": show_key, "rating_key": key})

        result.episodes_seen += len(seen)

    # -------- cleanup --------

    def _remove_unseen(self, store: LocalStore, kind: EntityKind, server_identity: str, seen: Set[str]) -> int:
        removed = 0
        for entity in store.list_for_server(kind, server_identity):
            if entity.remote_key and entity.remote_key not in seen:
                store.delete(entity)
                removed += 1
                log.debug("sync_entity_removed", extra={"kind": kind.value, "rating_key": entity.remote_key})
        return removed


__all__ = [
    "SyncEngine",
    "SyncEvent",
    "SyncEventKind",
    "SyncResult",
    "SyncState",
]
