"""Local catalog records and the rules for folding remote metadata into them.

``Movie``, ``Show`` and ``Episode`` are plain dataclasses tagged with ``kind``. The
watched/progress logic lives in free functions dispatching on that tag.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import List, Optional, Protocol, Union

from plex_mirror.backend.plex.models import MetadataItem


class EntityKind(str, Enum):
    MOVIE = "movie"
    SHOW = "show"
    EPISODE = "episode"


@dataclass
class Episode:
    title: str
    season: int = 1
    index: int = 1
    id: Optional[int] = None
    show_id: Optional[int] = None
    remote_key: Optional[str] = None
    server_identity: Optional[str] = None
    watched: bool = False
    progress_minutes: int = 0
    artwork: Optional[bytes] = None
    last_synced_at: Optional[datetime] = None
    duration_minutes: int = 0
    release_date: Optional[date] = None
    summary: Optional[str] = None
    cast: List[str] = field(default_factory=list)
    producers: List[str] = field(default_factory=list)
    directors: List[str] = field(default_factory=list)
    screenwriters: List[str] = field(default_factory=list)
    studio: Optional[str] = None
    content_rating: Optional[str] = None
    languages: List[str] = field(default_factory=list)
    stream_key: Optional[str] = None
    kind: EntityKind = field(default=EntityKind.EPISODE, init=False)


@dataclass
class Movie:
    title: str
    id: Optional[int] = None
    remote_key: Optional[str] = None
    server_identity: Optional[str] = None
    library_section_id: Optional[str] = None
    watched: bool = False
    progress_minutes: int = 0
    artwork: Optional[bytes] = None
    last_synced_at: Optional[datetime] = None
    genres: List[str] = field(default_factory=list)
    duration_minutes: int = 0
    release_date: Optional[date] = None
    summary: Optional[str] = None
    cast: List[str] = field(default_factory=list)
    producers: List[str] = field(default_factory=list)
    directors: List[str] = field(default_factory=list)
    screenwriters: List[str] = field(default_factory=list)
    studio: Optional[str] = None
    video_quality: Optional[str] = None
    content_rating: Optional[str] = None
    languages: List[str] = field(default_factory=list)
    stream_key: Optional[str] = None
    kind: EntityKind = field(default=EntityKind.MOVIE, init=False)


@dataclass
class Show:
    title: str
    year: int
    id: Optional[int] = None
    remote_key: Optional[str] = None
    server_identity: Optional[str] = None
    library_section_id: Optional[str] = None
    watched: bool = False
    progress_minutes: int = 0
    artwork: Optional[bytes] = None
    last_synced_at: Optional[datetime] = None
    genres: List[str] = field(default_factory=list)
    summary: Optional[str] = None
    episodes: List[Episode] = field(default_factory=list)
    kind: EntityKind = field(default=EntityKind.SHOW, init=False)

    def sorted_episodes(self) -> List[Episode]:
        return sorted(self.episodes, key=lambda e: (e.season, e.index, e.title))


Entity = Union[Movie, Show, Episode]


class LocalStore(Protocol):
    """Keyed persistence the sync engine reads and writes through."""

    def find(self, kind: EntityKind, server_identity: str, remote_key: str) -> Optional[Entity]: ...

    def episodes_for(self, show: Show) -> List[Episode]: ...

    def list_for_server(self, kind: EntityKind, server_identity: str) -> List[Entity]: ...

    def insert(self, entity: Entity) -> Entity: ...

    def update(self, entity: Entity) -> None: ...

    def delete(self, entity: Entity) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------- Watch state ----------------

def remote_is_watched(item: MetadataItem) -> bool:
    return item.is_watched


def is_watched(entity: Entity) -> bool:
    if entity.kind is EntityKind.SHOW:
        return bool(entity.episodes) and all(e.watched for e in entity.episodes)
    return entity.watched


def progress_minutes(entity: Entity) -> int:
    if entity.kind is EntityKind.SHOW:
        return sum(e.progress_minutes for e in entity.episodes)
    return entity.progress_minutes


def _merge_watch_state(entity: Entity, item: MetadataItem) -> None:
    # Remote "unwatched" never clears a local "watched"; progress never goes back.
    if remote_is_watched(item) and not entity.watched:
        entity.watched = True
    if item.progress_minutes > entity.progress_minutes:
        entity.progress_minutes = item.progress_minutes


def _quality(item: MetadataItem) -> Optional[str]:
    quality = item.video_quality
    return quality.value if quality is not None else None


# ---------------- Movies ----------------

def create_movie(
    item: MetadataItem,
    *,
    server_identity: str,
    section_id: Optional[str],
    artwork: Optional[bytes],
    now: Optional[datetime] = None,
) -> Movie:
    return Movie(
        title=item.title,
        remote_key=item.rating_key,
        server_identity=server_identity,
        library_section_id=section_id,
        watched=remote_is_watched(item),
        progress_minutes=item.progress_minutes,
        artwork=artwork,
        last_synced_at=now or utcnow(),
        genres=item.genre_names,
        duration_minutes=item.duration_minutes,
        release_date=item.release_date,
        summary=item.summary,
        cast=item.cast_names,
        producers=item.producer_names,
        directors=item.director_names,
        screenwriters=item.writer_names,
        studio=item.studio,
        video_quality=_quality(item),
        content_rating=item.content_rating,
        languages=item.audio_languages,
        stream_key=item.streaming_part_key,
    )


def merge_movie(movie: Movie, item: MetadataItem, *, artwork: Optional[bytes], now: Optional[datetime] = None) -> Movie:
    movie.title = item.title
    movie.genres = item.genre_names
    movie.duration_minutes = item.duration_minutes
    movie.release_date = item.release_date or movie.release_date
    movie.summary = item.summary
    movie.cast = item.cast_names
    movie.producers = item.producer_names
    movie.directors = item.director_names
    movie.screenwriters = item.writer_names
    movie.studio = item.studio
    movie.video_quality = _quality(item)
    movie.content_rating = item.content_rating
    movie.languages = item.audio_languages
    movie.stream_key = item.streaming_part_key
    if artwork is not None:
        movie.artwork = artwork
    movie.last_synced_at = now or utcnow()
    _merge_watch_state(movie, item)
    return movie


# ---------------- Shows ----------------

def create_show(
    item: MetadataItem,
    *,
    server_identity: str,
    section_id: Optional[str],
    artwork: Optional[bytes],
    now: Optional[datetime] = None,
) -> Show:
    now = now or utcnow()
    return Show(
        title=item.title,
        year=item.year or now.year,
        remote_key=item.rating_key,
        server_identity=server_identity,
        library_section_id=section_id,
        watched=remote_is_watched(item),
        progress_minutes=item.progress_minutes,
        artwork=artwork,
        last_synced_at=now,
        genres=item.genre_names,
        summary=item.summary,
    )


def merge_show(show: Show, item: MetadataItem, *, artwork: Optional[bytes], now: Optional[datetime] = None) -> Show:
    show.title = item.title
    show.year = item.year or show.year
    show.genres = item.genre_names
    show.summary = item.summary
    if artwork is not None:
        show.artwork = artwork
    show.last_synced_at = now or utcnow()
    _merge_watch_state(show, item)
    return show


# ---------------- Episodes ----------------

def create_episode(
    item: MetadataItem,
    *,
    server_identity: str,
    show_id: Optional[int],
    artwork: Optional[bytes],
    now: Optional[datetime] = None,
) -> Episode:
    return Episode(
        title=item.title,
        season=item.parent_index if item.parent_index is not None else 1,
        index=item.index if item.index is not None else 1,
        show_id=show_id,
        remote_key=item.rating_key,
        server_identity=server_identity,
        watched=remote_is_watched(item),
        progress_minutes=item.progress_minutes,
        artwork=artwork,
        last_synced_at=now or utcnow(),
        duration_minutes=item.duration_minutes,
        release_date=item.release_date,
        summary=item.summary,
        cast=item.cast_names,
        producers=item.producer_names,
        directors=item.director_names,
        screenwriters=item.writer_names,
        studio=item.studio,
        content_rating=item.content_rating,
        languages=item.audio_languages,
        stream_key=item.streaming_part_key,
    )


def merge_episode(
    episode: Episode,
    item: MetadataItem,
    *,
    artwork: Optional[bytes],
    now: Optional[datetime] = None,
) -> Episode:
    episode.season = item.parent_index if item.parent_index is not None else episode.season
    episode.index = item.index if item.index is not None else episode.index
    episode.title = item.title
    episode.duration_minutes = item.duration_minutes
    episode.release_date = item.release_date or episode.release_date
    episode.summary = item.summary
    episode.cast = item.cast_names
    episode.producers = item.producer_names
    episode.directors = item.director_names
    episode.screenwriters = item.writer_names
    episode.studio = item.studio
    episode.content_rating = item.content_rating
    episode.languages = item.audio_languages
    episode.stream_key = item.streaming_part_key
    if artwork is not None:
        episode.artwork = artwork
    episode.last_synced_at = now or utcnow()
    _merge_watch_state(episode, item)
    return episode


__all__ = [
    "Entity",
    "EntityKind",
    "Episode",
    "LocalStore",
    "Movie",
    "Show",
    "create_episode",
    "create_movie",
    "create_show",
    "is_watched",
    "merge_episode",
    "merge_movie",
    "merge_show",
    "progress_minutes",
    "remote_is_watched",
    "utcnow",
]
