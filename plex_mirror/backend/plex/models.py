"""Wire models for plex.tv and Plex Media Server JSON responses."""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PlexModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ---------------- Authentication ----------------

class PinResponse(PlexModel):
    id: int
    code: str
    expires_at: Optional[str] = None
    auth_token: Optional[str] = None


class PlexUser(PlexModel):
    id: int
    uuid: str = ""
    email: str = ""
    username: str = ""
    title: str = ""
    thumb: Optional[str] = None


# ---------------- Resources ----------------

class PlexConnection(PlexModel):
    uri: str
    local: bool = False
    relay: bool = False
    protocol: Optional[str] = None
    address: Optional[str] = None
    port: Optional[int] = None


class PlexServer(PlexModel):
    name: str = ""
    product: str = ""
    product_version: str = ""
    platform: Optional[str] = None
    client_identifier: str
    owned: bool = False
    provides: str = ""
    connections: List[PlexConnection] = Field(default_factory=list)

    @property
    def is_media_server(self) -> bool:
        return "server" in self.provides.split(",")


# ---------------- Library ----------------

class LibrarySection(PlexModel):
    key: str
    title: str = ""
    type: str = ""
    uuid: Optional[str] = None
    language: Optional[str] = None
    agent: Optional[str] = None
    scanner: Optional[str] = None

    @property
    def is_movie_library(self) -> bool:
        return self.type == "movie"

    @property
    def is_show_library(self) -> bool:
        return self.type == "show"


class Tag(PlexModel):
    tag: str


class Role(PlexModel):
    tag: str
    role: Optional[str] = None
    thumb: Optional[str] = None


class Stream(PlexModel):
    id: Optional[int] = None
    stream_type: Optional[int] = None
    codec: Optional[str] = None
    language: Optional[str] = None
    language_code: Optional[str] = None

    @property
    def is_audio(self) -> bool:
        return self.stream_type == 2


class Part(PlexModel):
    id: Optional[int] = None
    key: str
    duration: Optional[int] = None
    file: Optional[str] = None
    size: Optional[int] = None
    container: Optional[str] = None
    streams: List[Stream] = Field(default_factory=list, alias="Stream")


class VideoQuality(str, Enum):
    SD = "sd"
    HD_720P = "hd_720p"
    HD_1080P = "hd_1080p"
    UHD_4K = "uhd_4k"


class Media(PlexModel):
    id: Optional[int] = None
    duration: Optional[int] = None
    video_resolution: Optional[str] = None
    aspect_ratio: Optional[float] = None
    audio_channels: Optional[int] = None
    audio_codec: Optional[str] = None
    video_codec: Optional[str] = None
    container: Optional[str] = None
    video_frame_rate: Optional[str] = None
    parts: List[Part] = Field(default_factory=list, alias="Part")

    @property
    def video_quality(self) -> VideoQuality:
        resolution = (self.video_resolution or "").lower()
        if resolution in ("4k", "2160"):
            return VideoQuality.UHD_4K
        if resolution == "1080":
            return VideoQuality.HD_1080P
        if resolution == "720":
            return VideoQuality.HD_720P
        return VideoQuality.SD


class MetadataItem(PlexModel):
    """Any catalog node: movie, show, season or episode."""

    rating_key: str
    key: str = ""
    type: str = ""
    title: str = ""
    original_title: Optional[str] = None
    summary: Optional[str] = None
    year: Optional[int] = None
    duration: Optional[int] = None
    originally_available_at: Optional[str] = None
    added_at: Optional[int] = None
    updated_at: Optional[int] = None
    studio: Optional[str] = None
    content_rating: Optional[str] = None
    rating: Optional[float] = None
    audience_rating: Optional[float] = None

    thumb: Optional[str] = None
    art: Optional[str] = None
    banner: Optional[str] = None

    view_count: Optional[int] = None
    view_offset: Optional[int] = None
    last_viewed_at: Optional[int] = None

    index: Optional[int] = None
    parent_index: Optional[int] = None
    parent_rating_key: Optional[str] = None
    parent_title: Optional[str] = None
    grandparent_rating_key: Optional[str] = None
    grandparent_title: Optional[str] = None
    leaf_count: Optional[int] = None
    viewed_leaf_count: Optional[int] = None

    genres: List[Tag] = Field(default_factory=list, alias="Genre")
    directors: List[Tag] = Field(default_factory=list, alias="Director")
    writers: List[Tag] = Field(default_factory=list, alias="Writer")
    roles: List[Role] = Field(default_factory=list, alias="Role")
    producers: List[Tag] = Field(default_factory=list, alias="Producer")
    countries: List[Tag] = Field(default_factory=list, alias="Country")
    media: List[Media] = Field(default_factory=list, alias="Media")

    @property
    def is_movie(self) -> bool:
        return self.type == "movie"

    @property
    def is_show(self) -> bool:
        return self.type == "show"

    @property
    def is_season(self) -> bool:
        return self.type == "season"

    @property
    def is_episode(self) -> bool:
        return self.type == "episode"

    @property
    def is_watched(self) -> bool:
        if self.is_movie or self.is_episode:
            return (self.view_count or 0) > 0
        if self.is_show:
            leaves = self.leaf_count or 0
            return leaves > 0 and (self.viewed_leaf_count or 0) == leaves
        return False

    @property
    def duration_minutes(self) -> int:
        return (self.duration or 0) // 60000

    @property
    def progress_minutes(self) -> int:
        return (self.view_offset or 0) // 60000

    @property
    def release_date(self) -> Optional[date]:
        if not self.originally_available_at:
            return None
        try:
            return date.fromisoformat(self.originally_available_at[:10])
        except ValueError:
            return None

    @property
    def genre_names(self) -> List[str]:
        return [g.tag for g in self.genres]

    @property
    def director_names(self) -> List[str]:
        return [d.tag for d in self.directors]

    @property
    def writer_names(self) -> List[str]:
        return [w.tag for w in self.writers]

    @property
    def producer_names(self) -> List[str]:
        return [p.tag for p in self.producers]

    @property
    def cast_names(self) -> List[str]:
        return [r.tag for r in self.roles]

    @property
    def first_part(self) -> Optional[Part]:
        if not self.media or not self.media[0].parts:
            return None
        return self.media[0].parts[0]

    @property
    def streaming_part_key(self) -> Optional[str]:
        part = self.first_part
        return part.key if part else None

    @property
    def video_quality(self) -> Optional[VideoQuality]:
        return self.media[0].video_quality if self.media else None

    @property
    def audio_languages(self) -> List[str]:
        part = self.first_part
        if part is None:
            return []
        return [s.language_code for s in part.streams if s.is_audio and s.language_code]


# ---------------- Containers ----------------

class SectionsContainer(PlexModel):
    size: Optional[int] = None
    directory: List[LibrarySection] = Field(default_factory=list, alias="Directory")


class SectionsResponse(PlexModel):
    media_container: SectionsContainer = Field(alias="MediaContainer")


class MetadataContainer(PlexModel):
    size: Optional[int] = None
    total_size: Optional[int] = None
    metadata: List[MetadataItem] = Field(default_factory=list, alias="Metadata")


class MetadataResponse(PlexModel):
    media_container: MetadataContainer = Field(alias="MediaContainer")


__all__ = [
    "LibrarySection",
    "Media",
    "MetadataContainer",
    "MetadataItem",
    "MetadataResponse",
    "Part",
    "PinResponse",
    "PlexConnection",
    "PlexModel",
    "PlexServer",
    "PlexUser",
    "Role",
    "SectionsContainer",
    "SectionsResponse",
    "Stream",
    "Tag",
    "VideoQuality",
]
