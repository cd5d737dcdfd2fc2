"""Process-lifetime artwork cache with one download per path."""

from __future__ import annotations

import io
import threading
from concurrent.futures import Future
from typing import Dict, Optional, Protocol

from PIL import Image, UnidentifiedImageError

from plex_mirror.backend.common.errors import MirrorError
from plex_mirror.backend.common.logging import get_logger
from plex_mirror.config.settings import ArtworkPolicy

log = get_logger(__name__)


class ImageSource(Protocol):
    def download_image(self, path: str) -> bytes: ...


def downsize_image(data: bytes, policy: ArtworkPolicy) -> bytes:
    """Shrink to fit ``policy`` bounds and re-encode as JPEG.

    Images already inside the bounds, and payloads Pillow cannot decode, come back
    unchanged.
    """

    if not policy.downsize:
        return data

    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
            if width <= policy.max_width and height <= policy.max_height:
                return data

            rgb = img.convert("RGB")
            rgb.thumbnail((policy.max_width, policy.max_height), Image.Resampling.LANCZOS)
            out = io.BytesIO()
            rgb.save(out, format="JPEG", quality=policy.jpeg_quality)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        log.debug("artwork_not_decodable", extra={"error": str(e)})
        return data

    log.debug(
        "artwork_downsized",
        extra={"from": f"{width}x{height}", "to": f"{rgb.size[0]}x{rgb.size[1]}"},
    )
    return out.getvalue()


class ArtworkCache:
    """
    ``fetch(path)`` downloads each distinct path at most once at a time. Concurrent
    callers for the same path wait on the same future and see the same bytes (or
    ``None``). Successes stay cached until :meth:`clear`; failures are not cached.
    """

    def __init__(self, source: ImageSource, policy: Optional[ArtworkPolicy] = None):
        self._source = source
        self.policy = policy or ArtworkPolicy()
        self._lock = threading.Lock()
        self._cache: Dict[str, bytes] = {}
        self._inflight: Dict[str, Future] = {}

    def fetch(self, path: Optional[str]) -> Optional[bytes]:
        if not path:
            return None

        with self._lock:
            cached = self._cache.get(path)
            if cached is not None:
                return cached
            future = self._inflight.get(path)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[path] = future

        if not owner:
            return future.result()

        try:
            payload: Optional[bytes] = downsize_image(self._source.download_image(path), self.policy)
        except MirrorError as e:
            log.warning("artwork_download_failed", extra={"path": path, "error": str(e)})
            payload = None
        except BaseException as e:
            with self._lock:
                self._inflight.pop(path, None)
            future.set_exception(e)
            raise

        with self._lock:
            if payload is not None:
                self._cache[path] = payload
            self._inflight.pop(path, None)
        future.set_result(payload)
        return payload

    def contains(self, path: str) -> bool:
        with self._lock:
            return path in self._cache

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()


__all__ = ["ArtworkCache", "ImageSource", "downsize_image"]
