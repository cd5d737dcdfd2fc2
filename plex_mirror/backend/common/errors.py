"""Closed error taxonomy shared by the gateway, pairing flow and sync engine.

Every error renders a short human readable message through ``str(exc)``. When an
error wraps a lower level failure the original exception is kept on ``cause`` and
chained with ``raise ... from``.
"""

from __future__ import annotations

from typing import Optional


class MirrorError(Exception):
    """Base for all Plex Mirror exceptions."""

    default_message = "Unexpected error"

    def __init__(self, message: Optional[str] = None, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message or self.default_message)
        self.cause = cause


class ConfigError(MirrorError):
    """Configuration related issues."""

    default_message = "Invalid configuration"


class SecretStoreError(MirrorError):
    """Secure storage could not be read or written."""

    default_message = "Secure storage is unavailable"


# ---------------- Gateway / catalog ----------------

class GatewayError(MirrorError):
    """Failure while talking to plex.tv or a media server."""


class InvalidURL(GatewayError):
    def __init__(self, url: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"Invalid URL: {url}", cause=cause)
        self.url = url


class NotAuthenticated(GatewayError):
    default_message = "Not authenticated. Please sign in to Plex."


class Unauthorized(GatewayError):
    """HTTP 401: the stored token is stale and the user must pair again."""

    default_message = "Authentication expired. Please sign in again."


class NoServerConfigured(GatewayError):
    default_message = "No Plex server configured."


class ServerError(GatewayError):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"Server error: {status_code}")
        self.status_code = status_code


class DecodingError(GatewayError):
    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"Failed to parse response: {cause}", cause=cause)


class ItemNotFound(GatewayError):
    def __init__(self, rating_key: str) -> None:
        super().__init__(f"Item not found: {rating_key}")
        self.rating_key = rating_key


class ImageDownloadFailed(GatewayError):
    def __init__(self, path: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__("Failed to download image.", cause=cause)
        self.path = path


class NetworkError(GatewayError):
    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"Network error: {cause}", cause=cause)


# ---------------- Device pairing ----------------

class AuthError(MirrorError):
    """Pairing or server selection failure."""


class AuthorizationTimeout(AuthError):
    default_message = "Authorization timed out. Please try again."


class NoServerConnection(AuthError):
    default_message = "No reachable connection available for server"


# ---------------- Sync ----------------

class SyncError(MirrorError):
    """Library synchronization failure."""


class AlreadySyncing(SyncError):
    default_message = "A library sync is already running"


class NoLibrariesSelected(SyncError):
    default_message = "No libraries selected for sync"


class NoModelContext(SyncError):
    default_message = "Database not initialized"


class CommitFailed(SyncError):
    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"Failed to save library changes: {cause}", cause=cause)


class LocalStoreFailed(SyncError):
    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"Local library update failed: {cause}", cause=cause)


__all__ = [
    "AlreadySyncing",
    "AuthError",
    "AuthorizationTimeout",
    "CommitFailed",
    "ConfigError",
    "DecodingError",
    "GatewayError",
    "ImageDownloadFailed",
    "InvalidURL",
    "ItemNotFound",
    "LocalStoreFailed",
    "MirrorError",
    "NetworkError",
    "NoLibrariesSelected",
    "NoModelContext",
    "NoServerConfigured",
    "NoServerConnection",
    "NotAuthenticated",
    "SecretStoreError",
    "ServerError",
    "SyncError",
    "Unauthorized",
]
