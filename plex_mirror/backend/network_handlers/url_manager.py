from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode, urlsplit

from plex_mirror.config.settings import (
    get_auth_base_url,
    get_default_headers,
    get_provider_endpoints,
)


# ----------------------------
# Data views (read-only access)
# ----------------------------

@dataclass(frozen=True)
class ClientProfile:
    """Identity the client announces on every request."""

    client_identifier: str
    product: str
    version: str
    platform: str
    platform_version: str
    device_name: str


# ----------------------------
# URL Manager
# ----------------------------

class URLManager:
    """
    Builds Plex URLs and the fixed header set without doing any network I/O.

    - auth host paths come from the ``auth`` endpoint table
    - server paths are joined onto whichever base URL was resolved for the session
    """

    def __init__(self, *, auth_base_url: Optional[str] = None,
                 endpoints: Optional[Mapping[str, Mapping[str, str]]] = None):
        self.auth_base_url = (auth_base_url or get_auth_base_url()).rstrip("/")
        self._endpoints: Dict[str, Dict[str, str]] = {
            group: dict(paths) for group, paths in (endpoints or get_provider_endpoints()).items()
        }

    # -------- Public API --------

    def path(self, group: str, name: str, **fmt: Any) -> str:
        try:
            template = self._endpoints[group][name]
        except KeyError:
            raise KeyError(f"Unknown endpoint '{group}.{name}'") from None
        return template.format(**fmt)

    def auth_url(self, name: str, **fmt: Any) -> str:
        return self.auth_base_url + self.path("auth", name, **fmt)

    def server_url(self, base_url: str, name: str, **fmt: Any) -> str:
        return join_url(base_url, self.path("server", name, **fmt))

    def headers(self, profile: ClientProfile, *, token: Optional[str] = None,
                form_encoded: bool = False) -> Dict[str, str]:
        hdrs = dict(get_default_headers())
        hdrs.setdefault("Accept", "application/json")
        hdrs.update({
            "X-Plex-Client-Identifier": profile.client_identifier,
            "X-Plex-Product": profile.product,
            "X-Plex-Version": profile.version,
            "X-Plex-Platform": profile.platform,
            "X-Plex-Platform-Version": profile.platform_version,
            "X-Plex-Device": profile.platform,
            "X-Plex-Device-Name": profile.device_name,
        })
        if form_encoded:
            hdrs["Content-Type"] = "application/x-www-form-urlencoded"
        if token:
            hdrs["X-Plex-Token"] = token
        return hdrs


# -------------
# Util helpers
# -------------

def join_url(base_url: str, path: str) -> str:
    return base_url.rstrip("/") + "/" + path.lstrip("/")


def with_query(url: str, params: Optional[Mapping[str, Any]]) -> str:
    if not params:
        return url
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}{urlencode(dict(params), doseq=True)}"


def is_absolute_http_url(url: str) -> bool:
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)
