from __future__ import annotations

import json
from typing import Any, Mapping, Optional, Type, TypeVar

import requests
from pydantic import TypeAdapter, ValidationError
from requests.adapters import HTTPAdapter

from plex_mirror.backend.common.errors import (
    DecodingError,
    InvalidURL,
    NetworkError,
    NotAuthenticated,
    ServerError,
    Unauthorized,
)
from plex_mirror.backend.common.logging import get_logger
from plex_mirror.backend.network_handlers.url_manager import (
    ClientProfile,
    URLManager,
    is_absolute_http_url,
    with_query,
)
from plex_mirror.backend.plex.secrets import (
    SecretStore,
    get_auth_token,
    get_or_create_client_identifier,
)
from plex_mirror.config.settings import Settings, get_settings

log = get_logger(__name__)

T = TypeVar("T")


# ---------------- Main Session ----------------

class PlexHttpSession:
    """
    Authenticated request gateway shared by the pairing flow, catalog and artwork cache:
      - fixed Plex header set, token attached when the call requires auth
      - 2xx passes, 401 is ``Unauthorized``, everything else is ``ServerError``
      - transport, URL and decode failures stay distinguishable
      - no retries; callers own retry policy
    """

    def __init__(
        self,
        secrets: SecretStore,
        *,
        settings: Optional[Settings] = None,
        session: Optional[requests.Session] = None,
        urlm: Optional[URLManager] = None,
        timeout: Optional[float] = None,
    ):
        self.settings = settings or get_settings()
        self.secrets = secrets
        self.urlm = urlm or URLManager()
        self.timeout = timeout if timeout is not None else self.settings.request_timeout

        if session is None:
            session = requests.Session()
            session.mount("http://", HTTPAdapter(pool_connections=8, pool_maxsize=16))
            session.mount("https://", HTTPAdapter(pool_connections=8, pool_maxsize=16))
        self._session = session

    # -------- public API --------

    @property
    def client_identifier(self) -> str:
        return get_or_create_client_identifier(self.secrets)

    @property
    def token(self) -> Optional[str]:
        return get_auth_token(self.secrets)

    def profile(self) -> ClientProfile:
        return ClientProfile(
            client_identifier=self.client_identifier,
            product=self.settings.app_name,
            version=self.settings.version,
            platform=self.settings.platform_name,
            platform_version=self.settings.platform_version,
            device_name=self.settings.device_name,
        )

    def request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        body: Optional[Mapping[str, Any]] = None,
        requires_auth: bool = True,
        form_encoded: bool = False,
        timeout: Optional[float] = None,
    ) -> bytes:
        token: Optional[str] = None
        if requires_auth:
            token = self.token
            if not token:
                raise NotAuthenticated()

        if not is_absolute_http_url(url):
            raise InvalidURL(url)

        headers = self.urlm.headers(self.profile(), token=token, form_encoded=form_encoded)
        full_url = with_query(url, params)

        try:
            resp = self._session.request(
                method=method.upper(),
                url=full_url,
                headers=headers,
                data=dict(body) if body is not None else None,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except (requests.exceptions.InvalidURL,
                requests.exceptions.MissingSchema,
                requests.exceptions.InvalidSchema) as e:
            raise InvalidURL(url, cause=e) from e
        except requests.RequestException as e:
            log.warning("http_transport_error", extra={"method": method.upper(), "url": url, "error": str(e)})
            raise NetworkError(e) from e

        status = resp.status_code
        if status == 401:
            log.warning("http_unauthorized", extra={"method": method.upper(), "url": url})
            raise Unauthorized()
        if not 200 <= status < 300:
            log.warning("http_status_error", extra={"method": method.upper(), "url": url, "status": status})
            raise ServerError(status)

        return resp.content

    def request_typed(
        self,
        model: Type[T],
        method: str,
        url: str,
        **kwargs: Any,
    ) -> T:
        payload = self.request(method, url, **kwargs)
        return decode(model, payload)

    def get_bytes(self, url: str, **kwargs: Any) -> bytes:
        return self.request("GET", url, **kwargs)

    def close(self) -> None:
        self._session.close()


def decode(model: Type[T], payload: bytes) -> T:
    try:
        data = json.loads(payload or b"null")
        return TypeAdapter(model).validate_python(data)
    except (ValueError, ValidationError) as e:
        raise DecodingError(e) from e


__all__ = ["PlexHttpSession", "decode"]
