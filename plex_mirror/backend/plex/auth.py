"""Plex device pairing (PIN) flow and account/server bookkeeping.

The flow is a small state machine::

    IDLE -> REQUESTING_PIN -> WAITING_FOR_AUTHORIZATION -> POLLING -> AUTHORIZED
                                                                   -> TIMED_OUT
                                                                   -> FAILED

Terminal states go back to ``IDLE`` through :meth:`AuthFlow.reset`. Only one poll
loop is live at a time: :meth:`AuthFlow.request_pin` cancels whichever loop was
running before it.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from plex_mirror.backend.common.errors import (
    AuthorizationTimeout,
    MirrorError,
)
from plex_mirror.backend.common.logging import get_logger
from plex_mirror.backend.network_handlers.session import PlexHttpSession
from plex_mirror.backend.plex.models import PinResponse, PlexServer, PlexUser
from plex_mirror.backend.plex.secrets import clear_auth_token, store_auth_token
from plex_mirror.backend.plex.servers import ResolvedServer, ServerResolver, order_servers
from plex_mirror.config.settings import Preferences, Settings, get_link_url

log = get_logger(__name__)


class AuthState(str, Enum):
    IDLE = "idle"
    REQUESTING_PIN = "requesting_pin"
    WAITING_FOR_AUTHORIZATION = "waiting_for_authorization"
    POLLING = "polling"
    AUTHORIZED = "authorized"
    TIMED_OUT = "timed_out"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (AuthState.AUTHORIZED, AuthState.TIMED_OUT, AuthState.FAILED)


@dataclass(frozen=True)
class PinCode:
    pin_id: int
    code: str
    expires_at: Optional[datetime]
    link_url: str


@dataclass(frozen=True)
class AuthStatusEvent:
    state: AuthState
    pin: Optional[PinCode] = None
    error: Optional[MirrorError] = None


@dataclass(frozen=True)
class AuthSession:
    client_identifier: str
    auth_token: Optional[str]
    active_server_url: Optional[str]

    @property
    def is_authenticated(self) -> bool:
        return bool(self.auth_token)


StatusListener = Callable[[AuthStatusEvent], None]


def _parse_expiry(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class AuthFlow:
    def __init__(
        self,
        gateway: PlexHttpSession,
        preferences: Preferences,
        *,
        settings: Optional[Settings] = None,
        resolver: Optional[ServerResolver] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.gateway = gateway
        self.preferences = preferences
        self.settings = settings or gateway.settings
        self.resolver = resolver or ServerResolver(gateway)
        self._clock = clock

        self._lock = threading.Lock()
        self._state = AuthState.IDLE
        self._pin: Optional[PinCode] = None
        self._generation = 0
        self._active_cancel: Optional[threading.Event] = None
        self._listeners: List[StatusListener] = []

    # -------- observation --------

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def pin(self) -> Optional[PinCode]:
        return self._pin

    def add_listener(self, listener: StatusListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: StatusListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _emit(self, event: AuthStatusEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:  # noqa: BLE001
                log.warning("auth_listener_failed", extra={"state": event.state.value, "error": str(e)})

    def _transition(
        self,
        state: AuthState,
        *,
        generation: Optional[int] = None,
        error: Optional[MirrorError] = None,
    ) -> None:
        with self._lock:
            if generation is not None and generation != self._generation:
                return
            self._state = state
            pin = self._pin
        log.info("auth_state_changed", extra={"state": state.value})
        self._emit(AuthStatusEvent(state=state, pin=pin, error=error))

    def _supersede(self) -> int:
        with self._lock:
            if self._active_cancel is not None:
                self._active_cancel.set()
                self._active_cancel = None
            self._generation += 1
            return self._generation

    # -------- pairing --------

    def request_pin(self) -> PinCode:
        generation = self._supersede()
        with self._lock:
            self._pin = None
        self._transition(AuthState.REQUESTING_PIN, generation=generation)

        try:
            resp = self.gateway.request_typed(
                PinResponse,
                "POST",
                self.gateway.urlm.auth_url("pins"),
                params={"strong": "false"},
                requires_auth=False,
                form_encoded=True,
            )
        except MirrorError as e:
            log.error("auth_pin_request_failed", extra={"error": str(e)})
            self._transition(AuthState.FAILED, generation=generation, error=e)
            raise

        pin = PinCode(
            pin_id=resp.id,
            code=resp.code,
            expires_at=_parse_expiry(resp.expires_at),
            link_url=get_link_url(),
        )
        with self._lock:
            if generation == self._generation:
                self._pin = pin
        log.info("auth_pin_issued", extra={"pin_id": pin.pin_id})
        self._transition(AuthState.WAITING_FOR_AUTHORIZATION, generation=generation)
        return pin

    def poll_for_authorization(self, pin_id: int, cancel: Optional[threading.Event] = None) -> Optional[str]:
        """Poll the PIN status until a token arrives, ``cancel`` is set or the budget runs out.

        Returns the token, or ``None`` when cancelled. Raises ``AuthorizationTimeout``
        after the budget and re-raises the first poll failure.
        """

        cancel = cancel or threading.Event()
        with self._lock:
            if self._active_cancel is not None and self._active_cancel is not cancel:
                self._active_cancel.set()
            self._active_cancel = cancel
            generation = self._generation

        interval = self.settings.pin_poll_interval
        deadline = self._clock() + self.settings.pin_poll_budget
        url = self.gateway.urlm.auth_url("pin_status", pin_id=pin_id)

        try:
            while True:
                if cancel.is_set():
                    log.info("auth_poll_cancelled", extra={"pin_id": pin_id})
                    self._transition(AuthState.IDLE, generation=generation)
                    return None

                remaining = deadline - self._clock()
                if remaining <= 0:
                    log.warning("auth_poll_timed_out", extra={"pin_id": pin_id})
                    err = AuthorizationTimeout()
                    self._transition(AuthState.TIMED_OUT, generation=generation, error=err)
                    raise err

                self._transition(AuthState.POLLING, generation=generation)
                try:
                    resp = self.gateway.request_typed(
                        PinResponse, "GET", url, requires_auth=False,
                        timeout=min(self.gateway.timeout, remaining),
                    )
                except MirrorError as e:
                    log.error("auth_poll_failed", extra={"pin_id": pin_id, "error": str(e)})
                    self._transition(AuthState.FAILED, generation=generation, error=e)
                    raise

                if resp.auth_token:
                    if cancel.is_set():
                        continue
                    try:
                        store_auth_token(self.gateway.secrets, resp.auth_token)
                    except MirrorError as e:
                        self._transition(AuthState.FAILED, generation=generation, error=e)
                        raise
                    log.info("auth_authorized", extra={"pin_id": pin_id})
                    self._transition(AuthState.AUTHORIZED, generation=generation)
                    return resp.auth_token

                remaining = deadline - self._clock()
                if remaining > 0:
                    cancel.wait(min(interval, remaining))
        finally:
            with self._lock:
                if self._active_cancel is cancel:
                    self._active_cancel = None

    def cancel(self) -> None:
        with self._lock:
            if self._active_cancel is not None:
                self._active_cancel.set()

    def reset(self) -> None:
        generation = self._supersede()
        with self._lock:
            self._pin = None
        self._transition(AuthState.IDLE, generation=generation)

    # -------- account & servers --------

    def fetch_user(self) -> PlexUser:
        return self.gateway.request_typed(PlexUser, "GET", self.gateway.urlm.auth_url("user"))

    def fetch_servers(self) -> List[PlexServer]:
        resources = self.gateway.request_typed(
            List[PlexServer],
            "GET",
            self.gateway.urlm.auth_url("resources"),
            params={"includeHttps": 1, "includeRelay": 1},
        )
        return order_servers(r for r in resources if r.is_media_server)

    def resolve_server(self, candidates: List[PlexServer]) -> ResolvedServer:
        return self.resolver.resolve(candidates)

    def select_server(self, servers: Optional[List[PlexServer]] = None) -> ResolvedServer:
        candidates = servers if servers is not None else self.fetch_servers()
        resolved = self.resolve_server(candidates)
        self.preferences.set_server(
            url=resolved.base_url,
            identity=resolved.server.client_identifier,
            name=resolved.server.name,
        )
        return resolved

    def sign_out(self) -> None:
        """Drop the token and server selection. The client identifier is kept."""

        generation = self._supersede()
        clear_auth_token(self.gateway.secrets)
        self.preferences.clear_server()
        with self._lock:
            self._pin = None
        log.info("auth_signed_out")
        self._transition(AuthState.IDLE, generation=generation)

    def session(self) -> AuthSession:
        return AuthSession(
            client_identifier=self.gateway.client_identifier,
            auth_token=self.gateway.token,
            active_server_url=self.preferences.active_server_url,
        )


__all__ = [
    "AuthFlow",
    "AuthSession",
    "AuthState",
    "AuthStatusEvent",
    "PinCode",
    "StatusListener",
]
