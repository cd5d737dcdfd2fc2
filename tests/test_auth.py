"""Tests for the PIN pairing flow and account bookkeeping."""

from __future__ import annotations

import threading
import time
from dataclasses import replace
from typing import List

import pytest

from plex_mirror.backend.common.errors import AuthorizationTimeout, ServerError
from plex_mirror.backend.network_handlers.session import PlexHttpSession
from plex_mirror.backend.plex.auth import AuthFlow, AuthState, AuthStatusEvent
from plex_mirror.backend.plex.secrets import AUTH_TOKEN_KEY, CLIENT_IDENTIFIER_KEY

from tests.conftest import SERVER_URL, TOKEN
from tests.fakes import FakeResponse, json_response, sections_container

PIN_PATH = "/api/v2/pins"
PIN_STATUS_PATH = "/api/v2/pins/42"

PENDING = json_response({"id": 42, "code": "WXYZ", "authToken": None})
AUTHORIZED = json_response({"id": 42, "code": "WXYZ", "authToken": "fresh-token"})


@pytest.fixture
def pairing_gateway(anonymous_secrets, settings, fake_http) -> PlexHttpSession:
    return PlexHttpSession(anonymous_secrets, settings=settings, session=fake_http)


@pytest.fixture
def flow(pairing_gateway, preferences) -> AuthFlow:
    return AuthFlow(pairing_gateway, preferences)


def record(flow: AuthFlow) -> List[AuthStatusEvent]:
    events: List[AuthStatusEvent] = []
    flow.add_listener(events.append)
    return events


class TestRequestPin:
    """Tests for AuthFlow.request_pin."""

    def test_issues_pin(self, flow, fake_http) -> None:
        """Should POST a non-strong PIN request and move to waiting."""
        fake_http.add("POST", PIN_PATH, json_response({
            "id": 42,
            "code": "WXYZ",
            "expiresAt": "2026-01-01T12:15:00Z",
        }))
        events = record(flow)

        pin = flow.request_pin()

        assert pin.pin_id == 42
        assert pin.code == "WXYZ"
        assert pin.link_url == "https://plex.tv/link"
        assert pin.expires_at is not None and pin.expires_at.year == 2026
        assert flow.state is AuthState.WAITING_FOR_AUTHORIZATION
        assert flow.pin == pin
        assert [e.state for e in events] == [AuthState.REQUESTING_PIN, AuthState.WAITING_FOR_AUTHORIZATION]

        call = fake_http.calls[0]
        assert call.method == "POST"
        assert call.host == "plex.tv"
        assert call.query == {"strong": ["false"]}
        assert call.headers["Content-Type"] == "application/x-www-form-urlencoded"
        assert "X-Plex-Token" not in call.headers

    def test_failure_moves_to_failed(self, flow, fake_http) -> None:
        """Should report FAILED with the error and re-raise."""
        fake_http.add("POST", PIN_PATH, FakeResponse(status_code=500))
        events = record(flow)

        with pytest.raises(ServerError):
            flow.request_pin()

        assert flow.state is AuthState.FAILED
        assert events[-1].state is AuthState.FAILED
        assert isinstance(events[-1].error, ServerError)


class TestPolling:
    """Tests for AuthFlow.poll_for_authorization."""

    def test_token_stored_on_authorization(self, flow, fake_http, anonymous_secrets) -> None:
        """Should keep polling until a token arrives, then persist it."""
        fake_http.add("GET", PIN_STATUS_PATH, [PENDING, PENDING, AUTHORIZED])
        events = record(flow)

        token = flow.poll_for_authorization(42)

        assert token == "fresh-token"
        assert anonymous_secrets.get(AUTH_TOKEN_KEY) == "fresh-token"
        assert flow.state is AuthState.AUTHORIZED
        assert len(fake_http.calls_to(PIN_STATUS_PATH)) == 3
        assert [e.state for e in events].count(AuthState.POLLING) == 3
        assert events[-1].state is AuthState.AUTHORIZED

    def test_times_out_after_budget(self, flow, fake_http, anonymous_secrets, settings) -> None:
        """Should give up after the polling budget and store nothing."""
        fake_http.add("GET", PIN_STATUS_PATH, PENDING)

        started = time.monotonic()
        with pytest.raises(AuthorizationTimeout):
            flow.poll_for_authorization(42)
        elapsed = time.monotonic() - started

        assert elapsed >= settings.pin_poll_budget
        assert elapsed < settings.pin_poll_budget + 2.0
        assert flow.state is AuthState.TIMED_OUT
        assert anonymous_secrets.get(AUTH_TOKEN_KEY) is None

    def test_timeout_uses_injected_clock(self, pairing_gateway, preferences, fake_http) -> None:
        """Should measure the budget with the injected clock."""
        fake_http.add("GET", PIN_STATUS_PATH, PENDING)
        ticks = iter([0.0, 0.0, 1000.0, 1000.0])
        flow = AuthFlow(pairing_gateway, preferences, clock=lambda: next(ticks))

        with pytest.raises(AuthorizationTimeout):
            flow.poll_for_authorization(42)

        assert len(fake_http.calls_to(PIN_STATUS_PATH)) == 1

    def test_poll_request_bounded_by_budget(self, pairing_gateway, preferences, fake_http) -> None:
        """Should never let a single poll request outlive the remaining budget."""
        fake_http.add("GET", PIN_STATUS_PATH, AUTHORIZED)
        ticks = iter([0.0, 0.1])
        flow = AuthFlow(pairing_gateway, preferences, clock=lambda: next(ticks))

        flow.poll_for_authorization(42)

        assert pairing_gateway.timeout == 5.0
        assert fake_http.calls_to(PIN_STATUS_PATH)[0].timeout == pytest.approx(0.2)

    def test_poll_timeouts_stay_within_budget(self, flow, fake_http, settings) -> None:
        """Should cap every poll request at the polling budget."""
        fake_http.add("GET", PIN_STATUS_PATH, PENDING)

        with pytest.raises(AuthorizationTimeout):
            flow.poll_for_authorization(42)

        timeouts = [call.timeout for call in fake_http.calls_to(PIN_STATUS_PATH)]
        assert timeouts
        assert all(0 < t <= settings.pin_poll_budget for t in timeouts)

    def test_poll_error_fails_flow(self, flow, fake_http) -> None:
        """Should stop on the first failed poll and report FAILED."""
        fake_http.add("GET", PIN_STATUS_PATH, FakeResponse(status_code=500))

        with pytest.raises(ServerError):
            flow.poll_for_authorization(42)

        assert flow.state is AuthState.FAILED
        assert len(fake_http.calls_to(PIN_STATUS_PATH)) == 1

    def test_cancel_before_start(self, flow, fake_http) -> None:
        """Should return None immediately when already cancelled."""
        cancel = threading.Event()
        cancel.set()

        assert flow.poll_for_authorization(42, cancel) is None
        assert flow.state is AuthState.IDLE
        assert fake_http.calls == []

    def test_cancel_while_polling(self, flow, fake_http, anonymous_secrets) -> None:
        """Should stop at the next tick once cancelled and store no token."""
        fake_http.add("GET", PIN_STATUS_PATH, PENDING)
        cancel = threading.Event()

        def _cancel_on_poll(event: AuthStatusEvent) -> None:
            if event.state is AuthState.POLLING:
                cancel.set()

        flow.add_listener(_cancel_on_poll)

        assert flow.poll_for_authorization(42, cancel) is None
        assert flow.state is AuthState.IDLE
        assert anonymous_secrets.get(AUTH_TOKEN_KEY) is None
        assert len(fake_http.calls_to(PIN_STATUS_PATH)) == 1

    def test_token_ignored_after_cancel(self, flow, fake_http, anonymous_secrets) -> None:
        """Should not persist a token that arrives after cancellation."""
        cancel = threading.Event()

        def _authorize_late(url: str) -> FakeResponse:
            cancel.set()
            return AUTHORIZED

        fake_http.add("GET", PIN_STATUS_PATH, _authorize_late)

        assert flow.poll_for_authorization(42, cancel) is None
        assert anonymous_secrets.get(AUTH_TOKEN_KEY) is None

    def test_listener_errors_do_not_abort(self, flow, fake_http) -> None:
        """Should keep going when a listener raises."""
        fake_http.add("GET", PIN_STATUS_PATH, [PENDING, AUTHORIZED])

        def _broken(event: AuthStatusEvent) -> None:
            raise RuntimeError("listener bug")

        flow.add_listener(_broken)

        assert flow.poll_for_authorization(42) == "fresh-token"
        assert flow.state is AuthState.AUTHORIZED

    def test_new_pin_supersedes_running_poll(self, pairing_gateway, preferences, settings, fake_http) -> None:
        """Should cancel the previous poll loop when a new PIN is requested."""
        slow = replace(settings, pin_poll_budget=10.0, pin_poll_interval=0.05)
        flow = AuthFlow(pairing_gateway, preferences, settings=slow)
        fake_http.add("GET", PIN_STATUS_PATH, PENDING)
        fake_http.add("POST", PIN_PATH, json_response({"id": 43, "code": "NEXT"}))

        polling = threading.Event()
        results: List[object] = []

        def _mark(event: AuthStatusEvent) -> None:
            if event.state is AuthState.POLLING:
                polling.set()

        flow.add_listener(_mark)
        worker = threading.Thread(target=lambda: results.append(flow.poll_for_authorization(42)))
        worker.start()
        assert polling.wait(2.0)

        pin = flow.request_pin()
        worker.join(timeout=2.0)

        assert not worker.is_alive()
        assert results == [None]
        assert pin.pin_id == 43
        assert flow.state is AuthState.WAITING_FOR_AUTHORIZATION

    def test_reset_returns_to_idle(self, flow, fake_http) -> None:
        """Should go back to IDLE from a terminal state."""
        fake_http.add("GET", PIN_STATUS_PATH, FakeResponse(status_code=500))
        with pytest.raises(ServerError):
            flow.poll_for_authorization(42)

        flow.reset()

        assert flow.state is AuthState.IDLE
        assert flow.pin is None


class TestAccount:
    """Tests for account, server and sign-out helpers."""

    def test_fetch_servers_filters_and_orders(self, gateway, preferences, fake_http) -> None:
        """Should keep media servers only, owned ones first."""
        fake_http.add("GET", "/api/v2/resources", json_response([
            {"name": "Friend", "clientIdentifier": "f1", "owned": False, "provides": "server", "connections": []},
            {"name": "Phone", "clientIdentifier": "p1", "owned": True, "provides": "client,player"},
            {"name": "Mine", "clientIdentifier": "m1", "owned": True, "provides": "server", "connections": []},
        ]))
        flow = AuthFlow(gateway, preferences)

        servers = flow.fetch_servers()

        assert [s.name for s in servers] == ["Mine", "Friend"]
        assert fake_http.calls[0].query == {"includeHttps": ["1"], "includeRelay": ["1"]}

    def test_select_server_persists_choice(self, gateway, preferences, fake_http) -> None:
        """Should store the resolved URL and identity in preferences."""
        fake_http.add("GET", "/api/v2/resources", json_response([{
            "name": "Mine",
            "clientIdentifier": "m1",
            "owned": True,
            "provides": "server",
            "connections": [{"uri": "https://1-2-3-4.plex.direct:32400", "local": False, "relay": False}],
        }]))
        fake_http.add("GET", "/library/sections", json_response(sections_container([])))
        preferences.active_server_url = None
        flow = AuthFlow(gateway, preferences)

        resolved = flow.select_server()

        assert resolved.base_url == "https://1-2-3-4.plex.direct:32400"
        assert preferences.active_server_url == "https://1-2-3-4.plex.direct:32400"
        assert preferences.server_identity == "m1"
        assert preferences.server_name == "Mine"
        assert preferences.path.exists()

    def test_sign_out_keeps_client_identifier(self, gateway, preferences, secrets) -> None:
        """Should drop the token and server but keep the device identity."""
        flow = AuthFlow(gateway, preferences)

        flow.sign_out()

        assert secrets.get(AUTH_TOKEN_KEY) is None
        assert secrets.get(CLIENT_IDENTIFIER_KEY)
        assert preferences.active_server_url is None
        assert flow.session().is_authenticated is False

    def test_session_snapshot(self, gateway, preferences) -> None:
        """Should expose identifier, token and active server."""
        session = AuthFlow(gateway, preferences).session()

        assert session.auth_token == TOKEN
        assert session.active_server_url == SERVER_URL
        assert session.is_authenticated is True
