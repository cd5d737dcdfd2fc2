"""Command line front end for pairing, server selection and library sync."""

from __future__ import annotations

import argparse
from typing import Any, Optional, Sequence

from plex_mirror.backend.common.errors import MirrorError
from plex_mirror.backend.common.logging import init_logging
from plex_mirror.backend.library.entities import Entity, EntityKind
from plex_mirror.backend.library.watch_state import report_progress, set_watched
from plex_mirror.backend.plex.catalog import PlaybackState
from plex_mirror.mirror_startup import Services, build_services, quick_self_check

from ._utils import (
    build_subparser,
    exit_with_error,
    print_json,
    require_subcommand,
    to_serializable,
)

_SERVICES: Optional[Services] = None


def _services() -> Services:
    global _SERVICES
    if _SERVICES is None:
        _SERVICES = build_services()
        init_logging(_SERVICES.settings.log_level)
    return _SERVICES


def _find_entity(kind: str, remote_key: str) -> Entity:
    services = _services()
    store = services.store
    if store is None:
        exit_with_error("Database not initialized")
    entity = store.find(EntityKind(kind), services.preferences.server_identity or "", remote_key)
    if entity is None:
        exit_with_error(f"No local {kind} with key {remote_key}. Run 'plex-mirror sync' first.")
    return entity


# -------- health --------

def _handle_health(_: argparse.Namespace) -> None:
    print_json(quick_self_check(_services()))


# -------- auth --------

def _poll(pin_id: int) -> None:
    auth = _services().auth
    try:
        token = auth.poll_for_authorization(pin_id)
    except KeyboardInterrupt:
        auth.cancel()
        exit_with_error("Authorization cancelled.", code=130)
        return
    print_json({"authorized": token is not None, "state": auth.state.value})


def _handle_auth_start(args: argparse.Namespace) -> None:
    pin = _services().auth.request_pin()
    print_json({
        "pin_id": pin.pin_id,
        "code": pin.code,
        "link_url": pin.link_url,
        "expires_at": to_serializable(pin.expires_at),
    })
    if not args.no_wait:
        _poll(pin.pin_id)


def _handle_auth_wait(args: argparse.Namespace) -> None:
    _poll(args.pin_id)


def _handle_auth_status(args: argparse.Namespace) -> None:
    services = _services()
    session = services.auth.session()
    payload: dict[str, Any] = {
        "authenticated": session.is_authenticated,
        "client_identifier": session.client_identifier,
        "active_server_url": session.active_server_url,
        "server_name": services.preferences.server_name,
        "selected_library_ids": services.preferences.selected_library_ids,
        "last_sync_at": to_serializable(services.preferences.last_sync_at),
    }
    if session.is_authenticated and args.with_user:
        payload["user"] = to_serializable(services.auth.fetch_user())
    print_json(payload)


def _handle_auth_sign_out(_: argparse.Namespace) -> None:
    _services().auth.sign_out()
    print_json({"signed_out": True})


# -------- servers --------

def _handle_servers_list(_: argparse.Namespace) -> None:
    servers = _services().auth.fetch_servers()
    print_json(to_serializable(servers))


def _handle_servers_select(args: argparse.Namespace) -> None:
    auth = _services().auth
    servers = auth.fetch_servers()
    if args.server:
        servers = [s for s in servers if args.server in (s.client_identifier, s.name)]
        if not servers:
            exit_with_error(f"No media server named or identified by '{args.server}'.")
    resolved = auth.select_server(servers)
    print_json({
        "server": resolved.server.name,
        "server_identity": resolved.server.client_identifier,
        "url": resolved.base_url,
    })


# -------- libraries --------

def _handle_libraries_list(_: argparse.Namespace) -> None:
    services = _services()
    selected = set(services.preferences.selected_library_ids)
    sections = services.catalog.list_libraries()
    print_json([
        {"key": s.key, "title": s.title, "type": s.type, "selected": s.key in selected}
        for s in sections
    ])


def _handle_libraries_select(args: argparse.Namespace) -> None:
    prefs = _services().preferences
    prefs.select_libraries(args.library_ids)
    print_json({"selected_library_ids": prefs.selected_library_ids})


# -------- sync --------

def _handle_sync(args: argparse.Namespace) -> None:
    result = _services().sync.run_full_sync(args.library or None)
    print_json(to_serializable(result))


# -------- watch state --------

def _handle_watched(args: argparse.Namespace, watched: bool) -> None:
    services = _services()
    entity = _find_entity(args.kind, args.remote_key)
    update = set_watched(services.store, services.catalog, entity, watched)
    print_json({
        "remote_key": args.remote_key,
        "watched": watched,
        "remote_synced": update.remote_synced,
        "remote_error": str(update.remote_error) if update.remote_error else None,
    })


def _handle_progress(args: argparse.Namespace) -> None:
    services = _services()
    entity = _find_entity(args.kind, args.remote_key)
    update = report_progress(
        services.store,
        services.catalog,
        entity,
        args.position_ms,
        args.duration_ms,
        PlaybackState(args.state),
    )
    print_json({
        "remote_key": args.remote_key,
        "progress_minutes": update.entity.progress_minutes,
        "remote_synced": update.remote_synced,
        "remote_error": str(update.remote_error) if update.remote_error else None,
    })


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="plex-mirror", description="Mirror a Plex library into a local database.")
    subparsers = parser.add_subparsers(dest="command")
    require_subcommand(subparsers)

    health = build_subparser(subparsers, "health", help="Run the local self check.")
    health.set_defaults(func=_handle_health)

    # Auth ---------------------------------------------------------------
    auth_parser = build_subparser(subparsers, "auth", help="Pair this device with a Plex account.")
    auth_sub = auth_parser.add_subparsers(dest="auth_command")
    require_subcommand(auth_sub)

    auth_start = build_subparser(auth_sub, "start", help="Request a PIN and wait for it to be linked.")
    auth_start.add_argument("--no-wait", action="store_true", help="Print the PIN and return without polling.")
    auth_start.set_defaults(func=_handle_auth_start)

    auth_wait = build_subparser(auth_sub, "wait", help="Poll an existing PIN until it is linked or expires.")
    auth_wait.add_argument("pin_id", type=int, help="PIN identifier printed by 'auth start'.")
    auth_wait.set_defaults(func=_handle_auth_wait)

    auth_status = build_subparser(auth_sub, "status", help="Show the current session.")
    auth_status.add_argument("--with-user", action="store_true", help="Also fetch the account profile.")
    auth_status.set_defaults(func=_handle_auth_status)

    auth_sign_out = build_subparser(auth_sub, "sign-out", help="Forget the token and server selection.")
    auth_sign_out.set_defaults(func=_handle_auth_sign_out)

    # Servers ------------------------------------------------------------
    servers_parser = build_subparser(subparsers, "servers", help="Discover and select media servers.")
    servers_sub = servers_parser.add_subparsers(dest="servers_command")
    require_subcommand(servers_sub)

    servers_list = build_subparser(servers_sub, "list", help="List media servers on the account.")
    servers_list.set_defaults(func=_handle_servers_list)

    servers_select = build_subparser(servers_sub, "select", help="Pick the best reachable server connection.")
    servers_select.add_argument("--server", help="Restrict to a server name or client identifier.")
    servers_select.set_defaults(func=_handle_servers_select)

    # Libraries ----------------------------------------------------------
    libraries_parser = build_subparser(subparsers, "libraries", help="List or select libraries to mirror.")
    libraries_sub = libraries_parser.add_subparsers(dest="libraries_command")
    require_subcommand(libraries_sub)

    libraries_list = build_subparser(libraries_sub, "list", help="List libraries on the selected server.")
    libraries_list.set_defaults(func=_handle_libraries_list)

    libraries_select = build_subparser(libraries_sub, "select", help="Choose which libraries 'sync' mirrors.")
    libraries_select.add_argument("library_ids", nargs="+", help="Library section keys.")
    libraries_select.set_defaults(func=_handle_libraries_select)

    # Sync ---------------------------------------------------------------
    sync_parser = build_subparser(subparsers, "sync", help="Run a full library sync.")
    sync_parser.add_argument("--library", action="append", help="Override the selected libraries for this run.")
    sync_parser.set_defaults(func=_handle_sync)

    # Watch state --------------------------------------------------------
    kinds = [EntityKind.MOVIE.value, EntityKind.SHOW.value, EntityKind.EPISODE.value]
    for name, watched in (("watched", True), ("unwatched", False)):
        cmd = build_subparser(subparsers, name, help=f"Mark a mirrored item as {name}.")
        cmd.add_argument("kind", choices=kinds)
        cmd.add_argument("remote_key", help="Plex rating key.")
        cmd.set_defaults(func=lambda a, w=watched: _handle_watched(a, w))

    progress = build_subparser(subparsers, "progress", help="Report playback progress for a movie or episode.")
    progress.add_argument("kind", choices=[EntityKind.MOVIE.value, EntityKind.EPISODE.value])
    progress.add_argument("remote_key", help="Plex rating key.")
    progress.add_argument("position_ms", type=int)
    progress.add_argument("duration_ms", type=int)
    progress.add_argument("--state", choices=[s.value for s in PlaybackState], default=PlaybackState.PLAYING.value)
    progress.set_defaults(func=_handle_progress)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, "func", None)
    if handler is None:
        parser.print_help()
        return
    try:
        handler(args)
    except MirrorError as exc:
        exit_with_error(str(exc))


if __name__ == "__main__":  # pragma: no cover
    main()
