"""Pick a reachable connection URI for a Plex Media Server."""

from __future__ import annotations

import ipaddress
import socket
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence
from urllib.parse import urlsplit

from plex_mirror.backend.common.errors import (
    GatewayError,
    NoServerConnection,
    NotAuthenticated,
    Unauthorized,
)
from plex_mirror.backend.common.logging import get_logger
from plex_mirror.backend.network_handlers.session import PlexHttpSession
from plex_mirror.backend.network_handlers.url_manager import URLManager
from plex_mirror.backend.plex.models import PlexConnection, PlexServer

log = get_logger(__name__)

DEFAULT_PLEX_PORT = 32400

# Address ranges Plex reports for servers running inside containers (docker bridges,
# link-local). They are flagged ``local`` but are rarely routable from the client.
CONTAINER_NETWORKS = (
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("fe80::/10"),
)

ReachabilityCheck = Callable[[str, int, float], bool]


@dataclass(frozen=True)
class ResolvedServer:
    server: PlexServer
    uri: str

    @property
    def base_url(self) -> str:
        return self.uri.rstrip("/")


def connection_host(conn: PlexConnection) -> Optional[str]:
    if conn.address:
        return conn.address
    try:
        return urlsplit(conn.uri).hostname
    except ValueError:
        return None


def connection_port(conn: PlexConnection) -> int:
    if conn.port:
        return conn.port
    try:
        return urlsplit(conn.uri).port or DEFAULT_PLEX_PORT
    except ValueError:
        return DEFAULT_PLEX_PORT


def is_container_internal(address: Optional[str]) -> bool:
    if not address:
        return False
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False
    return any(ip in net for net in CONTAINER_NETWORKS if net.version == ip.version)


def tcp_reachable(host: str, port: int, timeout: float) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def rank_connections(connections: Sequence[PlexConnection]) -> List[PlexConnection]:
    """Order connections by preference tier, keeping the server's order inside a tier.

    1. local, direct, not container-internal
    2. remote, direct
    3. any other direct connection
    4. relay
    """

    tiers: List[List[PlexConnection]] = [[], [], [], []]
    for conn in connections:
        if conn.relay:
            tiers[3].append(conn)
        elif conn.local and not is_container_internal(connection_host(conn)):
            tiers[0].append(conn)
        elif not conn.local:
            tiers[1].append(conn)
        else:
            tiers[2].append(conn)

    return [conn for tier in tiers for conn in tier]


def order_servers(servers: Iterable[PlexServer]) -> List[PlexServer]:
    return sorted(servers, key=lambda s: not s.owned)


class ServerResolver:
    def __init__(
        self,
        gateway: PlexHttpSession,
        *,
        urlm: Optional[URLManager] = None,
        reachability: ReachabilityCheck = tcp_reachable,
        connect_timeout: float = 2.0,
        probe_timeout: float = 10.0,
    ):
        self.gateway = gateway
        self.urlm = urlm or gateway.urlm
        self._reachable = reachability
        self.connect_timeout = connect_timeout
        self.probe_timeout = probe_timeout

    def _skip_unreachable_internal(self, conn: PlexConnection) -> bool:
        host = connection_host(conn)
        if not (conn.local and is_container_internal(host)):
            return False
        if self._reachable(host, connection_port(conn), self.connect_timeout):
            return False
        log.info("server_candidate_unreachable", extra={"uri": conn.uri})
        return True

    def probe(self, uri: str) -> bool:
        try:
            self.gateway.request(
                "GET",
                self.urlm.server_url(uri, "sections"),
                timeout=self.probe_timeout,
            )
        except (NotAuthenticated, Unauthorized):
            raise
        except GatewayError as e:
            log.info("server_probe_failed", extra={"uri": uri, "error": str(e)})
            return False
        return True

    def resolve(self, servers: Iterable[PlexServer]) -> ResolvedServer:
        servers = order_servers(servers)
        for server in servers:
            for conn in rank_connections(server.connections):
                if self._skip_unreachable_internal(conn):
                    continue
                if self.probe(conn.uri):
                    log.info(
                        "server_resolved",
                        extra={"server": server.name, "uri": conn.uri, "local": conn.local, "relay": conn.relay},
                    )
                    return ResolvedServer(server=server, uri=conn.uri)

        names = ", ".join(s.name or s.client_identifier for s in servers) or "none"
        raise NoServerConnection(f"No reachable connection available for server ({names})")


__all__ = [
    "CONTAINER_NETWORKS",
    "ResolvedServer",
    "ServerResolver",
    "is_container_internal",
    "order_servers",
    "rank_connections",
    "tcp_reachable",
]
