"""Plain TCP probe connections for the connection-probe strategy.

Each probe looks up the advertised instance's addresses, connects to the
first one that accepts, reports READY with the socket's peer address and is
then cancelled by the caller.
"""

from __future__ import annotations

import logging
import socket
import threading
from typing import Callable, List, Optional, Tuple

from ..models import ConnectionState, Endpoint, HostPortEndpoint, ServiceEndpoint
from .base import ConnectionProvider, ConnectionStateHandler, ProbeConnection

logger = logging.getLogger(__name__)

ServiceLookup = Callable[[ServiceEndpoint], Optional[Tuple[List[str], int]]]


class TcpProbeConnection(ProbeConnection):
    """Brief: One probe connection driven by a daemon thread.

    Inputs:
      - endpoint: ServiceEndpoint or HostPortEndpoint to connect to.
      - lookup: Callable resolving a ServiceEndpoint into (addresses, port).
      - timeout: Per-address connect timeout in seconds.

    Outputs:
      - TcpProbeConnection instance (not yet started).
    """

    def __init__(self, endpoint: Endpoint, lookup: ServiceLookup, timeout: float) -> None:
        self._endpoint = endpoint
        self._lookup = lookup
        self._timeout = float(timeout)
        self._lock = threading.Lock()
        self._on_state: Optional[ConnectionStateHandler] = None
        self._sock: Optional[socket.socket] = None
        self._remote: Optional[HostPortEndpoint] = None
        self._cancelled = False
        self._thread: Optional[threading.Thread] = None

    def start(self, on_state: ConnectionStateHandler) -> None:
        with self._lock:
            if self._cancelled or self._thread is not None:
                return
            self._on_state = on_state
            self._thread = threading.Thread(
                target=self._run, name="picofinder-probe", daemon=True
            )
        self._report(ConnectionState.PREPARING)
        self._thread.start()

    def remote_endpoint(self) -> Optional[Endpoint]:
        return self._remote

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            handler, self._on_state = self._on_state, None
            sock, self._sock = self._sock, None
        if sock is not None:
            sock.close()
        if handler is not None:
            handler(ConnectionState.CANCELLED)

    def _report(self, state: ConnectionState) -> None:
        with self._lock:
            handler = self._on_state
        if handler is not None:
            handler(state)

    def _targets(self) -> List[Tuple[str, int]]:
        endpoint = self._endpoint
        if isinstance(endpoint, HostPortEndpoint):
            return [(endpoint.host, int(endpoint.port))]
        if isinstance(endpoint, ServiceEndpoint):
            found = self._lookup(endpoint)
            if not found:
                return []
            addresses, port = found
            return [(addr, int(port)) for addr in addresses]
        return []

    def _connect(self, host: str, port: int) -> Optional[socket.socket]:
        try:
            infos = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)
        except (OSError, UnicodeError):
            logger.debug("getaddrinfo failed for %s:%d", host, port, exc_info=True)
            return None
        for family, socktype, proto, _canon, sockaddr in infos:
            sock = socket.socket(family, socktype, proto)
            with self._lock:
                if self._cancelled:
                    sock.close()
                    return None
                self._sock = sock
            try:
                sock.settimeout(self._timeout)
                sock.connect(sockaddr)
                return sock
            except OSError:
                logger.debug("connect to %s failed", sockaddr, exc_info=True)
                with self._lock:
                    if self._sock is sock:
                        self._sock = None
                sock.close()
        return None

    def _run(self) -> None:
        for host, port in self._targets():
            if self._cancelled:
                return
            sock = self._connect(host, port)
            if sock is None:
                continue
            try:
                peer = sock.getpeername()
            except OSError:
                continue
            self._remote = HostPortEndpoint(host=str(peer[0]), port=int(peer[1]))
            self._report(ConnectionState.READY)
            return
        if not self._cancelled:
            self._report(ConnectionState.FAILED)


class TcpConnectionProvider(ConnectionProvider):
    """Brief: ConnectionProvider opening TcpProbeConnection instances.

    Inputs:
      - resolve_service: Callable mapping a ServiceEndpoint to
        (addresses, port), typically ZeroconfDiscoveryProvider.resolve_service.
      - timeout: Connect timeout in seconds for each address.
    """

    def __init__(self, resolve_service: ServiceLookup, timeout: float = 5.0) -> None:
        self._resolve_service = resolve_service
        self._timeout = timeout

    def open(self, endpoint: Endpoint) -> ProbeConnection:
        return TcpProbeConnection(endpoint, self._resolve_service, self._timeout)
