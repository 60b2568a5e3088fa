from __future__ import annotations

import logging
import threading
from typing import Callable, Iterator, List, Optional, Tuple

from .models import DiscoveredServer

logger = logging.getLogger(__name__)

ServersListener = Callable[[Tuple[DiscoveredServer, ...]], None]


class ServerRegistry:
    """Brief: Ordered, deduplicated collection of discovered servers.

    Inputs:
      - None.

    Outputs:
      - ServerRegistry instance.

    Notes:
      - Every mutation runs under a single lock, so there is exactly one
        writer at a time. Readers get immutable tuple snapshots and never
        observe a partially applied replace.
      - Order is insertion (resolution-completion) order. A replace moves the
        record to the end.
      - Listeners are called after the mutation, outside the lock, with the
        new snapshot.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._servers: List[DiscoveredServer] = []
        self._snapshot: Tuple[DiscoveredServer, ...] = ()
        self._listeners: List[ServersListener] = []

    def exclusive(self) -> threading.RLock:
        """Return the writer lock, for callers that must act atomically with writes."""
        return self._lock

    def insert(
        self, server: DiscoveredServer, guard: Optional[Callable[[], bool]] = None
    ) -> Optional[bool]:
        """Brief: Append a server, replacing any entry with the same id.

        Inputs:
          - server: Fully resolved DiscoveredServer.
          - guard: Optional callable evaluated under the writer lock; when it
            returns False the insert is skipped.

        Outputs:
          - Optional[bool]: True when an existing entry was replaced, False when
            appended, None when the guard rejected the insert.
        """

        with self._lock:
            if guard is not None and not guard():
                return None
            before = len(self._servers)
            self._servers = [s for s in self._servers if s.id != server.id]
            replaced = len(self._servers) != before
            self._servers.append(server)
            snapshot = self._publish_locked()
        logger.debug(
            "registry: %s %s (%s:%d)",
            "replaced" if replaced else "added",
            server.id,
            server.ip_address,
            server.port,
        )
        self._notify(snapshot)
        return replaced

    def remove_by_identity(
        self,
        predicate: Callable[[DiscoveredServer], bool],
        guard: Optional[Callable[[], bool]] = None,
    ) -> List[DiscoveredServer]:
        """Brief: Remove every server matching ``predicate``.

        Inputs:
          - predicate: Callable returning True for records to drop.
          - guard: Optional callable evaluated under the writer lock; when it
            returns False nothing is removed.

        Outputs:
          - list: Removed records, in registry order (empty when none matched).
        """

        with self._lock:
            if guard is not None and not guard():
                return []
            removed: List[DiscoveredServer] = []
            kept: List[DiscoveredServer] = []
            for server in self._servers:
                (removed if predicate(server) else kept).append(server)
            if not removed:
                return []
            self._servers = kept
            snapshot = self._publish_locked()
        for server in removed:
            logger.debug("registry: removed %s", server.id)
        self._notify(snapshot)
        return removed

    def clear(self) -> None:
        with self._lock:
            if not self._servers:
                return
            self._servers = []
            snapshot = self._publish_locked()
        self._notify(snapshot)

    def snapshot(self) -> Tuple[DiscoveredServer, ...]:
        return self._snapshot

    def find(self, server_id: str) -> Optional[DiscoveredServer]:
        for server in self._snapshot:
            if server.id == server_id:
                return server
        return None

    def add_listener(self, listener: ServersListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: ServersListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def __len__(self) -> int:
        return len(self._snapshot)

    def __iter__(self) -> Iterator[DiscoveredServer]:
        return iter(self._snapshot)

    def _publish_locked(self) -> Tuple[DiscoveredServer, ...]:
        self._snapshot = tuple(self._servers)
        return self._snapshot

    def _notify(self, snapshot: Tuple[DiscoveredServer, ...]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception("registry listener %r failed", listener)
