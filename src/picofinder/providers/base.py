"""
Capabilities consumed by the browse controller.

The controller never talks to mDNS or sockets directly. A DiscoveryProvider
delivers batched browse changes plus a coarse session state, and a
ConnectionProvider opens short-lived probe connections for the
connection-probe resolution strategy.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Optional, Sequence

from ..models import BrowseChange, BrowseState, ConnectionState, Endpoint

ChangesHandler = Callable[[Sequence[BrowseChange]], None]
BrowseStateHandler = Callable[[BrowseState], None]
ConnectionStateHandler = Callable[[ConnectionState], None]


class BrowseHandle(ABC):
    """Handle for one running browse session."""

    @abstractmethod
    def cancel(self) -> None:
        """Stop browsing and detach the session's handlers. Idempotent."""
        ...


class DiscoveryProvider(ABC):
    """Source of browse results for one service type/domain pair."""

    @abstractmethod
    def browse(
        self,
        service_type: str,
        domain: str,
        on_changes: ChangesHandler,
        on_state: BrowseStateHandler,
    ) -> BrowseHandle:
        """
        Start browsing and return a handle for the session.

        Args:
            service_type: Service type, e.g. ``_pico._tcp``.
            domain: Browse domain, e.g. ``local.``.
            on_changes: Called with each batch of changes, possibly from a
                provider-owned thread.
            on_state: Called with every session state transition.

        Returns:
            BrowseHandle used to cancel the session.
        """
        ...

    def close(self) -> None:
        """Release provider-wide resources. Default: nothing to release."""


class ProbeConnection(ABC):
    """A transient connection used only to learn a resolved remote address."""

    @abstractmethod
    def start(self, on_state: ConnectionStateHandler) -> None:
        """Begin connecting; ``on_state`` receives every transition."""
        ...

    @abstractmethod
    def remote_endpoint(self) -> Optional[Endpoint]:
        """Remote endpoint of the established path, once ready."""
        ...

    @abstractmethod
    def cancel(self) -> None:
        """Close the connection and detach the state handler. Idempotent."""
        ...


class ConnectionProvider(ABC):
    @abstractmethod
    def open(self, endpoint: Endpoint) -> ProbeConnection:
        """Create a new, independent (not yet started) probe connection."""
        ...
