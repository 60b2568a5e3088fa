"""Discovery and connection providers."""

from .base import (
    BrowseHandle,
    ConnectionProvider,
    DiscoveryProvider,
    ProbeConnection,
)
from .tcp_connection import TcpConnectionProvider, TcpProbeConnection
from .zeroconf_provider import ZeroconfDiscoveryProvider

__all__ = [
    "BrowseHandle",
    "ConnectionProvider",
    "DiscoveryProvider",
    "ProbeConnection",
    "TcpConnectionProvider",
    "TcpProbeConnection",
    "ZeroconfDiscoveryProvider",
]
