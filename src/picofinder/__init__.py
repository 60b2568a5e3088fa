"""PicoFinder package"""

from .browser import BrowseController
from .errors import (
    ConnectionCancelled,
    CouldNotConnect,
    InternalError,
    InvalidEndpoint,
    NoMetadataRecord,
    PicoFinderError,
    ResolutionError,
)
from .models import DiscoveredServer
from .registry import ServerRegistry
from .resolution import ConnectionProbeStrategy, MetadataStrategy, ResolutionEngine

__all__ = [
    "BrowseController",
    "ConnectionCancelled",
    "ConnectionProbeStrategy",
    "CouldNotConnect",
    "DiscoveredServer",
    "InternalError",
    "InvalidEndpoint",
    "MetadataStrategy",
    "NoMetadataRecord",
    "PicoFinderError",
    "ResolutionEngine",
    "ResolutionError",
    "ServerRegistry",
]
