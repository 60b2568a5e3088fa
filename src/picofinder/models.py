from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Tuple, Union

# Bonjour service advertised by Pico AI Homelab servers.
SERVICE_TYPE = "_pico._tcp"
SERVICE_DOMAIN = "local."

# TXT record keys published by Homelab servers.
KEY_SERVER_IDENTIFIER = "ServerIdentifier"
KEY_IP_ADDRESS = "IPAddress"
KEY_LOCAL_HOST_NAME = "LocalHostName"
KEY_PORT = "Port"
REQUIRED_METADATA_KEYS: Tuple[str, ...] = (
    KEY_SERVER_IDENTIFIER,
    KEY_IP_ADDRESS,
    KEY_LOCAL_HOST_NAME,
    KEY_PORT,
)


class BrowseState(enum.Enum):
    """Coarse session state reported by a discovery provider."""

    SETUP = "setup"
    READY = "ready"
    WAITING = "waiting"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ConnectionState(enum.Enum):
    """Transport state reported by a probe connection."""

    PREPARING = "preparing"
    READY = "ready"
    WAITING = "waiting"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ControllerState(enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"


def normalize_address(address: str) -> str:
    """Brief: Strip an interface-scope suffix from a textual IP address.

    Inputs:
      - address: Address such as ``fe80::1%en0`` or ``10.0.0.5``.

    Outputs:
      - str: Address without the ``%scope`` suffix and surrounding whitespace.

    Example:
      >>> normalize_address("fe80::1%en0")
      'fe80::1'
    """

    return str(address or "").strip().split("%", 1)[0]


def fallback_identity(name: str, service_type: str) -> str:
    """Brief: Derive a server identity from the advertised name and type.

    Inputs:
      - name: Advertised instance label (e.g. ``Ronald's Homelab``).
      - service_type: Advertised service type (e.g. ``_pico._tcp``).

    Outputs:
      - str: DNS-SD style instance name ``<name>.<service_type>``.
    """

    return "%s.%s" % (name, str(service_type or "").rstrip("."))


@dataclass(frozen=True)
class DiscoveredServer:
    """Brief: Fully resolved Homelab server record.

    Inputs:
      - id: Identity key (server identifier, or name/type fallback).
      - name: Human readable name, e.g. ``Ronald's Homelab``.
      - service_type: Bonjour service type, normally ``_pico._tcp``.
      - host_name: Local hostname; empty string when it could not be resolved.
      - ip_address: Normalized IP address (no scope suffix).
      - port: TCP port in 0-65535.

    Outputs:
      - Immutable DiscoveredServer instance.

    Raises:
      - ValueError: when port is out of range or id/ip_address are empty.
    """

    id: str
    name: str
    service_type: str
    host_name: str
    ip_address: str
    port: int

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("DiscoveredServer.id must not be empty")
        if not self.ip_address:
            raise ValueError("DiscoveredServer.ip_address must not be empty")
        if isinstance(self.port, bool) or not isinstance(self.port, int):
            raise ValueError("DiscoveredServer.port must be an int")
        if not 0 <= self.port <= 65535:
            raise ValueError("DiscoveredServer.port out of range: %r" % self.port)

    @property
    def candidate_key(self) -> Tuple[str, str]:
        return (self.name, self.service_type)

    def matches_identity(self, name: str, service_type: str) -> bool:
        """Return True when this record was written by the given advertisement.

        The server id is not consulted. A record re-inserted under a new
        name by a rename belongs to that name only.
        """
        return self.candidate_key == (name, service_type)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "service_type": self.service_type,
            "host_name": self.host_name,
            "ip_address": self.ip_address,
            "port": self.port,
        }


@dataclass(frozen=True)
class ServiceEndpoint:
    """Advertised service instance: name, type, domain and an opaque interface."""

    name: str
    service_type: str
    domain: str = SERVICE_DOMAIN
    interface: Any = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.name, self.service_type)


@dataclass(frozen=True)
class HostPortEndpoint:
    """Concrete network endpoint, as returned by a ready connection."""

    host: str
    port: int


Endpoint = Union[ServiceEndpoint, HostPortEndpoint]


@dataclass(frozen=True)
class BrowseResult:
    """Brief: Raw advertisement (a candidate) delivered by a discovery provider.

    Inputs:
      - endpoint: Endpoint descriptor, normally a ServiceEndpoint.
      - metadata: Optional decoded TXT key/value mapping.

    Outputs:
      - BrowseResult instance.
    """

    endpoint: Endpoint
    metadata: Optional[Mapping[str, str]] = field(default=None, compare=True, hash=False)

    @property
    def server_identifier(self) -> str:
        if not self.metadata:
            return ""
        return str(self.metadata.get(KEY_SERVER_IDENTIFIER) or "").strip()


@dataclass(frozen=True)
class Added:
    result: BrowseResult


@dataclass(frozen=True)
class Removed:
    result: BrowseResult


@dataclass(frozen=True)
class Changed:
    old: BrowseResult
    new: BrowseResult


@dataclass(frozen=True)
class Identical:
    result: BrowseResult


@dataclass(frozen=True)
class Unknown:
    raw: Any = None


BrowseChange = Union[Added, Removed, Changed, Identical, Unknown]


def candidate_key(result: BrowseResult) -> Optional[Tuple[str, str]]:
    """Brief: Return the (name, service_type) key of a browse result.

    Inputs:
      - result: BrowseResult from a provider.

    Outputs:
      - Optional[tuple]: Key for service endpoints, None for anything else.
    """

    endpoint = result.endpoint
    if isinstance(endpoint, ServiceEndpoint):
        return endpoint.key
    return None
