"""Turn a browse result into a validated DiscoveredServer.

Brief:
  Two interchangeable strategies are provided. An engine runs exactly one of
  them for every candidate:

    - MetadataStrategy: parse the TXT metadata published by the server. No
      network round trip; preferred when servers publish complete metadata.
    - ConnectionProbeStrategy: open a short-lived connection to the advertised
      service, read the remote address of the established path, close it, then
      reverse-resolve the hostname.

Inputs:
  - BrowseResult candidates from a discovery provider

Outputs:
  - DiscoveredServer records, or a ResolutionError subclass
"""

from __future__ import annotations

import ipaddress
import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, InvalidStateError
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, validator

from .address_resolver import AddressResolver
from .cancellation import CancelScope
from .errors import (
    ConnectionCancelled,
    CouldNotConnect,
    InvalidEndpoint,
    InvalidMetadata,
    NoMetadataRecord,
)
from .models import (
    KEY_IP_ADDRESS,
    KEY_LOCAL_HOST_NAME,
    KEY_PORT,
    KEY_SERVER_IDENTIFIER,
    REQUIRED_METADATA_KEYS,
    BrowseResult,
    ConnectionState,
    DiscoveredServer,
    HostPortEndpoint,
    ServiceEndpoint,
    fallback_identity,
    normalize_address,
)
from .providers.base import ConnectionProvider

logger = logging.getLogger(__name__)


class ServerMetadata(BaseModel):
    """Brief: Typed view of the TXT record published by a Homelab server.

    Inputs:
      - ServerIdentifier: Stable server id.
      - IPAddress: Server address; a scope suffix is stripped.
      - LocalHostName: Local hostname, e.g. ``homelab.local``.
      - Port: Port as a decimal string or int in 0-65535.

    Outputs:
      - ServerMetadata instance.
    """

    server_identifier: str = Field(alias=KEY_SERVER_IDENTIFIER)
    ip_address: str = Field(alias=KEY_IP_ADDRESS)
    local_host_name: str = Field(alias=KEY_LOCAL_HOST_NAME)
    port: int = Field(alias=KEY_PORT, ge=0, le=65535)

    @validator("server_identifier", "local_host_name", pre=True)
    def _strip_text(cls, v):  # type: ignore[no-untyped-def]
        return str(v).strip()

    @validator("ip_address", pre=True)
    def _normalize_ip(cls, v):  # type: ignore[no-untyped-def]
        addr = normalize_address(str(v))
        ipaddress.ip_address(addr)
        return addr

    @validator("port", pre=True)
    def _strip_port(cls, v):  # type: ignore[no-untyped-def]
        if isinstance(v, bool):
            raise ValueError("port must be an integer")
        if isinstance(v, str):
            v = v.strip()
            if not v.isdigit():
                raise ValueError("port must be a decimal integer")
        return v

    class Config:
        extra = "ignore"


def parse_metadata(metadata: Optional[Mapping[str, str]]) -> ServerMetadata:
    """Brief: Validate a TXT payload into a complete ServerMetadata.

    Inputs:
      - metadata: Decoded TXT mapping, or None.

    Outputs:
      - ServerMetadata with every required field populated.

    Raises:
      - NoMetadataRecord: payload absent, or required keys missing/empty.
      - InvalidMetadata: a required key is present but does not parse.
    """

    if not metadata:
        raise NoMetadataRecord()

    missing = [
        k for k in REQUIRED_METADATA_KEYS if not str(metadata.get(k) or "").strip()
    ]
    if missing:
        raise NoMetadataRecord(missing=missing)

    try:
        return ServerMetadata(**{k: metadata[k] for k in REQUIRED_METADATA_KEYS})
    except ValidationError as exc:
        errors = exc.errors()
        loc = errors[0].get("loc", ()) if errors else ()
        field = str(loc[0]) if loc else ""
        raise InvalidMetadata(
            "Invalid %s in Bonjour packet" % (field or "field"), field=field
        ) from exc


class ResolutionStrategy(ABC):
    name = "base"

    @abstractmethod
    def resolve(
        self, result: BrowseResult, cancel: Optional[CancelScope] = None
    ) -> DiscoveredServer:
        """Resolve one candidate or raise a ResolutionError."""
        ...


class MetadataStrategy(ResolutionStrategy):
    """Resolve candidates purely from their TXT metadata (synchronous)."""

    name = "metadata"

    def resolve(
        self, result: BrowseResult, cancel: Optional[CancelScope] = None
    ) -> DiscoveredServer:
        endpoint = result.endpoint
        if not isinstance(endpoint, ServiceEndpoint):
            raise InvalidEndpoint()

        meta = parse_metadata(result.metadata)
        return DiscoveredServer(
            id=meta.server_identifier,
            name=endpoint.name,
            service_type=endpoint.service_type,
            host_name=meta.local_host_name,
            ip_address=meta.ip_address,
            port=meta.port,
        )


class ConnectionProbeStrategy(ResolutionStrategy):
    """Brief: Resolve candidates by briefly connecting to them.

    Inputs:
      - connections: ConnectionProvider creating one probe per call.
      - address_resolver: Optional AddressResolver for hostnames.
      - timeout: Seconds to wait for the probe to become ready.

    Outputs:
      - ConnectionProbeStrategy instance.

    Notes:
      - Each call opens its own connection; concurrent calls never share
        connection state.
      - The probe is closed as soon as the remote address is known (or on any
        failure).
    """

    name = "probe"

    def __init__(
        self,
        connections: ConnectionProvider,
        address_resolver: Optional[AddressResolver] = None,
        timeout: float = 5.0,
    ) -> None:
        self._connections = connections
        self._address_resolver = address_resolver or AddressResolver()
        self._timeout = float(timeout)

    def resolve(
        self, result: BrowseResult, cancel: Optional[CancelScope] = None
    ) -> DiscoveredServer:
        endpoint = result.endpoint
        if not isinstance(endpoint, ServiceEndpoint):
            raise InvalidEndpoint()

        remote = self._probe(endpoint, cancel)
        if not isinstance(remote, HostPortEndpoint):
            raise InvalidEndpoint("Connected path has no host/port endpoint")

        ip_address = normalize_address(remote.host)
        host_name = self._address_resolver.resolve_hostname(ip_address) or ""
        server_id = result.server_identifier or fallback_identity(
            endpoint.name, endpoint.service_type
        )
        return DiscoveredServer(
            id=server_id,
            name=endpoint.name,
            service_type=endpoint.service_type,
            host_name=host_name,
            ip_address=ip_address,
            port=int(remote.port),
        )

    def _probe(self, endpoint: ServiceEndpoint, cancel: Optional[CancelScope]):
        """Wait for the probe to reach READY and return its remote endpoint."""
        connection = self._connections.open(endpoint)
        outcome: Future = Future()

        def _settle(value=None, error: Optional[BaseException] = None) -> None:
            try:
                if error is not None:
                    outcome.set_exception(error)
                else:
                    outcome.set_result(value)
            except InvalidStateError:
                pass

        def _on_state(state: ConnectionState) -> None:
            logger.debug("probe %s: %s", endpoint.name, state.value)
            if state is ConnectionState.READY:
                _settle(connection.remote_endpoint())
            elif state is ConnectionState.FAILED:
                _settle(error=CouldNotConnect())
            elif state is ConnectionState.CANCELLED:
                _settle(error=ConnectionCancelled())

        closed = threading.Event()
        close_lock = threading.Lock()

        def _close() -> None:
            with close_lock:
                if closed.is_set():
                    return
                closed.set()
            connection.cancel()

        def _abort() -> None:
            _close()
            _settle(error=ConnectionCancelled())

        token = cancel.register(_abort) if cancel is not None else None
        try:
            if outcome.done():
                return outcome.result()
            connection.start(_on_state)
            try:
                return outcome.result(timeout=self._timeout)
            except FutureTimeoutError:
                raise CouldNotConnect(
                    "Timed out after %.1fs connecting to %s" % (self._timeout, endpoint.name)
                ) from None
        finally:
            if cancel is not None:
                cancel.unregister(token)
            _close()


class ResolutionEngine:
    """Brief: Run the configured strategy for each candidate.

    Inputs:
      - strategy: The single ResolutionStrategy used by this engine.

    Outputs:
      - ResolutionEngine instance.
    """

    def __init__(self, strategy: ResolutionStrategy) -> None:
        self._strategy = strategy

    @property
    def strategy_name(self) -> str:
        return self._strategy.name

    def resolve(
        self, result: BrowseResult, cancel: Optional[CancelScope] = None
    ) -> DiscoveredServer:
        server = self._strategy.resolve(result, cancel)
        logger.info(
            "Resolved %s (%s) -> %s:%d host=%s",
            server.name,
            server.id,
            server.ip_address,
            server.port,
            server.host_name or "-",
        )
        return server
