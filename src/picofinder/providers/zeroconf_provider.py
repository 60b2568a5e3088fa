"""mDNS/DNS-SD discovery backed by python-zeroconf.

Brief:
  ZeroconfDiscoveryProvider browses one service type with a
  ``zeroconf.ServiceBrowser`` and converts its Added/Updated/Removed callbacks
  into BrowseChange batches. TXT metadata is fetched with
  ``get_service_info()`` and decoded from bytes to text before it leaves this
  module.

Inputs:
  - DiscoveryConfig (interfaces, IP version, unicast, info timeout)

Outputs:
  - BrowseHandle instances for the browse controller
  - resolve_service() lookups for the TCP probe provider
"""

from __future__ import annotations

import ipaddress
import logging
import threading
from typing import Dict, List, Optional, Tuple

from zeroconf import (
    InterfaceChoice,
    IPVersion,
    ServiceBrowser,
    ServiceStateChange,
    Zeroconf,
)

from ..config.config_schema import DiscoveryConfig
from ..models import (
    Added,
    BrowseChange,
    BrowseResult,
    BrowseState,
    Changed,
    Identical,
    Removed,
    ServiceEndpoint,
)
from .base import BrowseHandle, BrowseStateHandler, ChangesHandler, DiscoveryProvider

logger = logging.getLogger(__name__)


def decode_properties(props) -> Dict[str, str]:
    """Brief: Decode a zeroconf TXT property mapping into text.

    Inputs:
      - props: Mapping of bytes (or str) keys to bytes/str/None values.

    Outputs:
      - dict: str -> str mapping. Keys without a value map to "".

    Example:
      >>> decode_properties({b"Port": b"8080", b"flag": None})
      {'Port': '8080', 'flag': ''}
    """

    out: Dict[str, str] = {}
    if not isinstance(props, dict):
        return out
    for k, v in props.items():
        kk = k.decode("utf-8", errors="replace") if isinstance(k, (bytes, bytearray)) else str(k)
        if v is None:
            vv = ""
        elif isinstance(v, (bytes, bytearray)):
            vv = v.decode("utf-8", errors="replace")
        else:
            vv = str(v)
        kk = kk.strip()
        if kk:
            out[kk] = vv
    return out


def instance_label(name: str, service_type: str, domain: str) -> str:
    """Brief: Strip the ``.<type>.<domain>`` suffix from a full instance name.

    Example:
      >>> instance_label("Lab._pico._tcp.local.", "_pico._tcp", "local.")
      'Lab'
    """

    suffix = ".%s.%s" % (service_type.rstrip("."), domain)
    if name.endswith(suffix):
        return name[: -len(suffix)]
    suffix = suffix.rstrip(".")
    if name.endswith(suffix):
        return name[: -len(suffix)]
    return name


class _ZeroconfBrowseHandle(BrowseHandle):
    """One ServiceBrowser plus the last result seen for every instance."""

    def __init__(
        self,
        provider: "ZeroconfDiscoveryProvider",
        service_type: str,
        domain: str,
        on_changes: ChangesHandler,
        on_state: BrowseStateHandler,
    ) -> None:
        self._provider = provider
        self._service_type = service_type.rstrip(".")
        self._domain = domain
        self._on_changes: Optional[ChangesHandler] = on_changes
        self._on_state: Optional[BrowseStateHandler] = on_state
        self._known: Dict[str, BrowseResult] = {}
        self._lock = threading.Lock()
        self._browser = None

    @property
    def browse_name(self) -> str:
        return "%s.%s" % (self._service_type, self._domain)

    def attach(self, browser) -> None:
        self._browser = browser

    def emit_state(self, state: BrowseState) -> None:
        handler = self._on_state
        if handler is not None:
            handler(state)

    def _emit(self, changes: List[BrowseChange]) -> None:
        handler = self._on_changes
        if handler is not None and changes:
            handler(changes)

    def _on_service_state_change(
        self,
        zeroconf,
        service_type: str,
        name: str,
        state_change,
    ) -> None:
        """Brief: ServiceBrowser handler converting callbacks into changes.

        Inputs:
          - zeroconf: Zeroconf instance driving the browser.
          - service_type: Fully-qualified browsed type (``_pico._tcp.local.``).
          - name: Fully-qualified instance name.
          - state_change: zeroconf.ServiceStateChange member.

        Outputs:
          - None; emits a one-element change batch when something happened.
        """

        if self._on_changes is None:
            return

        label = instance_label(name, self._service_type, self._domain)
        logger.debug("zeroconf %s: %s (type=%s)", state_change, name, service_type)

        if state_change is ServiceStateChange.Removed:
            with self._lock:
                previous = self._known.pop(name, None)
            if previous is None:
                previous = BrowseResult(endpoint=self._endpoint(label))
            self._emit([Removed(previous)])
            return

        if state_change not in (ServiceStateChange.Added, ServiceStateChange.Updated):
            return

        metadata = self._provider.fetch_metadata(zeroconf, service_type, name)
        current = BrowseResult(endpoint=self._endpoint(label), metadata=metadata)
        with self._lock:
            previous = self._known.get(name)
            self._known[name] = current

        if previous is None:
            change: BrowseChange = Added(current)
        elif previous == current:
            change = Identical(current)
        else:
            change = Changed(previous, current)
        self._emit([change])

    def _endpoint(self, label: str) -> ServiceEndpoint:
        return ServiceEndpoint(
            name=label, service_type=self._service_type, domain=self._domain
        )

    def cancel(self) -> None:
        if self._on_changes is None and self._on_state is None:
            return
        browser, self._browser = self._browser, None
        if browser is not None:
            try:
                browser.cancel()
            except RuntimeError:
                logger.debug("ServiceBrowser.cancel failed for %s", self.browse_name, exc_info=True)
        self.emit_state(BrowseState.CANCELLED)
        self._on_changes = None
        self._on_state = None
        with self._lock:
            self._known.clear()
        logger.debug("zeroconf browse cancelled for %s", self.browse_name)


class ZeroconfDiscoveryProvider(DiscoveryProvider):
    """Brief: DiscoveryProvider built on a shared Zeroconf instance.

    Inputs:
      - config: Optional DiscoveryConfig; defaults are used when omitted.
      - zeroconf: Optional pre-built Zeroconf (or compatible) instance.

    Outputs:
      - ZeroconfDiscoveryProvider instance.

    Notes:
      - The Zeroconf instance is created lazily on first use so constructing a
        provider never touches the network.
    """

    def __init__(
        self, config: Optional[DiscoveryConfig] = None, *, zeroconf=None
    ) -> None:
        self._config = config or DiscoveryConfig()
        self._zc = zeroconf
        self._owns_zc = zeroconf is None
        self._lock = threading.Lock()

    @property
    def info_timeout_ms(self) -> int:
        return int(self._config.info_timeout_ms)

    def _interfaces(self):
        interfaces_cfg = self._config.zeroconf_interfaces
        if isinstance(interfaces_cfg, str):
            return InterfaceChoice.All if interfaces_cfg == "all" else InterfaceChoice.Default
        parsed = []
        for x in interfaces_cfg or []:
            try:
                parsed.append(str(ipaddress.ip_address(str(x).strip())))
            except ValueError:
                logger.warning("Ignoring invalid zeroconf interface address %r", x)
        return parsed or InterfaceChoice.Default

    def _ip_version(self):
        return {
            "v4": IPVersion.V4Only,
            "v6": IPVersion.V6Only,
            "all": IPVersion.All,
        }.get(self._config.zeroconf_ip_version or "")

    def zeroconf(self):
        """Return the shared Zeroconf instance, creating it on first use."""
        with self._lock:
            if self._zc is not None:
                return self._zc
            interfaces = self._interfaces()
            ip_version = self._ip_version()
            logger.debug(
                "zeroconf config interfaces=%r ip_version=%r unicast=%r",
                self._config.zeroconf_interfaces,
                self._config.zeroconf_ip_version,
                bool(self._config.zeroconf_unicast),
            )
            try:
                self._zc = Zeroconf(
                    interfaces=interfaces,
                    unicast=bool(self._config.zeroconf_unicast),
                    ip_version=ip_version,
                )
            except PermissionError as exc:
                logger.error(
                    "Zeroconf failed to bind mDNS sockets (EPERM). interfaces=%r ip_version=%r",
                    self._config.zeroconf_interfaces,
                    self._config.zeroconf_ip_version,
                    exc_info=True,
                )
                raise RuntimeError(
                    "Zeroconf failed to bind mDNS sockets (permission error). "
                    "Try setting zeroconf_interfaces=default and/or zeroconf_ip_version=v4."
                ) from exc
            except OSError as exc:
                logger.error("Zeroconf failed to initialize mDNS sockets: %s", exc, exc_info=True)
                raise RuntimeError(
                    f"Zeroconf failed to initialize mDNS sockets: {exc}. "
                    "Try setting zeroconf_interfaces to a specific LAN interface IP."
                ) from exc
            logger.info("Zeroconf initialized")
            return self._zc

    def browse(
        self,
        service_type: str,
        domain: str,
        on_changes: ChangesHandler,
        on_state: BrowseStateHandler,
    ) -> BrowseHandle:
        handle = _ZeroconfBrowseHandle(self, service_type, domain, on_changes, on_state)
        handle.emit_state(BrowseState.SETUP)
        zc = self.zeroconf()
        logger.debug("starting ServiceBrowser for %s", handle.browse_name)
        try:
            browser = ServiceBrowser(
                zc, handle.browse_name, handlers=[handle._on_service_state_change]
            )
        except OSError as exc:
            logger.error("ServiceBrowser failed for %s: %s", handle.browse_name, exc, exc_info=True)
            raise RuntimeError(
                f"ServiceBrowser failed while starting mDNS browsing: {exc}"
            ) from exc
        handle.attach(browser)
        handle.emit_state(BrowseState.READY)
        return handle

    def fetch_metadata(self, zeroconf, service_type: str, name: str) -> Optional[Dict[str, str]]:
        """Brief: Fetch and decode the TXT metadata for one instance.

        Outputs:
          - dict or None when the ServiceInfo could not be fetched in time.
        """

        try:
            info = zeroconf.get_service_info(service_type, name, timeout=self.info_timeout_ms)
        except (OSError, RuntimeError):
            logger.debug("get_service_info raised for %s", name, exc_info=True)
            return None
        if info is None:
            logger.debug("get_service_info returned None for %s", name)
            return None
        return decode_properties(getattr(info, "properties", None) or {})

    def resolve_service(
        self, endpoint: ServiceEndpoint
    ) -> Optional[Tuple[List[str], int]]:
        """Brief: Look up the addresses and port of an advertised instance.

        Inputs:
          - endpoint: ServiceEndpoint from a browse result.

        Outputs:
          - (addresses, port) with scoped textual addresses, or None when the
            instance could not be resolved within info_timeout_ms.
        """

        type_name = "%s.%s" % (endpoint.service_type.rstrip("."), endpoint.domain)
        full_name = "%s.%s" % (endpoint.name, type_name)
        try:
            info = self.zeroconf().get_service_info(
                type_name, full_name, timeout=self.info_timeout_ms
            )
        except (OSError, RuntimeError):
            logger.debug("get_service_info raised for %s", full_name, exc_info=True)
            return None
        if info is None or info.port is None:
            return None
        addresses = list(info.parsed_scoped_addresses())
        if not addresses:
            return None
        return addresses, int(info.port)

    def close(self) -> None:
        with self._lock:
            zc, self._zc = self._zc, None
        if zc is not None and self._owns_zc:
            logger.info("closing zeroconf resources")
            zc.close()
