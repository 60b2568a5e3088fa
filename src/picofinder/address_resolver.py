"""Best-effort reverse lookup from an IP address to a local hostname."""

from __future__ import annotations

import ipaddress
import logging
import socket
from typing import Optional

from cachetools import TTLCache

from .models import normalize_address
from .utils.register_caches import registered_cached

logger = logging.getLogger(__name__)

# Reverse lookups (including misses) are remembered for five minutes; a
# Homelab's hostname rarely changes while it stays on the same address.
_HOSTNAME_CACHE: TTLCache = TTLCache(maxsize=1024, ttl=300)


@registered_cached(cache=_HOSTNAME_CACHE)
def reverse_lookup(ip_address: str) -> Optional[str]:
    """Brief: Numeric-host reverse lookup via getnameinfo.

    Inputs:
      - ip_address: Textual IPv4/IPv6 address (scope suffix allowed).

    Outputs:
      - Optional[str]: Hostname, or None when the input is not an IP address
        or no name is registered for it.

    Notes:
      - Input that does not parse as an IP address never reaches the resolver,
        so no forward lookups are triggered.
    """

    text = str(ip_address or "").strip()
    try:
        ipaddress.ip_address(normalize_address(text))
    except ValueError:
        logger.debug("reverse_lookup: %r is not a numeric address", text)
        return None

    try:
        host, _port = socket.getnameinfo((text, 0), socket.NI_NAMEREQD)
    except (OSError, UnicodeError) as exc:
        logger.debug("reverse_lookup: no name for %s: %s", text, exc)
        return None

    host = str(host or "").strip()
    # Some resolvers echo the numeric address back instead of failing.
    if not host or normalize_address(host) == normalize_address(text):
        return None
    return host


class AddressResolver:
    """Brief: Resolve hostnames for discovered servers.

    Inputs:
      - enabled: When False every lookup returns None without touching DNS.

    Outputs:
      - AddressResolver instance.
    """

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = bool(enabled)

    def resolve_hostname(self, ip_address: str) -> Optional[str]:
        """Return the hostname for ``ip_address`` or None. Never raises."""
        if not self.enabled or not ip_address:
            return None
        try:
            return reverse_lookup(str(ip_address))
        except Exception:  # pragma: no cover
            logger.debug("resolve_hostname failed for %s", ip_address, exc_info=True)
            return None
