"""Typed configuration for Homelab discovery.

This module defines the pydantic models validating the ``discovery`` section
of ``config.yaml``. Unknown keys are rejected so typos surface at startup.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError, validator

from ..errors import ConfigError
from ..models import SERVICE_DOMAIN, SERVICE_TYPE

STRATEGIES = ("metadata", "probe")


class DiscoveryConfig(BaseModel):
    """Brief: Typed configuration model for the browse controller.

    Inputs:
      - service_type: Bonjour service type to browse (default ``_pico._tcp``).
      - domain: Browse domain (default ``local.``).
      - strategy: ``metadata`` (parse TXT records) or ``probe`` (connect to
        each server to learn its address).
      - probe_timeout_ms: int milliseconds a probe may take to become ready.
      - info_timeout_ms: int milliseconds for fetching zeroconf ServiceInfo.
      - max_workers: int size of the resolution worker pool.
      - resolve_hostnames: bool enabling reverse lookups for probed servers.
      - clear_on_stop: bool emptying the server list when browsing stops.
      - zeroconf_interfaces: "default" | "all" | list[str] of interface IPs.
      - zeroconf_ip_version: "v4" | "v6" | "all" or None.
      - zeroconf_unicast: bool passed to Zeroconf(unicast=...).

    Outputs:
      - DiscoveryConfig instance.
    """

    service_type: str = Field(default=SERVICE_TYPE)
    domain: str = Field(default=SERVICE_DOMAIN)
    strategy: str = Field(default="metadata")
    probe_timeout_ms: int = Field(default=5000, ge=1)
    info_timeout_ms: int = Field(default=1500, ge=0)
    max_workers: int = Field(default=4, ge=1, le=64)
    resolve_hostnames: bool = True
    clear_on_stop: bool = False
    zeroconf_interfaces: Any = Field(default="default")
    zeroconf_ip_version: Optional[str] = Field(default=None)
    zeroconf_unicast: bool = False

    @validator("service_type", pre=True)
    def _normalize_service_type(cls, v):  # type: ignore[no-untyped-def]
        """Brief: Normalize the browsed service type.

        Inputs:
          - v: Service type such as ``_pico._tcp`` or ``_pico._tcp.``.

        Outputs:
          - str: Service type without a trailing dot.

        Example:
          - `_pico._tcp.` -> `_pico._tcp`
        """

        s = str(v or SERVICE_TYPE).strip().rstrip(".")
        if not s.startswith("_") or "._" not in s:
            raise ValueError("service_type must look like _name._tcp or _name._udp")
        return s

    @validator("domain", pre=True)
    def _normalize_domain(cls, v):  # type: ignore[no-untyped-def]
        """Brief: Normalize the browse domain to a single trailing dot.

        Example:
          - `local` -> `local.`
          - `.local.` -> `local.`
        """

        s = str(v or SERVICE_DOMAIN).strip().strip(".")
        if not s:
            s = SERVICE_DOMAIN.rstrip(".")
        return s + "."

    @validator("strategy", pre=True)
    def _normalize_strategy(cls, v):  # type: ignore[no-untyped-def]
        s = str(v or "metadata").strip().lower()
        aliases = {"txt": "metadata", "connection": "probe", "connect": "probe"}
        s = aliases.get(s, s)
        if s not in STRATEGIES:
            raise ValueError("strategy must be one of %s" % ", ".join(STRATEGIES))
        return s

    @validator("zeroconf_interfaces", pre=True)
    def _normalize_zeroconf_interfaces(cls, v):  # type: ignore[no-untyped-def]
        """Brief: Normalize zeroconf_interfaces into a supported representation.

        Inputs:
          - v: "default" | "all" | a single IP string | list of IP strings.

        Outputs:
          - object: "default", "all", or a list of non-empty IP strings.
        """

        if v is None:
            return "default"
        if isinstance(v, str):
            s = v.strip().lower()
            if s in {"default", "all"}:
                return s
            return [s] if s else "default"
        if isinstance(v, (list, tuple)):
            return [str(item).strip() for item in v if item is not None and str(item).strip()]
        raise ValueError("zeroconf_interfaces must be 'default', 'all' or a list of IPs")

    @validator("zeroconf_ip_version", pre=True)
    def _normalize_zeroconf_ip_version(cls, v):  # type: ignore[no-untyped-def]
        if v is None:
            return None
        s = str(v).strip().lower()
        if not s:
            return None
        if s in {"v4", "v4only", "ipv4", "4"}:
            return "v4"
        if s in {"v6", "v6only", "ipv6", "6"}:
            return "v6"
        if s in {"all", "both"}:
            return "all"
        raise ValueError("zeroconf_ip_version must be v4, v6 or all")

    @property
    def probe_timeout(self) -> float:
        return self.probe_timeout_ms / 1000.0

    class Config:
        extra = "forbid"


def load_discovery_config(raw: Optional[Dict[str, Any]]) -> DiscoveryConfig:
    """Brief: Validate the ``discovery`` config mapping.

    Inputs:
      - raw: Mapping from YAML (None means all defaults).

    Outputs:
      - DiscoveryConfig instance.

    Raises:
      - ConfigError: when the mapping is not a dict or fails validation.
    """

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError("config.discovery must be a mapping")
    try:
        return DiscoveryConfig(**raw)
    except ValidationError as exc:
        raise ConfigError("Invalid discovery configuration: %s" % exc) from exc
