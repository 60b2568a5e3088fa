"""Exception types raised while discovering and resolving Homelab servers.

Brief:
  Every failure that can happen while turning one browse result into a
  DiscoveredServer is a ResolutionError. The controller contains these per
  candidate: they are logged and the candidate is skipped.

Inputs:
  - None

Outputs:
  - Exception classes
"""

from __future__ import annotations

from typing import Optional, Sequence


class PicoFinderError(Exception):
    """Brief: Root of all picofinder exceptions.

    Inputs:
      - message: Optional human-readable message. Subclasses provide a default.

    Outputs:
      - Exception instance.
    """

    default_message = "PicoFinder error"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)


class ConfigError(PicoFinderError, ValueError):
    """Raised when a configuration file or mapping is invalid."""

    default_message = "Invalid configuration"


class InternalError(PicoFinderError):
    """Raised when a provider reports a state the controller does not expect."""

    default_message = "Internal error"


class ResolutionError(PicoFinderError):
    """Base class for errors contained to a single browse result."""

    default_message = "Could not resolve Pico AI Homelab server"


class InvalidEndpoint(ResolutionError):
    """Candidate (or the connected path) is not a usable service endpoint."""

    default_message = "Invalid endpoint"


class CouldNotConnect(ResolutionError):
    """A probe connection never reached the ready state."""

    default_message = "Could not connect to Pico AI Homelab server"


class ConnectionCancelled(CouldNotConnect):
    """A probe connection was cancelled before it became ready."""

    default_message = "Connection cancelled"


class NoMetadataRecord(ResolutionError):
    """Brief: Metadata payload is absent or lacks required keys.

    Inputs:
      - message: Optional message override.
      - missing: Names of the required keys that were absent or empty.

    Outputs:
      - NoMetadataRecord instance with ``missing`` populated.
    """

    default_message = "Received incomplete Bonjour packet"

    def __init__(
        self, message: Optional[str] = None, missing: Sequence[str] = ()
    ) -> None:
        self.missing = tuple(missing)
        if message is None and self.missing:
            message = "%s (missing: %s)" % (
                self.default_message,
                ", ".join(self.missing),
            )
        super().__init__(message)


class InvalidMetadata(NoMetadataRecord):
    """A required metadata key is present but its value does not parse."""

    default_message = "Received malformed Bonjour packet"

    def __init__(self, message: Optional[str] = None, field: str = "") -> None:
        self.field = field
        super().__init__(message)
