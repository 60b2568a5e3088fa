"""Configuration loading, validation and logging setup."""

from .config_parser import normalize_config, parse_config_file
from .config_schema import DiscoveryConfig, load_discovery_config
from .logging_config import init_logging

__all__ = [
    "DiscoveryConfig",
    "init_logging",
    "load_discovery_config",
    "normalize_config",
    "parse_config_file",
]
