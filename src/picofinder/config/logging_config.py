from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

_TAGS = {
    logging.DEBUG: "[debug]",
    logging.INFO: "[info]",
    logging.WARNING: "[warn]",
    logging.ERROR: "[error]",
    logging.CRITICAL: "[crit]",
}


def _level_tag(levelno: int) -> str:
    return _TAGS.get(levelno, f"[lvl{levelno}]")


class SyslogFormatter(logging.Formatter):
    """Formatter for syslog output without timestamps (syslog adds its own)."""

    def __init__(self, tag: str = "picofinder") -> None:
        super().__init__()
        self.tag = tag

    def format(self, record):
        record.level_tag = _level_tag(record.levelno)
        prefix = f"{self.tag}: " if self.tag else ""
        return f"{prefix}{record.level_tag} {record.name}: {record.getMessage()}"


class BracketLevelFormatter(logging.Formatter):
    """Formatter adding bracketed lowercase level tags and UTC timestamps."""

    def formatTime(self, record, datefmt=None):
        """Format the record's creation time as UTC ISO-8601 with Z suffix."""
        return datetime.fromtimestamp(record.created, timezone.utc).strftime(
            "%Y-%m-%dT%H:%M:%SZ"
        )

    def format(self, record):
        record.level_tag = _level_tag(record.levelno)
        return super().format(record)


def init_logging(cfg: Optional[Dict[str, Any]]) -> None:
    """
    Initialize logging configuration based on the provided config.

    Args:
        cfg: Logging configuration dictionary with optional keys:
            - level: debug, info, warn, error, crit (default: info)
            - stderr: boolean to log to stderr (default: True)
            - file: string path to log file (optional)
            - syslog: boolean or dict to enable syslog logging (optional)
                Can be a boolean (True uses defaults) or a dict with:
                - address: Unix socket path (default: /dev/log) or [host, port]
                - facility: syslog facility (default: USER)
                - tag: program identifier to prepend (default: picofinder)
            - zeroconf_level: level for the chatty ``zeroconf`` logger
              (default: warn)

    Example config:
        {
            "level": "info",
            "stderr": True,
            "file": "./picofinder.log",
            "syslog": {"address": "/dev/log", "tag": "picofinder"}
        }
    """
    cfg = cfg or {}

    level = _LEVELS.get(str(cfg.get("level", "info")).lower(), logging.INFO)
    formatter = BracketLevelFormatter(fmt="%(asctime)s %(level_tag)s %(name)s: %(message)s")

    root = logging.getLogger()
    root.setLevel(level)

    # Remove existing handlers to avoid duplicates on re-initialization.
    for h in list(root.handlers):
        root.removeHandler(h)

    if cfg.get("stderr", True):
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(formatter)
        root.addHandler(stderr_handler)

    file_path = cfg.get("file")
    if isinstance(file_path, str) and file_path.strip():
        path = os.path.abspath(os.path.expanduser(file_path.strip()))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    syslog_cfg = cfg.get("syslog")
    if syslog_cfg:
        try:
            opts = syslog_cfg if isinstance(syslog_cfg, dict) else {}
            address = opts.get("address", "/dev/log")
            if isinstance(address, list):
                address = tuple(address)
            facility = getattr(
                logging.handlers.SysLogHandler,
                f"LOG_{str(opts.get('facility', 'USER')).upper()}",
                logging.handlers.SysLogHandler.LOG_USER,
            )
            syslog_handler = logging.handlers.SysLogHandler(
                address=address, facility=facility
            )
            syslog_handler.setFormatter(SyslogFormatter(tag=str(opts.get("tag", "picofinder"))))
            root.addHandler(syslog_handler)
        except (OSError, ValueError) as e:  # pragma: no cover - environment-specific
            root.warning("Failed to configure syslog: %s", e)

    zc_level = _LEVELS.get(str(cfg.get("zeroconf_level", "warn")).lower(), logging.WARNING)
    logging.getLogger("zeroconf").setLevel(zc_level)

    logging.captureWarnings(True)
