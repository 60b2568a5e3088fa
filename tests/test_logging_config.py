"""
Brief: Tests for picofinder.config.logging_config.init_logging and formatters.

Inputs:
  - None

Outputs:
  - None
"""

import logging
import logging.handlers
from pathlib import Path

import pytest

from picofinder.config.logging_config import (
    BracketLevelFormatter,
    SyslogFormatter,
    init_logging,
)


@pytest.fixture(autouse=True)
def restore_root_logger():
    """
    Brief: Restore root handlers/level after each test touching logging.

    Inputs:
      - None

    Outputs:
      - None
    """
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    zc_level = logging.getLogger("zeroconf").level
    yield
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)
    logging.getLogger("zeroconf").setLevel(zc_level)
    logging.captureWarnings(False)


def test_init_logging_adds_stderr_handler():
    """
    Brief: init_logging configures root logger with stderr handler by default.

    Inputs:
      - cfg: minimal dict with level

    Outputs:
      - None: Asserts StreamHandler present and level applied
    """
    init_logging({"level": "debug"})
    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert any(type(h) is logging.StreamHandler for h in root.handlers)


def test_init_logging_defaults_and_reinit_does_not_duplicate():
    init_logging(None)
    init_logging({})
    root = logging.getLogger()
    assert root.level == logging.INFO
    assert len(root.handlers) == 1
    assert logging.getLogger("zeroconf").level == logging.WARNING


def test_init_logging_stderr_disabled_and_zeroconf_level():
    init_logging({"stderr": False, "level": "bogus", "zeroconf_level": "debug"})
    root = logging.getLogger()
    assert root.handlers == []
    assert root.level == logging.INFO
    assert logging.getLogger("zeroconf").level == logging.DEBUG


def test_init_logging_file_handler_writes(tmp_path):
    """
    Brief: init_logging creates parent dirs and writes formatted entries.

    Inputs:
      - cfg: nested file path and level

    Outputs:
      - None: Asserts file created and contains message
    """
    log_path = tmp_path / "logs" / "picofinder.log"
    init_logging({"level": "info", "stderr": False, "file": str(log_path)})
    logging.getLogger("test").info("file message")
    for h in logging.getLogger().handlers:
        h.flush()
    content = Path(log_path).read_text()
    assert "file message" in content
    assert "[info] test:" in content
    assert content.split(" ", 1)[0].endswith("Z")


def test_init_logging_syslog_success(monkeypatch):
    """
    Brief: init_logging attaches a syslog handler when configured.

    Inputs:
      - syslog: True or dict

    Outputs:
      - None: Asserts handler arguments and tagged formatter
    """
    created = {}

    class DummySysLogHandler(logging.Handler):
        LOG_USER = 8
        LOG_LOCAL0 = 128

        def __init__(self, address=None, facility=None):
            super().__init__()
            created["address"] = address
            created["facility"] = facility

        def setFormatter(self, fmt):
            created["formatter"] = fmt
            super().setFormatter(fmt)

    monkeypatch.setattr(logging.handlers, "SysLogHandler", DummySysLogHandler)
    init_logging({"syslog": True, "stderr": False})
    assert created["address"] == "/dev/log"
    assert created["facility"] == 8
    assert created["formatter"].tag == "picofinder"

    created.clear()
    init_logging(
        {
            "stderr": False,
            "syslog": {"address": ["localhost", 514], "facility": "local0", "tag": "lab"},
        }
    )
    assert created["address"] == ("localhost", 514)
    assert created["facility"] == 128
    assert created["formatter"].tag == "lab"


def test_init_logging_syslog_failure_warns(monkeypatch):
    """
    Brief: init_logging logs a warning if syslog handler setup fails.

    Inputs:
      - monkeypatch: make SysLogHandler raise OSError

    Outputs:
      - None: Asserts warning emitted
    """

    class FailingSysLogHandler:
        LOG_USER = 8

        def __init__(self, *a, **kw):
            raise OSError("no syslog")

    monkeypatch.setattr(logging.handlers, "SysLogHandler", FailingSysLogHandler)

    caught = {"msg": None}
    root = logging.getLogger()

    def fake_warning(msg, *args, **kwargs):
        caught["msg"] = msg % args if args else str(msg)

    monkeypatch.setattr(root, "warning", fake_warning)

    init_logging({"syslog": True})
    assert caught["msg"] and "Failed to configure syslog" in caught["msg"]


def test_formatters_produce_expected_tags():
    """
    Brief: BracketLevelFormatter and SyslogFormatter include bracketed tags.

    Inputs:
      - LogRecord instances at different levels

    Outputs:
      - None: Asserts formatted strings contain expected tags
    """
    fmt = BracketLevelFormatter(fmt="%(asctime)s %(level_tag)s %(name)s: %(message)s")
    rec = logging.LogRecord("n", logging.ERROR, __file__, 1, "m", (), None)
    out = fmt.format(rec)
    assert "[error] n: m" in out

    s = SyslogFormatter()
    rec2 = logging.LogRecord("n2", logging.WARNING, __file__, 2, "m2", (), None)
    assert s.format(rec2) == "picofinder: [warn] n2: m2"

    rec3 = logging.LogRecord("n3", 5, __file__, 3, "m3", (), None)
    assert SyslogFormatter(tag="").format(rec3) == "[lvl5] n3: m3"
