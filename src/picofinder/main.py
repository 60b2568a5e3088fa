from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from typing import List, Optional, Sequence, Tuple

from .address_resolver import AddressResolver
from .browser import BrowseController
from .config.config_parser import normalize_config, parse_config_file
from .config.config_schema import DiscoveryConfig
from .config.logging_config import init_logging
from .errors import ConfigError
from .models import BrowseState, DiscoveredServer
from .providers.base import DiscoveryProvider
from .providers.tcp_connection import TcpConnectionProvider
from .providers.zeroconf_provider import ZeroconfDiscoveryProvider
from .resolution import (
    ConnectionProbeStrategy,
    MetadataStrategy,
    ResolutionEngine,
    ResolutionStrategy,
)


def build_engine(
    discovery_cfg: DiscoveryConfig, provider: DiscoveryProvider
) -> ResolutionEngine:
    """
    Create the resolution engine selected by ``discovery_cfg.strategy``.

    Args:
        discovery_cfg: Validated discovery configuration.
        provider: Discovery provider; for the probe strategy it must offer
            ``resolve_service(endpoint)`` so probes can find addresses.

    Returns:
        A ResolutionEngine running exactly one strategy.
    """
    if discovery_cfg.strategy == "probe":
        connections = TcpConnectionProvider(
            getattr(provider, "resolve_service"), timeout=discovery_cfg.probe_timeout
        )
        strategy: ResolutionStrategy = ConnectionProbeStrategy(
            connections,
            AddressResolver(enabled=discovery_cfg.resolve_hostnames),
            timeout=discovery_cfg.probe_timeout,
        )
    else:
        strategy = MetadataStrategy()
    return ResolutionEngine(strategy)


def build_controller(
    discovery_cfg: DiscoveryConfig, provider: Optional[DiscoveryProvider] = None
) -> Tuple[BrowseController, DiscoveryProvider]:
    """
    Wire a BrowseController from configuration.

    Args:
        discovery_cfg: Validated discovery configuration.
        provider: Optional discovery provider; a ZeroconfDiscoveryProvider is
            created when omitted.

    Returns:
        (controller, provider). The caller owns the provider and closes it
        after the controller.
    """
    if provider is None:
        provider = ZeroconfDiscoveryProvider(discovery_cfg)
    controller = BrowseController(
        provider,
        build_engine(discovery_cfg, provider),
        service_type=discovery_cfg.service_type,
        domain=discovery_cfg.domain,
        max_workers=discovery_cfg.max_workers,
        clear_on_stop=discovery_cfg.clear_on_stop,
    )
    return controller, provider


def format_server(server: DiscoveredServer) -> str:
    host = server.host_name or "-"
    return f"{server.name}: {host}:{server.port} {server.ip_address}:{server.port}"


def _printer(as_json: bool, stream=None):
    lock = threading.Lock()

    def _print_servers(servers: Sequence[DiscoveredServer]) -> None:
        out = stream or sys.stdout
        with lock:
            if as_json:
                out.write(json.dumps([s.as_dict() for s in servers], sort_keys=True) + "\n")
            else:
                out.write(f"-- {len(servers)} server(s)\n")
                for s in servers:
                    out.write(format_server(s) + "\n")
            out.flush()

    return _print_servers


def main(argv: Optional[List[str]] = None) -> int:
    """
    Browse for Pico AI Homelab servers and print them as they come and go.

    Args:
        argv: Command-line arguments.

    Returns:
        An exit code: 0 on a clean stop, 1 on configuration or startup errors,
        2 when terminated by SIGINT/SIGTERM.

    Example use:
        CLI:
            PYTHONPATH=src python -m picofinder.main --config config.yaml --duration 10
    """
    parser = argparse.ArgumentParser(description="Discover Pico AI Homelab servers via Bonjour")
    parser.add_argument("--config", default=None, help="Path to YAML config")
    parser.add_argument(
        "-v",
        "--var",
        action="append",
        default=[],
        metavar="KEY=YAML",
        help="Override a config variable (repeatable)",
    )
    parser.add_argument(
        "--strategy",
        choices=["metadata", "probe"],
        default=None,
        help="Resolution strategy (overrides discovery.strategy)",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop browsing after this many seconds (default: run until signalled)",
    )
    parser.add_argument("--json", action="store_true", help="Print server lists as JSON")
    args = parser.parse_args(argv)

    try:
        if args.config:
            cfg = parse_config_file(args.config, cli_vars=args.var)
        else:
            cfg = normalize_config({}, cli_vars=args.var)
        discovery_cfg: DiscoveryConfig = cfg["discovery"]
        if args.strategy:
            discovery_cfg = discovery_cfg.copy(update={"strategy": args.strategy})
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    init_logging(cfg.get("logging"))
    logger = logging.getLogger("picofinder.main")
    if args.config:
        logger.info("Loaded config from %s", args.config)

    shutdown_event = threading.Event()
    exit_code = 0

    def _request_shutdown(reason: str, code: int) -> None:
        """Brief: Record the exit code and wake the main loop once."""
        nonlocal exit_code
        if shutdown_event.is_set():
            return
        exit_code = code
        shutdown_event.set()
        logger.info("Received %s, initiating shutdown (exit code=%d)", reason, code)

    def _sighup_handler(_signum, _frame):
        _request_shutdown("SIGHUP", 0)

    def _sigterm_handler(_signum, _frame):
        _request_shutdown("SIGTERM", 2)

    def _sigint_handler(_signum, _frame):
        _request_shutdown("SIGINT", 2)

    previous_handlers = {}
    for name, handler in (
        ("SIGHUP", _sighup_handler),
        ("SIGTERM", _sigterm_handler),
        ("SIGINT", _sigint_handler),
    ):
        signum = getattr(signal, name, None)
        if signum is None:
            continue
        try:
            previous_handlers[signum] = signal.signal(signum, handler)
        except ValueError:
            # Not in the main thread (e.g. when driven from tests).
            logger.debug("Could not install %s handler", name)

    controller, provider = build_controller(discovery_cfg)
    controller.add_servers_listener(_printer(args.json))

    def _on_state(state) -> None:
        logger.info("browse state: %s", state.value if state else "idle")
        if state is BrowseState.FAILED:
            _request_shutdown("browse failure", 1)

    controller.add_state_listener(_on_state)

    try:
        controller.start()
        logger.info(
            "Browsing %s.%s using the %s strategy",
            discovery_cfg.service_type,
            discovery_cfg.domain,
            discovery_cfg.strategy,
        )
        if not shutdown_event.wait(timeout=args.duration):
            logger.info("Browse duration of %.1fs elapsed", args.duration)
    except KeyboardInterrupt:
        logger.info("Received interrupt, shutting down")
        exit_code = 2
    finally:
        controller.close()
        provider.close()
        for signum, previous in previous_handlers.items():
            if previous is not None:
                signal.signal(signum, previous)

    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())  # pragma: no cover
