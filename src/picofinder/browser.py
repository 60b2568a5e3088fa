"""Browse session lifecycle and change dispatch for Homelab discovery.

Brief:
  BrowseController owns one discovery session at a time. Provider change
  batches are fanned out to a worker pool (one task per change); successful
  resolutions are written to the ServerRegistry.

  Every session carries a generation number and a cancel scope. Stopping a
  session deactivates it under the registry's writer lock, so a resolution
  that finishes afterwards can never be applied. Within a session, each
  change claims a ticket for its advertisement key (name, service type) in
  event order; a task only writes when its ticket is still the newest for that
  key, so out-of-order completion cannot resurrect a removed server.

Inputs:
  - DiscoveryProvider and ResolutionEngine instances

Outputs:
  - BrowseController with start/stop/toggle and observable state
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
import weakref
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from .cancellation import CancelScope
from .errors import InternalError, ResolutionError
from .models import (
    SERVICE_DOMAIN,
    SERVICE_TYPE,
    Added,
    BrowseChange,
    BrowseResult,
    BrowseState,
    Changed,
    ControllerState,
    DiscoveredServer,
    Identical,
    Removed,
    candidate_key,
)
from .providers.base import BrowseHandle, DiscoveryProvider
from .registry import ServerRegistry, ServersListener
from .resolution import ResolutionEngine

logger = logging.getLogger(__name__)

StateListener = Callable[[Optional[BrowseState]], None]
CandidateKey = Tuple[str, str]


class _BrowseSession:
    """Brief: State owned by a single start()/stop() lifecycle.

    Inputs:
      - controller: Owning BrowseController (held through a weak reference so
        provider callbacks do not keep the controller alive).
      - generation: Session generation number.
      - max_workers: Worker pool size for resolution tasks.

    Outputs:
      - _BrowseSession instance whose bound ``on_changes``/``on_state`` methods
        are handed to the discovery provider.
    """

    def __init__(
        self, controller: "BrowseController", generation: int, max_workers: int
    ) -> None:
        self._controller_ref = weakref.ref(controller)
        self.generation = generation
        self.scope = CancelScope()
        self.executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="picofinder-resolve-%d" % generation,
        )
        self.handle: Optional[BrowseHandle] = None
        self.active = True
        self._lock = threading.Lock()
        self._futures: Set[Future] = set()
        self._tickets: Dict[CandidateKey, int] = {}
        self._counter = itertools.count(1)

    def claim(self, key: Optional[CandidateKey]) -> int:
        """Issue the newest ticket for ``key`` (0 when the key is unknown)."""
        if key is None:
            return 0
        with self._lock:
            ticket = next(self._counter)
            self._tickets[key] = ticket
            return ticket

    def accepts(self, key: Optional[CandidateKey], ticket: int) -> bool:
        """True while the session is live and ``ticket`` is newest for ``key``."""
        with self._lock:
            if not self.active:
                return False
            if key is None:
                return True
            return self._tickets.get(key) == ticket

    def deactivate(self) -> None:
        with self._lock:
            self.active = False

    def submit(self, fn: Callable[..., None], *args) -> None:
        with self._lock:
            if not self.active:
                return
            try:
                future = self.executor.submit(fn, self, *args)
            except RuntimeError:
                logger.debug("session %d: executor closed, dropping task", self.generation)
                return
            self._futures.add(future)
        future.add_done_callback(self._discard)

    def pending(self) -> List[Future]:
        with self._lock:
            return [f for f in self._futures if not f.done()]

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._futures.discard(future)

    def on_changes(self, changes: Sequence[BrowseChange]) -> None:
        controller = self._controller_ref()
        if controller is None or not self.active:
            return
        controller._dispatch(self, changes)

    def on_state(self, state: BrowseState) -> None:
        controller = self._controller_ref()
        if controller is None or not self.active:
            return
        controller._apply_state(self, state)


class BrowseController:
    """Brief: Discover Pico AI Homelab servers and keep a live server list.

    Inputs:
      - provider: DiscoveryProvider delivering browse changes.
      - engine: ResolutionEngine used for every candidate.
      - service_type: Browsed service type (default ``_pico._tcp``).
      - domain: Browse domain (default ``local.``).
      - max_workers: Resolution worker pool size per session.
      - clear_on_stop: When True, stop() also empties the server list.
      - registry: Optional ServerRegistry (a new one by default).

    Outputs:
      - BrowseController instance (initially idle).

    Example:
      >>> controller = BrowseController(provider, ResolutionEngine(MetadataStrategy()))  # doctest: +SKIP
      >>> with controller:  # doctest: +SKIP
      ...     controller.start()
      ...     controller.servers
    """

    def __init__(
        self,
        provider: DiscoveryProvider,
        engine: ResolutionEngine,
        *,
        service_type: str = SERVICE_TYPE,
        domain: str = SERVICE_DOMAIN,
        max_workers: int = 4,
        clear_on_stop: bool = False,
        registry: Optional[ServerRegistry] = None,
    ) -> None:
        self._provider = provider
        self._engine = engine
        self._service_type = service_type
        self._domain = domain
        self._max_workers = max(1, int(max_workers))
        self._clear_on_stop = bool(clear_on_stop)
        self._registry = registry if registry is not None else ServerRegistry()

        self._lock = threading.RLock()
        self._session: Optional[_BrowseSession] = None
        self._generation = 0
        self._state = ControllerState.IDLE
        self._browse_state: Optional[BrowseState] = None
        self._state_listeners: List[StateListener] = []
        self._closed = False

    # ------------------------------------------------------------------ state

    @property
    def servers(self) -> Tuple[DiscoveredServer, ...]:
        return self._registry.snapshot()

    @property
    def registry(self) -> ServerRegistry:
        return self._registry

    @property
    def browse_state(self) -> Optional[BrowseState]:
        with self._lock:
            return self._browse_state

    @property
    def state(self) -> ControllerState:
        with self._lock:
            return self._state

    @property
    def is_scanning(self) -> bool:
        with self._lock:
            return self._session is not None and self._browse_state is BrowseState.READY

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def add_servers_listener(self, listener: ServersListener) -> None:
        self._registry.add_listener(listener)

    def remove_servers_listener(self, listener: ServersListener) -> None:
        self._registry.remove_listener(listener)

    def add_state_listener(self, listener: StateListener) -> None:
        with self._lock:
            self._state_listeners.append(listener)

    def remove_state_listener(self, listener: StateListener) -> None:
        with self._lock:
            if listener in self._state_listeners:
                self._state_listeners.remove(listener)

    # -------------------------------------------------------------- lifecycle

    def start(self) -> None:
        """Brief: Begin browsing; no-op when a healthy session is already running.

        Inputs:
          - None.

        Outputs:
          - None.

        Notes:
          - A session whose provider reported FAILED is replaced by a fresh one;
            failed sessions are never restarted automatically.
        """

        with self._lock:
            if self._closed:
                raise InternalError("BrowseController is closed")
            if self._session is not None and self._browse_state is not BrowseState.FAILED:
                logger.debug("start(): session %d already active", self._generation)
                return
            restart = self._session is not None

        if restart:
            logger.info("Restarting failed browse session")
            self.stop()

        with self._lock:
            if self._session is not None:
                return
            self._generation += 1
            session = _BrowseSession(self, self._generation, self._max_workers)
            self._session = session
            self._state = ControllerState.STARTING
            self._browse_state = None

        self._registry.clear()
        logger.info(
            "Starting browse session %d for %s in %s (strategy=%s)",
            session.generation,
            self._service_type,
            self._domain,
            self._engine.strategy_name,
        )

        try:
            handle = self._provider.browse(
                self._service_type,
                self._domain,
                session.on_changes,
                session.on_state,
            )
        except Exception as exc:
            logger.error("Discovery provider failed to start browsing: %s", exc, exc_info=True)
            session.on_state(BrowseState.FAILED)
            return

        with self._lock:
            attached = self._session is session
            if attached:
                session.handle = handle
        if not attached:
            # stop() ran while the provider was starting.
            handle.cancel()

    def stop(self) -> None:
        """Brief: Cancel the active session. Safe to call at any time.

        Inputs:
          - None.

        Outputs:
          - None.
        """

        with self._lock:
            session = self._session
            self._session = None
            was_running = session is not None or self._browse_state is not None
            self._state = ControllerState.IDLE
            self._browse_state = None

        if session is None:
            if was_running:
                self._notify_state(None)
            return

        # Deactivate atomically with registry writes: nothing from this
        # session can be applied once this returns.
        with self._registry.exclusive():
            session.deactivate()

        logger.info("Stopping browse session %d", session.generation)
        if session.handle is not None:
            try:
                session.handle.cancel()
            except Exception:
                logger.exception("Error cancelling browse session %d", session.generation)
        session.scope.cancel()
        session.executor.shutdown(wait=False, cancel_futures=True)

        if self._clear_on_stop:
            self._registry.clear()
        self._notify_state(None)

    def toggle(self) -> None:
        if self.state is ControllerState.IDLE:
            self.start()
        else:
            self.stop()

    def close(self) -> None:
        """Stop browsing and refuse further start() calls."""
        self.stop()
        with self._lock:
            self._closed = True

    def __enter__(self) -> "BrowseController":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Brief: Wait for the current session's resolution tasks to finish.

        Inputs:
          - timeout: Maximum seconds to wait (None waits indefinitely).

        Outputs:
          - bool: True when no tasks are pending, False on timeout.
        """

        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                session = self._session
            if session is None:
                return True
            pending = session.pending()
            if not pending:
                return True
            remaining = None
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
            wait(pending, timeout=remaining)

    # --------------------------------------------------------------- dispatch

    def _apply_state(self, session: _BrowseSession, state: BrowseState) -> None:
        with self._lock:
            if self._session is not session:
                return
            self._browse_state = state
            if state is BrowseState.READY and self._state is ControllerState.STARTING:
                self._state = ControllerState.RUNNING
        if state is BrowseState.FAILED:
            logger.error("Browse session %d failed", session.generation)
        else:
            logger.debug("Browse session %d state: %s", session.generation, state.value)
        self._notify_state(state)

    def _dispatch(self, session: _BrowseSession, changes: Sequence[BrowseChange]) -> None:
        for change in changes:
            if isinstance(change, Added):
                key = candidate_key(change.result)
                logger.info("+ %s", _describe(change.result))
                session.submit(self._run_added, change.result, key, session.claim(key))
            elif isinstance(change, Removed):
                key = candidate_key(change.result)
                logger.info("- %s", _describe(change.result))
                if key is None:
                    logger.warning(
                        "Ignoring removal of %s: not a service endpoint",
                        _describe(change.result),
                    )
                    continue
                session.submit(self._run_removed, change.result, key, session.claim(key))
            elif isinstance(change, Changed):
                old_key = candidate_key(change.old)
                new_key = candidate_key(change.new)
                logger.info("~ %s -> %s", _describe(change.old), _describe(change.new))
                old_ticket = session.claim(old_key)
                new_ticket = old_ticket if new_key == old_key else session.claim(new_key)
                session.submit(
                    self._run_changed,
                    change.old,
                    old_key,
                    old_ticket,
                    change.new,
                    new_key,
                    new_ticket,
                )
            elif isinstance(change, Identical):
                logger.debug("= %s", _describe(change.result))
            else:
                logger.debug("? unhandled browse change %r", change)

    def _run_added(
        self,
        session: _BrowseSession,
        result: BrowseResult,
        key: Optional[CandidateKey],
        ticket: int,
    ) -> None:
        server = self._resolve(session, result)
        if server is None:
            return
        applied = self._registry.insert(server, guard=lambda: session.accepts(key, ticket))
        if applied is None:
            logger.debug(
                "Dropping stale resolution of %s (session %d)",
                server.name,
                session.generation,
            )

    def _run_removed(
        self,
        session: _BrowseSession,
        result: BrowseResult,
        key: CandidateKey,
        ticket: int,
    ) -> None:
        name, service_type = key
        self._registry.remove_by_identity(
            lambda s: s.matches_identity(name, service_type),
            guard=lambda: session.accepts(key, ticket),
        )

    def _run_changed(
        self,
        session: _BrowseSession,
        old: BrowseResult,
        old_key: Optional[CandidateKey],
        old_ticket: int,
        new: BrowseResult,
        new_key: Optional[CandidateKey],
        new_ticket: int,
    ) -> None:
        if old_key is None:
            logger.warning("Ignoring removal of %s: not a service endpoint", _describe(old))
        else:
            self._run_removed(session, old, old_key, old_ticket)
        self._run_added(session, new, new_key, new_ticket)

    def _resolve(
        self, session: _BrowseSession, result: BrowseResult
    ) -> Optional[DiscoveredServer]:
        try:
            return self._engine.resolve(result, session.scope)
        except ResolutionError as exc:
            if session.active:
                logger.warning("Could not resolve %s: %s", _describe(result), exc)
            else:
                logger.debug("Abandoned resolution of %s: %s", _describe(result), exc)
        except Exception:
            logger.exception("Unexpected error resolving %s", _describe(result))
        return None

    def _notify_state(self, state: Optional[BrowseState]) -> None:
        with self._lock:
            listeners = list(self._state_listeners)
        for listener in listeners:
            try:
                listener(state)
            except Exception:
                logger.exception("state listener %r failed", listener)


def _describe(result: BrowseResult) -> str:
    key = candidate_key(result)
    if key is None:
        return repr(result.endpoint)
    return "%s (%s)" % key
