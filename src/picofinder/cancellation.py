from __future__ import annotations

import itertools
import logging
import threading
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


class CancelScope:
    """Brief: Cancellation shared by all work started within one browse session.

    Inputs:
      - None.

    Outputs:
      - CancelScope instance.

    Notes:
      - ``register`` returns a token used to unregister the callback once the
        work completes. Registering on an already-cancelled scope runs the
        callback immediately.
      - ``cancel`` runs each callback once, outside the lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._callbacks: Dict[int, Callable[[], None]] = {}
        self._tokens = itertools.count(1)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def register(self, callback: Callable[[], None]) -> Optional[int]:
        with self._lock:
            if not self._event.is_set():
                token = next(self._tokens)
                self._callbacks[token] = callback
                return token
        self._run(callback)
        return None

    def unregister(self, token: Optional[int]) -> None:
        if token is None:
            return
        with self._lock:
            self._callbacks.pop(token, None)

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()
        for callback in callbacks:
            self._run(callback)

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)

    @staticmethod
    def _run(callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception:
            logger.exception("cancel callback %r failed", callback)
