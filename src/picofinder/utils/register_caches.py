from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from cachetools import TTLCache, cached
from cachetools.keys import hashkey

# Process-local registry of functions wrapped by registered_cached. Used for
# diagnostics (hit/miss counters) and to clear every cache at once in tests.
_REGISTERED_CACHED_FUNCS: List[Dict[str, Any]] = []

_logger = logging.getLogger("picofinder.utils.register_caches")


def registered_cached(
    cache: TTLCache, key: Optional[Callable[..., Any]] = None
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Brief: Wrap cachetools.cached and record the function in a registry.

    Inputs:
      - cache: cachetools cache instance backing the function.
      - key: Optional key function (defaults to cachetools.keys.hashkey).

    Outputs:
      - Decorator applying cachetools.cached (with a lock, so the wrapped
        function may be called from worker threads) and counting hits/misses.

    Example:
      >>> from cachetools import TTLCache
      >>> @registered_cached(cache=TTLCache(maxsize=8, ttl=60))
      ... def double(x):
      ...     return x * 2
      >>> double(2)
      4
    """

    key_func: Callable[..., Any] = key or hashkey

    def _outer(func: Callable[..., Any]) -> Callable[..., Any]:
        lock = threading.RLock()
        wrapped = cached(cache=cache, key=key_func, lock=lock)(func)

        entry: Dict[str, Any] = {
            "module": getattr(func, "__module__", "") or "",
            "name": getattr(func, "__name__", ""),
            "ttl": int(getattr(cache, "ttl", 0) or 0),
            "maxsize": int(getattr(cache, "maxsize", 0) or 0),
            "calls_total": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "_cache_ref": cache,
        }

        def _wrapper(*args: Any, **kwargs: Any) -> Any:
            k = key_func(*args, **kwargs)
            with lock:
                hit = k in cache
                entry["calls_total"] += 1
                if hit:
                    entry["cache_hits"] += 1
                else:
                    entry["cache_misses"] += 1
            return wrapped(*args, **kwargs)

        _wrapper.cache = cache  # type: ignore[attr-defined]
        _wrapper.cache_lock = lock  # type: ignore[attr-defined]
        _wrapper.__wrapped__ = func  # type: ignore[attr-defined]
        _wrapper.__name__ = getattr(func, "__name__", "_wrapper")
        _wrapper.__doc__ = func.__doc__

        _REGISTERED_CACHED_FUNCS.append(entry)
        return _wrapper

    return _outer


def get_registered_cached() -> List[Dict[str, Any]]:
    """Brief: Snapshot of every registered cache with live counters.

    Inputs:
      - None.

    Outputs:
      - List[dict]: module, name, ttl, maxsize, counters and size_current.
    """

    snapshot: List[Dict[str, Any]] = []
    for entry in _REGISTERED_CACHED_FUNCS:
        row = dict(entry)
        cache_ref = row.pop("_cache_ref", None)
        if cache_ref is not None:
            row["size_current"] = len(cache_ref)
        snapshot.append(row)
    return snapshot


def clear_registered_caches() -> None:
    """Empty every registered cache and reset its counters."""
    for entry in _REGISTERED_CACHED_FUNCS:
        cache_ref = entry.get("_cache_ref")
        if cache_ref is not None:
            cache_ref.clear()
        entry["calls_total"] = 0
        entry["cache_hits"] = 0
        entry["cache_misses"] = 0
    _logger.debug("cleared %d registered caches", len(_REGISTERED_CACHED_FUNCS))
