"""
Brief: Tests for picofinder.utils.register_caches.

Inputs:
  - None

Outputs:
  - None
"""

from cachetools import TTLCache

from picofinder.utils.register_caches import (
    clear_registered_caches,
    get_registered_cached,
    registered_cached,
)


def test_registered_cached_counts_hits_and_misses():
    """
    Brief: Wrapped functions are cached and their counters are reported.

    Inputs:
      - a cached function called three times with two distinct args

    Outputs:
      - None: Asserts call counts, counters and clearing
    """
    calls = []

    @registered_cached(cache=TTLCache(maxsize=4, ttl=30))
    def square(x):
        calls.append(x)
        return x * x

    assert square(3) == 9
    assert square(3) == 9
    assert square(4) == 16
    assert calls == [3, 4]
    assert square.__name__ == "square"
    assert len(square.cache) == 2

    row = [r for r in get_registered_cached() if r["name"] == "square"][-1]
    assert row["calls_total"] == 3
    assert row["cache_hits"] == 1
    assert row["cache_misses"] == 2
    assert row["ttl"] == 30 and row["maxsize"] == 4
    assert row["size_current"] == 2
    assert "_cache_ref" not in row

    clear_registered_caches()
    row = [r for r in get_registered_cached() if r["name"] == "square"][-1]
    assert row["calls_total"] == 0 and row["size_current"] == 0
    square(3)
    assert calls == [3, 4, 3]
