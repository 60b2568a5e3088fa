"""
Brief: Global pytest configuration enforcing per-test 10s timeout.

Inputs:
  - None

Outputs:
  - None
"""

import signal
import os
import sys
import pytest

# Ensure 'src' is on sys.path so 'picofinder' package is importable in tests,
# and this directory so shared fakes can be imported from any test module.
TESTS_DIR = os.path.abspath(os.path.dirname(__file__))
ROOT = os.path.abspath(os.path.join(TESTS_DIR, os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
for _path in (SRC_DIR, TESTS_DIR):
    if _path not in sys.path:
        sys.path.insert(0, _path)


def _alarm_handler(signum, frame):
    """
    Brief: Signal handler that raises TimeoutError when alarm triggers.

    Inputs:
      - signum: signal number (int)
      - frame: current frame (ignored)

    Outputs:
      - None: Raises TimeoutError to fail the test
    """
    raise TimeoutError("Test exceeded 10 seconds")


# Install handler if supported on this platform
if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


@pytest.fixture(autouse=True)
def clear_hostname_cache_between_tests():
    """
    Brief: Clear registered caches (reverse lookups) between tests.

    Inputs:
      - None

    Outputs:
      - None
    """
    from picofinder.utils.register_caches import clear_registered_caches

    clear_registered_caches()
    yield
    clear_registered_caches()


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        # Fallback: no-op on platforms without SIGALRM
        yield


@pytest.fixture
def discovery():
    """
    Brief: In-memory discovery provider that reports READY on browse().

    Inputs:
      - None

    Outputs:
      - FakeDiscoveryProvider
    """
    from fakes import FakeDiscoveryProvider

    return FakeDiscoveryProvider()


@pytest.fixture
def make_controller(discovery):
    """
    Brief: Factory building BrowseControllers over the fake provider.

    Inputs:
      - strategy: ResolutionStrategy (defaults to MetadataStrategy)
      - kwargs: Extra BrowseController keyword arguments

    Outputs:
      - Callable returning a BrowseController; every controller is closed
        at teardown.
    """
    from picofinder.browser import BrowseController
    from picofinder.resolution import MetadataStrategy, ResolutionEngine

    created = []

    def _make(strategy=None, **kwargs):
        kwargs.setdefault("service_type", "_pico._tcp")
        kwargs.setdefault("domain", "local.")
        controller = BrowseController(
            discovery, ResolutionEngine(strategy or MetadataStrategy()), **kwargs
        )
        created.append(controller)
        return controller

    yield _make
    for controller in created:
        controller.close()
