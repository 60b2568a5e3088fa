"""
Brief: Tests for picofinder.providers.zeroconf_provider without network access.

Inputs:
  - None

Outputs:
  - None
"""

import pytest
from zeroconf import InterfaceChoice, IPVersion, ServiceStateChange

from picofinder.config.config_schema import DiscoveryConfig
from picofinder.models import (
    Added,
    BrowseState,
    Changed,
    Identical,
    Removed,
    ServiceEndpoint,
)
from picofinder.providers import zeroconf_provider as zp


class DummyInfo:
    def __init__(self, properties, port=8080, addresses=("10.0.0.5",)):
        self.properties = properties
        self.port = port
        self._addresses = list(addresses)

    def parsed_scoped_addresses(self):
        return list(self._addresses)


class DummyZeroconf:
    """
    Brief: Zeroconf stand-in answering get_service_info from a dict.

    Inputs:
      - infos: mapping of full instance name to DummyInfo

    Outputs:
      - DummyZeroconf
    """

    def __init__(self, infos=None):
        self.infos = dict(infos or {})
        self.requests = []
        self.closed = False

    def get_service_info(self, type_, name, timeout=3000):
        self.requests.append((type_, name, timeout))
        return self.infos.get(name)

    def close(self):
        self.closed = True


class DummyBrowser:
    created = []

    def __init__(self, zc, type_, handlers=None):
        self.zc = zc
        self.type_ = type_
        self.handlers = list(handlers or [])
        self.cancelled = False
        DummyBrowser.created.append(self)

    def fire(self, name, change):
        for handler in self.handlers:
            handler(
                zeroconf=self.zc,
                service_type=self.type_,
                name=name,
                state_change=change,
            )

    def cancel(self):
        self.cancelled = True


@pytest.fixture
def browser_cls(monkeypatch):
    DummyBrowser.created = []
    monkeypatch.setattr(zp, "ServiceBrowser", DummyBrowser)
    return DummyBrowser


def _props(**overrides):
    props = {
        b"ServerIdentifier": b"s1",
        b"IPAddress": b"10.0.0.5",
        b"LocalHostName": b"lab.local",
        b"Port": b"8080",
    }
    props.update(overrides)
    return props


FULL = "Ronald's Homelab._pico._tcp.local."


def _browse(provider):
    batches, states = [], []
    handle = provider.browse("_pico._tcp", "local.", batches.append, states.append)
    return handle, batches, states


def test_decode_properties_handles_bytes_and_none():
    assert zp.decode_properties({b"Port": b"80", b"flag": None, "x": 1, b" ": b"y"}) == {
        "Port": "80",
        "flag": "",
        "x": "1",
    }
    assert zp.decode_properties(None) == {}


def test_instance_label_strips_suffix():
    assert zp.instance_label(FULL, "_pico._tcp", "local.") == "Ronald's Homelab"
    assert zp.instance_label("Lab._pico._tcp.local", "_pico._tcp", "local.") == "Lab"
    assert zp.instance_label("odd", "_pico._tcp", "local.") == "odd"


def test_browse_reports_states_and_emits_changes(browser_cls):
    """
    Brief: ServiceBrowser callbacks become Added/Changed/Identical/Removed.

    Inputs:
      - DummyZeroconf with TXT properties for one instance

    Outputs:
      - None: Asserts emitted change types, metadata and endpoint
    """
    zc = DummyZeroconf({FULL: DummyInfo(_props())})
    provider = zp.ZeroconfDiscoveryProvider(DiscoveryConfig(info_timeout_ms=250), zeroconf=zc)
    handle, batches, states = _browse(provider)

    assert states == [BrowseState.SETUP, BrowseState.READY]
    browser = browser_cls.created[0]
    assert browser.type_ == "_pico._tcp.local."

    browser.fire(FULL, ServiceStateChange.Added)
    (added,) = batches[-1]
    assert isinstance(added, Added)
    assert added.result.endpoint == ServiceEndpoint(
        name="Ronald's Homelab", service_type="_pico._tcp", domain="local."
    )
    assert added.result.metadata["ServerIdentifier"] == "s1"
    assert zc.requests[-1] == ("_pico._tcp.local.", FULL, 250)

    browser.fire(FULL, ServiceStateChange.Updated)
    assert isinstance(batches[-1][0], Identical)

    zc.infos[FULL] = DummyInfo(_props(IPAddress=b"10.0.0.6"))
    browser.fire(FULL, ServiceStateChange.Updated)
    changed = batches[-1][0]
    assert isinstance(changed, Changed)
    assert changed.old.metadata["IPAddress"] == "10.0.0.5"
    assert changed.new.metadata["IPAddress"] == "10.0.0.6"

    browser.fire(FULL, ServiceStateChange.Removed)
    removed = batches[-1][0]
    assert isinstance(removed, Removed)
    assert removed.result.metadata["IPAddress"] == "10.0.0.6"


def test_unknown_removal_and_missing_info(browser_cls):
    zc = DummyZeroconf()
    provider = zp.ZeroconfDiscoveryProvider(zeroconf=zc)
    _handle, batches, _states = _browse(provider)
    browser = browser_cls.created[0]

    browser.fire(FULL, ServiceStateChange.Added)
    assert batches[-1][0].result.metadata is None

    browser.fire("Other._pico._tcp.local.", ServiceStateChange.Removed)
    removed = batches[-1][0]
    assert isinstance(removed, Removed)
    assert removed.result.endpoint.name == "Other"
    assert removed.result.metadata is None


def test_cancel_stops_browser_and_detaches(browser_cls):
    """
    Brief: cancel() stops the ServiceBrowser, reports CANCELLED once, detaches.

    Inputs:
      - running browse handle

    Outputs:
      - None: Asserts no events after cancel
    """
    zc = DummyZeroconf({FULL: DummyInfo(_props())})
    provider = zp.ZeroconfDiscoveryProvider(zeroconf=zc)
    handle, batches, states = _browse(provider)
    browser = browser_cls.created[0]

    handle.cancel()
    handle.cancel()
    assert browser.cancelled
    assert states == [BrowseState.SETUP, BrowseState.READY, BrowseState.CANCELLED]

    browser.fire(FULL, ServiceStateChange.Added)
    assert batches == []


def test_resolve_service_returns_addresses_and_port():
    zc = DummyZeroconf({FULL: DummyInfo(_props(), port=9000, addresses=["fe80::1%eth0"])})
    provider = zp.ZeroconfDiscoveryProvider(zeroconf=zc)
    endpoint = ServiceEndpoint(name="Ronald's Homelab", service_type="_pico._tcp")
    assert provider.resolve_service(endpoint) == (["fe80::1%eth0"], 9000)

    missing = ServiceEndpoint(name="Nobody", service_type="_pico._tcp")
    assert provider.resolve_service(missing) is None


def test_zeroconf_created_lazily_with_config(monkeypatch):
    """
    Brief: Zeroconf is built on first use with interface/IP version knobs.

    Inputs:
      - config selecting all interfaces and IPv4

    Outputs:
      - None: Asserts constructor arguments and that close() closes it
    """
    created = {}

    class FakeZeroconf(DummyZeroconf):
        def __init__(self, interfaces=None, unicast=False, ip_version=None):
            super().__init__()
            created.update(interfaces=interfaces, unicast=unicast, ip_version=ip_version)

    monkeypatch.setattr(zp, "Zeroconf", FakeZeroconf)
    cfg = DiscoveryConfig(zeroconf_interfaces="all", zeroconf_ip_version="ipv4")
    provider = zp.ZeroconfDiscoveryProvider(cfg)
    assert created == {}

    zc = provider.zeroconf()
    assert provider.zeroconf() is zc
    assert created == {
        "interfaces": InterfaceChoice.All,
        "unicast": False,
        "ip_version": IPVersion.V4Only,
    }
    provider.close()
    assert zc.closed


def test_interface_list_and_bind_errors(monkeypatch):
    seen = {}

    def boom(interfaces=None, unicast=False, ip_version=None):
        seen["interfaces"] = interfaces
        raise PermissionError("EPERM")

    monkeypatch.setattr(zp, "Zeroconf", boom)
    cfg = DiscoveryConfig(zeroconf_interfaces=["192.168.1.2", "bogus"])
    provider = zp.ZeroconfDiscoveryProvider(cfg)
    with pytest.raises(RuntimeError, match="permission error"):
        provider.zeroconf()
    assert seen["interfaces"] == ["192.168.1.2"]


def test_browse_failure_propagates_runtime_error(monkeypatch):
    def fail(*_a, **_kw):
        raise OSError("no multicast route")

    monkeypatch.setattr(zp, "ServiceBrowser", fail)
    provider = zp.ZeroconfDiscoveryProvider(zeroconf=DummyZeroconf())
    with pytest.raises(RuntimeError, match="no multicast route"):
        _browse(provider)
