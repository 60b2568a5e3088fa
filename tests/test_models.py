"""
Brief: Tests for picofinder.models value types and helpers.

Inputs:
  - None

Outputs:
  - None
"""

import pytest

from picofinder.models import (
    BrowseResult,
    DiscoveredServer,
    HostPortEndpoint,
    ServiceEndpoint,
    candidate_key,
    fallback_identity,
    normalize_address,
)


def _server(**overrides):
    fields = dict(
        id="abc",
        name="Lab",
        service_type="_pico._tcp",
        host_name="lab.local",
        ip_address="10.0.0.5",
        port=8080,
    )
    fields.update(overrides)
    return DiscoveredServer(**fields)


def test_normalize_address_strips_scope():
    """
    Brief: normalize_address drops a %scope suffix and whitespace.

    Inputs:
      - scoped IPv6 and plain IPv4 strings

    Outputs:
      - None: Asserts normalized text
    """
    assert normalize_address("fe80::1%en0") == "fe80::1"
    assert normalize_address(" 10.0.0.5 ") == "10.0.0.5"
    assert normalize_address("") == ""


def test_fallback_identity_joins_name_and_type():
    assert fallback_identity("Lab", "_pico._tcp.") == "Lab._pico._tcp"


@pytest.mark.parametrize("port", [-1, 65536, "80", True])
def test_discovered_server_rejects_bad_port(port):
    """
    Brief: DiscoveredServer enforces an int port in 0-65535.

    Inputs:
      - port: invalid value

    Outputs:
      - None: Asserts ValueError
    """
    with pytest.raises(ValueError):
        _server(port=port)


def test_discovered_server_requires_id_and_ip():
    with pytest.raises(ValueError):
        _server(id="")
    with pytest.raises(ValueError):
        _server(ip_address="")


def test_discovered_server_allows_empty_hostname_and_port_bounds():
    assert _server(host_name="", port=0).host_name == ""
    assert _server(port=65535).port == 65535


def test_matches_identity_by_advertised_key():
    """
    Brief: matches_identity compares (name, type) only.

    Inputs:
      - DiscoveredServer

    Outputs:
      - None: Asserts matching rules
    """
    server = _server()
    assert server.matches_identity("Lab", "_pico._tcp")
    assert server.id == "abc"
    assert not server.matches_identity("Other", "_pico._tcp")
    assert not server.matches_identity("Lab", "_http._tcp")


def test_as_dict_round_trips_fields():
    assert _server().as_dict() == {
        "id": "abc",
        "name": "Lab",
        "service_type": "_pico._tcp",
        "host_name": "lab.local",
        "ip_address": "10.0.0.5",
        "port": 8080,
    }


def test_browse_result_server_identifier_and_key():
    endpoint = ServiceEndpoint(name="Lab", service_type="_pico._tcp")
    result = BrowseResult(endpoint=endpoint, metadata={"ServerIdentifier": " s1 "})
    assert result.server_identifier == "s1"
    assert BrowseResult(endpoint=endpoint).server_identifier == ""
    assert candidate_key(result) == ("Lab", "_pico._tcp")
    assert candidate_key(BrowseResult(endpoint=HostPortEndpoint("h", 1))) is None
