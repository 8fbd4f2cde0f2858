import pytest

from kubevirt_ipam.exceptions import InvalidNetworkConfigError, NetworkSelectionParseError
from kubevirt_ipam.store import InMemoryStore
from kubevirt_ipam.udn import (
    default_network_selection,
    find_primary_network,
    parse_default_network_selection,
    primary_udn_interface_name,
)

from testobjects import build_nad, build_raw_nad, build_vmi, multus_network, pod_network


def test_find_primary_network():
    store = InMemoryStore(
        build_nad("supadupanet", name="goodnet", allowPersistentIPs=True),
        build_nad("tenant", name="tenantblue", role="primary", allowPersistentIPs=True),
        build_nad("tenant", namespace="ns2", name="tenantred", role="primary"),
    )

    primary = find_primary_network(store, "ns1")

    assert primary is not None
    assert primary.nad.name == "tenant"
    assert primary.config.name == "tenantblue"
    assert find_primary_network(store, "ns3") is None


def test_find_primary_network_propagates_broken_configs():
    store = InMemoryStore(build_raw_nad("broken", "ns1", "{not json}"))

    with pytest.raises(InvalidNetworkConfigError):
        find_primary_network(store, "ns1")


def test_primary_udn_interface_name():
    store = InMemoryStore(
        build_nad("tenant", name="tenantblue", role="primary", allowPersistentIPs=True)
    )
    primary = find_primary_network(store, "ns1")

    with_pod = build_vmi("vm1", networks=[multus_network("sec", "supadupanet"), pod_network("podnet")])
    without_pod = build_vmi("vm1", networks=[multus_network("sec", "supadupanet")])

    assert primary_udn_interface_name(with_pod, primary) == "podnet"
    assert primary_udn_interface_name(without_pod, primary) is None
    assert primary_udn_interface_name(with_pod, None) is None


def test_parse_default_network_selection():
    element = parse_default_network_selection('[{"name":"default","namespace":"ovn"}]', "ns1")

    assert element.nad_key == "ovn/default"
    assert parse_default_network_selection(None, "ns1") is None


def test_parse_default_network_selection_rejects_multiple_defaults():
    with pytest.raises(NetworkSelectionParseError):
        parse_default_network_selection("a,b", "ns1")


def test_default_network_selection():
    element = default_network_selection("randomNS", "02:03:04:05:06:07", "vm1.podnet", ["10.0.0.5/24"])

    assert element.to_dict() == {
        "name": "default",
        "namespace": "randomNS",
        "ips": ["10.0.0.5/24"],
        "mac": "02:03:04:05:06:07",
        "ipam-claim-reference": "vm1.podnet",
    }
