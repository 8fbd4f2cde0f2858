from unittest import mock

import pytest
import urllib3
from kubernetes.client.rest import ApiException

from ipam_controller.kube import KubeStore, label_selector
from kubevirt_ipam.claims import PERSISTENT_IPAM_FINALIZER, remove_finalizer
from kubevirt_ipam.exceptions import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    StoreError,
    StoreTimeoutError,
)
from kubevirt_ipam.objects import IPAMClaim, NamespacedName, VirtualMachineInstance

from testobjects import build_claim, build_vmi, pod_network

CLAIM_COORDINATES = {
    "group": "k8s.cni.cncf.io",
    "version": "v1alpha1",
    "namespace": "ns1",
    "plural": "ipamclaims",
}


def build_store():
    api = mock.Mock()
    return KubeStore(api), api


def test_get_decodes_object_and_passes_timeout():
    store, api = build_store()
    api.get_namespaced_custom_object.return_value = build_vmi(
        "vm1", networks=[pod_network()]
    ).to_dict()

    vmi = store.get(VirtualMachineInstance, NamespacedName("ns1", "vm1"), timeout=1.0)

    assert vmi.name == "vm1"
    assert vmi.spec.pod_network().name == "podnet"
    api.get_namespaced_custom_object.assert_called_once_with(
        group="kubevirt.io",
        version="v1",
        namespace="ns1",
        plural="virtualmachineinstances",
        name="vm1",
        _request_timeout=1.0,
    )


def test_get_translates_not_found():
    store, api = build_store()
    api.get_namespaced_custom_object.side_effect = ApiException(status=404, reason="Not Found")

    with pytest.raises(NotFoundError) as excinfo:
        store.get(IPAMClaim, NamespacedName("ns1", "vm1.net"))

    assert str(excinfo.value) == 'ipamclaims "ns1/vm1.net" not found'


def test_list_uses_label_selector():
    store, api = build_store()
    api.list_namespaced_custom_object.return_value = {
        "items": [build_claim("vm1.a", "vm1").to_dict(), build_claim("vm1.b", "vm1").to_dict()]
    }

    claims = store.list(IPAMClaim, "ns1", labels={"kubevirt.io/vm": "vm1"})

    assert [c.name for c in claims] == ["vm1.a", "vm1.b"]
    api.list_namespaced_custom_object.assert_called_once_with(
        label_selector="kubevirt.io/vm=vm1", **CLAIM_COORDINATES
    )


def test_create_translates_conflict_into_already_exists():
    store, api = build_store()
    api.create_namespaced_custom_object.side_effect = ApiException(status=409, reason="Conflict")

    with pytest.raises(AlreadyExistsError):
        store.create(build_claim("vm1.net", "vm1"))


def test_create_sends_full_object():
    store, api = build_store()
    claim = build_claim("vm1.net", "vm1")
    api.create_namespaced_custom_object.side_effect = lambda **kwargs: kwargs["body"]

    created = store.create(claim, timeout=1.0)

    assert created.name == "vm1.net"
    body = api.create_namespaced_custom_object.call_args.kwargs["body"]
    assert body["apiVersion"] == "k8s.cni.cncf.io/v1alpha1"
    assert body["kind"] == "IPAMClaim"
    assert body["spec"] == {"network": "randomnet"}


def test_update_translates_conflict():
    store, api = build_store()
    api.replace_namespaced_custom_object.side_effect = ApiException(status=409, reason="Conflict")

    with pytest.raises(ConflictError):
        store.update(build_claim("vm1.net", "vm1"))


def test_timeouts_are_store_timeouts():
    store, api = build_store()
    api.get_namespaced_custom_object.side_effect = urllib3.exceptions.ReadTimeoutError(
        None, "/apis", "read timed out"
    )

    with pytest.raises(StoreTimeoutError) as excinfo:
        store.get(IPAMClaim, NamespacedName("ns1", "vm1.net"), timeout=1.0)

    assert excinfo.value.retryable is True


def test_other_api_errors_are_retryable_store_errors():
    store, api = build_store()
    api.get_namespaced_custom_object.side_effect = ApiException(status=500, reason="Internal")

    with pytest.raises(StoreError) as excinfo:
        store.get(IPAMClaim, NamespacedName("ns1", "vm1.net"))

    assert not isinstance(excinfo.value, NotFoundError)
    assert excinfo.value.retryable is True


def test_label_selector():
    assert label_selector(None) is None
    assert label_selector({"b": "2", "a": "1"}) == "a=1,b=2"


def test_update_keeps_fields_it_does_not_model():
    store, api = build_store()
    served = build_claim("vm1.net", "vm1").to_dict()
    served["metadata"]["resourceVersion"] = "7"
    served["metadata"]["managedFields"] = [{"manager": "kubectl"}]
    served["metadata"]["labels"]["team"] = "blue"
    served["spec"]["futureField"] = {"keep": True}
    served["status"] = {"conditions": []}
    api.get_namespaced_custom_object.return_value = served
    api.replace_namespaced_custom_object.side_effect = lambda **kwargs: kwargs["body"]

    claim = store.get(IPAMClaim, NamespacedName("ns1", "vm1.net"))
    assert remove_finalizer(claim)
    store.update(claim)

    body = api.replace_namespaced_custom_object.call_args.kwargs["body"]
    assert "finalizers" not in body["metadata"]
    assert body["metadata"]["resourceVersion"] == "7"
    assert body["metadata"]["managedFields"] == [{"manager": "kubectl"}]
    assert body["metadata"]["labels"] == {"kubevirt.io/vm": "vm1", "team": "blue"}
    assert body["spec"] == {"network": "randomnet", "futureField": {"keep": True}}
    assert body["status"] == {"conditions": []}
    assert served["metadata"]["finalizers"] == [PERSISTENT_IPAM_FINALIZER]
