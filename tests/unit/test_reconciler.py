import pytest

from kubevirt_ipam.arbitration import ArbitrationOutcome
from kubevirt_ipam.claims import PERSISTENT_IPAM_FINALIZER
from kubevirt_ipam.exceptions import (
    ClaimOwnershipConflictError,
    InvalidNetworkConfigError,
    NotFoundError,
    StoreTimeoutError,
)
from kubevirt_ipam.objects import IPAMClaim, NamespacedName, VirtualMachineInstance
from kubevirt_ipam.reconciler import VMIReconciler, should_clean_finalizers
from kubevirt_ipam.store import InMemoryStore

from testobjects import (
    build_claim,
    build_nad,
    build_raw_nad,
    build_vm,
    build_vmi,
    multus_network,
    owner_ref,
    pod_network,
)

KEY = NamespacedName("ns1", "vm1")


def vm1_networks():
    return [pod_network("podnet"), multus_network("randomnet", "supadupanet")]


def build_store(*extra, vm=True, vmi=True):
    objects = [build_nad("supadupanet", name="goodnet", allowPersistentIPs=True)]
    if vm:
        objects.append(build_vm("vm1", networks=vm1_networks(), uid="vm-uid"))
    if vmi:
        objects.append(build_vmi("vm1", networks=vm1_networks(), uid="vmi-uid"))
    objects.extend(extra)
    return InMemoryStore(*objects)


def claims(store):
    return {c.name: c for c in store.list(IPAMClaim, "ns1")}


@pytest.mark.parametrize(
    "vm, vmi, expected",
    [
        (build_vm("vm1", deleting=True), None, True),
        (build_vm("vm1"), None, False),
        (None, None, True),
        (None, build_vmi("vm1"), False),
        (None, build_vmi("vm1", deleting=True), True),
        (None, build_vmi("vm1", deleting=True, active_pods={"pod-uid": "node1"}), False),
        (build_vm("vm1", deleting=True), build_vmi("vm1", deleting=True), False),
    ],
)
def test_should_clean_finalizers(vm, vmi, expected):
    assert should_clean_finalizers(vmi, vm) is expected


def test_reconcile_creates_claim_for_persistent_secondary_network():
    store = build_store()

    result = VMIReconciler(store).reconcile(KEY)

    assert result.claims == {"vm1.randomnet": ArbitrationOutcome.CREATED}
    created = claims(store)
    assert list(created) == ["vm1.randomnet"]
    claim = created["vm1.randomnet"]
    assert claim.network == "goodnet"
    assert claim.metadata.finalizers == [PERSISTENT_IPAM_FINALIZER]
    assert claim.metadata.labels == {"kubevirt.io/vm": "vm1"}
    (owner,) = claim.metadata.owner_references
    assert (owner.kind, owner.name, owner.uid) == ("VirtualMachine", "vm1", "vm-uid")


def test_reconcile_is_idempotent():
    store = build_store()
    reconciler = VMIReconciler(store)

    reconciler.reconcile(KEY)
    result = reconciler.reconcile(KEY)

    assert result.claims == {"vm1.randomnet": ArbitrationOutcome.ADOPTED}
    assert len(claims(store)) == 1


def test_reconcile_skips_non_persistent_networks():
    store = InMemoryStore(
        build_nad("supadupanet", name="goodnet"),
        build_vmi("vm1", networks=vm1_networks()),
    )

    result = VMIReconciler(store).reconcile(KEY)

    assert result.claims == {}
    assert claims(store) == {}


def test_standalone_vmi_owns_its_claims():
    store = build_store(vm=False)

    VMIReconciler(store).reconcile(KEY)

    (owner,) = claims(store)["vm1.randomnet"].metadata.owner_references
    assert (owner.kind, owner.uid) == ("VirtualMachineInstance", "vmi-uid")


def test_reconcile_creates_primary_udn_claim():
    store = build_store(
        build_nad(
            "primarynet",
            name="tenantblue",
            role="primary",
            allowPersistentIPs=True,
            subnets="192.168.0.0/16",
        )
    )

    result = VMIReconciler(store).reconcile(KEY)

    assert set(result.claims) == {"vm1.randomnet", "vm1.podnet"}
    assert claims(store)["vm1.podnet"].network == "tenantblue"


def test_non_persistent_primary_udn_needs_no_claim():
    store = build_store(build_nad("primarynet", name="tenantblue", role="primary"))

    result = VMIReconciler(store).reconcile(KEY)

    assert set(result.claims) == {"vm1.randomnet"}


def test_multus_default_network_is_skipped():
    store = InMemoryStore(
        build_vmi("vm1", networks=[multus_network("defaultnet", "ovn", default=True)]),
    )

    assert VMIReconciler(store).reconcile(KEY).claims == {}


def test_missing_nad_fails_the_reconcile():
    store = InMemoryStore(build_vmi("vm1", networks=vm1_networks()))

    with pytest.raises(NotFoundError):
        VMIReconciler(store).reconcile(KEY)


def test_unparsable_nad_config_fails_the_reconcile():
    store = InMemoryStore(
        build_raw_nad("supadupanet", "ns1", "{not json}"),
        build_vmi("vm1", networks=vm1_networks()),
    )

    with pytest.raises(InvalidNetworkConfigError):
        VMIReconciler(store).reconcile(KEY)


def test_leaked_claim_aborts_the_reconcile():
    store = build_store(
        build_claim("vm1.randomnet", "vm1", owners=[owner_ref("VirtualMachine", "vm1", "stale-uid")])
    )

    with pytest.raises(ClaimOwnershipConflictError):
        VMIReconciler(store).reconcile(KEY)


def test_stopped_vm_keeps_its_claims():
    store = build_store(
        build_claim("vm1.randomnet", "vm1", owners=[owner_ref("VirtualMachine", "vm1", "vm-uid")]),
        vmi=False,
    )

    result = VMIReconciler(store).reconcile(KEY)

    assert result.released == []
    assert claims(store)["vm1.randomnet"].metadata.finalizers == [PERSISTENT_IPAM_FINALIZER]


def test_deleted_vm_releases_its_claims():
    store = InMemoryStore(
        build_vm("vm1", networks=vm1_networks(), deleting=True),
        build_claim("vm1.randomnet", "vm1"),
        build_claim("vm1.podnet", "vm1", finalizers=["example.com/other", PERSISTENT_IPAM_FINALIZER]),
        build_claim("vm2.randomnet", "vm2"),
    )

    result = VMIReconciler(store).reconcile(KEY)

    assert sorted(result.released) == ["vm1.podnet", "vm1.randomnet"]
    remaining = claims(store)
    assert remaining["vm1.randomnet"].metadata.finalizers == []
    assert remaining["vm1.podnet"].metadata.finalizers == ["example.com/other"]
    assert remaining["vm2.randomnet"].metadata.finalizers == [PERSISTENT_IPAM_FINALIZER]


class FlakyUpdateStore(InMemoryStore):
    def __init__(self, missing, *objects):
        super().__init__(*objects)
        self._missing = missing

    def update(self, obj, timeout=None):
        if obj.name == self._missing:
            raise NotFoundError("ipamclaims", obj.namespace, obj.name)
        return super().update(obj, timeout=timeout)


def test_cleanup_tolerates_claims_deleted_concurrently():
    store = FlakyUpdateStore(
        "vm1.a",
        build_claim("vm1.a", "vm1"),
        build_claim("vm1.b", "vm1"),
    )

    released = VMIReconciler(store).cleanup(KEY)

    assert released == ["vm1.b"]
    assert claims(store)["vm1.b"].metadata.finalizers == []


def test_namespace_qualified_attachment_resolves_in_its_own_namespace():
    networks = [pod_network("podnet"), multus_network("randomnet", "otherns/supadupanet")]
    store = InMemoryStore(
        build_nad("supadupanet", namespace="otherns", name="goodnet", allowPersistentIPs=True),
        build_vmi("vm1", networks=networks, uid="vmi-uid"),
    )

    result = VMIReconciler(store).reconcile(KEY)

    assert result.claims == {"vm1.randomnet": ArbitrationOutcome.CREATED}
    claim = claims(store)["vm1.randomnet"]
    assert claim.namespace == "ns1"
    assert claim.network == "goodnet"


class RecordingStore(InMemoryStore):
    def __init__(self, *objects):
        super().__init__(*objects)
        self.timeouts = []

    def get(self, cls, key, timeout=None):
        self.timeouts.append(("get", timeout))
        return super().get(cls, key, timeout=timeout)

    def list(self, cls, namespace, labels=None, timeout=None):
        self.timeouts.append(("list", timeout))
        return super().list(cls, namespace, labels=labels, timeout=timeout)

    def create(self, obj, timeout=None):
        self.timeouts.append(("create", timeout))
        return super().create(obj, timeout=timeout)

    def update(self, obj, timeout=None):
        self.timeouts.append(("update", timeout))
        return super().update(obj, timeout=timeout)


def test_every_store_call_carries_the_client_timeout():
    store = RecordingStore(
        build_nad("supadupanet", name="goodnet", allowPersistentIPs=True),
        build_vmi("vm1", networks=vm1_networks(), uid="vmi-uid"),
    )
    VMIReconciler(store, timeout=0.25).reconcile(KEY)

    store.delete(VirtualMachineInstance, KEY)
    store.add(build_vm("vm1", deleting=True))
    VMIReconciler(store, timeout=0.25).reconcile(KEY)

    verbs = {verb for verb, _ in store.timeouts}
    assert verbs == {"get", "list", "create", "update"}
    assert {timeout for _, timeout in store.timeouts} == {0.25}


def test_store_timeout_propagates_as_retryable():
    class TimingOutStore(InMemoryStore):
        def get(self, cls, key, timeout=None):
            raise StoreTimeoutError(f'get {cls.PLURAL} "{key}" timed out')

    with pytest.raises(StoreTimeoutError) as excinfo:
        VMIReconciler(TimingOutStore(), timeout=0.25).reconcile(KEY)

    assert excinfo.value.retryable is True
