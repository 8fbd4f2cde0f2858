"""VM / VMI reconciler owning IPAMClaim creation and finalizer removal.

Every create, update or delete of a VirtualMachine or a
VirtualMachineInstance enqueues the shared ``namespace/name`` key.  A
reconcile cycle re-reads the current state of both objects, decides whether
the claims of that VM can be released, and otherwise makes sure a claim
exists for every logical network that asked for persistent IPs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .arbitration import ArbitrationOutcome, ClaimArbiter
from .claims import build_claim, owned_by_vm_labels, remove_finalizer
from .config import parse_config
from .exceptions import InvalidNetworkConfigError, NotFoundError
from .objects import (
    IPAMClaim,
    NamespacedName,
    NetworkAttachmentDefinition,
    VirtualMachine,
    VirtualMachineInstance,
)
from .store import ClusterStore, get_or_none
from .udn import find_primary_network, primary_udn_interface_name

LOG = logging.getLogger(__name__)

DEFAULT_CLIENT_TIMEOUT = 1.0


@dataclass(frozen=True)
class ClaimRequest:
    """A logical network of a VMI that needs a persistent IPAMClaim."""

    logical_network: str
    fabric_network: str


@dataclass
class ReconcileResult:
    claims: Dict[str, ArbitrationOutcome] = field(default_factory=dict)
    released: List[str] = field(default_factory=list)


def should_clean_finalizers(
    vmi: Optional[VirtualMachineInstance], vm: Optional[VirtualMachine]
) -> bool:
    """Decide whether the claims of a VM may be released.

    With a VM around, claims are released only once the VM is being deleted
    and its VMI is gone; a stopped VM keeps its addresses reserved.  For a
    standalone VMI, claims are released once the VMI is gone, or is being
    deleted and no launcher pod is active anymore.
    """

    if vm is not None:
        return vmi is None and vm.metadata.deletion_timestamp is not None
    if vmi is None:
        return True
    return vmi.metadata.deletion_timestamp is not None and not vmi.active_pods


class VMIReconciler:
    """Drive IPAMClaims from the networks declared on a VMI."""

    def __init__(self, store: ClusterStore, timeout: float = DEFAULT_CLIENT_TIMEOUT) -> None:
        self._store = store
        self._timeout = timeout
        self._arbiter = ClaimArbiter(store, timeout=timeout)

    def reconcile(self, key: NamespacedName) -> ReconcileResult:
        result = ReconcileResult()

        vmi = get_or_none(self._store, VirtualMachineInstance, key, timeout=self._timeout)
        vm = get_or_none(self._store, VirtualMachine, key, timeout=self._timeout)

        if should_clean_finalizers(vmi, vm):
            result.released = self.cleanup(key)
            return result

        if vmi is None:
            LOG.debug("VMI %s not running, nothing to reconcile", key)
            return result

        owner = (vm or vmi).owner_reference()
        for request in self.claim_requests(vmi):
            claim = build_claim(
                vmi.namespace,
                vmi.name,
                request.logical_network,
                request.fabric_network,
                owner,
            )
            result.claims[claim.name] = self._arbiter.ensure(claim)
        return result

    # ------------------------------------------------------------------
    # Network discovery
    # ------------------------------------------------------------------
    def claim_requests(self, vmi: VirtualMachineInstance) -> List[ClaimRequest]:
        """Logical networks of ``vmi`` that need a persistent IPAMClaim."""

        requests: List[ClaimRequest] = []
        for network in vmi.spec.networks:
            if network.pod:
                request = self._primary_udn_request(vmi)
                if request is not None:
                    requests.append(request)
                continue

            if network.multus is None or network.multus.default:
                continue

            nad_key = network.multus.namespaced_name(vmi.namespace)
            nad = self._store.get(NetworkAttachmentDefinition, nad_key, timeout=self._timeout)
            try:
                cfg = parse_config(nad.config)
            except InvalidNetworkConfigError:
                LOG.error("failed extracting the relevant NAD configuration (NAD=%s)", nad_key)
                raise
            if cfg.allow_persistent_ips:
                requests.append(ClaimRequest(network.name, cfg.name))
        return requests

    def _primary_udn_request(self, vmi: VirtualMachineInstance) -> Optional[ClaimRequest]:
        primary = find_primary_network(self._store, vmi.namespace, timeout=self._timeout)
        iface_name = primary_udn_interface_name(vmi, primary)
        if iface_name is None:
            return None
        return ClaimRequest(iface_name, primary.config.name)

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------
    def cleanup(self, key: NamespacedName) -> List[str]:
        """Remove the persistence finalizer from every claim of the VM."""

        released: List[str] = []
        claims = self._store.list(
            IPAMClaim,
            key.namespace,
            labels=owned_by_vm_labels(key.name),
            timeout=self._timeout,
        )
        for claim in claims:
            if not remove_finalizer(claim):
                continue
            try:
                self._store.update(claim, timeout=self._timeout)
            except NotFoundError:
                LOG.debug("IPAMClaim %s already gone", claim.key)
                continue
            LOG.info("removed finalizer from IPAMClaim %s", claim.key)
            released.append(claim.name)
        return released
