"""Persistent IP address management for KubeVirt virtual machines.

Virtual machines keep their addresses across restarts and live migration by
holding an ``IPAMClaim`` per logical network that allows persistent IPs.  This
package contains the two halves of that contract:

* :class:`kubevirt_ipam.reconciler.VMIReconciler` creates claims for running
  VMIs, adopts the ones already owned by the same VM, refuses leaked ones and
  drops the persistence finalizer once the VM is really gone; and
* :class:`kubevirt_ipam.mutator.PodMutator` stamps the claim references onto
  virt-launcher pods at admission time so the CNI plugin picks them up.

Both halves only see the cluster through :class:`kubevirt_ipam.store.ClusterStore`
so they can be exercised in unit tests against the in-memory store.
"""

from .mutator import AdmissionRequest, AdmissionResponse, PodMutator  # noqa: F401
from .reconciler import VMIReconciler  # noqa: F401
from .store import ClusterStore, InMemoryStore  # noqa: F401

__all__ = [
    "AdmissionRequest",
    "AdmissionResponse",
    "ClusterStore",
    "InMemoryStore",
    "PodMutator",
    "VMIReconciler",
]
