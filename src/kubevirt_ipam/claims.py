"""IPAMClaim naming and construction helpers."""

from __future__ import annotations

import re
from typing import Dict

from .objects import VM_LABEL, IPAMClaim, ObjectMeta, OwnerReference

PERSISTENT_IPAM_FINALIZER = "kubevirt.io/persistent-ipam"
CLAIM_KEY_SEPARATOR = "."
MAX_CLAIM_NAME_LENGTH = 253

_RFC1123_SUBDOMAIN = re.compile(
    r"[a-z0-9](?:[-a-z0-9]*[a-z0-9])?(?:\.[a-z0-9](?:[-a-z0-9]*[a-z0-9])?)*"
)


def compose_key(vm_name: str, network_name: str) -> str:
    """Return the IPAMClaim name for a VM's logical network.

    The concatenation is lower-cased, every valid RFC 1123 subdomain run is
    kept, and the runs are re-joined with a single dot before truncating to
    253 characters.  Invalid characters therefore disappear and consecutive
    separators collapse.  Distinct inputs may sanitise to the same key; that
    is accepted.
    """

    return _to_crd_name(f"{vm_name}{CLAIM_KEY_SEPARATOR}{network_name}")


def _to_crd_name(value: str) -> str:
    matches = [m.group(0) for m in _RFC1123_SUBDOMAIN.finditer(value.lower())]
    return CLAIM_KEY_SEPARATOR.join(matches)[:MAX_CLAIM_NAME_LENGTH]


def owned_by_vm_labels(vm_name: str) -> Dict[str, str]:
    return {VM_LABEL: vm_name}


def build_claim(
    namespace: str,
    vm_name: str,
    network_name: str,
    fabric_network: str,
    owner: OwnerReference,
) -> IPAMClaim:
    """Candidate claim for ``network_name`` of ``vm_name``, owned by ``owner``."""

    return IPAMClaim(
        metadata=ObjectMeta(
            name=compose_key(vm_name, network_name),
            namespace=namespace,
            labels=owned_by_vm_labels(vm_name),
            finalizers=[PERSISTENT_IPAM_FINALIZER],
            owner_references=[owner],
        ),
        network=fabric_network,
    )


def remove_finalizer(claim: IPAMClaim) -> bool:
    """Drop the persistence finalizer; return whether anything changed."""

    if PERSISTENT_IPAM_FINALIZER not in claim.metadata.finalizers:
        return False
    claim.metadata.finalizers = [
        f for f in claim.metadata.finalizers if f != PERSISTENT_IPAM_FINALIZER
    ]
    return True
