"""Primary user-defined network (UDN) lookup."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .config import NetworkConfig, parse_config
from .exceptions import NetworkSelectionParseError
from .network_selection import NetworkSelectionElement, parse_network_selection
from .objects import NetworkAttachmentDefinition, VirtualMachineInstance
from .store import ClusterStore

LOG = logging.getLogger(__name__)

DEFAULT_NETWORK_NAME = "default"


@dataclass(frozen=True)
class PrimaryNetwork:
    nad: NetworkAttachmentDefinition
    config: NetworkConfig


def find_primary_network(
    store: ClusterStore, namespace: str, timeout: Optional[float] = None
) -> Optional[PrimaryNetwork]:
    """Return the first attachment in ``namespace`` whose role is primary.

    Any attachment with an unparsable configuration aborts the lookup.
    """

    for nad in store.list(NetworkAttachmentDefinition, namespace, timeout=timeout):
        cfg = parse_config(nad.config)
        if cfg.is_primary:
            LOG.debug("found primary network NAD %s (network=%s)", nad.key, cfg.name)
            return PrimaryNetwork(nad=nad, config=cfg)
    return None


def primary_udn_interface_name(
    vmi: VirtualMachineInstance, primary: Optional[PrimaryNetwork]
) -> Optional[str]:
    """Logical network name that carries the primary UDN on ``vmi``.

    The primary network is reached through the VMI pod network; it only
    needs a claim when the network allows persistent IPs.
    """

    if primary is None or not primary.config.allow_persistent_ips:
        return None
    pod_network = vmi.spec.pod_network()
    if pod_network is None:
        LOG.info(
            "VMI %s has no pod network, primary UDN IPAMClaim not required", vmi.key
        )
        return None
    return pod_network.name


def parse_default_network_selection(
    value: Optional[str], namespace: str
) -> Optional[NetworkSelectionElement]:
    elements = parse_network_selection(value, namespace)
    if len(elements) > 1:
        raise NetworkSelectionParseError(
            f"more than one default network is specified: {value}"
        )
    return elements[0] if elements else None


def default_network_selection(
    namespace: str, mac: str, claim_name: str, ips=()
) -> NetworkSelectionElement:
    return NetworkSelectionElement(
        name=DEFAULT_NETWORK_NAME,
        namespace=namespace,
        ips=list(ips),
        mac=mac,
        ipam_claim_reference=claim_name,
    )
