"""Network attachment configuration and well-known annotation keys.

Only three fields of the CNI configuration embedded in a
NetworkAttachmentDefinition matter to the claim lifecycle: the fabric-visible
network ``name``, whether the network ``allowPersistentIPs``, and its ``role``.
The ``subnets`` list is read as well so static IP requests on the primary
network can be given a prefix length.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .exceptions import InvalidNetworkConfigError

IP_REQUESTS_ANNOTATION = "network.kubevirt.io/addresses"
NETWORK_SELECTION_ANNOTATION = "k8s.v1.cni.cncf.io/networks"
MULTUS_DEFAULT_NETWORK_ANNOTATION = "v1.multus-cni.io/default-network"
OVN_PRIMARY_NETWORK_IPAM_CLAIM_ANNOTATION = "k8s.ovn.org/primary-udn-ipamclaim"
VM_DOMAIN_ANNOTATION = "kubevirt.io/domain"


class NetworkRole(str, Enum):
    """Role a network plays for the workloads attached to it.

    Secondary networks carry no role in their configuration.
    """

    PRIMARY = "primary"


@dataclass(frozen=True)
class NetworkConfig:
    """Subset of a CNI network configuration relevant to persistent IPs.

    Attributes
    ----------
    name:
        Network name as seen by the fabric controller.  This is what the
        IPAMClaim ``spec.network`` field points at.
    allow_persistent_ips:
        Whether workloads on this network keep their addresses across
        restarts and migrations.
    role:
        ``"primary"`` for a namespace primary user-defined network, ``None``
        otherwise.
    subnets:
        Comma separated CIDR list, possibly empty.
    """

    name: str = ""
    allow_persistent_ips: bool = False
    role: Optional[str] = None
    subnets: str = ""

    @property
    def is_primary(self) -> bool:
        return self.role == NetworkRole.PRIMARY.value


def parse_config(raw: str) -> NetworkConfig:
    """Decode the CNI configuration blob of a NetworkAttachmentDefinition.

    An empty blob yields the zero-value configuration.  Anything that is not
    a JSON object raises :class:`InvalidNetworkConfigError`; treating a broken
    configuration as "not persistent" would silently drop the user's request.
    """

    if not raw:
        return NetworkConfig()

    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise InvalidNetworkConfigError(
            f"failed to extract CNI configuration from NAD: {exc}"
        ) from exc
    if not isinstance(data, dict):
        raise InvalidNetworkConfigError(
            "failed to extract CNI configuration from NAD: not a JSON object"
        )

    allow = data.get("allowPersistentIPs")
    if allow is None:
        allow = False
    if not isinstance(allow, bool):
        raise InvalidNetworkConfigError(
            f"failed to extract CNI configuration from NAD: "
            f"allowPersistentIPs must be a boolean, got {allow!r}"
        )

    name = data.get("name")
    role = data.get("role")
    for field_name, value in (("name", name), ("role", role)):
        if value is not None and not isinstance(value, str):
            raise InvalidNetworkConfigError(
                f"failed to extract CNI configuration from NAD: "
                f"{field_name} must be a string, got {value!r}"
            )

    return NetworkConfig(
        name=name or "",
        allow_persistent_ips=allow,
        role=role or None,
        subnets=str(data.get("subnets") or ""),
    )
