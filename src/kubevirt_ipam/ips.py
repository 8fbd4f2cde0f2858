"""IP family helpers and primary network IP request formatting."""

from __future__ import annotations

import ipaddress
import json
from enum import Enum
from typing import List, Sequence, Tuple

from .config import IP_REQUESTS_ANNOTATION, NetworkConfig
from .exceptions import InvalidIPRequestError, InvalidSubnetError
from .objects import VirtualMachineInstance


class IPFamily(Enum):
    V4 = 4
    V6 = 6
    INVALID = 0


def split_by_family(subnets: str) -> Tuple[List[str], List[str]]:
    """Partition a comma separated CIDR list into IPv4 and IPv6 subnets.

    Entries are trimmed and empty entries skipped; the input order is kept
    within each family.  A single malformed entry fails the whole call.
    """

    ipv4: List[str] = []
    ipv6: List[str] = []
    for entry in subnets.split(","):
        subnet = entry.strip()
        if not subnet:
            continue
        if "/" not in subnet:
            raise InvalidSubnetError(f"invalid subnet format: {subnet}")
        try:
            network = ipaddress.ip_network(subnet, strict=False)
        except ValueError as exc:
            raise InvalidSubnetError(f"invalid subnet format: {subnet}") from exc
        if network.version == 4 or network.network_address.ipv4_mapped is not None:
            ipv4.append(subnet)
        else:
            ipv6.append(subnet)
    return ipv4, ipv6


def classify(ip: str) -> IPFamily:
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return IPFamily.INVALID
    if address.version == 6 and address.ipv4_mapped is None:
        return IPFamily.V6
    return IPFamily.V4


def format_ip_requests(requested_ips: Sequence[str], cfg: NetworkConfig) -> List[str]:
    """Append the matching subnet prefix length to every requested address.

    Each address is paired with the *first* configured subnet of its family.
    """

    ipv4_subnets, ipv6_subnets = split_by_family(cfg.subnets)

    result: List[str] = []
    for ip in requested_ips:
        family = classify(ip)
        if family is IPFamily.V4:
            if not ipv4_subnets:
                raise InvalidIPRequestError(
                    f"no IPv4 subnet configured for IPv4 IP request: {ip}"
                )
            target = ipv4_subnets[0]
        elif family is IPFamily.V6:
            if not ipv6_subnets:
                raise InvalidIPRequestError(
                    f"no IPv6 subnet configured for IPv6 IP request: {ip}"
                )
            target = ipv6_subnets[0]
        else:
            raise InvalidIPRequestError(f"invalid IP address format: {ip}")

        parts = target.split("/")
        if len(parts) != 2:
            raise InvalidSubnetError(f"invalid subnet format: {target}")
        result.append(f"{ip}/{parts[1]}")
    return result


def vmi_interface_ip_requests(
    vmi: VirtualMachineInstance, iface_name: str, cfg: NetworkConfig
) -> List[str]:
    """Static IP requests the VMI declares for ``iface_name``, with prefixes."""

    raw = vmi.metadata.annotations.get(IP_REQUESTS_ANNOTATION)
    if raw is None:
        return []
    try:
        addresses = json.loads(raw)
    except ValueError as exc:
        raise InvalidIPRequestError(
            f"failed to parse {IP_REQUESTS_ANNOTATION} annotation: {exc}"
        ) from exc
    if not isinstance(addresses, dict):
        raise InvalidIPRequestError(
            f"{IP_REQUESTS_ANNOTATION} annotation must map networks to IP lists"
        )
    return format_ip_requests(addresses.get(iface_name) or [], cfg)
