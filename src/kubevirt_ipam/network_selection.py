"""Multus network selection annotation parsing and rendering.

The ``k8s.v1.cni.cncf.io/networks`` annotation comes in two flavours: a JSON
list of selection elements, or the short form
``[<namespace>/]<name>[@<interface>]`` separated by commas.  Both are parsed
into :class:`NetworkSelectionElement` instances; rendering always produces the
JSON flavour.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .exceptions import NetworkSelectionParseError

_DNS1123_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")

_KNOWN_KEYS = ("name", "namespace", "ips", "mac", "interface", "ipam-claim-reference")


@dataclass
class NetworkSelectionElement:
    name: str
    namespace: str = ""
    ips: List[str] = field(default_factory=list)
    mac: str = ""
    interface: str = ""
    ipam_claim_reference: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def nad_key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NetworkSelectionElement":
        name = data.get("name")
        if not isinstance(name, str) or not name:
            raise NetworkSelectionParseError(
                f"network selection element without a name: {data!r}"
            )
        ips = data.get("ips") or []
        if not isinstance(ips, list) or not all(isinstance(ip, str) for ip in ips):
            raise NetworkSelectionParseError(
                f"network selection element {name!r} has invalid ips: {ips!r}"
            )
        return cls(
            name=name,
            namespace=str(data.get("namespace") or ""),
            ips=list(ips),
            mac=str(data.get("mac") or ""),
            interface=str(data.get("interface") or ""),
            ipam_claim_reference=str(data.get("ipam-claim-reference") or ""),
            extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
        )

    def to_dict(self) -> Dict[str, Any]:
        # Key order follows the Multus NetworkSelectionElement serialisation.
        data: Dict[str, Any] = {"name": self.name}
        if self.namespace:
            data["namespace"] = self.namespace
        if self.ips:
            data["ips"] = list(self.ips)
        if self.mac:
            data["mac"] = self.mac
        if self.interface:
            data["interface"] = self.interface
        data.update(self.extra)
        if self.ipam_claim_reference:
            data["ipam-claim-reference"] = self.ipam_claim_reference
        return data


def parse_network_selection(value: Optional[str], namespace: str) -> List[NetworkSelectionElement]:
    """Parse a network selection annotation.

    A missing or blank annotation means the pod requests no secondary
    networks and yields an empty list.  Elements without a namespace inherit
    ``namespace``.
    """

    if value is None or not value.strip():
        return []

    if value.lstrip().startswith("["):
        elements = _parse_json(value)
    else:
        elements = [_parse_short_form(item) for item in value.split(",")]

    for element in elements:
        if not element.namespace:
            element.namespace = namespace
    return elements


def _parse_json(value: str) -> List[NetworkSelectionElement]:
    try:
        data = json.loads(value)
    except ValueError as exc:
        raise NetworkSelectionParseError(
            f"failed to parse pod Network Attachment Selection Annotation JSON format: {exc}"
        ) from exc
    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        raise NetworkSelectionParseError(
            "network selection annotation must be a JSON list of objects"
        )
    return [NetworkSelectionElement.from_dict(item) for item in data]


def _parse_short_form(item: str) -> NetworkSelectionElement:
    item = item.strip()
    namespace, interface = "", ""

    parts = item.split("/")
    if len(parts) == 2:
        namespace, item = parts
    elif len(parts) > 2:
        raise NetworkSelectionParseError(f"Invalid network object (failed at '/'): {item}")

    parts = item.split("@")
    if len(parts) == 2:
        item, interface = parts
    elif len(parts) > 2:
        raise NetworkSelectionParseError(f"Invalid network object (failed at '@'): {item}")

    for unit in (namespace, item, interface):
        if unit and not _DNS1123_LABEL.match(unit):
            raise NetworkSelectionParseError(
                f"Failed to parse network object {unit!r}: not a DNS-1123 label"
            )
    if not item:
        raise NetworkSelectionParseError("network selection element without a name")

    return NetworkSelectionElement(name=item, namespace=namespace, interface=interface)


def render_network_selection(elements: Sequence[NetworkSelectionElement]) -> str:
    return json.dumps([e.to_dict() for e in elements], separators=(",", ":"))
