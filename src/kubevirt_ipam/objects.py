"""Typed views over the Kubernetes objects the controller reads and writes.

Only the fields the claim lifecycle cares about are modelled.  Each object
converts from and to the JSON shape served by the API server so the same
classes back both the in-memory store used in tests and the real cluster
store.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional

import jsonpatch

VM_LABEL = "kubevirt.io/vm"


@dataclass(frozen=True)
class NamespacedName:
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class OwnerReference:
    api_version: str
    kind: str
    name: str
    uid: str
    controller: Optional[bool] = None
    block_owner_deletion: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OwnerReference":
        return cls(
            api_version=data.get("apiVersion", ""),
            kind=data.get("kind", ""),
            name=data.get("name", ""),
            uid=data.get("uid", ""),
            controller=data.get("controller"),
            block_owner_deletion=data.get("blockOwnerDeletion"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
        }
        if self.controller is not None:
            data["controller"] = self.controller
        if self.block_owner_deletion is not None:
            data["blockOwnerDeletion"] = self.block_owner_deletion
        return data


@dataclass
class ObjectMeta:
    name: str = ""
    namespace: str = ""
    uid: str = ""
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    finalizers: List[str] = field(default_factory=list)
    owner_references: List[OwnerReference] = field(default_factory=list)
    deletion_timestamp: Optional[str] = None
    resource_version: str = ""

    @property
    def key(self) -> NamespacedName:
        return NamespacedName(self.namespace, self.name)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ObjectMeta":
        data = data or {}
        return cls(
            name=data.get("name", ""),
            namespace=data.get("namespace", ""),
            uid=data.get("uid", ""),
            labels=dict(data.get("labels") or {}),
            annotations=dict(data.get("annotations") or {}),
            finalizers=list(data.get("finalizers") or []),
            owner_references=[
                OwnerReference.from_dict(ref)
                for ref in data.get("ownerReferences") or []
            ],
            deletion_timestamp=data.get("deletionTimestamp"),
            resource_version=data.get("resourceVersion", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name, "namespace": self.namespace}
        if self.uid:
            data["uid"] = self.uid
        if self.labels:
            data["labels"] = dict(self.labels)
        if self.annotations:
            data["annotations"] = dict(self.annotations)
        if self.finalizers:
            data["finalizers"] = list(self.finalizers)
        if self.owner_references:
            data["ownerReferences"] = [ref.to_dict() for ref in self.owner_references]
        if self.deletion_timestamp:
            data["deletionTimestamp"] = self.deletion_timestamp
        if self.resource_version:
            data["resourceVersion"] = self.resource_version
        return data


# ----------------------------------------------------------------------
# KubeVirt
# ----------------------------------------------------------------------
@dataclass
class MultusNetwork:
    network_name: str
    default: bool = False

    def namespaced_name(self, fallback_namespace: str) -> NamespacedName:
        """Resolve ``[<namespace>/]<name>`` against ``fallback_namespace``."""

        parts = self.network_name.split("/")
        if len(parts) == 2:
            return NamespacedName(parts[0], parts[1])
        return NamespacedName(fallback_namespace, self.network_name)


@dataclass
class Network:
    """A logical network declared on a VM: pod network or Multus attachment."""

    name: str
    pod: bool = False
    multus: Optional[MultusNetwork] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Network":
        multus = data.get("multus")
        return cls(
            name=data.get("name", ""),
            pod=data.get("pod") is not None,
            multus=MultusNetwork(
                network_name=multus.get("networkName", ""),
                default=bool(multus.get("default", False)),
            )
            if multus is not None
            else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name}
        if self.pod:
            data["pod"] = {}
        if self.multus is not None:
            multus: Dict[str, Any] = {"networkName": self.multus.network_name}
            if self.multus.default:
                multus["default"] = True
            data["multus"] = multus
        return data


@dataclass
class Interface:
    name: str
    mac_address: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Interface":
        return cls(name=data.get("name", ""), mac_address=data.get("macAddress", ""))

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name}
        if self.mac_address:
            data["macAddress"] = self.mac_address
        return data


@dataclass
class VMISpec:
    networks: List[Network] = field(default_factory=list)
    interfaces: List[Interface] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "VMISpec":
        data = data or {}
        devices = (data.get("domain") or {}).get("devices") or {}
        return cls(
            networks=[Network.from_dict(n) for n in data.get("networks") or []],
            interfaces=[Interface.from_dict(i) for i in devices.get("interfaces") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": {
                "devices": {"interfaces": [i.to_dict() for i in self.interfaces]}
            },
            "networks": [n.to_dict() for n in self.networks],
        }

    def pod_network(self) -> Optional[Network]:
        return next((n for n in self.networks if n.pod), None)

    def interface(self, name: str) -> Optional[Interface]:
        return next((i for i in self.interfaces if i.name == name), None)


class KubeObject:
    """Mixin providing the type metadata shared by all modelled objects."""

    GROUP: ClassVar[str] = ""
    VERSION: ClassVar[str] = ""
    KIND: ClassVar[str] = ""
    PLURAL: ClassVar[str] = ""

    metadata: ObjectMeta

    @classmethod
    def api_version(cls) -> str:
        return f"{cls.GROUP}/{cls.VERSION}" if cls.GROUP else cls.VERSION

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def key(self) -> NamespacedName:
        return self.metadata.key

    def _header(self) -> Dict[str, Any]:
        return {
            "apiVersion": self.api_version(),
            "kind": self.KIND,
            "metadata": self.metadata.to_dict(),
        }

    def owner_reference(self) -> OwnerReference:
        """Controller owner reference pointing at this object."""

        return OwnerReference(
            api_version=self.api_version(),
            kind=self.KIND,
            name=self.metadata.name,
            uid=self.metadata.uid,
            controller=True,
            block_owner_deletion=True,
        )

    def deepcopy(self):
        return copy.deepcopy(self)

    def to_api_dict(self) -> Dict[str, Any]:
        """Serialise for a write back to the API server.

        Objects decoded from the server keep the document they were read from
        in ``raw``.  Only the modelled fields that changed since then are
        applied to that document, so fields this module does not know about
        survive a read-modify-write cycle.
        """

        raw = getattr(self, "raw", None)
        if not raw:
            return self.to_dict()
        read = type(self).from_dict(raw).to_dict()
        return jsonpatch.make_patch(read, self.to_dict()).apply(raw)


@dataclass
class VirtualMachine(KubeObject):
    GROUP: ClassVar[str] = "kubevirt.io"
    VERSION: ClassVar[str] = "v1"
    KIND: ClassVar[str] = "VirtualMachine"
    PLURAL: ClassVar[str] = "virtualmachines"

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    template: VMISpec = field(default_factory=VMISpec)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VirtualMachine":
        template = (data.get("spec") or {}).get("template") or {}
        return cls(
            metadata=ObjectMeta.from_dict(data.get("metadata")),
            template=VMISpec.from_dict(template.get("spec")),
            raw=copy.deepcopy(data),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = self._header()
        data["spec"] = {"template": {"spec": self.template.to_dict()}}
        return data


@dataclass
class VirtualMachineInstance(KubeObject):
    GROUP: ClassVar[str] = "kubevirt.io"
    VERSION: ClassVar[str] = "v1"
    KIND: ClassVar[str] = "VirtualMachineInstance"
    PLURAL: ClassVar[str] = "virtualmachineinstances"

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: VMISpec = field(default_factory=VMISpec)
    active_pods: Dict[str, str] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VirtualMachineInstance":
        status = data.get("status") or {}
        return cls(
            metadata=ObjectMeta.from_dict(data.get("metadata")),
            spec=VMISpec.from_dict(data.get("spec")),
            active_pods=dict(status.get("activePods") or {}),
            raw=copy.deepcopy(data),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = self._header()
        data["spec"] = self.spec.to_dict()
        if self.active_pods:
            data["status"] = {"activePods": dict(self.active_pods)}
        return data


# ----------------------------------------------------------------------
# Network plumbing
# ----------------------------------------------------------------------
@dataclass
class NetworkAttachmentDefinition(KubeObject):
    GROUP: ClassVar[str] = "k8s.cni.cncf.io"
    VERSION: ClassVar[str] = "v1"
    KIND: ClassVar[str] = "NetworkAttachmentDefinition"
    PLURAL: ClassVar[str] = "network-attachment-definitions"

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    config: str = ""
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NetworkAttachmentDefinition":
        return cls(
            metadata=ObjectMeta.from_dict(data.get("metadata")),
            config=(data.get("spec") or {}).get("config", ""),
            raw=copy.deepcopy(data),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = self._header()
        data["spec"] = {"config": self.config}
        return data


@dataclass
class IPAMClaim(KubeObject):
    GROUP: ClassVar[str] = "k8s.cni.cncf.io"
    VERSION: ClassVar[str] = "v1alpha1"
    KIND: ClassVar[str] = "IPAMClaim"
    PLURAL: ClassVar[str] = "ipamclaims"

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    network: str = ""
    interface: str = ""
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IPAMClaim":
        spec = data.get("spec") or {}
        return cls(
            metadata=ObjectMeta.from_dict(data.get("metadata")),
            network=spec.get("network", ""),
            interface=spec.get("interface", ""),
            raw=copy.deepcopy(data),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = self._header()
        spec: Dict[str, Any] = {"network": self.network}
        if self.interface:
            spec["interface"] = self.interface
        data["spec"] = spec
        return data


KINDS = {
    cls.KIND: cls
    for cls in (
        VirtualMachine,
        VirtualMachineInstance,
        NetworkAttachmentDefinition,
        IPAMClaim,
    )
}
