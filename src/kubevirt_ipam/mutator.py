"""Admission mutator stamping IPAMClaim references onto virt-launcher pods.

The mutator runs synchronously inside pod admission.  It only reads cluster
state and rewrites pod annotations; IPAMClaims themselves are created by the
reconciler.  Every response is all-or-nothing: either the full set of
annotation changes is returned as a JSON patch, or the pod is admitted (or
rejected) untouched.
"""

from __future__ import annotations

import base64
import copy
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import jsonpatch

from .claims import compose_key
from .config import (
    MULTUS_DEFAULT_NETWORK_ANNOTATION,
    NETWORK_SELECTION_ANNOTATION,
    OVN_PRIMARY_NETWORK_IPAM_CLAIM_ANNOTATION,
    VM_DOMAIN_ANNOTATION,
    parse_config,
)
from .exceptions import IPAMError, NetworkSelectionParseError, NotFoundError
from .ips import vmi_interface_ip_requests
from .network_selection import (
    NetworkSelectionElement,
    parse_network_selection,
    render_network_selection,
)
from .objects import NamespacedName, NetworkAttachmentDefinition, VirtualMachineInstance
from .store import ClusterStore
from .udn import (
    default_network_selection,
    find_primary_network,
    primary_udn_interface_name,
)

LOG = logging.getLogger(__name__)

HTTP_OK = 200
HTTP_BAD_REQUEST = 400
HTTP_INTERNAL_SERVER_ERROR = 500


@dataclass
class AdmissionRequest:
    """The parts of an ``admission.k8s.io/v1`` request the mutator uses."""

    uid: str
    namespace: str
    object: Dict[str, Any]

    @classmethod
    def from_review(cls, review: Dict[str, Any]) -> "AdmissionRequest":
        request = review.get("request") or {}
        return cls(
            uid=request.get("uid", ""),
            namespace=request.get("namespace", ""),
            object=request.get("object") or {},
        )


@dataclass
class AdmissionResponse:
    allowed: bool
    code: Optional[int] = None
    message: str = ""
    patches: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def patch_type(self) -> Optional[str]:
        return "JSONPatch" if self.patches else None

    @classmethod
    def allow(cls, message: str) -> "AdmissionResponse":
        return cls(allowed=True, code=HTTP_OK, message=message)

    @classmethod
    def errored(cls, code: int, error: Any) -> "AdmissionResponse":
        return cls(allowed=False, code=code, message=str(error))

    @classmethod
    def patch_response(
        cls, original: Dict[str, Any], mutated: Dict[str, Any]
    ) -> "AdmissionResponse":
        return cls(allowed=True, patches=jsonpatch.make_patch(original, mutated).patch)

    def to_review(self, uid: str) -> Dict[str, Any]:
        """Render an ``AdmissionReview`` v1 response body."""

        response: Dict[str, Any] = {"uid": uid, "allowed": self.allowed}
        if self.code is not None:
            response["status"] = {"code": self.code, "message": self.message}
        if self.patches:
            response["patchType"] = self.patch_type
            response["patch"] = base64.b64encode(
                jsonpatch.JsonPatch(self.patches).to_string().encode("utf-8")
            ).decode("ascii")
        return {
            "apiVersion": "admission.k8s.io/v1",
            "kind": "AdmissionReview",
            "response": response,
        }


class _NADNotFound(Exception):
    """Internal signal: a requested attachment does not exist yet."""


class PodMutator:
    """Compute IPAMClaim references for virt-launcher pods.

    Parameters
    ----------
    store:
        Cluster store used for NAD and VMI lookups.
    default_net_nad_namespace:
        Namespace stamped on the synthetic default-network selection element
        of the primary user-defined network.
    vmi_lookup_retries / vmi_lookup_interval:
        The VMI can lag behind its launcher pod; not-found lookups are retried
        this many times, this many seconds apart.
    """

    def __init__(
        self,
        store: ClusterStore,
        default_net_nad_namespace: str = "",
        vmi_lookup_retries: int = 4,
        vmi_lookup_interval: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._default_net_nad_namespace = default_net_nad_namespace
        self._vmi_lookup_retries = max(1, vmi_lookup_retries)
        self._vmi_lookup_interval = vmi_lookup_interval
        self._sleep = sleep

    def handle(self, request: AdmissionRequest) -> AdmissionResponse:
        pod = request.object
        metadata = pod.get("metadata") or {}
        annotations: Dict[str, str] = dict(metadata.get("annotations") or {})
        namespace = metadata.get("namespace") or request.namespace
        pod_key = NamespacedName(namespace, metadata.get("name", ""))

        vm_name = annotations.get(VM_DOMAIN_ANNOTATION)
        if vm_name is None:
            LOG.debug("pod %s does not have the kubevirt VM annotation", pod_key)
            return AdmissionResponse.allow("not a VM")

        LOG.info("handling launcher pod %s of VM %s", pod_key, vm_name)
        vmi_key = NamespacedName(namespace, vm_name)
        vmi_cache: Dict[str, VirtualMachineInstance] = {}

        def vmi() -> VirtualMachineInstance:
            if "vmi" not in vmi_cache:
                vmi_cache["vmi"] = self._get_vmi(vmi_key)
            return vmi_cache["vmi"]

        selection_error: Optional[NetworkSelectionParseError] = None
        try:
            elements = parse_network_selection(
                annotations.get(NETWORK_SELECTION_ANNOTATION), namespace
            )
        except NetworkSelectionParseError as exc:
            LOG.warning("pod %s has a malformed network selection annotation: %s", pod_key, exc)
            selection_error = exc
            elements = []

        mutated = dict(annotations)
        try:
            secondary_changed = self._ensure_claim_references(elements, vm_name, vmi)
            if secondary_changed:
                mutated[NETWORK_SELECTION_ANNOTATION] = render_network_selection(elements)
            primary_changed = self._ensure_primary_udn(mutated, vmi)
        except _NADNotFound as exc:
            LOG.info("NAD %s not found, will hang on scheduler", exc)
            return AdmissionResponse.allow("carry on")
        except IPAMError as exc:
            if selection_error is not None:
                return self._bad_selection()
            if isinstance(exc, NotFoundError) and exc.kind == VirtualMachineInstance.PLURAL:
                return AdmissionResponse.errored(
                    HTTP_INTERNAL_SERVER_ERROR,
                    f'failed to access the VMI running in pod "{pod_key}": {exc}',
                )
            LOG.error("failed computing IPAMClaim references for pod %s: %s", pod_key, exc)
            return AdmissionResponse.errored(HTTP_INTERNAL_SERVER_ERROR, exc)

        if selection_error is not None and not primary_changed:
            return self._bad_selection()

        if not (secondary_changed or primary_changed):
            return AdmissionResponse.allow("carry on")
        if mutated == annotations:
            return AdmissionResponse.allow("mutation not needed")

        new_pod = copy.deepcopy(pod)
        new_pod.setdefault("metadata", {})["annotations"] = mutated
        LOG.info("new pod annotations for %s: %s", pod_key, mutated)
        return AdmissionResponse.patch_response(pod, new_pod)

    @staticmethod
    def _bad_selection() -> AdmissionResponse:
        return AdmissionResponse.errored(
            HTTP_BAD_REQUEST, "failed to parse pod network selection elements"
        )

    # ------------------------------------------------------------------
    # Secondary networks
    # ------------------------------------------------------------------
    def _ensure_claim_references(
        self,
        elements: List[NetworkSelectionElement],
        vm_name: str,
        vmi: Callable[[], VirtualMachineInstance],
    ) -> bool:
        changed = False
        for element in elements:
            nad_key = NamespacedName(element.namespace, element.name)
            try:
                nad = self._store.get(NetworkAttachmentDefinition, nad_key)
            except NotFoundError:
                raise _NADNotFound(str(nad_key)) from None

            cfg = parse_config(nad.config)
            if not cfg.allow_persistent_ips:
                continue

            LOG.info("will request persistent IPs (NAD=%s, network=%s)", nad_key, cfg.name)
            logical_name = secondary_networks_by_nad(vmi()).get(str(nad_key))
            if logical_name is None:
                LOG.info("no VMI network found for NAD %s", nad_key)
                continue

            element.ipam_claim_reference = compose_key(vm_name, logical_name)
            LOG.info(
                "requesting claim %s (NAD=%s, network=%s)",
                element.ipam_claim_reference,
                nad_key,
                cfg.name,
            )
            changed = True
        return changed

    # ------------------------------------------------------------------
    # Primary user-defined network
    # ------------------------------------------------------------------
    def _ensure_primary_udn(
        self,
        annotations: Dict[str, str],
        vmi: Callable[[], VirtualMachineInstance],
    ) -> bool:
        instance = vmi()
        primary = find_primary_network(self._store, instance.namespace)
        if primary is None:
            LOG.debug("no primary network config in namespace %s", instance.namespace)
            return False

        iface_name = primary_udn_interface_name(instance, primary)
        if iface_name is None:
            return False
        iface = instance.spec.interface(iface_name)
        if iface is None:
            LOG.info("VMI %s has no interface for network %s", instance.key, iface_name)
            return False

        ips = vmi_interface_ip_requests(instance, iface_name, primary.config)
        claim_name = compose_key(instance.name, iface_name)

        element = default_network_selection(
            self._default_net_nad_namespace, iface.mac_address, claim_name, ips
        )
        annotations[MULTUS_DEFAULT_NETWORK_ANNOTATION] = render_network_selection([element])
        # Older OVN-Kubernetes releases only read this annotation.
        annotations[OVN_PRIMARY_NETWORK_IPAM_CLAIM_ANNOTATION] = claim_name
        LOG.info(
            "primary UDN %s on interface %s uses IPAMClaim %s",
            primary.config.name,
            iface_name,
            claim_name,
        )
        return True

    def _get_vmi(self, key: NamespacedName) -> VirtualMachineInstance:
        attempt = 1
        while True:
            try:
                return self._store.get(VirtualMachineInstance, key)
            except NotFoundError:
                if attempt >= self._vmi_lookup_retries:
                    raise
                LOG.warning(
                    "VMI %s not found (attempt %d/%d), retrying",
                    key,
                    attempt,
                    self._vmi_lookup_retries,
                )
            attempt += 1
            self._sleep(self._vmi_lookup_interval)


def secondary_networks_by_nad(vmi: VirtualMachineInstance) -> Dict[str, str]:
    """Map ``<namespace>/<nad>`` to the VMI logical network using it."""

    indexed: Dict[str, str] = {}
    for network in vmi.spec.networks:
        if network.multus is None or network.multus.default:
            continue
        indexed[str(network.multus.namespaced_name(vmi.namespace))] = network.name
    return indexed
