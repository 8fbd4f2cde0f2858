"""Kubernetes API backed cluster store."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar

import kubernetes.config
import urllib3
from kubernetes import client
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from kubevirt_ipam.exceptions import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    StoreError,
    StoreTimeoutError,
)
from kubevirt_ipam.objects import KubeObject, NamespacedName
from kubevirt_ipam.store import ClusterStore

LOG = logging.getLogger(__name__)

T = TypeVar("T", bound=KubeObject)


def load_api_client(kubeconfig: Optional[Path] = None) -> client.ApiClient:
    """Build an API client from ``kubeconfig`` or the in-cluster service account."""

    if kubeconfig is not None:
        kubernetes.config.load_kube_config(config_file=str(kubeconfig))
        LOG.info("loaded kubeconfig %s", kubeconfig)
    else:
        try:
            kubernetes.config.load_incluster_config()
            LOG.info("loaded in-cluster configuration")
        except ConfigException:
            kubernetes.config.load_kube_config()
            LOG.info("loaded default kubeconfig")
    return client.ApiClient()


def label_selector(labels: Optional[Mapping[str, str]]) -> Optional[str]:
    if not labels:
        return None
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


class KubeStore(ClusterStore):
    """:class:`ClusterStore` on top of ``CustomObjectsApi``.

    Every modelled kind is a custom resource, so a single API class covers
    VMs, VMIs, network-attachment definitions and IPAMClaims.
    """

    def __init__(self, api: client.CustomObjectsApi) -> None:
        self._api = api

    @staticmethod
    def _coordinates(cls: Type[KubeObject], namespace: str) -> Dict[str, Any]:
        return {
            "group": cls.GROUP,
            "version": cls.VERSION,
            "namespace": namespace,
            "plural": cls.PLURAL,
        }

    @staticmethod
    def _timeout(timeout: Optional[float]) -> Dict[str, Any]:
        return {"_request_timeout": timeout} if timeout is not None else {}

    def _call(self, verb: str, cls: Type[KubeObject], key: NamespacedName, fn, **kwargs):
        try:
            return fn(**kwargs)
        except ApiException as exc:
            if exc.status == 404:
                raise NotFoundError(cls.PLURAL, key.namespace, key.name) from exc
            if exc.status == 409 and verb == "create":
                raise AlreadyExistsError(cls.PLURAL, key.namespace, key.name) from exc
            if exc.status == 409:
                raise ConflictError(
                    f'{verb} {cls.PLURAL} "{key}" conflicted: {exc.reason}'
                ) from exc
            raise StoreError(
                f'{verb} {cls.PLURAL} "{key}" failed ({exc.status}): {exc.reason}'
            ) from exc
        except urllib3.exceptions.TimeoutError as exc:
            raise StoreTimeoutError(f'{verb} {cls.PLURAL} "{key}" timed out') from exc
        except urllib3.exceptions.HTTPError as exc:
            raise StoreError(f'{verb} {cls.PLURAL} "{key}" failed: {exc}') from exc

    def get(self, cls: Type[T], key: NamespacedName, timeout: Optional[float] = None) -> T:
        data = self._call(
            "get",
            cls,
            key,
            self._api.get_namespaced_custom_object,
            name=key.name,
            **self._coordinates(cls, key.namespace),
            **self._timeout(timeout),
        )
        return cls.from_dict(data)

    def list(
        self,
        cls: Type[T],
        namespace: str,
        labels: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> List[T]:
        kwargs = dict(self._coordinates(cls, namespace), **self._timeout(timeout))
        selector = label_selector(labels)
        if selector:
            kwargs["label_selector"] = selector
        data = self._call(
            "list",
            cls,
            NamespacedName(namespace, ""),
            self._api.list_namespaced_custom_object,
            **kwargs,
        )
        return [cls.from_dict(item) for item in data.get("items") or []]

    def create(self, obj: T, timeout: Optional[float] = None) -> T:
        cls = type(obj)
        data = self._call(
            "create",
            cls,
            obj.key,
            self._api.create_namespaced_custom_object,
            body=obj.to_dict(),
            **self._coordinates(cls, obj.namespace),
            **self._timeout(timeout),
        )
        return cls.from_dict(data)

    def update(self, obj: T, timeout: Optional[float] = None) -> T:
        cls = type(obj)
        data = self._call(
            "update",
            cls,
            obj.key,
            self._api.replace_namespaced_custom_object,
            name=obj.name,
            body=obj.to_api_dict(),
            **self._coordinates(cls, obj.namespace),
            **self._timeout(timeout),
        )
        return cls.from_dict(data)
