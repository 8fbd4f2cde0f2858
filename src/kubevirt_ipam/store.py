"""Cluster object store abstraction.

The reconciler and the admission mutator never talk to the Kubernetes API
directly; they receive a :class:`ClusterStore` at construction time.  The
runtime wires :class:`ipam_controller.kube.KubeStore`; tests and the dry-run
script use :class:`InMemoryStore`.
"""

from __future__ import annotations

import itertools
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, List, Mapping, Optional, Tuple, Type, TypeVar

from .exceptions import AlreadyExistsError, ConflictError, NotFoundError
from .objects import KINDS, KubeObject, NamespacedName

T = TypeVar("T", bound=KubeObject)


class ClusterStore(ABC):
    """Strongly consistent, namespaced object store.

    ``timeout`` bounds a single call in seconds; implementations raise
    :class:`~kubevirt_ipam.exceptions.StoreTimeoutError` when it expires.
    """

    @abstractmethod
    def get(self, cls: Type[T], key: NamespacedName, timeout: Optional[float] = None) -> T:
        """Return the object stored under ``key`` or raise ``NotFoundError``."""

    @abstractmethod
    def list(
        self,
        cls: Type[T],
        namespace: str,
        labels: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> List[T]:
        """Return every object of ``cls`` in ``namespace`` matching ``labels``."""

    @abstractmethod
    def create(self, obj: T, timeout: Optional[float] = None) -> T:
        """Create ``obj`` or raise ``AlreadyExistsError``."""

    @abstractmethod
    def update(self, obj: T, timeout: Optional[float] = None) -> T:
        """Replace ``obj``; raise ``ConflictError`` on a stale resource version."""


def get_or_none(
    store: ClusterStore,
    cls: Type[T],
    key: NamespacedName,
    timeout: Optional[float] = None,
) -> Optional[T]:
    try:
        return store.get(cls, key, timeout=timeout)
    except NotFoundError:
        return None


class InMemoryStore(ClusterStore):
    """Thread-safe dictionary backed store with Kubernetes-like semantics.

    Objects are kept serialised so callers never share mutable state with the
    store.  Creation assigns a UID and every write bumps the resource
    version.  Deleting an object that still carries finalizers only stamps a
    deletion timestamp; the object disappears once an update clears its last
    finalizer, mirroring the API server's garbage collection.
    """

    def __init__(self, *objects: KubeObject) -> None:
        self._lock = Lock()
        self._objects: Dict[Tuple[str, str, str], dict] = {}
        self._versions = itertools.count(1)
        self.add(*objects)

    @staticmethod
    def _key(kind: str, namespace: str, name: str) -> Tuple[str, str, str]:
        return kind, namespace, name

    def _stamp(self, data: dict) -> dict:
        data["metadata"]["resourceVersion"] = str(next(self._versions))
        return data

    def add(self, *objects: KubeObject) -> None:
        """Seed objects as-is, keeping any UID they already carry."""

        with self._lock:
            for obj in objects:
                data = obj.to_dict()
                if not obj.metadata.uid:
                    data["metadata"]["uid"] = str(uuid.uuid4())
                key = self._key(obj.KIND, obj.namespace, obj.name)
                self._objects[key] = self._stamp(data)

    def get(self, cls: Type[T], key: NamespacedName, timeout: Optional[float] = None) -> T:
        with self._lock:
            data = self._objects.get(self._key(cls.KIND, key.namespace, key.name))
            if data is None:
                raise NotFoundError(cls.PLURAL, key.namespace, key.name)
            return cls.from_dict(data)

    def list(
        self,
        cls: Type[T],
        namespace: str,
        labels: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> List[T]:
        selector = dict(labels or {})
        with self._lock:
            items = [
                cls.from_dict(data)
                for (kind, ns, _), data in sorted(self._objects.items())
                if kind == cls.KIND and ns == namespace
            ]
        return [
            item
            for item in items
            if all(item.metadata.labels.get(k) == v for k, v in selector.items())
        ]

    def create(self, obj: T, timeout: Optional[float] = None) -> T:
        key = self._key(obj.KIND, obj.namespace, obj.name)
        with self._lock:
            if key in self._objects:
                raise AlreadyExistsError(obj.PLURAL, obj.namespace, obj.name)
            data = obj.to_dict()
            data["metadata"]["uid"] = str(uuid.uuid4())
            data["metadata"].pop("deletionTimestamp", None)
            self._objects[key] = self._stamp(data)
            return type(obj).from_dict(self._objects[key])

    def update(self, obj: T, timeout: Optional[float] = None) -> T:
        key = self._key(obj.KIND, obj.namespace, obj.name)
        with self._lock:
            current = self._objects.get(key)
            if current is None:
                raise NotFoundError(obj.PLURAL, obj.namespace, obj.name)
            current_version = current["metadata"]["resourceVersion"]
            if obj.metadata.resource_version and obj.metadata.resource_version != current_version:
                raise ConflictError(
                    f'the object has been modified: {obj.PLURAL} "{obj.namespace}/{obj.name}"'
                )
            data = obj.to_api_dict()
            data["metadata"]["uid"] = current["metadata"].get("uid", "")
            deletion = current["metadata"].get("deletionTimestamp")
            if deletion:
                data["metadata"]["deletionTimestamp"] = deletion
                if not data["metadata"].get("finalizers"):
                    del self._objects[key]
                    return type(obj).from_dict(data)
            self._objects[key] = self._stamp(data)
            return type(obj).from_dict(self._objects[key])

    def delete(self, cls: Type[T], key: NamespacedName) -> None:
        store_key = self._key(cls.KIND, key.namespace, key.name)
        with self._lock:
            data = self._objects.get(store_key)
            if data is None:
                raise NotFoundError(cls.PLURAL, key.namespace, key.name)
            if data["metadata"].get("finalizers"):
                data["metadata"].setdefault(
                    "deletionTimestamp",
                    datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
                )
                self._stamp(data)
            else:
                del self._objects[store_key]

    def dump(self, kind: Optional[str] = None) -> List[KubeObject]:
        """Every stored object, optionally restricted to ``kind``."""

        with self._lock:
            return [
                KINDS[k].from_dict(data)
                for (k, _, _), data in sorted(self._objects.items())
                if kind is None or k == kind
            ]
