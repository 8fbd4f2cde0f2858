"""Adapter between the reconcile queue and the registry contract."""

from __future__ import annotations

from typing import Iterable, Optional, Protocol

from kubevirt_ipam.objects import NamespacedName, VirtualMachine, VirtualMachineInstance

from .base import ObjectHandler

RECONCILED_KINDS = (VirtualMachine.KIND, VirtualMachineInstance.KIND)


class KeyQueue(Protocol):
    def add(self, key: NamespacedName) -> None:
        ...


class ReconcileAdapter(ObjectHandler):
    """Turn VM and VMI events into reconcile requests.

    VMs and their VMIs share the ``namespace/name`` key, so every event for
    either kind enqueues the same key.  Deletions are enqueued too: the
    reconciler decides from the current state whether claims can go.
    """

    def __init__(self, queue: KeyQueue, *, kinds: Optional[Iterable[str]] = None) -> None:
        self._queue = queue
        self._kinds = frozenset(kinds if kinds is not None else RECONCILED_KINDS)

    @property
    def queue(self) -> KeyQueue:
        return self._queue

    def on_object_changed(self, kind: str, key: NamespacedName) -> None:
        if kind in self._kinds:
            self._queue.add(key)

    def on_object_deleted(self, kind: str, key: NamespacedName) -> None:
        if kind in self._kinds:
            self._queue.add(key)


def build_reconcile_adapter(
    queue: KeyQueue,
    *,
    kinds: Optional[Iterable[str]] = None,
) -> ReconcileAdapter:
    """Helper mirroring the builder pattern used for the other handlers."""

    return ReconcileAdapter(queue, kinds=kinds)
