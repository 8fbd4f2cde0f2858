"""Abstract interfaces for object event handlers."""

from __future__ import annotations

from abc import ABC, abstractmethod

from kubevirt_ipam.objects import NamespacedName


class ObjectHandler(ABC):
    """Base class for handlers managed by :class:`HandlerRegistry`."""

    @abstractmethod
    def on_object_changed(self, kind: str, key: NamespacedName) -> None:
        """React to ``key`` of ``kind`` being created or updated."""

    @abstractmethod
    def on_object_deleted(self, kind: str, key: NamespacedName) -> None:
        """React to ``key`` of ``kind`` having been removed."""
