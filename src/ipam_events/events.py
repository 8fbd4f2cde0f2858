"""Event primitives consumed by the handler registry."""

from __future__ import annotations

from dataclasses import dataclass

from kubevirt_ipam.objects import NamespacedName


@dataclass(frozen=True)
class ObjectCreated:
    """A watched object appeared (or was listed during a resync)."""

    kind: str
    key: NamespacedName


@dataclass(frozen=True)
class ObjectUpdated:
    kind: str
    key: NamespacedName


@dataclass(frozen=True)
class ObjectDeleted:
    """A watched object is gone from the API server."""

    kind: str
    key: NamespacedName


@dataclass(frozen=True)
class GenericEvent:
    """Bookmarks and other watch noise; handlers never see these."""

    kind: str
    key: NamespacedName
