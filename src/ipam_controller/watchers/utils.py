from __future__ import annotations

from typing import Any, Mapping, Optional

from ipam_events import GenericEvent, ObjectCreated, ObjectDeleted, ObjectUpdated
from ipam_events.registry import Event
from kubevirt_ipam.objects import NamespacedName

EVENT_TYPES = {
    "ADDED": ObjectCreated,
    "MODIFIED": ObjectUpdated,
    "DELETED": ObjectDeleted,
}


def key_from_object(obj: Mapping[str, Any]) -> Optional[NamespacedName]:
    metadata = obj.get("metadata") or {}
    name = metadata.get("name")
    if not name:
        return None
    return NamespacedName(metadata.get("namespace", ""), name)


def resource_version(obj: Mapping[str, Any]) -> Optional[str]:
    return (obj.get("metadata") or {}).get("resourceVersion")


def event_from_watch(kind: str, event_type: str, obj: Mapping[str, Any]) -> Optional[Event]:
    key = key_from_object(obj)
    if key is None:
        return None
    event_cls = EVENT_TYPES.get(event_type, GenericEvent)
    return event_cls(kind, key)
