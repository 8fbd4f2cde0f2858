"""Tiny handler registry fanning watch events out to handlers."""

from __future__ import annotations

from typing import Dict, Union

from .events import GenericEvent, ObjectCreated, ObjectDeleted, ObjectUpdated
from .handlers import ObjectHandler

Event = Union[ObjectCreated, ObjectUpdated, ObjectDeleted, GenericEvent]


class HandlerRegistry:
    """Dispatch object events to registered handlers."""

    def __init__(self) -> None:
        self._handlers: Dict[str, ObjectHandler] = {}

    def register(self, name: str, handler: ObjectHandler) -> None:
        if name in self._handlers:
            raise ValueError(f"handler '{name}' already registered")
        self._handlers[name] = handler

    def unregister(self, name: str) -> None:
        self._handlers.pop(name, None)

    def handle(self, event: Event) -> None:
        if isinstance(event, (ObjectCreated, ObjectUpdated)):
            self._on_object_changed(event)
        elif isinstance(event, ObjectDeleted):
            self._on_object_deleted(event)
        elif isinstance(event, GenericEvent):
            return
        else:
            raise TypeError(f"Unsupported event type: {type(event)!r}")

    def _on_object_changed(self, event: Union[ObjectCreated, ObjectUpdated]) -> None:
        for handler in self._handlers.values():
            handler.on_object_changed(event.kind, event.key)

    def _on_object_deleted(self, event: ObjectDeleted) -> None:
        for handler in self._handlers.values():
            handler.on_object_deleted(event.kind, event.key)
