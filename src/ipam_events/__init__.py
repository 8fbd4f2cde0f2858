"""Watch event plumbing between the controller runtime and the reconciler.

Watchers publish :mod:`ipam_events.events` instances into a
:class:`HandlerRegistry`; registered handlers translate them into work, which
for this project means enqueuing ``namespace/name`` keys on the reconcile
queue.
"""

from .events import GenericEvent, ObjectCreated, ObjectDeleted, ObjectUpdated  # noqa: F401
from .registry import HandlerRegistry  # noqa: F401

__all__ = [
    "GenericEvent",
    "HandlerRegistry",
    "ObjectCreated",
    "ObjectDeleted",
    "ObjectUpdated",
]
