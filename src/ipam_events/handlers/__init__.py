"""Handlers exposed to the registry."""

from .base import ObjectHandler  # noqa: F401
from .reconcile_adapter import ReconcileAdapter, build_reconcile_adapter  # noqa: F401

__all__ = [
    "ObjectHandler",
    "ReconcileAdapter",
    "build_reconcile_adapter",
]
