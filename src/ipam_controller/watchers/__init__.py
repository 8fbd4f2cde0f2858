"""Watcher implementations used by the IPAM claims controller."""

from .kube import ObjectWatcher  # noqa: F401

__all__ = ["ObjectWatcher"]
