"""IPAM claims controller runtime helpers."""

from .config import ControllerConfig, load_config  # noqa: F401

__all__ = [
    "ControllerConfig",
    "load_config",
]
