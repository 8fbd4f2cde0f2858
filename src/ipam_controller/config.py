"""Configuration loader for the IPAM claims controller."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import yaml

from kubevirt_ipam.objects import VirtualMachine, VirtualMachineInstance

from . import opts

OSLO_SUFFIXES = (".conf", ".ini")

WATCHABLE_KINDS = (VirtualMachine.KIND, VirtualMachineInstance.KIND)


@dataclass
class WebhookConfig:
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 9443
    cert_dir: Optional[Path] = None

    @property
    def tls_files(self) -> Optional[tuple]:
        """``(certfile, keyfile)`` inside ``cert_dir``, if one is set."""

        if self.cert_dir is None:
            return None
        return self.cert_dir / "tls.crt", self.cert_dir / "tls.key"


@dataclass
class WatcherConfig:
    kind: str
    timeout_seconds: int = 300


@dataclass
class ControllerConfig:
    """Runtime settings.

    Attributes
    ----------
    kubeconfig:
        Path to a kubeconfig; ``None`` selects the in-cluster configuration.
    client_timeout:
        Per-call timeout in seconds applied to reconciler store calls.
    workers:
        Number of reconcile worker threads.
    backoff_base / backoff_max:
        Bounds of the per-key exponential requeue delay, in seconds.
    default_net_nad_namespace:
        Namespace stamped on the primary UDN default-network element.
    vmi_lookup_retries / vmi_lookup_interval:
        Admission-time VMI not-found retry policy.
    """

    kubeconfig: Optional[Path] = None
    client_timeout: float = 1.0
    workers: int = 2
    backoff_base: float = 0.005
    backoff_max: float = 1000.0
    default_net_nad_namespace: str = ""
    vmi_lookup_retries: int = 4
    vmi_lookup_interval: float = 0.5
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    watchers: Sequence[WatcherConfig] = field(
        default_factory=lambda: [WatcherConfig(kind) for kind in WATCHABLE_KINDS]
    )


def _parse_webhook(section: dict) -> WebhookConfig:
    port = int(section.get("port", 9443))
    if not 0 < port < 65536:
        raise ValueError(f"webhook port {port} out of range")
    cert_dir = section.get("cert_dir")
    return WebhookConfig(
        enabled=bool(section.get("enabled", True)),
        host=str(section.get("host", "0.0.0.0")),
        port=port,
        cert_dir=Path(cert_dir) if cert_dir else None,
    )


def _parse_watchers(entries: Iterable[dict]) -> List[WatcherConfig]:
    watchers: List[WatcherConfig] = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValueError("watcher entries must be mappings")
        kind = str(entry.get("kind", ""))
        if kind not in WATCHABLE_KINDS:
            raise ValueError(
                f"Unsupported watcher kind '{kind}', expected one of {', '.join(WATCHABLE_KINDS)}"
            )
        watchers.append(
            WatcherConfig(kind=kind, timeout_seconds=int(entry.get("timeout_seconds", 300)))
        )
    return watchers


def parse_config(data: dict) -> ControllerConfig:
    if not isinstance(data, dict):
        raise ValueError("Controller configuration must be a mapping")

    kubeconfig = data.get("kubeconfig")
    config = ControllerConfig(
        kubeconfig=Path(kubeconfig) if kubeconfig else None,
        client_timeout=float(data.get("client_timeout", 1.0)),
        workers=int(data.get("workers", 2)),
        backoff_base=float(data.get("backoff_base", 0.005)),
        backoff_max=float(data.get("backoff_max", 1000.0)),
        default_net_nad_namespace=str(data.get("default_net_nad_namespace") or ""),
        vmi_lookup_retries=int(data.get("vmi_lookup_retries", 4)),
        vmi_lookup_interval=float(data.get("vmi_lookup_interval", 0.5)),
    )

    if config.client_timeout <= 0:
        raise ValueError("'client_timeout' must be positive")
    if config.workers < 1:
        raise ValueError("'workers' must be at least 1")
    if config.backoff_base <= 0 or config.backoff_max < config.backoff_base:
        raise ValueError("'backoff_base' must be positive and not exceed 'backoff_max'")
    if config.vmi_lookup_retries < 1:
        raise ValueError("'vmi_lookup_retries' must be at least 1")

    webhook_section = data.get("webhook", {})
    if not isinstance(webhook_section, dict):
        raise ValueError("'webhook' section must be a mapping")
    config.webhook = _parse_webhook(webhook_section)

    if "watchers" in data:
        watchers_section = data["watchers"]
        if not isinstance(watchers_section, list):
            raise ValueError("'watchers' section must be a list")
        config.watchers = _parse_watchers(watchers_section)

    return config


def load_config(path: Path) -> ControllerConfig:
    path = Path(path)
    if path.suffix in OSLO_SUFFIXES:
        return parse_config(opts.read_config_file(path))

    data = yaml.safe_load(path.read_text())
    if data is None:
        data = {}
    return parse_config(data)
