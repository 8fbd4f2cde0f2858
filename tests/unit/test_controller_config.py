from pathlib import Path

import pytest

from ipam_controller.config import load_config


def test_load_config(tmp_path: Path):
    config_path = tmp_path / "controller.yaml"
    config_path.write_text(
        """
kubeconfig: /etc/kubernetes/admin.conf
client_timeout: 2.5
workers: 4
backoff_base: 0.01
backoff_max: 60
default_net_nad_namespace: openshift-ovn-kubernetes
vmi_lookup_retries: 6
vmi_lookup_interval: 0.25
webhook:
  host: 127.0.0.1
  port: 8443
  cert_dir: /tmp/k8s-webhook-server/serving-certs
watchers:
  - kind: VirtualMachineInstance
    timeout_seconds: 60
"""
    )

    cfg = load_config(config_path)

    assert cfg.kubeconfig == Path("/etc/kubernetes/admin.conf")
    assert cfg.client_timeout == pytest.approx(2.5)
    assert cfg.workers == 4
    assert cfg.backoff_base == pytest.approx(0.01)
    assert cfg.backoff_max == pytest.approx(60.0)
    assert cfg.default_net_nad_namespace == "openshift-ovn-kubernetes"
    assert cfg.vmi_lookup_retries == 6
    assert cfg.vmi_lookup_interval == pytest.approx(0.25)
    assert cfg.webhook.host == "127.0.0.1"
    assert cfg.webhook.port == 8443
    assert cfg.webhook.tls_files == (
        Path("/tmp/k8s-webhook-server/serving-certs/tls.crt"),
        Path("/tmp/k8s-webhook-server/serving-certs/tls.key"),
    )
    assert len(cfg.watchers) == 1
    assert cfg.watchers[0].kind == "VirtualMachineInstance"
    assert cfg.watchers[0].timeout_seconds == 60


def test_empty_config_uses_defaults(tmp_path: Path):
    config_path = tmp_path / "controller.yaml"
    config_path.write_text("")

    cfg = load_config(config_path)

    assert cfg.kubeconfig is None
    assert cfg.client_timeout == pytest.approx(1.0)
    assert cfg.workers == 2
    assert cfg.backoff_base == pytest.approx(0.005)
    assert cfg.backoff_max == pytest.approx(1000.0)
    assert cfg.vmi_lookup_retries == 4
    assert cfg.webhook.enabled is True
    assert cfg.webhook.port == 9443
    assert cfg.webhook.tls_files is None
    assert [w.kind for w in cfg.watchers] == ["VirtualMachine", "VirtualMachineInstance"]


@pytest.mark.parametrize(
    "content, message",
    [
        ("- not\n- a mapping\n", "must be a mapping"),
        ("workers: 0\n", "'workers'"),
        ("backoff_base: 10\nbackoff_max: 1\n", "'backoff_base'"),
        ("webhook:\n  port: 70000\n", "out of range"),
        ("watchers:\n  - kind: Pod\n", "Unsupported watcher kind"),
        ("watchers: {}\n", "must be a list"),
    ],
)
def test_invalid_config(tmp_path: Path, content, message):
    config_path = tmp_path / "controller.yaml"
    config_path.write_text(content)

    with pytest.raises(ValueError) as excinfo:
        load_config(config_path)

    assert message in str(excinfo.value)


def test_load_oslo_config(tmp_path: Path):
    config_path = tmp_path / "controller.conf"
    config_path.write_text(
        """
[DEFAULT]
workers = 3
default_net_nad_namespace = ovn-kubernetes
watch_kinds = VirtualMachine
watch_timeout = 120

[webhook]
port = 10443
cert_dir = /var/run/certs
"""
    )

    cfg = load_config(config_path)

    assert cfg.workers == 3
    assert cfg.client_timeout == pytest.approx(1.0)
    assert cfg.default_net_nad_namespace == "ovn-kubernetes"
    assert cfg.webhook.port == 10443
    assert cfg.webhook.cert_dir == Path("/var/run/certs")
    assert [(w.kind, w.timeout_seconds) for w in cfg.watchers] == [("VirtualMachine", 120)]
