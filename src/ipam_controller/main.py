"""Entry point for the KubeVirt IPAM claims controller."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path
from threading import Event, Thread
from typing import List, Optional

import uvicorn
from kubernetes import client

from ipam_events import HandlerRegistry
from ipam_events.handlers import build_reconcile_adapter
from kubevirt_ipam.mutator import PodMutator
from kubevirt_ipam.objects import KINDS
from kubevirt_ipam.reconciler import VMIReconciler

from .config import ControllerConfig, WebhookConfig, load_config
from .kube import KubeStore, load_api_client
from .queue import ReconcileQueue
from .watchers import ObjectWatcher
from .webhook import create_app

LOG = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )


def _build_server(app, webhook: WebhookConfig) -> uvicorn.Server:
    options = {"host": webhook.host, "port": webhook.port, "log_config": None}
    tls = webhook.tls_files
    if tls is not None:
        certfile, keyfile = tls
        options["ssl_certfile"] = str(certfile)
        options["ssl_keyfile"] = str(keyfile)
    else:
        LOG.warning("no webhook cert_dir configured, serving plain HTTP")
    return uvicorn.Server(uvicorn.Config(app, **options))


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Run the KubeVirt IPAM claims controller")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to the controller configuration file (YAML, or oslo .conf/.ini)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    config = load_config(args.config) if args.config else ControllerConfig()

    api = client.CustomObjectsApi(load_api_client(config.kubeconfig))
    store = KubeStore(api)

    reconciler = VMIReconciler(store, timeout=config.client_timeout)
    queue = ReconcileQueue(
        reconciler.reconcile,
        workers=config.workers,
        backoff_base=config.backoff_base,
        backoff_max=config.backoff_max,
    )

    registry = HandlerRegistry()
    registry.register("reconcile", build_reconcile_adapter(queue))

    stop_event = Event()
    queue.start(stop_event)

    watchers = []
    for watcher_cfg in config.watchers:
        watcher = ObjectWatcher(
            registry=registry,
            api=api,
            cls=KINDS[watcher_cfg.kind],
            stop_event=stop_event,
            timeout_seconds=watcher_cfg.timeout_seconds,
        )
        watcher.start()
        watchers.append(watcher)

    if not watchers:
        LOG.warning("no watchers configured; reconciler will idle")

    server = None
    if config.webhook.enabled:
        mutator = PodMutator(
            store,
            default_net_nad_namespace=config.default_net_nad_namespace,
            vmi_lookup_retries=config.vmi_lookup_retries,
            vmi_lookup_interval=config.vmi_lookup_interval,
        )
        app = create_app(mutator, ready=lambda: all(w.is_alive() for w in watchers))
        server = _build_server(app, config.webhook)
        Thread(target=server.run, name="webhook", daemon=True).start()
        LOG.info("admission webhook listening on %s:%d", config.webhook.host, config.webhook.port)

    def _shutdown(signum, frame):  # pragma: no cover - signal handler
        LOG.info("received signal %s, shutting down", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    try:
        while not stop_event.is_set():
            stop_event.wait(1.0)
    except KeyboardInterrupt:  # pragma: no cover - fallback if signal not set
        stop_event.set()

    if server is not None:
        server.should_exit = True
    queue.shutdown()
    for watcher in watchers:
        # Watch streams only return at their server side timeout.
        watcher.join(timeout=1.0)

    LOG.info("IPAM claims controller stopped")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
