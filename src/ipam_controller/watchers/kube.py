"""Kubernetes watch based object watcher."""

from __future__ import annotations

import logging
from threading import Event, Thread
from typing import Callable, Optional, Type

from kubernetes import client, watch
from kubernetes.client.rest import ApiException

from ipam_events import HandlerRegistry
from kubevirt_ipam.objects import KubeObject

from .utils import event_from_watch, resource_version

LOG = logging.getLogger(__name__)

HTTP_GONE = 410


class ObjectWatcher(Thread):
    """Stream cluster-wide changes of one kind and publish object events.

    The first stream of every watcher starts without a resource version, so
    the API server replays every existing object as ``ADDED``; that initial
    replay is what reconciles objects created while the controller was down.
    """

    def __init__(
        self,
        registry: HandlerRegistry,
        api: client.CustomObjectsApi,
        cls: Type[KubeObject],
        stop_event: Event,
        timeout_seconds: int = 300,
        retry_interval: float = 5.0,
        watch_factory: Callable[[], watch.Watch] = watch.Watch,
    ) -> None:
        super().__init__(daemon=True, name=f"watch-{cls.PLURAL}")
        self._registry = registry
        self._api = api
        self._cls = cls
        self._stop_event = stop_event
        self._timeout_seconds = timeout_seconds
        self._retry_interval = retry_interval
        self._watch_factory = watch_factory
        self._resource_version: Optional[str] = None

    @property
    def kind(self) -> str:
        return self._cls.KIND

    def run(self) -> None:
        LOG.info("starting %s watch", self.kind)
        while not self._stop_event.is_set():
            try:
                self.poll()
            except Exception:  # pragma: no cover - logged below
                LOG.exception("%s watcher encountered an error", self.kind)
                self._stop_event.wait(self._retry_interval)
        LOG.info("%s watch stopped", self.kind)

    def poll(self) -> None:
        """Consume one watch stream until it times out or is stopped."""

        kwargs = {
            "group": self._cls.GROUP,
            "version": self._cls.VERSION,
            "plural": self._cls.PLURAL,
            "timeout_seconds": self._timeout_seconds,
        }
        if self._resource_version:
            kwargs["resource_version"] = self._resource_version

        stream = self._watch_factory()
        try:
            for raw in stream.stream(self._api.list_cluster_custom_object, **kwargs):
                if self._stop_event.is_set():
                    break
                self._dispatch(raw["type"], raw["object"])
        except ApiException as exc:
            if exc.status != HTTP_GONE:
                raise
            LOG.info("%s watch resource version expired, restarting", self.kind)
            self._resource_version = None
        finally:
            stream.stop()

    def _dispatch(self, event_type: str, obj: dict) -> None:
        if event_type == "ERROR":
            if obj.get("code") == HTTP_GONE:
                LOG.info("%s watch resource version expired, restarting", self.kind)
                self._resource_version = None
                return
            LOG.warning("%s watch returned an error: %s", self.kind, obj.get("message"))
            return

        version = resource_version(obj)
        if version:
            self._resource_version = version

        event = event_from_watch(self.kind, event_type, obj)
        if event is None:
            return
        LOG.debug("%s %s %s", self.kind, event_type, event.key)
        self._registry.handle(event)
