"""
Cluster-wide pod informer.

Lists every pod once, then watches from the list's resourceVersion. A local
cache keyed by namespace/name supplies the previous object for each
modification, so the handler always sees an (old, new) pair. When the watch
falls too far behind (410 Gone) the informer relists and reports an update
for every cached pod whose resourceVersion moved.
"""

import logging
import threading
from typing import Callable, Dict, Optional

from kubernetes import watch
from kubernetes.client.rest import ApiException

logger = logging.getLogger("privcmd.informer")

UpdateHandler = Callable[[object, object], None]

HTTP_GONE = 410

# Server-side watch timeout; bounds how long a stop() can go unnoticed
WATCH_TIMEOUT_SECONDS = 60

RECONNECT_DELAY_SECONDS = 5


def pod_key(pod) -> str:
    return f"{pod.metadata.namespace}/{pod.metadata.name}"


class WatchExpired(Exception):
    """The watch resourceVersion is too old and a relist is needed."""

    pass


class PodInformer:
    """Turns a list+watch of all pods into update callbacks."""

    def __init__(
        self,
        core_v1,
        handler: UpdateHandler,
        watch_factory: Callable[[], watch.Watch] = watch.Watch,
        watch_timeout: int = WATCH_TIMEOUT_SECONDS,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
    ):
        """
        Initialize pod informer.

        Args:
            core_v1: kubernetes.client.CoreV1Api (or compatible)
            handler: Called with (old_pod, new_pod) for every modification
            watch_factory: Builds a kubernetes watch
            watch_timeout: Server-side timeout of each watch request
            reconnect_delay: Pause before reconnecting after a failure
        """
        self.core_v1 = core_v1
        self.handler = handler
        self.watch_factory = watch_factory
        self.watch_timeout = watch_timeout
        self.reconnect_delay = reconnect_delay

        self.cache: Dict[str, object] = {}
        self.resource_version: Optional[str] = None
        self._synced = threading.Event()
        self._watch: Optional[watch.Watch] = None

    @property
    def has_synced(self) -> bool:
        """True once the initial list has populated the cache."""
        return self._synced.is_set()

    def get(self, namespace: str, name: str):
        return self.cache.get(f"{namespace}/{name}")

    def relist(self) -> None:
        """List all pods, refresh the cache and report pods that changed meanwhile."""
        pod_list = self.core_v1.list_pod_for_all_namespaces()
        seen = {}
        for pod in pod_list.items:
            key = pod_key(pod)
            seen[key] = pod
            old = self.cache.get(key)
            if old is not None and old.metadata.resource_version != pod.metadata.resource_version:
                self._emit(old, pod)

        self.cache = seen
        self.resource_version = pod_list.metadata.resource_version
        if not self._synced.is_set():
            logger.info(f"Pod cache synced with {len(seen)} pods at resourceVersion {self.resource_version}")
        self._synced.set()

    def _emit(self, old, new) -> None:
        try:
            self.handler(old, new)
        except Exception as e:
            logger.error(f"Error handling update for pod {pod_key(new)}: {e}")

    def watch_once(self, stop_event: threading.Event) -> None:
        """
        Consume one watch request from the current resourceVersion.

        Raises:
            WatchExpired: The server reported 410 Gone
        """
        w = self.watch_factory()
        self._watch = w
        try:
            for event in w.stream(
                self.core_v1.list_pod_for_all_namespaces,
                resource_version=self.resource_version,
                timeout_seconds=self.watch_timeout,
            ):
                if stop_event.is_set():
                    break
                self._handle_event(event)
        except ApiException as e:
            if e.status == HTTP_GONE:
                raise WatchExpired(str(e)) from e
            raise
        finally:
            w.stop()
            self._watch = None

    def _handle_event(self, event: dict) -> None:
        event_type = event.get("type")

        if event_type == "ERROR":
            raw = event.get("raw_object") or {}
            if raw.get("code") == HTTP_GONE:
                raise WatchExpired(raw.get("message", "resource version expired"))
            raise ApiException(status=raw.get("code"), reason=raw.get("message"))

        pod = event.get("object")
        if pod is None or pod.metadata is None:
            return
        key = pod_key(pod)
        self.resource_version = pod.metadata.resource_version or self.resource_version

        if event_type == "ADDED":
            self.cache[key] = pod
        elif event_type == "MODIFIED":
            old = self.cache.get(key)
            self.cache[key] = pod
            if old is not None:
                self._emit(old, pod)
        elif event_type == "DELETED":
            self.cache.pop(key, None)

    def run(self, stop_event: threading.Event) -> None:
        """List, then watch until stop_event is set, reconnecting on failure."""
        needs_relist = True
        while not stop_event.is_set():
            try:
                if needs_relist:
                    self.relist()
                    needs_relist = False
                self.watch_once(stop_event)
            except WatchExpired as e:
                logger.info(f"Pod watch expired ({e}), relisting")
                needs_relist = True
            except Exception as e:
                logger.error(f"Pod watch error: {e}")
                logger.info(f"Reconnecting in {self.reconnect_delay} seconds...")
                stop_event.wait(self.reconnect_delay)

    def stop(self) -> None:
        """Ask the current watch to end."""
        w = self._watch
        if w is not None:
            w.stop()
