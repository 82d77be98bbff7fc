"""
Privileged Pod Lifecycle Manager.

Creates the privileged helper pod on the target node, waits for it to reach
the Running phase, and deletes it when the request is finished.
"""

import logging
import math
import time
from typing import Callable, Optional

from kubernetes import client, watch
from kubernetes.client.rest import ApiException

from privcmd.config import ControllerConfig
from privcmd.errors import PodCreateFailed, PodDeleteFailed, PodNotRunning, PrivilegedPodConflict
from privcmd.request import RequestContext

logger = logging.getLogger("privcmd.privpod")

PRIVILEGE_CONTAINER = "priv-pod"
RUNTIME_SOCKET_VOLUME = "runtime-sock"

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "privileged-command-controller"
REQUEST_ID_LABEL = "privileged-command.io/request-id"


def privileged_pod_spec(
    pod_name: str,
    node_name: str,
    config: ControllerConfig,
    request_id: Optional[str] = None,
) -> client.V1Pod:
    """Build the privileged pod to be scheduled on the target node."""
    labels = {MANAGED_BY_LABEL: MANAGED_BY_VALUE}
    if request_id:
        labels[REQUEST_ID_LABEL] = request_id

    privileged_container = client.V1Container(
        name=PRIVILEGE_CONTAINER,
        image=config.image,
        image_pull_policy="Always",
        security_context=client.V1SecurityContext(privileged=True),
        volume_mounts=[
            client.V1VolumeMount(name=RUNTIME_SOCKET_VOLUME, mount_path=config.socket_path),
        ],
    )

    pod_spec = client.V1PodSpec(
        service_account_name=config.service_account,
        host_pid=True,
        node_name=node_name,
        restart_policy="Never",
        containers=[privileged_container],
        volumes=[
            client.V1Volume(
                name=RUNTIME_SOCKET_VOLUME,
                host_path=client.V1HostPathVolumeSource(path=config.socket_path, type="File"),
            ),
        ],
    )

    return client.V1Pod(
        api_version="v1",
        kind="Pod",
        metadata=client.V1ObjectMeta(name=pod_name, namespace=config.namespace, labels=labels),
        spec=pod_spec,
    )


def _phase(pod) -> str:
    if pod is None or pod.status is None:
        return ""
    return pod.status.phase or ""


class PrivilegedPodManager:
    """Creates, awaits and deletes privileged pods in the configured namespace."""

    def __init__(
        self,
        core_v1,
        config: ControllerConfig,
        watch_factory: Callable[[], watch.Watch] = watch.Watch,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize privileged pod manager.

        Args:
            core_v1: kubernetes.client.CoreV1Api (or compatible)
            config: Controller configuration (image, namespace, timeout...)
            watch_factory: Builds the watch used to await the Running phase
            sleep: Used to pause before re-opening a failed watch
        """
        self.core_v1 = core_v1
        self.config = config
        self.watch_factory = watch_factory
        self.sleep = sleep

    @property
    def namespace(self) -> str:
        return self.config.namespace

    def provision(self, node_name: str, ctx: RequestContext) -> None:
        """
        Create the privileged pod on node_name and wait until it is Running.

        Raises:
            PodCreateFailed: Creation was rejected (no watch is opened)
            PrivilegedPodConflict: A pod with the same name already exists
            PodNotRunning: The pod did not reach Running within priv_pod_timeout
        """
        logger.info(
            f"[{ctx.request_id}] Creating privileged pod {ctx.priv_pod_name} "
            f"in node {node_name} under namespace {self.namespace}"
        )
        pod = privileged_pod_spec(ctx.priv_pod_name, node_name, self.config, ctx.request_id)
        self._create_pod(pod, ctx)

        logger.info(f"[{ctx.request_id}] Waiting for privileged pod {ctx.priv_pod_name} to be in a running status")
        if self._wait_for_running(ctx):
            logger.info(f"[{ctx.request_id}] Privileged pod {ctx.priv_pod_name} is running")
            return

        phase = ""
        try:
            current = self.core_v1.read_namespaced_pod(name=ctx.priv_pod_name, namespace=self.namespace)
            phase = _phase(current)
        except ApiException as e:
            logger.warning(f"[{ctx.request_id}] Unable to read privileged pod {ctx.priv_pod_name}: {e.status} {e.reason}")

        raise PodNotRunning(ctx.priv_pod_name, self.config.priv_pod_timeout, phase)

    def _create_pod(self, pod: client.V1Pod, ctx: RequestContext) -> None:
        """Submit the pod, translating API failures into controller errors."""
        node_name = pod.spec.node_name
        try:
            self.core_v1.create_namespaced_pod(namespace=pod.metadata.namespace, body=pod)
        except ApiException as e:
            if e.status == 409:
                raise PrivilegedPodConflict(pod.metadata.name, node_name, self._owner_of(pod.metadata.name)) from e
            raise PodCreateFailed(pod.metadata.name, node_name, f"{e.status} {e.reason}") from e
        except Exception as e:
            raise PodCreateFailed(pod.metadata.name, node_name, str(e)) from e

    def _owner_of(self, pod_name: str) -> Optional[str]:
        """Request ID label of an existing privileged pod, if readable."""
        try:
            existing = self.core_v1.read_namespaced_pod(name=pod_name, namespace=self.namespace)
        except ApiException:
            return None
        labels = (existing.metadata.labels if existing.metadata else None) or {}
        return labels.get(REQUEST_ID_LABEL)

    def _wait_for_running(self, ctx: RequestContext) -> bool:
        """
        Watch the single privileged pod until it is Running or time is up.

        The server may end a watch early; it is re-opened until the deadline.
        The watch is stopped on every exit path.
        """
        deadline = time.monotonic() + self.config.priv_pod_timeout
        field_selector = f"metadata.name={ctx.priv_pod_name}"

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False

            w = self.watch_factory()
            try:
                for event in w.stream(
                    self.core_v1.list_namespaced_pod,
                    namespace=self.namespace,
                    field_selector=field_selector,
                    timeout_seconds=max(1, math.ceil(remaining)),
                ):
                    if event.get("type") == "ERROR":
                        logger.warning(f"[{ctx.request_id}] Watch error for pod {ctx.priv_pod_name}: {event.get('raw_object')}")
                        self._pause(deadline)
                        break
                    if _phase(event.get("object")) == "Running":
                        return True
                    if time.monotonic() >= deadline:
                        return False
            except ApiException as e:
                logger.warning(f"[{ctx.request_id}] Watch for pod {ctx.priv_pod_name} failed: {e.status} {e.reason}")
                self._pause(deadline)
            finally:
                w.stop()

    def _pause(self, deadline: float) -> None:
        """Wait up to a second before re-opening a watch, never past the deadline."""
        remaining = deadline - time.monotonic()
        if remaining > 0:
            self.sleep(min(1.0, remaining))

    def is_managed(self, namespace: str, ctx: RequestContext) -> bool:
        """
        Whether a privileged pod created by this controller exists for ctx.

        Raises:
            PodDeleteFailed: If the pod could not be read
        """
        try:
            existing = self.core_v1.read_namespaced_pod(name=ctx.priv_pod_name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                return False
            raise PodDeleteFailed(ctx.priv_pod_name, f"{e.status} {e.reason}") from e

        labels = (existing.metadata.labels if existing.metadata else None) or {}
        return labels.get(MANAGED_BY_LABEL) == MANAGED_BY_VALUE

    def delete(self, namespace: str, ctx: RequestContext) -> None:
        """
        Delete the privileged pod with foreground cascading.

        Not idempotent: deleting an absent pod raises PodDeleteFailed and the
        caller decides whether that matters.
        """
        logger.info(f"[{ctx.request_id}] Deleting pod {ctx.priv_pod_name} under namespace {namespace}")
        try:
            self.core_v1.delete_namespaced_pod(
                name=ctx.priv_pod_name,
                namespace=namespace,
                body=client.V1DeleteOptions(propagation_policy="Foreground"),
            )
        except ApiException as e:
            raise PodDeleteFailed(ctx.priv_pod_name, f"{e.status} {e.reason}") from e
        except Exception as e:
            raise PodDeleteFailed(ctx.priv_pod_name, str(e)) from e

    def delete_if_owned(self, namespace: str, ctx: RequestContext) -> bool:
        """
        Delete the privileged pod only if this request created it.

        Returns:
            True if the pod was deleted, False if it is absent or owned by
            another request

        Raises:
            PodDeleteFailed: If the pod could not be read or deleted
        """
        try:
            existing = self.core_v1.read_namespaced_pod(name=ctx.priv_pod_name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                logger.debug(f"[{ctx.request_id}] Privileged pod {ctx.priv_pod_name} does not exist")
                return False
            raise PodDeleteFailed(ctx.priv_pod_name, f"{e.status} {e.reason}") from e

        labels = (existing.metadata.labels if existing.metadata else None) or {}
        owner = labels.get(REQUEST_ID_LABEL)
        if owner != ctx.request_id:
            logger.info(
                f"[{ctx.request_id}] Leaving privileged pod {ctx.priv_pod_name} in place, "
                f"it belongs to request {owner}"
            )
            return False

        self.delete(namespace, ctx)
        return True
