"""
Orchestration state machine for the privileged-command-status annotation.

    idle --(client)--> active --> in-progress --> done --> idle
                                        \\
                                         +--> error (set by the dispatcher)

process() is the single entry point. "active" runs the whole request;
"done" cleans up. The active handler finishes by writing "done", which
reaches process() again as a new pod-update event. Cleanup only happens
while a privileged pod this controller provisioned is present.
"""

import logging
import threading
import time
from typing import Callable, Optional

from privcmd.config import ControllerConfig
from privcmd.errors import (
    CommandExecutionFailed,
    InvalidTransition,
    NodeNameMissing,
    PrivilegedCommandError,
    TransitionFailed,
)
from privcmd.modules.annotations import (
    ANNOTATION_EXECUTE_CONTAINER,
    ANNOTATION_EXECUTE_STATUS,
    ActionRequest,
    AnnotationPatcher,
    CommandStatus,
    get_status,
)
from privcmd.modules.privpod import PrivilegedPodManager
from privcmd.modules.remote import RemoteCommandExecutor, container_runtime, resolve_container_id
from privcmd.request import RequestContext

logger = logging.getLogger("privcmd.orchestrator")

ExecutorFactory = Callable[[RequestContext], RemoteCommandExecutor]


def get_node_name(pod) -> str:
    """Return the name of the node the pod is bound to."""
    node_name = pod.spec.node_name if pod.spec else None
    if not node_name:
        raise NodeNameMissing(pod.metadata.name)
    return node_name


class Orchestrator:
    """Drives one request through the annotation status transitions."""

    def __init__(
        self,
        core_v1,
        config: ControllerConfig,
        pod_manager: Optional[PrivilegedPodManager] = None,
        patcher: Optional[AnnotationPatcher] = None,
        executor_factory: Optional[ExecutorFactory] = None,
        cancel_event: Optional[threading.Event] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the state machine.

        Args:
            core_v1: kubernetes.client.CoreV1Api (or compatible)
            config: Controller configuration
            pod_manager: Privileged pod lifecycle manager
            patcher: Annotation patcher
            executor_factory: Builds a RemoteCommandExecutor for a request
            cancel_event: Aborts running remote commands when set
            sleep: Used for the client grace period
        """
        self.core_v1 = core_v1
        self.config = config
        self.pod_manager = pod_manager or PrivilegedPodManager(core_v1, config)
        self.patcher = patcher or AnnotationPatcher(core_v1)
        self.cancel_event = cancel_event
        self.executor_factory = executor_factory or self._default_executor
        self.sleep = sleep

    def _default_executor(self, ctx: RequestContext) -> RemoteCommandExecutor:
        return RemoteCommandExecutor(self.core_v1, self.config, ctx, cancel_event=self.cancel_event)

    def process(self, old_pod, new_pod, ctx: RequestContext) -> None:
        """
        Act on the current value of the status annotation.

        Raises:
            TransitionFailed: Handling "active" or "done" failed; wraps the cause
        """
        status = get_status(new_pod.metadata.annotations)

        if status == CommandStatus.ACTIVE.value:
            try:
                self.handle_active(old_pod, new_pod, ctx)
            except PrivilegedCommandError as e:
                raise TransitionFailed(ANNOTATION_EXECUTE_STATUS, CommandStatus.ACTIVE.value, e) from e
        elif status == CommandStatus.DONE.value:
            try:
                self.handle_done(old_pod, new_pod, ctx)
            except PrivilegedCommandError as e:
                raise TransitionFailed(ANNOTATION_EXECUTE_STATUS, CommandStatus.DONE.value, e) from e
        else:
            logger.debug(f"[{ctx.request_id}] Nothing to do for status {status} on pod {new_pod.metadata.name}")

    def handle_active(self, old_pod, new_pod, ctx: RequestContext) -> None:
        """Run the requested action against the target container."""
        old_annotations = old_pod.metadata.annotations if old_pod is not None and old_pod.metadata else None
        if get_status(old_annotations) == CommandStatus.ACTIVE.value:
            logger.warning(
                f"[{ctx.request_id}] Retrying request as this update is due to previous error on pod {new_pod.metadata.name}"
            )

        request = ActionRequest.from_annotations(new_pod.metadata.annotations)
        namespace = new_pod.metadata.namespace

        self.patcher.set_status(new_pod, CommandStatus.IN_PROGRESS, ctx)

        container_id = resolve_container_id(new_pod, request.container)
        runtime = container_runtime(new_pod, request.container)
        logger.info(
            f"[{ctx.request_id}] Container ID for container {request.container} on pod "
            f"{new_pod.metadata.name} under namespace {namespace}: {container_id}"
        )

        node_name = get_node_name(new_pod)
        logger.info(
            f"[{ctx.request_id}] Target node for container {request.container} in pod "
            f"{new_pod.metadata.name} is {node_name}"
        )

        self.pod_manager.provision(node_name, ctx)

        executor = self.executor_factory(ctx)
        try:
            output = executor.execute_action(container_id, request.command_tokens, runtime)
        except PrivilegedCommandError as e:
            raise CommandExecutionFailed(e) from e
        logger.info(f"[{ctx.request_id}] \n{output}")

        self.patcher.set_status(new_pod, CommandStatus.DONE, ctx)

    def handle_done(self, old_pod, new_pod, ctx: RequestContext) -> None:
        """
        Tear down after a completed request.

        Accepted only while a privileged pod provisioned by this controller
        exists under the derived name; the previous annotations are not
        trusted. A repeated "done" is ignored.
        """
        old_annotations = old_pod.metadata.annotations if old_pod is not None and old_pod.metadata else None
        previous = get_status(old_annotations)
        if previous == CommandStatus.DONE.value:
            logger.debug(f"[{ctx.request_id}] Completion of pod {new_pod.metadata.name} already being handled")
            return
        if not self.pod_manager.is_managed(self.config.namespace, ctx):
            raise InvalidTransition(new_pod.metadata.name, previous, CommandStatus.DONE.value)

        # Let a polling client observe "done" before the annotations disappear
        self.sleep(self.config.client_grace_period)

        logger.info(f"[{ctx.request_id}] Deleting privileged pod")
        self.pod_manager.delete(self.config.namespace, ctx)

        container = new_pod.metadata.annotations.get(ANNOTATION_EXECUTE_CONTAINER)
        self.patcher.clear_protocol(new_pod, ctx)
        logger.info(
            f"[{ctx.request_id}] Finished executing command on container {container} "
            f"on pod {new_pod.metadata.name} on namespace {new_pod.metadata.namespace}"
        )
