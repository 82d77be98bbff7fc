"""
Event dispatcher for the privileged command controller.

The informer thread only enqueues (old, new) pod pairs. A single worker
thread drains the queue, so requests are handled strictly one at a time and
in arrival order. The worker is the terminal error sink: a failed request is
cleaned up best-effort and left with status "error" for the client to see.
"""

import copy
import logging
import threading
from queue import Empty, Queue
from typing import Optional

from privcmd.config import ControllerConfig
from privcmd.modules.annotations import (
    ANNOTATION_EXECUTE_CONTAINER,
    AnnotationPatcher,
    CommandStatus,
    is_complete,
)
from privcmd.modules.orchestrator import Orchestrator
from privcmd.modules.privpod import PrivilegedPodManager
from privcmd.request import RequestContext

from .informer import PodInformer

logger = logging.getLogger("privcmd.controller")

QUEUE_POLL_SECONDS = 1


class PrivilegedCommandController:
    """Watches all pods and dispatches protocol updates to the orchestrator."""

    def __init__(
        self,
        core_v1,
        config: ControllerConfig,
        orchestrator: Optional[Orchestrator] = None,
        pod_manager: Optional[PrivilegedPodManager] = None,
        patcher: Optional[AnnotationPatcher] = None,
        informer: Optional[PodInformer] = None,
    ):
        """
        Initialize the controller.

        Args:
            core_v1: kubernetes.client.CoreV1Api (or compatible)
            config: Controller configuration, read once at startup
            orchestrator: State machine; built from the other collaborators if omitted
            pod_manager: Privileged pod manager, also used for error cleanup
            patcher: Annotation patcher, also used to record errors
            informer: Pod informer feeding the queue
        """
        self.core_v1 = core_v1
        self.config = config
        self.stop_event = threading.Event()

        self.pod_manager = pod_manager or PrivilegedPodManager(core_v1, config)
        self.patcher = patcher or AnnotationPatcher(core_v1)
        self.orchestrator = orchestrator or Orchestrator(
            core_v1,
            config,
            pod_manager=self.pod_manager,
            patcher=self.patcher,
            cancel_event=self.stop_event,
        )
        self.informer = informer or PodInformer(core_v1, self.enqueue)

        self.event_queue: Queue = Queue()
        self._threads = []

    @property
    def has_synced(self) -> bool:
        return self.informer.has_synced

    def enqueue(self, old_pod, new_pod) -> None:
        """Queue an update for the worker thread."""
        self.event_queue.put((old_pod, new_pod))

    def handle_update(self, old_pod, new_pod) -> None:
        """
        Dispatch one pod update. Never raises.

        Pods without all three protocol annotations are ignored. Every other
        update gets a fresh RequestContext and goes to the orchestrator.
        The new pod is copied first: handlers update its annotations in place,
        and the informer keeps the original as the next old snapshot.
        """
        annotations = new_pod.metadata.annotations
        if not is_complete(annotations):
            return

        new_pod = copy.deepcopy(new_pod)
        ctx = RequestContext.for_target(new_pod.metadata.name, annotations[ANNOTATION_EXECUTE_CONTAINER])
        logger.debug(f"[{ctx.request_id}] Handling update of pod {new_pod.metadata.namespace}/{new_pod.metadata.name}")

        try:
            self.orchestrator.process(old_pod, new_pod, ctx)
        except Exception as e:
            logger.error(f"[{ctx.request_id}] {e}")
            self._record_failure(new_pod, ctx)

    def _record_failure(self, pod, ctx: RequestContext) -> None:
        """Remove this request's privileged pod and mark the target pod as failed."""
        try:
            if self.pod_manager.delete_if_owned(self.config.namespace, ctx):
                logger.info(f"[{ctx.request_id}] Deleted privileged pod {ctx.priv_pod_name} after failure")
        except Exception as e:
            logger.error(f"[{ctx.request_id}] Unable to clean up privileged pod {ctx.priv_pod_name}: {e}")

        try:
            self.patcher.set_status(pod, CommandStatus.ERROR, ctx)
        except Exception as e:
            logger.error(f"[{ctx.request_id}] Unable to set error status on pod {pod.metadata.name}: {e}")

    def _process_events(self) -> None:
        """Worker loop: drain the queue until stopped."""
        logger.info("Event processor started")

        while not self.stop_event.is_set():
            try:
                old_pod, new_pod = self.event_queue.get(timeout=QUEUE_POLL_SECONDS)
            except Empty:
                continue

            try:
                self.handle_update(old_pod, new_pod)
            except Exception as e:
                logger.error(f"Error processing event: {e}")
            finally:
                self.event_queue.task_done()

    def run(self) -> None:
        """
        Run the controller in the calling thread until stop() is called.

        Starts the event processor thread, then runs the pod informer.
        """
        logger.info(f"Starting privileged command controller (privileged pods in namespace {self.config.namespace})")

        processor_thread = threading.Thread(target=self._process_events, daemon=True, name="event-processor")
        processor_thread.start()
        self._threads.append(processor_thread)

        self.informer.run(self.stop_event)
        logger.info("Privileged command controller stopped")

    def start(self) -> threading.Thread:
        """Run the controller in a background thread."""
        thread = threading.Thread(target=self.run, daemon=True, name="controller")
        thread.start()
        self._threads.append(thread)
        return thread

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the informer and worker; in-flight remote commands are cancelled."""
        logger.info("Stopping privileged command controller")
        self.stop_event.set()
        self.informer.stop()
        for thread in self._threads:
            if thread is not threading.current_thread():
                thread.join(timeout)
