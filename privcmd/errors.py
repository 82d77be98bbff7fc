"""Exceptions raised by the privileged command controller.

Every failure inside the orchestration path is one of these. They are raised
with enough context (pod, container, namespace, phase) to be logged as-is by
the event dispatcher, which is the only place allowed to absorb them.
"""

from typing import Iterable, Optional


class PrivilegedCommandError(Exception):
    """Base exception for all controller errors."""

    pass


class PodCreateFailed(PrivilegedCommandError):
    """Raised when the privileged pod could not be created."""

    def __init__(self, pod_name: str, node_name: str, reason: str):
        self.pod_name = pod_name
        self.node_name = node_name
        self.reason = reason
        super().__init__(f"failed to create pod {pod_name} on node {node_name}: {reason}")


class PrivilegedPodConflict(PodCreateFailed):
    """Raised when a privileged pod with the same name already exists.

    Two requests for the same target container map to the same privileged pod
    name. The second one fails fast instead of adopting or replacing the first.
    """

    def __init__(self, pod_name: str, node_name: str, owner_request_id: Optional[str]):
        self.owner_request_id = owner_request_id
        owner = owner_request_id or "unknown"
        super().__init__(
            pod_name,
            node_name,
            f"privileged pod already exists and is owned by request {owner}",
        )


class PodNotRunning(PrivilegedCommandError):
    """Raised when the privileged pod does not reach Running before the timeout."""

    def __init__(self, pod_name: str, timeout: int, phase: Optional[str]):
        self.pod_name = pod_name
        self.timeout = timeout
        self.phase = phase or ""
        super().__init__(
            f"privileged pod {pod_name} is not running after {timeout} seconds, "
            f"it is currently in {self.phase} phase"
        )


class PodDeleteFailed(PrivilegedCommandError):
    """Raised when the privileged pod could not be deleted (including when absent)."""

    def __init__(self, pod_name: str, reason: str):
        self.pod_name = pod_name
        self.reason = reason
        super().__init__(f"failed to delete pod {pod_name}: {reason}")


class ContainerNotFound(PrivilegedCommandError):
    """Raised when the target container has no resolvable runtime ID.

    Usually the container has not started yet, so its status carries no ID.
    """

    def __init__(self, container: str, pod_name: str, namespace: str):
        self.container = container
        self.pod_name = pod_name
        self.namespace = namespace
        super().__init__(
            f"no matching container ID for container {container} "
            f"on pod {pod_name} under namespace {namespace}"
        )


class NodeNameMissing(PrivilegedCommandError):
    """Raised when the target pod is not bound to a node."""

    def __init__(self, pod_name: str):
        self.pod_name = pod_name
        super().__init__(f"no node name detected for target pod: {pod_name}")


class RemoteExecFailed(PrivilegedCommandError):
    """Raised when a command executed inside the privileged pod fails."""

    def __init__(self, command: Iterable[str], reason: str):
        self.command = list(command)
        self.reason = reason
        super().__init__(f"command {self.command} failed: {reason}")


class RemoteExecTimeout(RemoteExecFailed):
    """Raised when a remote command exceeds the configured exec deadline."""

    def __init__(self, command: Iterable[str], timeout: float):
        self.timeout = timeout
        super().__init__(command, f"did not finish within {timeout} seconds")


class RemoteExecCancelled(RemoteExecFailed):
    """Raised when a remote command is cancelled by controller shutdown."""

    def __init__(self, command: Iterable[str]):
        super().__init__(command, "cancelled")


class PIDResolutionFailed(PrivilegedCommandError):
    """Raised when the host PID of the target container cannot be determined."""

    def __init__(self, container_id: str, reason: str):
        self.container_id = container_id
        self.reason = reason
        super().__init__(f"unable to retrieve PID for container ID {container_id}: {reason}")


class CommandExecutionFailed(PrivilegedCommandError):
    """Raised when resolving the PID or running the requested action fails."""

    def __init__(self, cause: Exception):
        self.cause = cause
        super().__init__(f"failed to execute command: {cause}")


class AnnotationPatchFailed(PrivilegedCommandError):
    """Raised when an annotation patch is not applied to the pod."""

    def __init__(self, pod_name: str, reason: str):
        self.pod_name = pod_name
        self.reason = reason
        super().__init__(f"failed to patch annotation to pod {pod_name}: {reason}")


class AnnotationMissing(PrivilegedCommandError):
    """Raised when deleting an annotation that is not present on the pod."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"annotation {key} to be deleted does not exist")


class InvalidTransition(PrivilegedCommandError):
    """Raised when "done" arrives with no privileged pod of this controller to clean up."""

    def __init__(self, pod_name: str, previous: Optional[str], current: str):
        self.pod_name = pod_name
        self.previous = previous
        self.current = current
        super().__init__(
            f"status {current} on pod {pod_name} has no privileged pod provisioned by the controller "
            f"(previous status: {previous or 'none'})"
        )


class TransitionFailed(PrivilegedCommandError):
    """Raised by the state machine when handling a status transition fails."""

    def __init__(self, annotation: str, status: str, cause: Exception):
        self.annotation = annotation
        self.status = status
        self.cause = cause
        super().__init__(f"unable to act upon annotation {annotation} change to {status}: {cause}")
