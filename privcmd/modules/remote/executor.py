"""
Namespace-entry command execution.

The privileged pod shares the host PID namespace and has the container
runtime socket mounted. From there the target container's host PID is looked
up with the runtime's inspect command, and the requested action is run under
nsenter in that process's IPC, UTS, network and PID namespaces. The mount
namespace is never entered, so the privileged pod keeps its own
filesystem (and its debugging tools).
"""

import logging
import threading
import time
from typing import Callable, List, Optional, Sequence

import yaml
from kubernetes.client.rest import ApiException
from kubernetes.stream import stream
from kubernetes.stream.ws_client import ERROR_CHANNEL

from privcmd.config import ControllerConfig
from privcmd.errors import (
    ContainerNotFound,
    PIDResolutionFailed,
    RemoteExecCancelled,
    RemoteExecFailed,
    RemoteExecTimeout,
)
from privcmd.modules.privpod import PRIVILEGE_CONTAINER
from privcmd.request import RequestContext

logger = logging.getLogger("privcmd.remote")

NSENTER_PREFIX = ("nsenter", "--target")
NSENTER_NAMESPACES = ("--ipc", "--uts", "--net", "--pid")

# Polling interval for the exec channel, bounds how late a timeout/cancel is noticed
STREAM_POLL_SECONDS = 1


def _find_status(pod, container_name: str):
    status = pod.status
    if status is None:
        return None
    for container_status in (status.init_container_statuses or []) + (status.container_statuses or []):
        if container_status.name == container_name:
            return container_status
    return None


def resolve_container_id(pod, container_name: str) -> str:
    """
    Find the runtime ID of a container from the pod's live statuses.

    Both init and regular containers are searched. The ID is reported as
    "<runtime>://<id>"; the runtime prefix is stripped.

    Raises:
        ContainerNotFound: No status for the container, or no ID yet
    """
    container_status = _find_status(pod, container_name)
    raw_id = container_status.container_id if container_status else None
    if not raw_id:
        raise ContainerNotFound(container_name, pod.metadata.name, pod.metadata.namespace)

    _, sep, container_id = raw_id.partition("://")
    if not sep or not container_id:
        raise ContainerNotFound(container_name, pod.metadata.name, pod.metadata.namespace)
    return container_id


def container_runtime(pod, container_name: str) -> Optional[str]:
    """Runtime scheme of a container's ID (docker, containerd, cri-o), if known."""
    container_status = _find_status(pod, container_name)
    raw_id = container_status.container_id if container_status else None
    if not raw_id or "://" not in raw_id:
        return None
    return raw_id.split("://", 1)[0]


def build_nsenter_command(pid: str, command: Sequence[str]) -> List[str]:
    """
    Prefix a user command with nsenter targeting pid.

    Example: build_nsenter_command("28400", ["gcore", "1"])
        -> ["nsenter", "--target", "28400", "--ipc", "--uts", "--net", "--pid", "gcore", "1"]
    """
    return [*NSENTER_PREFIX, pid, *NSENTER_NAMESPACES, *command]


def inspect_pid_command(runtime: str, container_id: str, socket_path: str) -> List[str]:
    """Runtime command that prints the host PID of container_id."""
    if runtime == "docker":
        return ["docker", "inspect", "--format", "'{{ .State.Pid }}'", container_id]
    return [
        "crictl",
        "--runtime-endpoint",
        f"unix://{socket_path}",
        "inspect",
        "--output",
        "go-template",
        "--template",
        "{{.info.pid}}",
        container_id,
    ]


def parse_pid(output: str) -> str:
    """Reduce inspect output such as "'28400'\\n" to "28400"."""
    pid = output.strip().strip("'\"").strip()
    if not pid.isdigit() or int(pid) == 0:
        raise ValueError(f"unexpected inspect output: {output!r}")
    return pid


class RemoteCommandExecutor:
    """Runs commands inside the privileged pod of one request."""

    def __init__(
        self,
        core_v1,
        config: ControllerConfig,
        ctx: RequestContext,
        stream_func: Callable = stream,
        cancel_event: Optional[threading.Event] = None,
    ):
        """
        Initialize remote command executor.

        Args:
            core_v1: kubernetes.client.CoreV1Api (or compatible)
            config: Controller configuration (namespace, runtime, exec timeout)
            ctx: Request context naming the privileged pod
            stream_func: Opens the exec channel (kubernetes.stream.stream)
            cancel_event: When set, aborts a running command
        """
        self.core_v1 = core_v1
        self.config = config
        self.ctx = ctx
        self.stream_func = stream_func
        self.cancel_event = cancel_event

    def exec_in_pod(self, command: Sequence[str]) -> str:
        """
        Execute a command in the privileged container and return its stdout.

        stdout and stderr are read separately; stderr is logged but does not
        fail the call. A transport failure or a non-zero exit does.

        Raises:
            RemoteExecFailed: The command could not run or exited non-zero
            RemoteExecTimeout: The command exceeded exec_timeout
            RemoteExecCancelled: cancel_event was set while running
        """
        command = list(command)
        try:
            resp = self.stream_func(
                self.core_v1.connect_get_namespaced_pod_exec,
                self.ctx.priv_pod_name,
                self.config.namespace,
                container=PRIVILEGE_CONTAINER,
                command=command,
                stderr=True,
                stdin=False,
                stdout=True,
                tty=False,
                _preload_content=False,
            )
        except ApiException as e:
            raise RemoteExecFailed(command, f"{e.status} {e.reason}") from e
        except Exception as e:
            raise RemoteExecFailed(command, str(e)) from e

        stdout: List[str] = []
        stderr: List[str] = []
        deadline = time.monotonic() + self.config.exec_timeout

        try:
            while resp.is_open():
                if self.cancel_event is not None and self.cancel_event.is_set():
                    raise RemoteExecCancelled(command)
                if time.monotonic() >= deadline:
                    raise RemoteExecTimeout(command, self.config.exec_timeout)

                resp.update(timeout=STREAM_POLL_SECONDS)
                if resp.peek_stdout():
                    stdout.append(resp.read_stdout())
                if resp.peek_stderr():
                    stderr.append(resp.read_stderr())

            if resp.peek_stdout():
                stdout.append(resp.read_stdout())
            if resp.peek_stderr():
                stderr.append(resp.read_stderr())
            error = resp.read_channel(ERROR_CHANNEL)
        except RemoteExecFailed:
            raise
        except Exception as e:
            raise RemoteExecFailed(command, str(e)) from e
        finally:
            resp.close()

        if stderr:
            logger.error(f"[{self.ctx.request_id}] Command {command} returned std err: {''.join(stderr)}")

        status = yaml.safe_load(error) if error else None
        if isinstance(status, dict) and status.get("status") != "Success":
            raise RemoteExecFailed(command, status.get("message") or "non-zero exit status")

        return "".join(stdout)

    def resolve_host_pid(self, container_id: str, runtime: Optional[str] = None) -> str:
        """
        Look up the host PID of a container via the runtime inspect command.

        Raises:
            PIDResolutionFailed: The inspect command failed or printed no PID
        """
        runtime = runtime or self.config.container_runtime
        command = inspect_pid_command(runtime, container_id, self.config.socket_path)
        logger.info(f"[{self.ctx.request_id}] Command for retrieving PID for container ID {container_id}: {command}")

        try:
            output = self.exec_in_pod(command)
        except RemoteExecFailed as e:
            raise PIDResolutionFailed(container_id, str(e)) from e

        try:
            pid = parse_pid(output)
        except ValueError as e:
            raise PIDResolutionFailed(container_id, str(e)) from e

        logger.info(f"[{self.ctx.request_id}] Retrieved PID for container ID {container_id}: {pid}")
        return pid

    def execute(self, pid: str, command: Sequence[str]) -> str:
        """Run command inside the namespaces of host process pid."""
        command_to_execute = build_nsenter_command(pid, command)
        logger.info(
            f"[{self.ctx.request_id}] Command to execute on pod {self.ctx.priv_pod_name} "
            f"under namespace {self.config.namespace}: {command_to_execute}"
        )
        return self.exec_in_pod(command_to_execute)

    def execute_action(self, container_id: str, command: Sequence[str], runtime: Optional[str] = None) -> str:
        """Resolve the container's host PID, then run command in its namespaces."""
        pid = self.resolve_host_pid(container_id, runtime)
        return self.execute(pid, command)
