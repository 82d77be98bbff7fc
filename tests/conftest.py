"""
Shared pytest fixtures for privileged command controller tests.

This module provides in-memory stand-ins for the Kubernetes API:
- FakeCoreV1Api: pod store with create/read/delete/patch/list semantics
- FakeWatchFactory: scripted watch streams that block until their timeout
- FakeExecStream: scripted exec channels for kubernetes.stream.stream
"""

import os
import sys
import threading
from typing import Callable, Dict, List, Optional, Tuple

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from privcmd.config import ControllerConfig  # noqa: E402
from privcmd.request import RequestContext  # noqa: E402


# =============================================================================
# Pod builders
# =============================================================================


def make_pod(
    name: str = "test-pod",
    namespace: str = "default",
    node_name: Optional[str] = "targetNode",
    annotations: Optional[Dict[str, str]] = None,
    container: str = "target-container",
    container_id: Optional[str] = "docker://containerid",
    init_container_id: Optional[str] = None,
    resource_version: str = "1",
    labels: Optional[Dict[str, str]] = None,
    phase: Optional[str] = None,
) -> client.V1Pod:
    """Build a target pod with one container and its runtime status."""
    statuses = [
        client.V1ContainerStatus(
            name=container,
            container_id=container_id,
            image="busybox",
            image_id="",
            ready=True,
            restart_count=0,
        )
    ]
    init_statuses = None
    if init_container_id is not None:
        init_statuses = [
            client.V1ContainerStatus(
                name="init-" + container,
                container_id=init_container_id,
                image="busybox",
                image_id="",
                ready=False,
                restart_count=0,
            )
        ]
    return client.V1Pod(
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            annotations=dict(annotations) if annotations is not None else None,
            labels=dict(labels) if labels is not None else None,
            resource_version=resource_version,
        ),
        spec=client.V1PodSpec(
            node_name=node_name,
            containers=[client.V1Container(name=container, image="busybox")],
        ),
        status=client.V1PodStatus(
            phase=phase,
            container_statuses=statuses,
            init_container_statuses=init_statuses,
        ),
    )


def clone_pod(pod: client.V1Pod) -> client.V1Pod:
    """Copy a pod with independent metadata maps (spec and status are shared)."""
    metadata = pod.metadata
    return client.V1Pod(
        api_version=pod.api_version,
        kind=pod.kind,
        metadata=client.V1ObjectMeta(
            name=metadata.name,
            namespace=metadata.namespace,
            annotations=dict(metadata.annotations) if metadata.annotations is not None else None,
            labels=dict(metadata.labels) if metadata.labels is not None else None,
            resource_version=metadata.resource_version,
        ),
        spec=pod.spec,
        status=pod.status,
    )


# =============================================================================
# Fake CoreV1Api
# =============================================================================


class FakeCoreV1Api:
    """
    In-memory CoreV1Api covering the calls the controller makes.

    Pods are stored as independent copies so that in-memory edits made by the
    code under test never leak into the "server" state, and vice versa.

    Usage:
        def test_something(fake_api):
            fake_api.add_pod(make_pod())
            fake_api.patch_errors.append(ApiException(status=500, reason="boom"))
    """

    def __init__(self):
        self.pods: Dict[Tuple[str, str], client.V1Pod] = {}
        self.patches: List[Tuple[str, str, dict]] = []
        self.created: List[client.V1Pod] = []
        self.deleted: List[Tuple[str, str, object]] = []
        self.patch_errors: List[Exception] = []
        self.create_errors: List[Exception] = []
        self.list_errors: List[Exception] = []
        self.list_resource_version = "100"
        # Ordered record of mutating calls: ("create"|"delete"|"patch", name)
        self.log: List[Tuple[str, str]] = []

    def add_pod(self, pod: client.V1Pod) -> client.V1Pod:
        stored = clone_pod(pod)
        self.pods[(stored.metadata.namespace, stored.metadata.name)] = stored
        return stored

    def get_pod(self, namespace: str, name: str) -> Optional[client.V1Pod]:
        return self.pods.get((namespace, name))

    @staticmethod
    def _not_found(name: str) -> ApiException:
        return ApiException(status=404, reason=f'pods "{name}" not found')

    def create_namespaced_pod(self, namespace, body, **kwargs):
        if self.create_errors:
            raise self.create_errors.pop(0)
        key = (namespace, body.metadata.name)
        if key in self.pods:
            raise ApiException(status=409, reason="AlreadyExists")
        stored = clone_pod(body)
        self.pods[key] = stored
        self.created.append(body)
        self.log.append(("create", body.metadata.name))
        return stored

    def read_namespaced_pod(self, name, namespace, **kwargs):
        pod = self.pods.get((namespace, name))
        if pod is None:
            raise self._not_found(name)
        return clone_pod(pod)

    def delete_namespaced_pod(self, name, namespace, body=None, **kwargs):
        if (namespace, name) not in self.pods:
            raise self._not_found(name)
        del self.pods[(namespace, name)]
        self.deleted.append((namespace, name, body))
        self.log.append(("delete", name))
        return client.V1Status(status="Success")

    def patch_namespaced_pod(self, name, namespace, body, **kwargs):
        if self.patch_errors:
            raise self.patch_errors.pop(0)
        pod = self.pods.get((namespace, name))
        if pod is None:
            raise self._not_found(name)
        self.patches.append((namespace, name, body))
        self.log.append(("patch", name))

        changes = (body.get("metadata") or {}).get("annotations") or {}
        annotations = dict(pod.metadata.annotations or {})
        for key, value in changes.items():
            if value is None:
                annotations.pop(key, None)
            else:
                annotations[key] = value
        pod.metadata.annotations = annotations
        return clone_pod(pod)

    def _pod_list(self, pods) -> client.V1PodList:
        return client.V1PodList(
            items=[clone_pod(p) for p in pods],
            metadata=client.V1ListMeta(resource_version=self.list_resource_version),
        )

    def list_namespaced_pod(self, namespace, **kwargs):
        return self._pod_list(p for (ns, _), p in self.pods.items() if ns == namespace)

    def list_pod_for_all_namespaces(self, **kwargs):
        if self.list_errors:
            raise self.list_errors.pop(0)
        return self._pod_list(self.pods.values())

    def connect_get_namespaced_pod_exec(self, *args, **kwargs):
        raise AssertionError("exec must go through the stream function")


# =============================================================================
# Fake watch
# =============================================================================


class FakeWatch:
    """A single watch request: yields its scripted events, then idles until timeout."""

    def __init__(self, events: List[object]):
        self.events = list(events)
        self.stopped = threading.Event()
        self.calls: List[Tuple[Callable, dict]] = []

    def stream(self, func, *args, **kwargs):
        self.calls.append((func, kwargs))
        for event in self.events:
            if self.stopped.is_set():
                return
            if isinstance(event, Exception):
                raise event
            yield event
        timeout = kwargs.get("timeout_seconds")
        self.stopped.wait(timeout if timeout is not None else 0)

    def stop(self):
        self.stopped.set()


class FakeWatchFactory:
    """
    Hands out FakeWatch objects, one per scripted batch of events.

    Once the script is exhausted every further watch yields nothing and
    idles for its timeout.
    """

    def __init__(self, *batches: List[object]):
        self.batches = [list(b) for b in batches]
        self.watches: List[FakeWatch] = []

    def __call__(self) -> FakeWatch:
        events = self.batches.pop(0) if self.batches else []
        w = FakeWatch(events)
        self.watches.append(w)
        return w


# =============================================================================
# Fake exec stream
# =============================================================================


class FakeWSClient:
    """Scripted exec channel mirroring the WSClient calls used by the executor."""

    def __init__(self, stdout: str = "", stderr: str = "", error: str = "", hang: bool = False):
        self._stdout = stdout
        self._stderr = stderr
        self._error = error
        self._open = True
        self.hang = hang
        self.closed = False
        self.updates = 0

    def is_open(self):
        return self._open

    def update(self, timeout=0):
        self.updates += 1
        if self.hang:
            threading.Event().wait(min(timeout, 0.01))
            return
        self._open = False

    def peek_stdout(self, timeout=0):
        return bool(self._stdout) and not self.hang

    def read_stdout(self, timeout=None):
        data, self._stdout = self._stdout, ""
        return data

    def peek_stderr(self, timeout=0):
        return bool(self._stderr) and not self.hang

    def read_stderr(self, timeout=None):
        data, self._stderr = self._stderr, ""
        return data

    def read_channel(self, channel, timeout=0):
        return self._error

    def close(self, **kwargs):
        self._open = False
        self.closed = True


SUCCESS_STATUS = '{"metadata":{},"status":"Success"}'


def failure_status(exit_code: int = 1, message: str = None) -> str:
    message = message or f"command terminated with non-zero exit code: exit status {exit_code}"
    return (
        '{"metadata":{},"status":"Failure","message":"' + message + '",'
        '"reason":"NonZeroExitCode","details":{"causes":[{"reason":"ExitCode","message":"' + str(exit_code) + '"}]}}'
    )


class FakeExecStream:
    """
    Stand-in for kubernetes.stream.stream.

    Responses are matched on the first token of the command; unmatched
    commands succeed with empty output.

    Usage:
        fake_stream.respond("docker", FakeWSClient(stdout="'28400'\\n", error=SUCCESS_STATUS))
    """

    def __init__(self):
        self.responses: Dict[str, List[object]] = {}
        self.calls: List[dict] = []
        self.clients: List[FakeWSClient] = []

    def respond(self, first_token: str, response):
        self.responses.setdefault(first_token, []).append(response)

    def __call__(self, func, name, namespace, **kwargs):
        command = kwargs.get("command") or []
        self.calls.append({"func": func, "name": name, "namespace": namespace, **kwargs})

        queued = self.responses.get(command[0] if command else "", [])
        response = queued.pop(0) if queued else FakeWSClient(error=SUCCESS_STATUS)
        if isinstance(response, Exception):
            raise response
        self.clients.append(response)
        return response

    @property
    def commands(self) -> List[List[str]]:
        return [call["command"] for call in self.calls]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def controller_config():
    """Configuration with short timeouts and no grace period."""
    return ControllerConfig(
        image="priv-image:latest",
        namespace="kube-pcc",
        priv_pod_timeout=3,
        exec_timeout=5.0,
        client_grace_period=0.0,
    )


@pytest.fixture
def fake_api():
    return FakeCoreV1Api()


@pytest.fixture
def fake_stream():
    return FakeExecStream()


@pytest.fixture
def request_ctx():
    return RequestContext.for_target("test-pod", "target-container")


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: tests that wait on real timeouts")
