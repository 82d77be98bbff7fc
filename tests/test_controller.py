import threading
from unittest.mock import MagicMock

import pytest
from kubernetes.client.rest import ApiException

from privcmd.errors import PodNotRunning, TransitionFailed
from privcmd.modules.annotations import (
    ANNOTATION_EXECUTE_ACTION,
    ANNOTATION_EXECUTE_CONTAINER,
    ANNOTATION_EXECUTE_STATUS,
    AnnotationPatcher,
    CommandStatus,
)
from privcmd.modules.controller import PodInformer, PrivilegedCommandController
from privcmd.modules.privpod import privileged_pod_spec
from conftest import FakeWatchFactory, make_pod

PRIV_POD = "priv-test-pod-target-container"

REQUEST = {
    ANNOTATION_EXECUTE_STATUS: "active",
    ANNOTATION_EXECUTE_CONTAINER: "target-container",
    ANNOTATION_EXECUTE_ACTION: "gcore 1",
}


@pytest.fixture
def orchestrator():
    return MagicMock()


@pytest.fixture
def controller(fake_api, controller_config, orchestrator):
    return PrivilegedCommandController(fake_api, controller_config, orchestrator=orchestrator)


def failing_request(fake_api, controller_config, owner=None):
    """Orchestrator side effect: create a privileged pod, then fail."""

    def process(old_pod, new_pod, ctx):
        fake_api.add_pod(
            privileged_pod_spec(ctx.priv_pod_name, "targetNode", controller_config, owner or ctx.request_id)
        )
        cause = PodNotRunning(ctx.priv_pod_name, 3, "Pending")
        raise TransitionFailed(ANNOTATION_EXECUTE_STATUS, "active", cause)

    return process


@pytest.mark.parametrize(
    "annotations",
    [
        None,
        {"team": "payments"},
        {ANNOTATION_EXECUTE_STATUS: "active", ANNOTATION_EXECUTE_CONTAINER: "target-container"},
        {**REQUEST, ANNOTATION_EXECUTE_ACTION: ""},
    ],
)
def test_incomplete_requests_are_ignored(controller, orchestrator, annotations):
    controller.handle_update(make_pod(), make_pod(annotations=annotations))

    orchestrator.process.assert_not_called()


def test_complete_request_is_dispatched(controller, orchestrator):
    old_pod = make_pod()
    new_pod = make_pod(annotations=REQUEST)

    controller.handle_update(old_pod, new_pod)

    orchestrator.process.assert_called_once()
    args = orchestrator.process.call_args[0]
    assert args[0] is old_pod
    assert args[1] == new_pod and args[1] is not new_pod
    assert args[2].priv_pod_name == PRIV_POD


def test_handlers_never_modify_the_delivered_pod(fake_api, controller, orchestrator):
    """Annotation writes land on a copy; the informer's cached object stays as the server sent it."""
    new_pod = make_pod(annotations=REQUEST)
    fake_api.add_pod(new_pod)
    patcher = AnnotationPatcher(fake_api)
    orchestrator.process.side_effect = lambda old, new, ctx: patcher.set_status(new, CommandStatus.IN_PROGRESS, ctx)

    controller.handle_update(make_pod(), new_pod)

    assert new_pod.metadata.annotations == REQUEST
    assert fake_api.get_pod("default", "test-pod").metadata.annotations[ANNOTATION_EXECUTE_STATUS] == "in-progress"
    assert orchestrator.process.call_args[0][1].metadata.annotations[ANNOTATION_EXECUTE_STATUS] == "in-progress"


def test_each_update_gets_a_fresh_context(controller, orchestrator):
    controller.handle_update(make_pod(), make_pod(annotations=REQUEST))
    controller.handle_update(make_pod(), make_pod(annotations=REQUEST))

    first, second = (c[0][2] for c in orchestrator.process.call_args_list)
    assert first.request_id != second.request_id


def test_failure_cleans_up_and_marks_error(fake_api, controller_config, controller, orchestrator, caplog):
    new_pod = make_pod(annotations=REQUEST)
    fake_api.add_pod(new_pod)
    orchestrator.process.side_effect = failing_request(fake_api, controller_config)

    controller.handle_update(make_pod(), new_pod)

    assert fake_api.get_pod("kube-pcc", PRIV_POD) is None
    assert fake_api.get_pod("default", "test-pod").metadata.annotations == {**REQUEST, ANNOTATION_EXECUTE_STATUS: "error"}
    assert "unable to act upon annotation privileged-command-status change to active" in caplog.text


def test_failure_leaves_other_requests_pod(fake_api, controller_config, controller, orchestrator):
    """A conflicting request never deletes a privileged pod it did not create."""
    new_pod = make_pod(annotations=REQUEST)
    fake_api.add_pod(new_pod)
    orchestrator.process.side_effect = failing_request(fake_api, controller_config, owner="first-request")

    controller.handle_update(make_pod(), new_pod)

    assert fake_api.get_pod("kube-pcc", PRIV_POD) is not None
    assert fake_api.get_pod("default", "test-pod").metadata.annotations[ANNOTATION_EXECUTE_STATUS] == "error"


def test_failure_handling_never_raises(fake_api, controller, orchestrator):
    new_pod = make_pod(annotations=REQUEST)
    fake_api.add_pod(new_pod)
    orchestrator.process.side_effect = RuntimeError("unexpected")
    fake_api.patch_errors.append(ApiException(status=500, reason="Internal Server Error"))

    controller.handle_update(make_pod(), new_pod)

    assert fake_api.get_pod("default", "test-pod").metadata.annotations == REQUEST


def test_run_processes_updates_in_order(fake_api, controller_config, orchestrator):
    fake_api.add_pod(make_pod(name="first", resource_version="1"))
    fake_api.add_pod(make_pod(name="second", resource_version="1"))

    processed = []
    finished = threading.Event()

    def process(old_pod, new_pod, ctx):
        processed.append(new_pod.metadata.name)
        if len(processed) == 3:
            finished.set()

    orchestrator.process.side_effect = process
    controller = PrivilegedCommandController(fake_api, controller_config, orchestrator=orchestrator)
    watches = FakeWatchFactory(
        [
            {"type": "MODIFIED", "object": make_pod(name="second", resource_version="2", annotations=REQUEST)},
            {"type": "MODIFIED", "object": make_pod(name="first", resource_version="3", annotations=REQUEST)},
            {"type": "MODIFIED", "object": make_pod(name="first", resource_version="4")},
            {"type": "MODIFIED", "object": make_pod(name="second", resource_version="5", annotations=REQUEST)},
        ]
    )
    controller.informer = PodInformer(fake_api, controller.enqueue, watch_factory=watches, watch_timeout=1)

    assert not controller.has_synced
    controller.start()
    try:
        assert finished.wait(5)
        assert controller.has_synced
    finally:
        controller.stop(timeout=5)

    assert processed == ["second", "first", "second"]
    assert controller.stop_event.is_set()
