"""Per-event request context."""

import uuid
from dataclasses import dataclass, field


def privileged_pod_name(pod_name: str, container: str) -> str:
    """Derive the privileged pod name for a target pod and container.

    Example: ("test-pod", "target-container") -> "priv-test-pod-target-container"
    """
    name = f"priv_{pod_name}_{container}"
    return name.replace("_", "-").lower()


@dataclass(frozen=True)
class RequestContext:
    """Identity of one qualifying pod-update event.

    Created fresh for every event and discarded when its handler returns.
    request_id correlates log lines and labels the privileged pod this
    request creates; it is never written to the target pod.
    """

    priv_pod_name: str
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def for_target(cls, pod_name: str, container: str) -> "RequestContext":
        return cls(priv_pod_name=privileged_pod_name(pod_name, container))
