"""
Privileged Pod Module - Black Box Interface

Purpose: Lifecycle of the privileged helper pod
Interface: PrivilegedPodManager.provision(), is_managed(), delete(), delete_if_owned(); privileged_pod_spec()
Hidden: Pod specification, watch handling, timeout bookkeeping

One privileged pod per request, pinned to the target's node, never reused.
"""

from .privpod import (
    MANAGED_BY_LABEL,
    PRIVILEGE_CONTAINER,
    REQUEST_ID_LABEL,
    PrivilegedPodManager,
    privileged_pod_spec,
)

__all__ = [
    "MANAGED_BY_LABEL",
    "PRIVILEGE_CONTAINER",
    "REQUEST_ID_LABEL",
    "PrivilegedPodManager",
    "privileged_pod_spec",
]
