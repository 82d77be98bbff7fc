"""
Annotations Module - Black Box Interface

Purpose: The annotation contract between client and controller, and the
atomic way to change it on a pod
Interface: protocol keys and CommandStatus, ActionRequest, is_complete(),
AnnotationPatcher.apply_update() / apply_deletion() / set_status() / clear_protocol()
Hidden: Snapshot serialization, merge-patch computation, API submission
"""

from .patch import AnnotationPatcher, create_two_way_merge_patch, serialize_pod
from .protocol import (
    ANNOTATION_EXECUTE_ACTION,
    ANNOTATION_EXECUTE_CONTAINER,
    ANNOTATION_EXECUTE_STATUS,
    PROTOCOL_KEYS,
    ActionRequest,
    CommandStatus,
    get_status,
    is_complete,
)

__all__ = [
    "ANNOTATION_EXECUTE_ACTION",
    "ANNOTATION_EXECUTE_CONTAINER",
    "ANNOTATION_EXECUTE_STATUS",
    "PROTOCOL_KEYS",
    "ActionRequest",
    "AnnotationPatcher",
    "CommandStatus",
    "create_two_way_merge_patch",
    "get_status",
    "is_complete",
    "serialize_pod",
]
