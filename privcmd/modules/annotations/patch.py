"""
Diff-based annotation patching.

Each change is computed as a merge patch between a "before" and an "after"
snapshot of the whole pod and submitted in a single request, so annotations
written concurrently by other actors are left alone. Only the changed keys
are last-writer-wins; there is no retry on conflict.
"""

import copy
import logging
from typing import Any, Dict, Iterable, Mapping

from kubernetes.client import ApiClient

from privcmd.errors import AnnotationMissing, AnnotationPatchFailed
from privcmd.request import RequestContext

from .protocol import ANNOTATION_EXECUTE_STATUS, PROTOCOL_KEYS, CommandStatus

logger = logging.getLogger("privcmd.annotations")

_serializer = ApiClient()


def create_two_way_merge_patch(original: Mapping[str, Any], modified: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Compute a JSON merge patch that turns original into modified.

    Example:
        original: {"metadata": {"annotations": {"a": "1", "b": "2"}}}
        modified: {"metadata": {"annotations": {"a": "1", "c": "3"}}}
        patch:    {"metadata": {"annotations": {"b": None, "c": "3"}}}

    Nested dicts are diffed recursively, anything else (lists included) is
    replaced wholesale. Removed keys map to None.
    """
    patch: Dict[str, Any] = {}

    for key in original:
        if key not in modified:
            patch[key] = None

    for key, new_value in modified.items():
        if key not in original:
            patch[key] = copy.deepcopy(new_value)
            continue

        old_value = original[key]
        if isinstance(old_value, Mapping) and isinstance(new_value, Mapping):
            nested = create_two_way_merge_patch(old_value, new_value)
            if nested:
                patch[key] = nested
        elif old_value != new_value:
            patch[key] = copy.deepcopy(new_value)

    return patch


def serialize_pod(pod) -> Dict[str, Any]:
    """Serialize a V1Pod (or an already-plain dict) to its JSON form."""
    return _serializer.sanitize_for_serialization(pod)


class AnnotationPatcher:
    """Applies annotation changes to pods through the Kubernetes API."""

    def __init__(self, core_v1):
        """
        Initialize annotation patcher.

        Args:
            core_v1: kubernetes.client.CoreV1Api (or compatible)
        """
        self.core_v1 = core_v1

    def _apply_patch(self, pod, before: Dict[str, Any], after: Dict[str, Any], ctx: RequestContext) -> None:
        """Diff two snapshots of the pod and submit the result as one patch."""
        patch = create_two_way_merge_patch(before, after)
        if not patch:
            logger.debug(f"[{ctx.request_id}] No annotation change for pod {pod.metadata.name}")
            return

        try:
            self.core_v1.patch_namespaced_pod(
                name=pod.metadata.name,
                namespace=pod.metadata.namespace,
                body=patch,
            )
        except Exception as e:
            raise AnnotationPatchFailed(pod.metadata.name, str(e)) from e

        logger.info(f"[{ctx.request_id}] Completed patching annotation on pod {pod.metadata.name}")

    def apply_update(self, pod, upserts: Mapping[str, str], ctx: RequestContext) -> None:
        """
        Add or update several annotations atomically.

        Args:
            pod: Target V1Pod; its annotations are updated in place once the
                patch has been accepted
            upserts: Annotation keys and values to set
            ctx: Request context for log correlation

        Raises:
            AnnotationPatchFailed: If the patch is not applied
        """
        before = serialize_pod(pod)
        after = copy.deepcopy(before)
        metadata = after.setdefault("metadata", {})
        annotations = metadata.get("annotations") or {}
        annotations.update(upserts)
        metadata["annotations"] = annotations

        self._apply_patch(pod, before, after, ctx)

        if pod.metadata.annotations is None:
            pod.metadata.annotations = {}
        pod.metadata.annotations.update(upserts)

    def apply_deletion(self, pod, keys: Iterable[str], ctx: RequestContext) -> None:
        """
        Delete several annotations atomically.

        Deletion is not idempotent: every key must be present,
        otherwise nothing is changed.

        Raises:
            AnnotationMissing: If any key is absent or empty
            AnnotationPatchFailed: If the patch is not applied
        """
        keys = list(keys)
        current = pod.metadata.annotations or {}
        for key in keys:
            if not current.get(key):
                raise AnnotationMissing(key)

        before = serialize_pod(pod)
        after = copy.deepcopy(before)
        for key in keys:
            del after["metadata"]["annotations"][key]

        self._apply_patch(pod, before, after, ctx)

        for key in keys:
            del pod.metadata.annotations[key]

    def set_status(self, pod, status: CommandStatus, ctx: RequestContext) -> None:
        """Set the privileged-command-status annotation."""
        self.apply_update(pod, {ANNOTATION_EXECUTE_STATUS: CommandStatus(status).value}, ctx)

    def clear_protocol(self, pod, ctx: RequestContext) -> None:
        """Remove all three protocol annotations, returning the pod to idle."""
        self.apply_deletion(pod, PROTOCOL_KEYS, ctx)
