"""
Controller Module - Black Box Interface

Purpose: Receive pod updates cluster-wide and dispatch protocol requests
Interface: PrivilegedCommandController (handle_update, run, start, stop, has_synced),
PodInformer (relist, watch_once, run, stop, has_synced)
Hidden: Event queue, worker thread, watch reconnection, cache of last-seen pods

The controller is the only place where request errors are absorbed.
"""

from .controller import PrivilegedCommandController
from .informer import PodInformer, WatchExpired, pod_key

__all__ = ["PodInformer", "PrivilegedCommandController", "WatchExpired", "pod_key"]
