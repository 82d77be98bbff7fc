"""
Orchestrator Module - Black Box Interface

Purpose: Drive a request through active -> in-progress -> done -> idle
Interface: Orchestrator.process(old_pod, new_pod, ctx)
Hidden: Per-status handlers, transition validation, grace period

Every failure surfaces as TransitionFailed naming the status being handled.
"""

from .orchestrator import Orchestrator, get_node_name

__all__ = ["Orchestrator", "get_node_name"]
