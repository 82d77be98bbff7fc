"""
Privileged Command Controller

Runs privileged host-level commands (gdb, gcore, anything needing ptrace or
raw network access) against an unprivileged container, driven by annotations
on the target pod.

Architecture:
- Each module is self-contained with a clear interface
- Modules communicate only through those interfaces
- The Kubernetes client and configuration are injected, never global

Modules:
- annotations: Annotation protocol and diff-based patching
- privpod: Privileged pod lifecycle (create, await Running, delete)
- remote: Namespace-entry command execution inside the privileged pod
- orchestrator: Annotation status state machine
- controller: Pod informer and event dispatch
- api: Health endpoints
"""

__version__ = "1.0.0"
