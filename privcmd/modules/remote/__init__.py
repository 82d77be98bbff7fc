"""
Remote Module - Black Box Interface

Purpose: Run the requested action inside the target container's namespaces
Interface: resolve_container_id(), container_runtime(), RemoteCommandExecutor
(exec_in_pod, resolve_host_pid, execute, execute_action), build_nsenter_command()
Hidden: Exec channel handling, runtime inspect commands, PID parsing

Can be replaced with a different entry mechanism (e.g. ephemeral debug containers).
"""

from .executor import (
    RemoteCommandExecutor,
    build_nsenter_command,
    container_runtime,
    inspect_pid_command,
    parse_pid,
    resolve_container_id,
)

__all__ = [
    "RemoteCommandExecutor",
    "build_nsenter_command",
    "container_runtime",
    "inspect_pid_command",
    "parse_pid",
    "resolve_container_id",
]
