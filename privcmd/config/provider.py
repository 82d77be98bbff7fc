"""Configuration provider for the privileged command controller."""
import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional, Protocol

import yaml

logger = logging.getLogger(__name__)

# Host path of the control socket for each supported container runtime
RUNTIME_SOCKETS = {
    "docker": "/var/run/docker.sock",
    "containerd": "/run/containerd/containerd.sock",
    "cri-o": "/var/run/crio/crio.sock",
}


@dataclass(frozen=True)
class ControllerConfig:
    """Process-wide settings, read once at startup and passed to the controller."""
    image: str
    namespace: str = "kube-pcc"
    service_account: str = "kube-priv-pod"
    priv_pod_timeout: int = 300
    exec_timeout: float = 300.0
    client_grace_period: float = 1.0
    container_runtime: str = "docker"
    runtime_socket: Optional[str] = None
    kubeconfig: Optional[str] = None
    health_host: str = "0.0.0.0"
    health_port: int = 8080
    log_level: str = "INFO"

    def __post_init__(self):
        if not self.image:
            raise ValueError(
                "No privileged pod image configured. "
                "Set PRIV_POD_IMAGE or 'image' in the config file."
            )
        if self.container_runtime not in RUNTIME_SOCKETS:
            raise ValueError(
                f"Unsupported container runtime: {self.container_runtime}. "
                f"Supported: {', '.join(sorted(RUNTIME_SOCKETS))}"
            )
        for name in ("priv_pod_timeout", "exec_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.client_grace_period < 0:
            raise ValueError("client_grace_period must not be negative")

    @property
    def socket_path(self) -> str:
        """Runtime socket to mount into the privileged pod."""
        return self.runtime_socket or RUNTIME_SOCKETS[self.container_runtime]


class ConfigProvider(Protocol):
    """Protocol for configuration providers."""

    def get_controller_config(self, overrides: Optional[Dict[str, Any]] = None) -> ControllerConfig:
        """Get controller configuration."""
        ...


# Environment variable for each ControllerConfig field
ENV_VARS = {
    "image": "PRIV_POD_IMAGE",
    "namespace": "PRIV_POD_NAMESPACE",
    "service_account": "PRIV_POD_SERVICE_ACCOUNT",
    "priv_pod_timeout": "PRIV_POD_TIMEOUT",
    "exec_timeout": "PRIV_EXEC_TIMEOUT",
    "client_grace_period": "CLIENT_GRACE_PERIOD",
    "container_runtime": "CONTAINER_RUNTIME",
    "runtime_socket": "CONTAINER_RUNTIME_SOCKET",
    "kubeconfig": "KUBECONFIG",
    "health_host": "HEALTH_HOST",
    "health_port": "HEALTH_PORT",
    "log_level": "LOG_LEVEL",
}

_CASTS = {
    "priv_pod_timeout": int,
    "exec_timeout": float,
    "client_grace_period": float,
    "health_port": int,
}


class EnvConfigProvider:
    """Environment-based configuration provider.

    Values come from an optional YAML file named by PCC_CONFIG_FILE, then from
    environment variables, which take precedence.
    """

    def __init__(self, environ: Optional[Dict[str, str]] = None):
        self.environ = os.environ if environ is None else environ

    def _load_file(self) -> Dict[str, Any]:
        path = self.environ.get("PCC_CONFIG_FILE")
        if not path:
            return {}

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")

        known = {f.name for f in fields(ControllerConfig)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown keys in config file {path}: {', '.join(sorted(unknown))}")

        logger.info(f"Loaded controller configuration from {path}")
        return data

    def get_controller_config(self, overrides: Optional[Dict[str, Any]] = None) -> ControllerConfig:
        """Get controller configuration from file, environment variables and overrides.

        Args:
            overrides: Values that win over both file and environment (command-line flags)
        """
        values = self._load_file()

        for name, env_var in ENV_VARS.items():
            value = self.environ.get(env_var)
            if value:
                values[name] = value

        for name, value in (overrides or {}).items():
            if value is not None:
                values[name] = value

        for name, cast in _CASTS.items():
            if name in values:
                try:
                    values[name] = cast(values[name])
                except (TypeError, ValueError):
                    raise ValueError(f"Invalid value for {name}: {values[name]!r}")

        values.setdefault("image", "")
        return ControllerConfig(**values)
