"""
Config Module - Black Box Interface

Purpose: Controller configuration
Interface: ControllerConfig, EnvConfigProvider.get_controller_config()
Hidden: Config sources (environment, YAML file), parsing and validation

The resulting ControllerConfig is immutable and is handed to the controller
at construction; no other module reads the environment.
"""

from .provider import ConfigProvider, ControllerConfig, EnvConfigProvider, RUNTIME_SOCKETS

__all__ = ["ConfigProvider", "ControllerConfig", "EnvConfigProvider", "RUNTIME_SOCKETS"]
