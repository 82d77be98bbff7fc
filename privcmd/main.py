#!/usr/bin/env python3
"""
Privileged Command Controller - Main Entry Point

This is the thin orchestration layer that:
1. Loads configuration (file, environment, command-line flags)
2. Builds the Kubernetes client
3. Runs the controller and its health server

All business logic is in the modules, following black box principles.
"""

import argparse
import logging
import logging.config as log_config
import os
import sys
from typing import Any, Dict, List, Optional

import uvicorn
from kubernetes import client, config as kube_config
from kubernetes.config.config_exception import ConfigException

from privcmd.config import ControllerConfig, EnvConfigProvider
from privcmd.logging_config import get_logging_config
from privcmd.modules.api import create_health_app
from privcmd.modules.controller import PrivilegedCommandController

logger = logging.getLogger("privcmd")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="privileged-command-controller",
        description="Run privileged commands against containers on request, driven by pod annotations",
    )
    parser.add_argument("-c", "--kubeconfig", dest="kubeconfig",
                        help="Path to a kubeconfig file (default: in-cluster service account)")
    parser.add_argument("-i", "--privilegePodImage", dest="image",
                        help="Image for the privileged pod, containing the privileged command utilities")
    parser.add_argument("-n", "--namespace", dest="namespace",
                        help="Namespace for privileged pods (default: kube-pcc)")
    parser.add_argument("-s", "--serviceaccount", dest="service_account",
                        help="Service account for privileged pods (default: kube-priv-pod)")
    parser.add_argument("-t", "--privPodTimeout", dest="priv_pod_timeout", type=int,
                        help="Seconds to wait for the privileged pod to be running (default: 300)")
    parser.add_argument("--execTimeout", dest="exec_timeout", type=float,
                        help="Seconds a privileged command may run (default: 300)")
    parser.add_argument("--config-file", dest="config_file",
                        help="YAML configuration file (default: $PCC_CONFIG_FILE)")
    return parser


def load_config(argv: Optional[List[str]] = None, environ: Optional[Dict[str, str]] = None) -> ControllerConfig:
    """Build the configuration; flags win over environment, environment over file."""
    args = build_parser().parse_args(argv)
    environ = dict(os.environ if environ is None else environ)
    if args.config_file:
        environ["PCC_CONFIG_FILE"] = args.config_file

    overrides: Dict[str, Any] = {k: v for k, v in vars(args).items() if k != "config_file" and v is not None}
    return EnvConfigProvider(environ).get_controller_config(overrides)


def load_kube_client(cfg: ControllerConfig) -> client.CoreV1Api:
    """Use the in-cluster service account, falling back to a kubeconfig file."""
    if cfg.kubeconfig:
        kube_config.load_kube_config(config_file=cfg.kubeconfig)
        logger.info(f"Using kubeconfig {cfg.kubeconfig}")
        return client.CoreV1Api()

    try:
        kube_config.load_incluster_config()
        logger.info("Using in-cluster Kubernetes configuration")
    except ConfigException:
        kube_config.load_kube_config()
        logger.info("Using kubeconfig from default location")
    return client.CoreV1Api()


def main(argv: Optional[List[str]] = None) -> None:
    """Start the controller and serve /health and /ready until shutdown."""
    try:
        cfg = load_config(argv)
    except ValueError as e:
        log_config.dictConfig(get_logging_config())
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    logging_config = get_logging_config(cfg.log_level)
    log_config.dictConfig(logging_config)

    core_v1 = load_kube_client(cfg)
    controller = PrivilegedCommandController(core_v1, cfg)
    app = create_health_app(controller, manage_controller=True)

    uvicorn.run(
        app,
        host=cfg.health_host,
        port=cfg.health_port,
        log_level=cfg.log_level.lower(),
        log_config=logging_config,
    )


if __name__ == "__main__":
    main()
