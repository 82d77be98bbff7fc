"""
API Module - Black Box Interface

Purpose: HTTP liveness and readiness probes
Interface: create_health_app(controller) -> FastAPI, /health, /ready
Hidden: Controller lifecycle hooks, response models

The API contains no controller logic; it only reports on it.
"""

from .health import create_health_app
from .models import HealthResponse, ReadinessResponse

__all__ = ["HealthResponse", "ReadinessResponse", "create_health_app"]
