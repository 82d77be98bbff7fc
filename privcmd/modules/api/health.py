"""
Liveness and readiness endpoints for the controller Deployment.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from privcmd import __version__

from .models import HealthResponse, ReadinessResponse

logger = logging.getLogger("privcmd.api")


def create_health_app(controller, manage_controller: bool = False) -> FastAPI:
    """
    Build the health API for a controller.

    Args:
        controller: PrivilegedCommandController (anything with has_synced)
        manage_controller: Start the controller on startup and stop it on shutdown
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if manage_controller:
            controller.start()
        yield
        if manage_controller:
            controller.stop(timeout=5)

    app = FastAPI(
        title="Privileged Command Controller",
        description="Health endpoints of the privileged command controller",
        version=__version__,
        lifespan=lifespan,
    )

    @app.get("/health", response_model=HealthResponse)
    async def health():
        """
        Liveness probe.

        Returns:
            200: Process is running
        """
        return HealthResponse(status="ok", version=__version__)

    @app.get("/ready", response_model=ReadinessResponse)
    async def ready():
        """
        Readiness probe.

        Returns:
            200: Pod cache synced, updates are being processed
            503: Still listing pods
        """
        if not controller.has_synced:
            return JSONResponse(
                status_code=503,
                content=ReadinessResponse(status="not ready", detail="pod cache not synced").model_dump(),
            )
        pending = controller.event_queue.qsize() if hasattr(controller, "event_queue") else 0
        return ReadinessResponse(status="ready", pending_events=pending)

    return app
