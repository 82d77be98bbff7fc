"""
Response models for the health API.
"""

from typing import Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Liveness response."""

    status: str = Field(..., description="Always 'ok' while the process serves requests")
    version: str = Field(..., description="Controller version")


class ReadinessResponse(BaseModel):
    """Readiness response."""

    status: str = Field(..., description="'ready' once the pod cache has synced")
    pending_events: int = Field(0, description="Pod updates waiting to be processed")
    detail: Optional[str] = Field(None, description="Why the controller is not ready")
