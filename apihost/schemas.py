"""
apihost — Pydantic Response Schemas
===================================

What:  Response models of the routes shipped with the package.
"""

from typing import Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """
    What:  Health report of a host.
    Who:   Returned by GET /api/health.
    """

    status: str = Field(description="healthy | unhealthy")
    version: str = Field(description="apihost version")
    environment: str = Field(description="APP_ENV of the host, 'prod' when unset")
    database: Optional[str] = Field(
        default=None,
        description="connected | disconnected; null when the host has no database",
    )
    uptime_seconds: float = Field(description="Seconds since the health router was created")


class ErrorResponse(BaseModel):
    """Shape of the JSON error payloads written by the pipeline."""

    error: str
    message: str
    details: Optional[str] = None
