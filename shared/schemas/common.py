"""Common schemas used across the service."""

from __future__ import annotations

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health check response with the state of each scheduler loop."""

    status: str = "ok"
    schedulers: dict[str, str] = Field(default_factory=dict)  # name -> "running" | "stopped" | "disabled"
