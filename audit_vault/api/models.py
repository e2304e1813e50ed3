"""Pydantic models for API responses."""

from pydantic import BaseModel, Field
from datetime import datetime, timezone


class HealthStatus(BaseModel):
    status: str  # "healthy", "degraded", "unhealthy"
    datastore: bool
    backup_dir: bool
    redis: bool
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class MessageResponse(BaseModel):
    message: str
