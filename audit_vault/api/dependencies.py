"""Dependency injection for FastAPI."""

from fastapi import Request
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from audit_vault import DataStore
    from audit_vault.backup import BackupManager
    import redis.asyncio as redis


async def get_datastore(request: Request) -> "DataStore":
    """Get DataStore instance from app state."""
    return request.app.state.datastore


async def get_backup_manager(request: Request) -> "BackupManager":
    """Get the process-wide BackupManager from app state."""
    return request.app.state.backup_manager


async def get_redis(request: Request) -> Optional["redis.Redis"]:
    """Get Redis client from app state if available."""
    return getattr(request.app.state, "redis_client", None)
