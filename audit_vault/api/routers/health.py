"""Health check endpoints."""

from fastapi import APIRouter, Depends, HTTPException
from typing import Dict, Optional
import asyncio
import os

from ..models import HealthStatus
from ..dependencies import get_backup_manager, get_datastore, get_redis
from audit_vault import DataStore
from audit_vault.backup import BackupManager

router = APIRouter(prefix="/health", tags=["health"])


async def check_datastore(datastore: DataStore) -> bool:
    """Check that every collection backend answers."""
    try:
        return await datastore.check_health()
    except Exception:
        return False


async def check_backup_dir(backup_manager: BackupManager) -> bool:
    """Check the backup directory exists and is writable."""
    path = backup_manager.backup_dir
    return path.is_dir() and os.access(path, os.W_OK)


async def check_redis(redis_client) -> bool:
    """Check Redis connectivity."""
    try:
        if redis_client is not None:
            return await redis_client.ping()
        return True  # Job mirroring disabled
    except Exception:
        return False


@router.get("", response_model=HealthStatus)
async def health_check(
    datastore: DataStore = Depends(get_datastore),
    backup_manager: BackupManager = Depends(get_backup_manager),
    redis_client: Optional[object] = Depends(get_redis),
) -> HealthStatus:
    """Health of the datastore, backup directory and job mirror."""
    datastore_health, backup_dir_health, redis_health = await asyncio.gather(
        check_datastore(datastore),
        check_backup_dir(backup_manager),
        check_redis(redis_client),
        return_exceptions=True
    )

    # Handle exceptions from gather
    datastore_ok = datastore_health is True
    backup_dir_ok = backup_dir_health is True
    redis_ok = redis_health is True

    checks = [datastore_ok, backup_dir_ok, redis_ok]
    if all(checks):
        status = "healthy"
    elif not datastore_ok or not backup_dir_ok:
        status = "unhealthy"
    else:
        status = "degraded"

    return HealthStatus(
        status=status,
        datastore=datastore_ok,
        backup_dir=backup_dir_ok,
        redis=redis_ok
    )


@router.get("/ready")
async def readiness_probe(
    datastore: DataStore = Depends(get_datastore),
    backup_manager: BackupManager = Depends(get_backup_manager),
    redis_client: Optional[object] = Depends(get_redis),
) -> Dict[str, str]:
    """Kubernetes readiness probe."""
    health = await health_check(datastore, backup_manager, redis_client)
    if health.status == "unhealthy":
        raise HTTPException(status_code=503, detail="Service not ready")
    return {"status": "ready"}


@router.get("/live")
async def liveness_probe() -> Dict[str, str]:
    """Kubernetes liveness probe."""
    return {"status": "alive"}
