"""Backup and restore API endpoints."""

from fastapi import APIRouter, Body, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import FileResponse
from typing import Dict, List, Optional

from ..dependencies import get_backup_manager
from ..models import MessageResponse
from audit_vault.backup import BackupManager
from audit_vault.backup.models import (
    BackupManifest,
    BackupRequest,
    DiskUsage,
    JobRecord,
    OperationStatus,
    RestoreRequest,
)
from audit_vault._utils import logger

router = APIRouter(prefix="/backups", tags=["backup"])


@router.get("", response_model=List[BackupManifest])
async def list_backups(
    backup_manager: BackupManager = Depends(get_backup_manager)
) -> List[BackupManifest]:
    """List all available backups, newest first."""
    return await backup_manager.list_backups()


@router.get("/status", response_model=OperationStatus)
async def get_status(
    backup_manager: BackupManager = Depends(get_backup_manager)
) -> OperationStatus:
    """Current (or last finished) backup/restore operation."""
    return backup_manager.get_status()


@router.get("/disk-usage", response_model=DiskUsage)
async def get_disk_usage(
    backup_manager: BackupManager = Depends(get_backup_manager)
) -> DiskUsage:
    return backup_manager.disk_usage()


@router.get("/datasets")
async def list_datasets(
    backup_manager: BackupManager = Depends(get_backup_manager)
) -> Dict[str, List[str]]:
    """Dataset ids that can be backed up, in restore order."""
    return {"datasets": backup_manager.available_datasets()}


@router.get("/jobs/{job_id}", response_model=JobRecord)
async def get_job(
    job_id: str,
    backup_manager: BackupManager = Depends(get_backup_manager)
) -> JobRecord:
    job = backup_manager.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return job


@router.post("", response_model=JobRecord, status_code=status.HTTP_202_ACCEPTED)
async def create_backup(
    request: Optional[BackupRequest] = Body(None),
    backup_manager: BackupManager = Depends(get_backup_manager)
) -> JobRecord:
    """Create new backup asynchronously.

    Returns the job record; poll /backups/status for progress.
    """
    job = await backup_manager.submit_backup(request or BackupRequest())
    logger.info(f"Accepted backup job {job.job_id}")
    return job


@router.post("/upload", response_model=BackupManifest, status_code=status.HTTP_201_CREATED)
async def upload_backup(
    file: UploadFile = File(...),
    backup_manager: BackupManager = Depends(get_backup_manager)
) -> BackupManifest:
    """Add an archive produced elsewhere to the catalog.

    The file is validated before it is listed; an invalid archive is removed
    and rejected with 400.
    """
    try:
        return await backup_manager.upload_backup(file.filename, file.file)
    finally:
        await file.close()


@router.get("/{slug}", response_model=BackupManifest)
async def get_backup(
    slug: str,
    backup_manager: BackupManager = Depends(get_backup_manager)
) -> BackupManifest:
    return await backup_manager.get_backup(slug)


@router.get("/{slug}/download")
async def download_backup(
    slug: str,
    backup_manager: BackupManager = Depends(get_backup_manager)
) -> FileResponse:
    """Download backup archive."""
    manifest = await backup_manager.get_backup(slug)
    backup_path = await backup_manager.get_backup_path(slug)

    return FileResponse(
        path=backup_path,
        media_type="application/octet-stream",
        filename=manifest.filename,
    )


@router.post("/{slug}/restore", response_model=JobRecord, status_code=status.HTTP_202_ACCEPTED)
async def restore_backup(
    slug: str,
    request: Optional[RestoreRequest] = Body(None),
    backup_manager: BackupManager = Depends(get_backup_manager)
) -> JobRecord:
    """Restore a stored backup asynchronously.

    Returns the job record; the per-dataset outcome shows up in
    /backups/status once the job finishes.
    """
    job = await backup_manager.submit_restore(slug, request or RestoreRequest())
    logger.info(f"Accepted restore job {job.job_id} for {slug}")
    return job


@router.delete("/{slug}", response_model=MessageResponse)
async def delete_backup(
    slug: str,
    backup_manager: BackupManager = Depends(get_backup_manager)
) -> MessageResponse:
    """Delete a backup archive."""
    await backup_manager.delete_backup(slug)
    return MessageResponse(message=f"Backup deleted: {slug}")
