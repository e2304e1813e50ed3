"""Backup and restore orchestration for the audit report manager."""

import asyncio
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Tuple

from ..config import BackupConfig
from ..datastore import DataStore
from .._utils import logger
from .builder import ArchiveBuilder
from .catalog import BackupCatalog
from .errors import Conflict
from .exporters import CollectionExporter
from .jobs import JobRunner
from .lock import OperationLease, OperationLock
from .models import (
    BackupManifest,
    BackupRequest,
    DiskUsage,
    JobRecord,
    OperationKind,
    OperationStatus,
    RestoreReport,
    RestoreRequest,
)
from .restore import RestoreEngine


class BackupManager:
    """Orchestrate backup and restore operations over the datastore.

    Every request is validated and the operation lock acquired before a job
    is accepted, so bad input and a busy engine are reported to the caller
    synchronously. The work itself runs on the JobRunner.
    """

    def __init__(
        self,
        datastore: DataStore,
        backup_config: Optional[BackupConfig] = None,
        lock: Optional[OperationLock] = None,
        job_runner: Optional[JobRunner] = None,
    ):
        """Initialize backup manager.

        Args:
            datastore: DataStore holding one collection per dataset
            backup_config: Archive settings. If None, uses datastore.config.backup.
            lock: Shared operation lock. If None, a new one is created.
            job_runner: Background job runner. If None, an in-memory one is created.
        """
        self.datastore = datastore
        self.config = backup_config or datastore.config.backup
        self.lock = lock or OperationLock()
        self.jobs = job_runner or JobRunner()

        self.catalog = BackupCatalog(
            Path(self.config.backup_dir),
            extension=self.config.extension,
            lock=self.lock,
            max_upload_bytes=self.config.max_upload_bytes,
        )
        self.builder = ArchiveBuilder(datastore, self.catalog, self.config)
        self.restorer = RestoreEngine(datastore, self.catalog)

    @property
    def backup_dir(self) -> Path:
        return self.catalog.backup_dir

    # Backup

    def _begin_backup(self, request: BackupRequest) -> OperationLease:
        self.builder.validate_selection(request.backup_data)
        return self.lock.acquire(OperationKind.BACKUP, message="Backup started")

    async def create_backup(self, request: BackupRequest) -> BackupManifest:
        """Create a backup and wait for it.

        Raises:
            BadParameters: empty or unknown dataset selection
            Conflict: another operation is running
        """
        lease = self._begin_backup(request)
        async with lease:
            return await self.builder.build(lease, request.name, request.password, request.backup_data)

    async def submit_backup(self, request: BackupRequest) -> JobRecord:
        """Validate, take the lock and run the backup in the background."""
        lease = self._begin_backup(request)

        async def work(lease: OperationLease) -> Dict:
            manifest = await self.builder.build(lease, request.name, request.password, request.backup_data)
            return manifest.model_dump(mode="json")

        return await self.jobs.submit(OperationKind.BACKUP, lease, work)

    # Restore

    def _begin_restore(self, slug: str) -> Tuple[OperationLease, BackupManifest]:
        manifest = self.catalog.get_manifest(slug)
        lease = self.lock.acquire(
            OperationKind.RESTORE,
            filename=manifest.filename,
            message=f"Restore of {manifest.name} pending",
        )
        return lease, manifest

    async def restore_backup(self, slug: str, request: RestoreRequest) -> RestoreReport:
        """Restore a backup and wait for it.

        Raises:
            NotFound: unknown slug
            Conflict: another operation is running
            Unauthorized: password missing or wrong
        """
        lease, manifest = self._begin_restore(slug)
        async with lease:
            return await self.restorer.restore(
                lease, manifest.filename, request.password, request.restore_data, request.mode
            )

    async def submit_restore(self, slug: str, request: RestoreRequest) -> JobRecord:
        """Validate, take the lock and run the restore in the background."""
        lease, manifest = self._begin_restore(slug)

        async def work(lease: OperationLease) -> Dict:
            report = await self.restorer.restore(
                lease, manifest.filename, request.password, request.restore_data, request.mode
            )
            return report.model_dump(mode="json")

        return await self.jobs.submit(OperationKind.RESTORE, lease, work)

    # Catalog

    async def list_backups(self) -> List[BackupManifest]:
        return await asyncio.to_thread(self.catalog.get_list)

    async def get_backup(self, slug: str) -> BackupManifest:
        return await asyncio.to_thread(self.catalog.get_manifest, slug)

    async def get_backup_path(self, slug: str) -> Path:
        """Path to the archive of `slug`.

        Raises:
            NotFound: unknown slug
        """
        manifest = await self.get_backup(slug)
        return self.catalog.resolve(manifest.filename)

    async def delete_backup(self, slug: str) -> BackupManifest:
        return await asyncio.to_thread(self.catalog.delete, slug)

    async def upload_backup(self, filename: str, source: BinaryIO) -> BackupManifest:
        """Store an uploaded archive.

        Uploads are refused while a backup or restore is running.
        """
        if not self.lock.is_idle():
            raise Conflict("Cannot upload while a backup or restore is in progress")
        manifest = await asyncio.to_thread(self.catalog.store_upload, filename, source)
        logger.info(f"Uploaded backup: {manifest.slug} ({manifest.filename})")
        return manifest

    # Status

    def get_status(self) -> OperationStatus:
        return self.lock.get_status()

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        return self.jobs.get_job(job_id)

    def disk_usage(self) -> DiskUsage:
        return self.catalog.disk_usage()

    def available_datasets(self) -> List[str]:
        return self.datastore.registry.names

    async def dataset_statistics(self) -> Dict[str, int]:
        """Current record count of every registered dataset."""
        statistics: Dict[str, int] = {}
        for name in self.datastore.registry.names:
            exporter = CollectionExporter(name, self.datastore.collection(name))
            statistics.update(await exporter.get_statistics())
        return statistics

    def cleanup(self) -> int:
        """Remove temp files left behind by interrupted writes."""
        return self.catalog.cleanup_temp_files()

    async def shutdown(self) -> None:
        await self.jobs.drain()
