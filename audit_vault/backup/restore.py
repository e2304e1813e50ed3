"""Restore engine: applies archived datasets to the datastore."""

import asyncio
from typing import Dict, Iterable, Optional

from ..datastore import DataStore
from .._utils import logger
from .archive import ArchiveReader, unknown_datasets
from .catalog import BackupCatalog
from .exporters import CollectionExporter
from .lock import OperationLease
from .models import JobState, RestoreMode, RestoreReport


class RestoreEngine:
    """Best-effort restore of one archive.

    Archive-wide problems (missing file, bad structure, checksum, password)
    abort before any collection is touched. Once applying starts, a failing
    dataset is recorded and the remaining datasets still run.
    """

    def __init__(self, datastore: DataStore, catalog: BackupCatalog):
        self.datastore = datastore
        self.catalog = catalog

    async def restore(
        self,
        lease: OperationLease,
        filename: str,
        password: Optional[str] = None,
        restore_data: Optional[Iterable[str]] = None,
        mode: RestoreMode = RestoreMode.MERGE,
    ) -> RestoreReport:
        """Restore datasets from `filename`.

        Args:
            lease: RESTORE lease held by the caller
            filename: Archive file name under the backup directory
            password: Required when the archive is encrypted
            restore_data: Datasets to restore; empty or None means all archived ones
            mode: merge upserts by key, replace drops then inserts

        Returns:
            RestoreReport with restored, failed and skipped datasets
        """
        registry = self.datastore.registry
        reader = ArchiveReader(self.catalog.resolve(filename))

        lease.update("Validating backup", state=JobState.VALIDATING)
        manifest, key = await asyncio.to_thread(reader.unlock, password)
        logger.info(f"Starting restore: {manifest.slug} (mode={mode.value})")

        requested = list(dict.fromkeys(restore_data or ())) or list(manifest.dataset)
        skipped: Dict[str, str] = {}
        for name in requested:
            if name not in manifest.dataset:
                skipped[name] = "Not included in the backup"
        for name in unknown_datasets(manifest, registry.names):
            if name in requested:
                skipped[name] = "Unknown dataset"

        selected = registry.ordered(name for name in requested if name not in skipped)
        loaded, failed = await asyncio.to_thread(reader.load_datasets, selected, password, key)

        restored = []
        lease.update("Restoring data", progress=0.0, state=JobState.APPLYING)
        for index, name in enumerate(selected):
            if name in failed:
                continue
            lease.update(f"Restoring {name}", progress=index / len(selected), dataset=name)
            exporter = CollectionExporter(name, self.datastore.collection(name))
            try:
                count = await exporter.restore(loaded[name], mode)
            except Exception as e:
                logger.error(f"Failed to restore {name}: {e}")
                failed[name] = str(e) or type(e).__name__
                continue
            restored.append(name)
            logger.info(f"Restored {name} ({count} records)")

        for name, reason in skipped.items():
            logger.warning(f"Skipped {name}: {reason}")

        if failed:
            state = JobState.PARTIAL_FAILURE
            message = f"Restore partially failed: {', '.join(failed)}"
        else:
            state = JobState.DONE
            message = f"Restore of {manifest.name} completed"

        lease.update(progress=1.0)
        lease.finish(state, message, failed=failed, skipped=skipped)
        logger.info(f"Restore complete: {manifest.slug} ({len(restored)} restored, {len(failed)} failed)")

        return RestoreReport(state=state, restored=restored, failed=failed, skipped=skipped)
