"""Archive builder: exports the selected datasets into one archive file."""

import asyncio
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from ..config import BackupConfig
from ..datastore import DataStore
from .._utils import logger
from . import crypto
from .archive import FORMAT_VERSION, encode_dataset
from .catalog import BackupCatalog
from .errors import BadParameters
from .exporters import CollectionExporter
from .lock import OperationLease
from .models import BackupManifest, JobState
from .utils import compute_bytes_checksum, default_backup_name, disk_usage


class ArchiveBuilder:
    """Serialize datasets from the datastore into the catalog's directory."""

    def __init__(self, datastore: DataStore, catalog: BackupCatalog, config: Optional[BackupConfig] = None):
        self.datastore = datastore
        self.catalog = catalog
        self.config = config or BackupConfig()

    def validate_selection(self, dataset_ids: Optional[Iterable[str]]) -> List[str]:
        """Check a dataset selection; None selects every registered dataset.

        Returns:
            Deduplicated ids in request order

        Raises:
            BadParameters: empty selection or unknown dataset id
        """
        if dataset_ids is None:
            return self.datastore.registry.names

        selected = list(dict.fromkeys(dataset_ids))
        if not selected:
            raise BadParameters("At least one dataset must be selected")

        unknown = self.datastore.registry.unknown(selected)
        if unknown:
            raise BadParameters(f"Unknown datasets: {', '.join(unknown)}")
        return selected

    def _check_free_space(self, needed: int) -> None:
        available, _, _ = disk_usage(self.catalog.backup_dir)
        if available < needed:
            raise BadParameters(
                f"Not enough free disk space for the backup "
                f"({available:,} bytes available, {needed:,} required)"
            )

    async def build(
        self,
        lease: OperationLease,
        name: Optional[str],
        password: Optional[str],
        dataset_ids: Optional[Iterable[str]],
    ) -> BackupManifest:
        """Export, optionally encrypt and write an archive.

        The caller holds `lease`; progress is reported through it and the final
        status is recorded with `lease.finish()`.

        Args:
            lease: BACKUP lease held by the caller
            name: Label; defaults to "Backup <ISO date>"
            password: Encrypts the payload when given
            dataset_ids: Datasets to include, None for all

        Returns:
            Manifest of the written archive
        """
        datasets = self.validate_selection(dataset_ids)
        self._check_free_space(self.config.min_free_bytes)

        date = datetime.now(timezone.utc)
        name = name or default_backup_name(date)
        slug = self.catalog.new_slug(name, date)
        logger.info(f"Starting backup: {slug} ({len(datasets)} datasets, encrypted={password is not None})")

        lease.update("Dumping database", progress=0.0, state=JobState.DUMPING_DATABASE)
        blocks: List[bytes] = []
        statistics: Dict[str, int] = {}
        for index, dataset in enumerate(datasets):
            lease.update(f"Exporting {dataset}", progress=index / len(datasets), dataset=dataset)
            exporter = CollectionExporter(dataset, self.datastore.collection(dataset))
            records = await exporter.export()
            blocks.append(await asyncio.to_thread(
                encode_dataset, dataset, records, self.config.compression_level
            ))
            statistics[dataset] = len(records)

        payload = b"".join(blocks)
        encryption = None
        if password:
            lease.update("Encrypting data", progress=None, state=JobState.ENCRYPTING_DATA)
            encrypted = await asyncio.to_thread(
                crypto.encrypt, payload, password, self.config.kdf_iterations
            )
            payload, encryption = encrypted.ciphertext, encrypted.params

        self._check_free_space(len(payload) + self.config.min_free_bytes)

        lease.update("Building archive", progress=1.0, state=JobState.BUILDING_ARCHIVE)
        manifest = BackupManifest(
            slug=slug,
            name=name,
            date=date,
            encrypted=encryption is not None,
            dataset=datasets,
            format_version=FORMAT_VERSION,
            checksum=compute_bytes_checksum(payload),
            payload_size=len(payload),
            statistics=statistics,
            app_version=self._get_version(),
        )

        filename = f"{slug}{self.config.extension}"
        size = await asyncio.to_thread(self.catalog.add_archive, filename, manifest, payload, encryption)
        manifest = manifest.model_copy(update={"filename": filename, "size": size})

        logger.info(f"Backup complete: {slug} ({size:,} bytes)")
        lease.finish(JobState.DONE, f"Backup {name} created")
        return manifest

    def _get_version(self) -> str:
        from .. import __version__
        return __version__
