"""Domain collection backup/restore exporter."""

from typing import Any, Dict, List

from ...base import BaseCollection
from ..._utils import logger
from ..models import RestoreMode


class CollectionExporter:
    """Export and restore one dataset's collection."""

    def __init__(self, name: str, collection: BaseCollection):
        """Initialize exporter with the collection backing a dataset.

        Args:
            name: Dataset identifier (e.g. 'Users')
            collection: Collection instance holding the dataset's records
        """
        self.name = name
        self.collection = collection

    async def export(self) -> List[Dict[str, Any]]:
        """Read every record of the collection.

        Returns:
            Records in collection order
        """
        records = await self.collection.all_records()
        logger.debug(f"Exported {self.name} ({len(records)} records)")
        return records

    async def restore(self, records: List[Dict[str, Any]], mode: RestoreMode) -> int:
        """Apply archived records to the collection.

        Replace drops the collection and inserts every record; merge upserts by
        natural key and leaves other records alone.

        Args:
            records: Records read from the archive
            mode: Conflict resolution strategy

        Returns:
            Number of records applied
        """
        # Reject bad input before replace mode drops anything
        keys = [self.collection.record_key(record) for record in records]
        if len(set(keys)) != len(keys):
            raise ValueError(f"Backup contains duplicate keys for {self.name}")

        if mode == RestoreMode.REPLACE:
            await self.collection.drop()
            await self.collection.insert_many(records)
        else:
            await self.collection.upsert_many(records)

        await self.collection.index_done_callback()
        logger.debug(f"Restored {self.name} ({len(records)} records, mode={mode.value})")
        return len(records)

    async def get_statistics(self) -> Dict[str, int]:
        """Record count of the collection, keyed by dataset id."""
        return {self.name: await self.collection.count()}
