from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass
class StorageNameSpace:
    namespace: str
    global_config: dict

    async def index_done_callback(self):
        """commit the storage operations after a batch of writes"""
        pass

    async def check_health(self) -> bool:
        return True


@dataclass
class BaseCollection(StorageNameSpace):
    """One persisted domain collection (users, audits, settings, ...).

    Records are JSON-compatible dicts identified by their natural key,
    stored under ``key_field``.
    """

    key_field: str = "_id"

    def record_key(self, record: Dict[str, Any]) -> str:
        if not isinstance(record, dict) or self.key_field not in record:
            raise ValueError(
                f"Record in {self.namespace} has no '{self.key_field}' key field"
            )
        return str(record[self.key_field])

    async def all_records(self) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def count(self) -> int:
        raise NotImplementedError

    async def get_by_key(self, key: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def drop(self) -> None:
        raise NotImplementedError

    async def insert_many(self, records: List[Dict[str, Any]]) -> None:
        """Insert new records, a key that already exists is an error."""
        raise NotImplementedError

    async def upsert_many(self, records: List[Dict[str, Any]]) -> None:
        """Insert or replace records by natural key."""
        raise NotImplementedError
