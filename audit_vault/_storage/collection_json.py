"""JSON file collection backend, one file per namespace."""

import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..base import BaseCollection
from .._utils import load_json, write_json, logger


@dataclass
class JsonCollection(BaseCollection):
    def __post_init__(self):
        working_dir = self.global_config["working_dir"]
        os.makedirs(working_dir, exist_ok=True)
        self._file_name = os.path.join(working_dir, f"collection_{self.namespace}.json")
        self._data: Dict[str, Dict[str, Any]] = load_json(self._file_name) or {}
        logger.info(f"Load collection {self.namespace} with {len(self._data)} records")

    async def all_records(self) -> List[Dict[str, Any]]:
        return list(self._data.values())

    async def count(self) -> int:
        return len(self._data)

    async def get_by_key(self, key: str) -> Optional[Dict[str, Any]]:
        return self._data.get(key)

    async def drop(self) -> None:
        self._data = {}

    async def insert_many(self, records: List[Dict[str, Any]]) -> None:
        keyed = [(self.record_key(record), record) for record in records]
        seen = set()
        duplicates = []
        for key, _ in keyed:
            if key in self._data or key in seen:
                duplicates.append(key)
            seen.add(key)
        if duplicates:
            raise ValueError(f"Duplicate keys in {self.namespace}: {duplicates[:5]}")
        for key, record in keyed:
            self._data[key] = record

    async def upsert_many(self, records: List[Dict[str, Any]]) -> None:
        for record in records:
            self._data[self.record_key(record)] = record

    async def index_done_callback(self):
        write_json(self._data, self._file_name)
