"""Dataset registry and the collection handles the backup engine reads and writes."""

import re
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .base import BaseCollection
from .config import AuditVaultConfig
from ._storage.factory import StorageFactory, _register_backends
from ._utils import logger


def namespace_for(name: str) -> str:
    """'Vulnerabilities Updates' -> 'vulnerabilities_updates'."""
    return re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")


@dataclass(frozen=True)
class DatasetSpec:
    """One exportable collection: public dataset id, storage namespace and natural key."""
    name: str
    namespace: str
    key_field: str = "_id"


class DatasetRegistry:
    """Ordered dataset catalog.

    Registration order is the dependency order: export and restore walk
    datasets in this order so referenced entities exist before the entities
    that reference them.
    """

    def __init__(self, specs: Iterable[DatasetSpec]):
        self._specs: "OrderedDict[str, DatasetSpec]" = OrderedDict()
        namespaces: Dict[str, str] = {}
        for spec in specs:
            if spec.name in self._specs:
                raise ValueError(f"Dataset registered twice: {spec.name}")
            if spec.namespace in namespaces:
                raise ValueError(
                    f"Datasets {namespaces[spec.namespace]} and {spec.name} share namespace {spec.namespace}"
                )
            namespaces[spec.namespace] = spec.name
            self._specs[spec.name] = spec
        if not self._specs:
            raise ValueError("Dataset registry must not be empty")

    @classmethod
    def from_names(cls, names: Iterable[str]) -> "DatasetRegistry":
        return cls(DatasetSpec(name=name, namespace=namespace_for(name)) for name in names)

    @property
    def names(self) -> List[str]:
        return list(self._specs.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __iter__(self):
        return iter(self._specs.values())

    def __len__(self) -> int:
        return len(self._specs)

    def get(self, name: str) -> DatasetSpec:
        return self._specs[name]

    def unknown(self, names: Iterable[str]) -> List[str]:
        return [name for name in names if name not in self._specs]

    def ordered(self, names: Iterable[str]) -> List[str]:
        """Known names from `names`, deduplicated, in registry order."""
        wanted = set(names)
        return [name for name in self._specs if name in wanted]


class DataStore:
    """Holds one collection per registered dataset."""

    def __init__(
        self,
        config: Optional[AuditVaultConfig] = None,
        registry: Optional[DatasetRegistry] = None,
        collections: Optional[Dict[str, BaseCollection]] = None,
    ):
        """Initialize the datastore.

        Args:
            config: AuditVaultConfig object. If None, uses defaults.
            registry: Dataset catalog. If None, built from config.datasets.
            collections: Pre-built collections keyed by dataset id. If None,
                collections are created through the StorageFactory.
        """
        self.config = config or AuditVaultConfig()
        self.registry = registry or DatasetRegistry.from_names(self.config.datasets.datasets)

        if collections is None:
            self._init_storage()
        else:
            missing = [name for name in self.registry.names if name not in collections]
            if missing:
                raise ValueError(f"No collection provided for datasets: {missing}")
            self.collections = dict(collections)

    def _init_storage(self):
        """Initialize collections using factory pattern."""
        _register_backends()

        working_dir = Path(self.config.storage.working_dir)
        if not working_dir.exists():
            logger.info(f"Creating working directory {working_dir}")
            working_dir.mkdir(parents=True, exist_ok=True)

        global_config = self.config.to_dict()
        self.collections = {
            spec.name: StorageFactory.create_collection(
                backend=self.config.storage.collection_backend,
                namespace=spec.namespace,
                global_config=global_config,
                key_field=spec.key_field,
            )
            for spec in self.registry
        }

    def collection(self, name: str) -> BaseCollection:
        if name not in self.registry:
            raise KeyError(f"Unknown dataset: {name}")
        return self.collections[name]

    async def check_health(self) -> bool:
        for collection in self.collections.values():
            if not await collection.check_health():
                return False
        return True

    async def close(self):
        for collection in self.collections.values():
            close = getattr(collection, "close", None)
            if close is not None:
                await close()
