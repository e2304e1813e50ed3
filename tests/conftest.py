"""Global pytest configuration and fixtures."""

import pytest
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from audit_vault import DataStore
from audit_vault.backup import BackupManager
from audit_vault.config import AuditVaultConfig, BackupConfig, DatasetConfig, StorageConfig

TEST_DATASETS = ("Settings", "Companies", "Users", "Audits")


@pytest.fixture
def vault_config(tmp_path):
    """Small registry, fast KDF and no free space floor."""
    return AuditVaultConfig(
        storage=StorageConfig(working_dir=str(tmp_path / "data")),
        backup=BackupConfig(
            backup_dir=str(tmp_path / "backups"),
            kdf_iterations=1000,
            min_free_bytes=0,
        ),
        datasets=DatasetConfig(datasets=TEST_DATASETS),
    )


@pytest.fixture
def datastore(vault_config):
    return DataStore(config=vault_config)


@pytest.fixture
def backup_manager(datastore):
    return BackupManager(datastore)


@pytest.fixture
def sample_records():
    return {
        "Settings": [{"_id": "report", "language": "en", "highlight": True}],
        "Companies": [
            {"_id": "c1", "name": "Acme"},
            {"_id": "c2", "name": "Globex"},
        ],
        "Users": [
            {"_id": "u1", "username": "alice", "role": "admin"},
            {"_id": "u2", "username": "bob", "role": "user"},
        ],
        "Audits": [{"_id": "a1", "name": "Web pentest", "company": "c1", "findings": [1, 2, 3]}],
    }


@pytest.fixture
def seed():
    """Async helper loading records into the datastore collections."""
    async def _seed(datastore, records):
        for name, items in records.items():
            collection = datastore.collection(name)
            await collection.upsert_many(items)
            await collection.index_done_callback()
    return _seed
