"""Configuration management for audit-vault."""

import os
import json
from dataclasses import dataclass, field
from typing import Optional, Tuple


# Registry order is the dependency order: referenced collections come first.
DEFAULT_DATASETS: Tuple[str, ...] = (
    "Settings",
    "Languages",
    "Audit Types",
    "Custom Fields",
    "Custom Sections",
    "Vulnerability Types",
    "Vulnerability Categories",
    "Companies",
    "Clients",
    "Users",
    "Templates",
    "Vulnerabilities",
    "Vulnerabilities Updates",
    "Audits",
)


@dataclass(frozen=True)
class StorageConfig:
    """Storage backend configuration for the domain collections."""
    collection_backend: str = "json"  # json, redis
    working_dir: str = "./audit_vault_data"

    # Redis specific settings
    redis_url: str = "redis://localhost:6379"
    redis_password: Optional[str] = None
    redis_max_connections: int = 50
    redis_connection_timeout: float = 5.0
    redis_socket_timeout: float = 5.0
    redis_health_check_interval: int = 30

    @classmethod
    def from_env(cls) -> 'StorageConfig':
        """Create config from environment variables."""
        return cls(
            collection_backend=os.getenv("STORAGE_COLLECTION_BACKEND", "json"),
            working_dir=os.getenv("STORAGE_WORKING_DIR", "./audit_vault_data"),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379"),
            redis_password=os.getenv("REDIS_PASSWORD", None),
            redis_max_connections=int(os.getenv("REDIS_MAX_CONNECTIONS", "50")),
            redis_connection_timeout=float(os.getenv("REDIS_CONNECTION_TIMEOUT", "5.0")),
            redis_socket_timeout=float(os.getenv("REDIS_SOCKET_TIMEOUT", "5.0")),
            redis_health_check_interval=int(os.getenv("REDIS_HEALTH_CHECK_INTERVAL", "30")),
        )

    def __post_init__(self):
        """Validate configuration."""
        valid_backends = {"json", "redis"}
        if self.collection_backend not in valid_backends:
            raise ValueError(f"Unknown collection backend: {self.collection_backend}. Available: {valid_backends}")
        if self.redis_max_connections <= 0:
            raise ValueError(f"redis_max_connections must be positive, got {self.redis_max_connections}")


@dataclass(frozen=True)
class BackupConfig:
    """Backup archive configuration."""
    backup_dir: str = "./backups"
    extension: str = ".avbak"
    kdf_iterations: int = 600_000
    compression_level: int = 6
    min_free_bytes: int = 50 * 1024 * 1024  # refuse to build below 50 MiB free
    max_upload_bytes: int = 500 * 1024 * 1024

    @classmethod
    def from_env(cls) -> 'BackupConfig':
        """Create config from environment variables."""
        return cls(
            backup_dir=os.getenv("BACKUP_DIR", "./backups"),
            extension=os.getenv("BACKUP_EXTENSION", ".avbak"),
            kdf_iterations=int(os.getenv("BACKUP_KDF_ITERATIONS", "600000")),
            compression_level=int(os.getenv("BACKUP_COMPRESSION_LEVEL", "6")),
            min_free_bytes=int(os.getenv("BACKUP_MIN_FREE_BYTES", str(50 * 1024 * 1024))),
            max_upload_bytes=int(os.getenv("BACKUP_MAX_UPLOAD_BYTES", str(500 * 1024 * 1024))),
        )

    def __post_init__(self):
        """Validate configuration."""
        if not self.extension.startswith(".") or len(self.extension) < 2:
            raise ValueError(f"extension must start with '.', got {self.extension!r}")
        if self.kdf_iterations <= 0:
            raise ValueError(f"kdf_iterations must be positive, got {self.kdf_iterations}")
        if not 0 <= self.compression_level <= 9:
            raise ValueError(f"compression_level must be between 0 and 9, got {self.compression_level}")
        if self.min_free_bytes < 0:
            raise ValueError(f"min_free_bytes must be non-negative, got {self.min_free_bytes}")
        if self.max_upload_bytes <= 0:
            raise ValueError(f"max_upload_bytes must be positive, got {self.max_upload_bytes}")


@dataclass(frozen=True)
class DatasetConfig:
    """Ordered catalog of datasets eligible for backup and restore."""
    datasets: Tuple[str, ...] = DEFAULT_DATASETS

    @classmethod
    def from_env(cls) -> 'DatasetConfig':
        """Create config from environment variables.

        AUDIT_VAULT_DATASETS accepts a JSON array or a comma separated list.
        """
        raw = os.getenv("AUDIT_VAULT_DATASETS")
        if not raw:
            return cls()
        raw = raw.strip()
        if raw.startswith("["):
            names = json.loads(raw)
        else:
            names = [name.strip() for name in raw.split(",")]
        return cls(datasets=tuple(name for name in names if name))

    def __post_init__(self):
        """Validate configuration."""
        if not self.datasets:
            raise ValueError("datasets must not be empty")
        if len(set(self.datasets)) != len(self.datasets):
            raise ValueError(f"datasets contains duplicates: {list(self.datasets)}")


@dataclass(frozen=True)
class AuditVaultConfig:
    """Main audit-vault configuration."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    datasets: DatasetConfig = field(default_factory=DatasetConfig)

    @classmethod
    def from_env(cls) -> 'AuditVaultConfig':
        """Create complete config from environment variables."""
        return cls(
            storage=StorageConfig.from_env(),
            backup=BackupConfig.from_env(),
            datasets=DatasetConfig.from_env(),
        )

    def to_dict(self) -> dict:
        """Convert config to the global_config dict handed to storage classes."""
        config_dict = {
            'working_dir': self.storage.working_dir,
        }

        if self.storage.collection_backend == "redis":
            config_dict['redis_url'] = self.storage.redis_url
            config_dict['redis_password'] = self.storage.redis_password
            config_dict['redis_max_connections'] = self.storage.redis_max_connections
            config_dict['redis_connection_timeout'] = self.storage.redis_connection_timeout
            config_dict['redis_socket_timeout'] = self.storage.redis_socket_timeout
            config_dict['redis_health_check_interval'] = self.storage.redis_health_check_interval

        return config_dict
