"""Backup and restore functionality for the audit report manager."""

from .archive import ArchiveReader
from .builder import ArchiveBuilder
from .catalog import BackupCatalog
from .errors import BackupError, BadParameters, Conflict, CorruptArchive, NotFound, Unauthorized
from .jobs import JobRunner
from .lock import OperationLease, OperationLock
from .manager import BackupManager
from .models import (
    BackupManifest,
    BackupRequest,
    JobRecord,
    JobState,
    OperationKind,
    OperationStatus,
    RestoreMode,
    RestoreReport,
    RestoreRequest,
)
from .restore import RestoreEngine

__all__ = [
    "ArchiveBuilder",
    "ArchiveReader",
    "BackupCatalog",
    "BackupError",
    "BackupManager",
    "BackupManifest",
    "BackupRequest",
    "BadParameters",
    "Conflict",
    "CorruptArchive",
    "JobRecord",
    "JobRunner",
    "JobState",
    "NotFound",
    "OperationKind",
    "OperationLease",
    "OperationLock",
    "OperationStatus",
    "RestoreEngine",
    "RestoreMode",
    "RestoreReport",
    "RestoreRequest",
    "Unauthorized",
]
