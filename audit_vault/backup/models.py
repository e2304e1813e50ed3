"""Data models for backup/restore operations."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OperationKind(str, Enum):
    """Which guarded operation currently holds the engine."""
    IDLE = "idle"
    BACKUP = "backup"
    RESTORE = "restore"


class JobState(str, Enum):
    """Fine-grained phase of the running (or last finished) operation."""
    IDLE = "idle"
    # backup phases
    BACKUP_STARTED = "backup_started"
    DUMPING_DATABASE = "dumping_database"
    ENCRYPTING_DATA = "encrypting_data"
    BUILDING_ARCHIVE = "building_archive"
    # restore phases
    PENDING = "pending"
    VALIDATING = "validating"
    APPLYING = "applying"
    # terminal
    DONE = "done"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"


class OperationStatus(BaseModel):
    """Process-wide status record polled by clients."""

    operation: OperationKind = OperationKind.IDLE
    state: JobState = JobState.IDLE
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    message: str = ""
    progress: Optional[float] = None
    current_dataset: Optional[str] = None
    filename: Optional[str] = None
    failed_datasets: Dict[str, str] = Field(default_factory=dict)
    skipped_datasets: Dict[str, str] = Field(default_factory=dict)
    last_error: Optional[str] = None


class BackupManifest(BaseModel):
    """Archive manifest, stored in the archive header and mirrored in listings."""

    slug: str = Field(..., description="Stable external backup identifier")
    name: str = Field(..., description="User supplied label")
    filename: str = Field("", description="Archive file name under the backup directory")
    date: datetime = Field(..., description="Backup creation timestamp")
    size: int = Field(0, description="Archive file size in bytes")
    encrypted: bool = Field(False, description="Payload is password protected")
    dataset: List[str] = Field(..., min_length=1, description="Included dataset ids, in restore order")
    format_version: int = Field(..., description="Archive container format version")
    checksum: str = Field("", description="SHA-256 checksum of the stored payload")
    payload_size: int = Field(0, description="Declared payload length in bytes")
    statistics: Dict[str, int] = Field(default_factory=dict, description="Record count per dataset")
    app_version: str = Field("unknown", description="audit-vault version that wrote the archive")

    @field_validator("date")
    @classmethod
    def date_is_utc_aware(cls, v):
        # Archives from other writers may carry naive timestamps
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @field_validator("dataset")
    @classmethod
    def validate_dataset(cls, v):
        if len(set(v)) != len(v):
            raise ValueError("dataset contains duplicate identifiers")
        return v


class RestoreMode(str, Enum):
    MERGE = "merge"
    REPLACE = "replace"


# Mode names used by earlier releases of the report manager
_MODE_ALIASES = {"upsert": "merge", "revert": "replace"}


class BackupRequest(BaseModel):
    """Body of POST /backups."""
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(None, max_length=200)
    password: Optional[str] = None
    backup_data: Optional[List[str]] = Field(None, alias="backupData")

    @field_validator("password")
    @classmethod
    def blank_password_is_none(cls, v):
        return v or None


class RestoreRequest(BaseModel):
    """Body of POST /backups/{slug}/restore."""
    model_config = ConfigDict(populate_by_name=True)

    password: Optional[str] = None
    restore_data: Optional[List[str]] = Field(None, alias="restoreData")
    mode: RestoreMode = RestoreMode.MERGE

    @field_validator("password")
    @classmethod
    def blank_password_is_none(cls, v):
        return v or None

    @field_validator("mode", mode="before")
    @classmethod
    def normalize_mode(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            return _MODE_ALIASES.get(v, v)
        return v


class RestoreReport(BaseModel):
    """Per-dataset outcome of a restore."""
    state: JobState
    restored: List[str] = Field(default_factory=list)
    failed: Dict[str, str] = Field(default_factory=dict)
    skipped: Dict[str, str] = Field(default_factory=dict)


class DiskUsage(BaseModel):
    available: int
    free: int
    total: int


class JobStatus(str, Enum):
    """Job status enum."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobRecord(BaseModel):
    """Acknowledgment returned when a backup/restore job is submitted."""
    job_id: str
    kind: OperationKind
    status: JobStatus
    created_at: datetime
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    result: Dict[str, Any] = Field(default_factory=dict)
