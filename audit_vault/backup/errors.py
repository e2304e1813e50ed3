"""Backup engine error taxonomy, independent of the HTTP layer."""


class BackupError(Exception):
    """Base class for backup/restore errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BadParameters(BackupError):
    """Malformed or missing input, or an invalid/unrecognized archive."""


class CorruptArchive(BadParameters):
    """Archive structure is valid but its payload failed an integrity check."""


class Conflict(BackupError):
    """Another operation is in progress or the resource is busy."""


class NotFound(BackupError):
    """Unknown backup slug or dataset."""


class Unauthorized(BackupError):
    """Wrong or missing password for an encrypted archive."""
