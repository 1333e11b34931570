"""Exception hierarchy for chunk backup runs.

Run-level errors (scanning, configuration, metadata load/persist) abort the
whole run. Group-level errors derive from ``GroupProcessingError`` and are
recovered by the orchestrator, which records them against the archive id.
"""

from typing import Optional


class BackupError(Exception):
    """Base class for all backup errors."""


class NamespaceUnavailable(BackupError):
    """The chunk root does not exist or cannot be read."""

    def __init__(self, path: str, reason: Optional[str] = None):
        self.path = path
        self.reason = reason
        message = f"Chunk directory unavailable: {path}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class ScanFailure(BackupError):
    """A shard subtree could not be read while building a snapshot."""

    def __init__(self, path: str, cause: Optional[BaseException] = None):
        self.path = path
        self.cause = cause
        message = f"Failed to scan {path}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class InvalidPrefixDigits(BackupError, ValueError):
    """Prefix digits outside the supported 1-4 range."""

    def __init__(self, value):
        self.value = value
        super().__init__(f"prefix digits must be between 1 and 4, got {value}")


class NoPriorBackup(BackupError):
    """Incremental run requested but no previous metadata exists."""

    def __init__(self, remote_path: str):
        self.remote_path = remote_path
        super().__init__(
            f"No previous backup metadata found at {remote_path}, run a full backup first"
        )


class MetadataLoadFailure(BackupError):
    """Remote metadata exists but could not be read or parsed."""


class UnsupportedSchemaVersion(MetadataLoadFailure):
    """Metadata document written with a schema this version does not know."""

    def __init__(self, version):
        self.version = version
        super().__init__(f"Unsupported metadata schema version: {version!r}")


class MetadataPersistFailure(BackupError):
    """Metadata could not be written or uploaded at the end of a run."""


class GroupProcessingError(BackupError):
    """Failure confined to a single archive group."""


class ArchiveWriteFailure(GroupProcessingError):
    """The archive artifact could not be created."""


class ChecksumFailure(GroupProcessingError):
    """The archive checksum could not be computed or recorded."""


class UploadFailure(GroupProcessingError):
    """An artifact could not be uploaded to remote storage."""


class StorageError(BackupError):
    """A storage backend operation failed."""


class BackupCancelled(BackupError):
    """The run was cancelled or its deadline expired."""

    def __init__(self, message: str = "Backup run cancelled"):
        super().__init__(message)
