"""Data models for chunk backups."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


SCHEMA_VERSION = 1
METADATA_FILE_NAME = "backup-metadata.json"
ARCHIVE_SUFFIX = ".tar.gz"
CHECKSUM_SUFFIX = ".sha256"


class BackupMode(Enum):
    """Backup run mode."""
    FULL = "full"
    INCREMENTAL = "incremental"


class RunState(Enum):
    """States of a backup run."""
    IDLE = "idle"
    SCANNING = "scanning"
    DIFFING = "diffing"
    GROUPING = "grouping"
    PROCESSING_GROUPS = "processing_groups"
    PERSISTING_METADATA = "persisting_metadata"
    DONE = "done"
    PARTIALLY_FAILED = "partially_failed"


@dataclass(frozen=True)
class TreeNode:
    """One entry of a shard subtree.

    A directory's size is the sum of its children's sizes. Files carry an
    empty ``children`` mapping.
    """
    name: str
    size: int
    modified_at: datetime
    is_directory: bool
    children: Dict[str, "TreeNode"] = field(default_factory=dict)

    def node_count(self) -> int:
        """Number of nodes in this subtree, including itself."""
        return 1 + sum(child.node_count() for child in self.children.values())


# Shard name -> shard subtree
Snapshot = Dict[str, TreeNode]


@dataclass
class ArchiveGroup:
    """Shards sharing a hex prefix, stored together in one archive."""
    prefix: str
    range_start: str
    range_end: str
    members: List[str]
    dirty: bool = False

    @property
    def archive_id(self) -> str:
        return f"{self.range_start}-{self.range_end}"

    @property
    def archive_name(self) -> str:
        return self.archive_id + ARCHIVE_SUFFIX

    @property
    def checksum_name(self) -> str:
        return self.archive_name + CHECKSUM_SUFFIX


@dataclass
class BackupMetadata:
    """State handed from one backup run to the next."""
    prefix_digits: int
    captured_at: datetime
    snapshot: Snapshot
    checksums: Dict[str, str]
    schema_version: int = SCHEMA_VERSION


@dataclass
class BackupResult:
    """Outcome of a single backup run."""
    mode: BackupMode
    state: RunState = RunState.IDLE
    total_archives: int = 0
    updated_archives: int = 0
    skipped_archives: int = 0
    errors: Dict[str, str] = field(default_factory=dict)
    uploaded_files: List[str] = field(default_factory=list)
    details: Dict[str, str] = field(default_factory=dict)
    duration_seconds: float = 0.0
    started_at: Optional[datetime] = None

    @property
    def error_archives(self) -> List[str]:
        return sorted(self.errors)

    @property
    def succeeded(self) -> bool:
        return not self.errors
