"""Core backup functionality."""

from .archiver import ArchiveBuilder, BuiltArchive
from .context import RunContext
from .differ import compare_snapshots, diff_snapshots, trees_equal
from .grouper import PrefixGrouper
from .models import ArchiveGroup, BackupMetadata, BackupMode, BackupResult, RunState, TreeNode
from .orchestrator import BackupOrchestrator
from .scanner import ChunkScanner

__all__ = ["ArchiveBuilder", "BuiltArchive", "RunContext", "compare_snapshots", "diff_snapshots",
           "trees_equal", "PrefixGrouper", "ArchiveGroup", "BackupMetadata", "BackupMode",
           "BackupResult", "RunState", "TreeNode", "BackupOrchestrator", "ChunkScanner"]
