"""
Chunk Backup - incremental backups of a sharded chunk directory.

This package scans a chunk store whose top-level directories are named by
four hex digits, groups them into prefix archives and uploads only the
archives whose contents changed since the previous run.
"""

__version__ = "1.0.0"

from .core.orchestrator import BackupOrchestrator
from .core.scanner import ChunkScanner
from .storage import LocalStorage, RcloneStorage

__all__ = ["BackupOrchestrator", "ChunkScanner", "LocalStorage", "RcloneStorage"]
