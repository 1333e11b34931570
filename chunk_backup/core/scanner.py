"""Chunk directory scanning: builds snapshots of the shard namespace."""

import os
import re
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .models import Snapshot, TreeNode
from ..exceptions import NamespaceUnavailable, ScanFailure


SHARD_NAME_PATTERN = re.compile(r"^[0-9a-fA-F]{4}$")


def is_shard_name(name: str) -> bool:
    """Return True if ``name`` is a 4 character hex shard name."""
    return bool(SHARD_NAME_PATTERN.match(name))


def _mtime(stat_result: os.stat_result) -> datetime:
    return datetime.fromtimestamp(stat_result.st_mtime, tz=timezone.utc)


class ChunkScanner:
    """Scans a chunk directory and builds a structural snapshot of it."""

    def __init__(self, chunk_path: str, logger: Optional[logging.Logger] = None):
        """Initialize chunk scanner.

        Args:
            chunk_path: Root of the chunk namespace.
            logger: Logger to report progress to.
        """
        self.chunk_path = chunk_path
        self.logger = logger or logging.getLogger(__name__)

    def scan_snapshot(self) -> Snapshot:
        """Build a snapshot of every shard directory under the chunk root.

        Returns:
            Mapping of shard name to its subtree.

        Raises:
            NamespaceUnavailable: If the chunk root is missing or unreadable.
            ScanFailure: If any shard subtree cannot be read.
        """
        self.logger.info(f"Scanning chunk directory {self.chunk_path}")
        snapshot: Snapshot = {}

        for entry in self._root_entries():
            if not is_shard_name(entry.name):
                continue
            try:
                if not entry.is_dir(follow_symlinks=False):
                    continue
            except OSError as e:
                raise ScanFailure(entry.path, e) from e

            snapshot[entry.name] = self._scan_directory(entry.path, entry.name)

        node_count = sum(node.node_count() for node in snapshot.values())
        self.logger.info(f"Scanned {len(snapshot)} shards ({node_count} entries)")
        return snapshot

    def list_shards(self) -> List[str]:
        """Get the sorted shard directory names under the chunk root."""
        shards = []
        for entry in self._root_entries():
            try:
                if is_shard_name(entry.name) and entry.is_dir(follow_symlinks=False):
                    shards.append(entry.name)
            except OSError as e:
                self.logger.debug(f"Skipping {entry.path}: {e}")
        return sorted(shards)

    def _root_entries(self) -> List[os.DirEntry]:
        """List the chunk root, sorted by name."""
        if not os.path.exists(self.chunk_path):
            raise NamespaceUnavailable(self.chunk_path, "does not exist")

        if not os.path.isdir(self.chunk_path):
            raise NamespaceUnavailable(self.chunk_path, "not a directory")

        try:
            with os.scandir(self.chunk_path) as it:
                entries = list(it)
        except OSError as e:
            raise NamespaceUnavailable(self.chunk_path, str(e)) from e

        return sorted(entries, key=lambda entry: entry.name)

    def _scan_directory(self, path: str, name: str) -> TreeNode:
        """Recursively build the node for a directory, depth first."""
        try:
            dir_stat = os.stat(path, follow_symlinks=False)
            with os.scandir(path) as it:
                entries = sorted(it, key=lambda entry: entry.name)
        except OSError as e:
            raise ScanFailure(path, e) from e

        children: Dict[str, TreeNode] = {}
        total_size = 0

        for entry in entries:
            try:
                is_dir = entry.is_dir(follow_symlinks=False)
                if not is_dir:
                    entry_stat = entry.stat(follow_symlinks=False)
            except OSError as e:
                raise ScanFailure(entry.path, e) from e

            if is_dir:
                child = self._scan_directory(entry.path, entry.name)
            else:
                # Symlinks are recorded as leaves and never followed
                child = TreeNode(
                    name=entry.name,
                    size=entry_stat.st_size,
                    modified_at=_mtime(entry_stat),
                    is_directory=False,
                )

            children[entry.name] = child
            total_size += child.size

        return TreeNode(
            name=name,
            size=total_size,
            modified_at=_mtime(dir_stat),
            is_directory=True,
            children=children,
        )
