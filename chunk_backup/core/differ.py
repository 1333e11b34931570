"""Snapshot comparison.

Comparison looks at size, modification time and entry type only. File
contents are never read, so a change that keeps both size and mtime is not
detected.
"""

from dataclasses import dataclass, field
from typing import Set

from .models import Snapshot, TreeNode


@dataclass
class SnapshotDiff:
    """Shard-level differences between two snapshots."""
    added: Set[str] = field(default_factory=set)
    removed: Set[str] = field(default_factory=set)
    modified: Set[str] = field(default_factory=set)

    @property
    def changed(self) -> Set[str]:
        return self.added | self.removed | self.modified

    def __bool__(self) -> bool:
        return bool(self.added or self.removed or self.modified)


def trees_equal(old: TreeNode, new: TreeNode) -> bool:
    """Structural equality of two subtrees, independent of child order."""
    if (old.size != new.size
            or old.modified_at != new.modified_at
            or old.is_directory != new.is_directory):
        return False

    if not old.is_directory:
        return True

    if old.children.keys() != new.children.keys():
        return False

    return all(trees_equal(child, new.children[name])
               for name, child in old.children.items())


def diff_snapshots(previous: Snapshot, current: Snapshot) -> SnapshotDiff:
    """Classify the shards that differ between two snapshots."""
    diff = SnapshotDiff()

    for shard, node in current.items():
        old_node = previous.get(shard)
        if old_node is None:
            diff.added.add(shard)
        elif not trees_equal(old_node, node):
            diff.modified.add(shard)

    diff.removed = set(previous) - set(current)
    return diff


def compare_snapshots(previous: Snapshot, current: Snapshot) -> Set[str]:
    """Return the shard names that were added, removed or changed."""
    return diff_snapshots(previous, current).changed
