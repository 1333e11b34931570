"""Partitioning of shard names into prefix archive groups."""

from typing import Dict, Iterable, List, Set, Tuple

from .models import ArchiveGroup
from .scanner import is_shard_name
from ..exceptions import InvalidPrefixDigits


MIN_PREFIX_DIGITS = 1
MAX_PREFIX_DIGITS = 4
SHARD_NAME_LENGTH = 4


def validate_prefix_digits(prefix_digits) -> int:
    """Return ``prefix_digits`` if it is an int in [1, 4].

    Raises:
        InvalidPrefixDigits: For anything else.
    """
    if (isinstance(prefix_digits, bool) or not isinstance(prefix_digits, int)
            or not MIN_PREFIX_DIGITS <= prefix_digits <= MAX_PREFIX_DIGITS):
        raise InvalidPrefixDigits(prefix_digits)
    return prefix_digits


def calculate_range(prefix: str) -> Tuple[str, str]:
    """Get the inclusive shard range covered by ``prefix``."""
    padding = SHARD_NAME_LENGTH - len(prefix)
    return prefix + "0" * padding, prefix + "f" * padding


class PrefixGrouper:
    """Groups shard names by their first ``prefix_digits`` hex characters."""

    def __init__(self, prefix_digits: int):
        self.prefix_digits = validate_prefix_digits(prefix_digits)

    def group(self, names: Iterable[str]) -> List[ArchiveGroup]:
        """Build the archive groups covering ``names``.

        Names that are not shard names are ignored. The output is sorted by
        prefix and every member list is sorted, so the same input always
        produces the same groups.
        """
        buckets: Dict[str, List[str]] = {}
        for name in names:
            if not is_shard_name(name):
                continue
            prefix = name[:self.prefix_digits].lower()
            buckets.setdefault(prefix, []).append(name)

        groups = []
        for prefix in sorted(buckets):
            range_start, range_end = calculate_range(prefix)
            groups.append(ArchiveGroup(
                prefix=prefix,
                range_start=range_start,
                range_end=range_end,
                members=sorted(set(buckets[prefix])),
            ))
        return groups


def mark_dirty_groups(groups: Iterable[ArchiveGroup], changed: Set[str]) -> List[ArchiveGroup]:
    """Flag groups that contain at least one changed shard.

    A removed shard is no longer a member of any group, so it dirties the
    group whose range covers it.

    Returns:
        The groups that were marked dirty.
    """
    changed_prefixes = {name.lower() for name in changed}
    dirty = []
    for group in groups:
        group.dirty = (any(member in changed for member in group.members)
                       or any(name.startswith(group.prefix) for name in changed_prefixes))
        if group.dirty:
            dirty.append(group)
    return dirty
