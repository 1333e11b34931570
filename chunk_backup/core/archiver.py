"""Archive creation for shard groups."""

import gzip
import hashlib
import logging
import os
import tarfile
import time
from dataclasses import dataclass
from typing import List, Optional

from .models import ArchiveGroup, CHECKSUM_SUFFIX
from ..exceptions import ArchiveWriteFailure, ChecksumFailure


CHUNK_SIZE = 1024 * 1024


@dataclass
class BuiltArchive:
    """An archive written to scratch space, owned by the caller."""
    path: str
    archive_name: str
    checksum: str
    size: int
    members: List[str]
    checksum_path: Optional[str] = None

    def cleanup(self):
        """Remove the archive and its checksum record, if present."""
        for path in (self.path, self.checksum_path):
            if path:
                remove_quietly(path)


def remove_quietly(path: str):
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


def parse_checksum_record(content: str) -> str:
    """Extract the hex digest from a ``<digest>  <name>`` record."""
    parts = content.split()
    if not parts:
        raise ValueError("invalid checksum record: empty")
    return parts[0].lower()


class ArchiveBuilder:
    """Builds one tar.gz archive per archive group."""

    def __init__(self, chunk_path: str, temp_path: str, logger: Optional[logging.Logger] = None):
        """Initialize archive builder.

        Args:
            chunk_path: Root of the chunk namespace.
            temp_path: Scratch directory archives are written to.
            logger: Logger to report progress to.
        """
        self.chunk_path = chunk_path
        self.temp_path = temp_path
        self.logger = logger or logging.getLogger(__name__)

    def build(self, group: ArchiveGroup) -> BuiltArchive:
        """Write the group's shards into ``<temp_path>/<archive_name>``.

        Members are written in group order and every subtree in sorted
        order. The gzip header timestamp is pinned so unchanged input
        produces byte-identical output.

        Raises:
            ArchiveWriteFailure: If the archive cannot be written.
            ChecksumFailure: If the finished archive cannot be hashed.
        """
        started = time.monotonic()
        try:
            os.makedirs(self.temp_path, exist_ok=True)
        except OSError as e:
            raise ArchiveWriteFailure(f"failed to create temp directory {self.temp_path}: {e}") from e

        archive_path = os.path.join(self.temp_path, group.archive_name)
        included = []

        try:
            with open(archive_path, "wb") as raw:
                with gzip.GzipFile(filename="", mode="wb", fileobj=raw, mtime=0) as gz:
                    with tarfile.open(fileobj=gz, mode="w", format=tarfile.PAX_FORMAT) as tar:
                        for member in group.members:
                            member_path = os.path.join(self.chunk_path, member)
                            if not os.path.isdir(member_path):
                                self.logger.warning(
                                    f"Shard {member} disappeared before archiving {group.archive_name}, skipping")
                                continue
                            self._add_tree(tar, member_path, member)
                            included.append(member)
            size = os.path.getsize(archive_path)
        except (OSError, tarfile.TarError) as e:
            remove_quietly(archive_path)
            raise ArchiveWriteFailure(f"failed to create archive {group.archive_name}: {e}") from e

        try:
            checksum = self.compute_checksum(archive_path)
        except ChecksumFailure:
            remove_quietly(archive_path)
            raise

        self.logger.debug(f"Built {group.archive_name}: {len(included)} shards, {size} bytes "
                          f"in {time.monotonic() - started:.2f}s")
        return BuiltArchive(
            path=archive_path,
            archive_name=group.archive_name,
            checksum=checksum,
            size=size,
            members=included,
        )

    def _add_tree(self, tar: tarfile.TarFile, path: str, arcname: str):
        """Add ``path`` and everything below it, depth first in name order."""
        tar.add(path, arcname=arcname, recursive=False)

        if os.path.islink(path) or not os.path.isdir(path):
            return

        with os.scandir(path) as it:
            entries = sorted(it, key=lambda entry: entry.name)

        for entry in entries:
            self._add_tree(tar, entry.path, f"{arcname}/{entry.name}")

    def compute_checksum(self, path: str) -> str:
        """Compute the SHA-256 hex digest of a file.

        Raises:
            ChecksumFailure: If the file cannot be read.
        """
        hasher = hashlib.sha256()
        try:
            with open(path, "rb") as f:
                for block in iter(lambda: f.read(CHUNK_SIZE), b""):
                    hasher.update(block)
        except OSError as e:
            raise ChecksumFailure(f"failed to calculate checksum of {path}: {e}") from e
        return hasher.hexdigest()

    def write_checksum_record(self, archive: BuiltArchive) -> str:
        """Write ``<archive>.sha256`` next to the archive.

        Returns:
            Path to the checksum record.

        Raises:
            ChecksumFailure: If the record cannot be written.
        """
        checksum_path = archive.path + CHECKSUM_SUFFIX
        try:
            with open(checksum_path, "w", encoding="utf-8") as f:
                f.write(f"{archive.checksum}  {archive.archive_name}\n")
        except OSError as e:
            remove_quietly(checksum_path)
            raise ChecksumFailure(f"failed to write checksum file {checksum_path}: {e}") from e

        archive.checksum_path = checksum_path
        return checksum_path
