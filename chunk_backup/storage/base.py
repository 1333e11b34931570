"""Abstract remote storage capability."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from ..core.context import RunContext


@dataclass
class RemoteFileInfo:
    """Information about a remote file."""
    name: str
    size: int
    modified_time: Optional[datetime]
    is_directory: bool


def remote_join(base: str, name: str) -> str:
    """Join a remote base path and a file name.

    Handles rclone remotes such as ``remote:`` and ``remote:backup``.
    """
    if not base:
        return name
    if base.endswith(("/", ":")):
        return base + name
    return f"{base}/{name}"


class Storage(ABC):
    """Remote storage operations used by backup runs.

    Implementations raise StorageError on failure and BackupCancelled when
    the context is cancelled or its deadline passes. ``upload`` must not
    leave a partial file behind when it fails.
    """

    @abstractmethod
    def list(self, ctx: RunContext, remote_path: str) -> List[RemoteFileInfo]:
        """List the files under ``remote_path``."""

    @abstractmethod
    def upload(self, ctx: RunContext, local_path: str, remote_path: str) -> None:
        """Upload a local file to ``remote_path``."""

    @abstractmethod
    def download(self, ctx: RunContext, remote_path: str, local_path: str) -> None:
        """Download ``remote_path`` to a local file."""

    @abstractmethod
    def exists(self, ctx: RunContext, remote_path: str) -> bool:
        """Check whether ``remote_path`` exists."""

    @abstractmethod
    def get_small_file_content(self, ctx: RunContext, remote_path: str) -> bytes:
        """Read a small remote file into memory."""
