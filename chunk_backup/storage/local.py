"""Storage backed by a local directory."""

import logging
import os
import shutil
import tempfile
from datetime import datetime, timezone
from typing import List, Optional

from .base import RemoteFileInfo, Storage
from ..core.context import RunContext
from ..exceptions import StorageError


class LocalStorage(Storage):
    """Treats a local directory as the remote.

    Remote paths are resolved below ``root``; a leading ``/`` is ignored.
    Useful for tests and for mounted network shares.
    """

    def __init__(self, root: str, logger: Optional[logging.Logger] = None):
        self.root = root
        self.logger = logger or logging.getLogger(__name__)
        os.makedirs(root, exist_ok=True)

    def _resolve(self, remote_path: str) -> str:
        relative = remote_path.lstrip("/")
        full = os.path.normpath(os.path.join(self.root, relative))
        root = os.path.normpath(self.root)
        if full != root and not full.startswith(root + os.sep):
            raise StorageError(f"Remote path escapes storage root: {remote_path}")
        return full

    def list(self, ctx: RunContext, remote_path: str) -> List[RemoteFileInfo]:
        ctx.check()
        full = self._resolve(remote_path)
        if not os.path.isdir(full):
            return []

        files = []
        try:
            with os.scandir(full) as it:
                for entry in sorted(it, key=lambda e: e.name):
                    entry_stat = entry.stat()
                    files.append(RemoteFileInfo(
                        name=entry.name,
                        size=entry_stat.st_size,
                        modified_time=datetime.fromtimestamp(entry_stat.st_mtime, tz=timezone.utc),
                        is_directory=entry.is_dir(),
                    ))
        except OSError as e:
            raise StorageError(f"Failed to list {remote_path}: {e}") from e
        return files

    def upload(self, ctx: RunContext, local_path: str, remote_path: str) -> None:
        ctx.check()
        self._copy(local_path, self._resolve(remote_path))
        self.logger.debug(f"Copied {local_path} to {remote_path}")

    def download(self, ctx: RunContext, remote_path: str, local_path: str) -> None:
        ctx.check()
        source = self._resolve(remote_path)
        if not os.path.isfile(source):
            raise StorageError(f"Remote file not found: {remote_path}")
        self._copy(source, local_path)

    def exists(self, ctx: RunContext, remote_path: str) -> bool:
        ctx.check()
        return os.path.exists(self._resolve(remote_path))

    def get_small_file_content(self, ctx: RunContext, remote_path: str) -> bytes:
        ctx.check()
        try:
            with open(self._resolve(remote_path), "rb") as f:
                return f.read()
        except OSError as e:
            raise StorageError(f"Failed to read {remote_path}: {e}") from e

    def _copy(self, source: str, destination: str):
        """Copy through a temp file so a failed copy leaves nothing behind."""
        directory = os.path.dirname(destination) or "."
        tmp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".partial-")
            with os.fdopen(fd, "wb") as dst, open(source, "rb") as src:
                shutil.copyfileobj(src, dst)
            os.replace(tmp_path, destination)
        except OSError as e:
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise StorageError(f"Failed to copy {source} to {destination}: {e}") from e
