import os
from typing import Dict, Iterable, List

import pytest

import chunk_backup.core.scanner as scanner_module
from chunk_backup.core.orchestrator import BackupOrchestrator
from chunk_backup.exceptions import StorageError
from chunk_backup.storage.local import LocalStorage


FIXED_MTIME = 1_700_000_000

SCENARIO_SHARDS = ["0000", "0001", "00ff", "0100", "01aa", "abcd", "ffff"]


def write_files(base: str, files: Dict[str, str], mtime: float = FIXED_MTIME):
    """Create files below ``base`` with fixed modification times."""
    for relative, content in files.items():
        path = os.path.join(base, relative)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
        os.utime(path, (mtime, mtime))


def make_shards(root: str, shards: Iterable[str]):
    """Create shard directories with a few files and a nested directory."""
    for shard in shards:
        write_files(os.path.join(root, shard), {
            "file0.dat": f"chunk {shard} file 0",
            "file1.dat": f"chunk {shard} file 1 content",
            "subdir/nested.dat": f"nested data for {shard}",
        })


class RecordingStorage(LocalStorage):
    """Local storage that records uploads and can fail selected ones."""

    def __init__(self, root: str):
        super().__init__(root)
        self.uploads: List[str] = []
        self.fail_uploads: List[str] = []

    def upload(self, ctx, local_path, remote_path):
        if any(pattern in remote_path for pattern in self.fail_uploads):
            raise StorageError(f"simulated upload failure for {remote_path}")
        super().upload(ctx, local_path, remote_path)
        self.uploads.append(remote_path)


@pytest.fixture
def chunk_dir(tmp_path):
    root = tmp_path / "chunks"
    root.mkdir()
    make_shards(str(root), SCENARIO_SHARDS)
    return str(root)


@pytest.fixture
def remote_dir(tmp_path):
    return str(tmp_path / "remote")


@pytest.fixture
def temp_dir(tmp_path):
    return str(tmp_path / "scratch")


@pytest.fixture
def storage(remote_dir):
    return RecordingStorage(remote_dir)


@pytest.fixture
def make_orchestrator(chunk_dir, storage, temp_dir):
    def factory(prefix_digits=2, workers=1, backend=None):
        return BackupOrchestrator(
            storage=backend or storage,
            chunk_path=chunk_dir,
            remote_path="/",
            temp_path=temp_dir,
            prefix_digits=prefix_digits,
            workers=workers,
        )
    return factory


def block_scandir(monkeypatch, blocked_path: str):
    """Make os.scandir raise PermissionError for one directory."""
    real_scandir = os.scandir

    def scandir(path="."):
        if os.path.normpath(os.fspath(path)) == os.path.normpath(blocked_path):
            raise PermissionError(13, "Permission denied", os.fspath(path))
        return real_scandir(path)

    monkeypatch.setattr(scanner_module.os, "scandir", scandir)
