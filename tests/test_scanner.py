import os

import pytest

from chunk_backup.core.scanner import ChunkScanner, is_shard_name
from chunk_backup.exceptions import NamespaceUnavailable, ScanFailure

from conftest import block_scandir, write_files


def test_is_shard_name():
    assert is_shard_name("0000")
    assert is_shard_name("ffff")
    assert is_shard_name("ABcd")
    assert not is_shard_name("000")
    assert not is_shard_name("00000")
    assert not is_shard_name("xyz1")
    assert not is_shard_name("")


def test_scan_builds_tree_with_directory_sizes(chunk_dir):
    snapshot = ChunkScanner(chunk_dir).scan_snapshot()

    assert sorted(snapshot) == ["0000", "0001", "00ff", "0100", "01aa", "abcd", "ffff"]

    shard = snapshot["0000"]
    assert shard.is_directory
    assert shard.name == "0000"
    assert set(shard.children) == {"file0.dat", "file1.dat", "subdir"}

    subdir = shard.children["subdir"]
    assert subdir.is_directory
    assert subdir.size == subdir.children["nested.dat"].size
    assert shard.size == sum(child.size for child in shard.children.values())

    file_node = shard.children["file0.dat"]
    assert not file_node.is_directory
    assert file_node.size == len("chunk 0000 file 0")
    assert file_node.children == {}
    assert file_node.modified_at.timestamp() == pytest.approx(1_700_000_000)


def test_scan_ignores_entries_that_are_not_shards(tmp_path):
    root = tmp_path / "chunks"
    write_files(str(root), {
        "0a0b/data": "x",
        "ABCD/data": "y",
        "xyz1/data": "ignored",
        "00000/data": "ignored",
        "readme.txt": "ignored",
    })
    # A regular file with a shard-shaped name is not a shard
    (root / "beef").write_text("not a directory")

    snapshot = ChunkScanner(str(root)).scan_snapshot()

    assert sorted(snapshot) == ["0a0b", "ABCD"]


def test_list_shards_sorted(tmp_path):
    root = tmp_path / "chunks"
    for name in ["ffff", "0001", "abcd", "notes"]:
        (root / name).mkdir(parents=True)

    assert ChunkScanner(str(root)).list_shards() == ["0001", "abcd", "ffff"]


def test_missing_root_raises_namespace_unavailable(tmp_path):
    with pytest.raises(NamespaceUnavailable):
        ChunkScanner(str(tmp_path / "missing")).scan_snapshot()


def test_root_that_is_a_file_raises_namespace_unavailable(tmp_path):
    path = tmp_path / "file"
    path.write_text("data")

    with pytest.raises(NamespaceUnavailable):
        ChunkScanner(str(path)).scan_snapshot()


def test_empty_root_gives_empty_snapshot(tmp_path):
    assert ChunkScanner(str(tmp_path)).scan_snapshot() == {}


@pytest.mark.skipif(not hasattr(os, "geteuid") or os.geteuid() == 0,
                    reason="permissions are not enforced for root")
def test_unreadable_subtree_fails_whole_scan(tmp_path):
    root = tmp_path / "chunks"
    write_files(str(root), {"0000/a": "a", "0001/locked/b": "b"})
    locked = root / "0001" / "locked"
    locked.chmod(0)
    try:
        with pytest.raises(ScanFailure) as excinfo:
            ChunkScanner(str(root)).scan_snapshot()
        assert "locked" in excinfo.value.path
    finally:
        locked.chmod(0o755)


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks not supported")
def test_symlinks_are_recorded_as_leaves(tmp_path):
    root = tmp_path / "chunks"
    write_files(str(root), {"0000/real/data": "payload"})
    os.symlink(str(root / "0000" / "real"), str(root / "0000" / "link"))

    snapshot = ChunkScanner(str(root)).scan_snapshot()
    link = snapshot["0000"].children["link"]

    assert not link.is_directory
    assert link.children == {}


def test_scan_has_no_side_effects(chunk_dir):
    before = sorted(os.listdir(chunk_dir))
    ChunkScanner(chunk_dir).scan_snapshot()
    assert sorted(os.listdir(chunk_dir)) == before


def test_unreadable_nested_directory_fails_whole_scan(chunk_dir, monkeypatch):
    blocked = os.path.join(chunk_dir, "0100", "subdir")
    block_scandir(monkeypatch, blocked)

    with pytest.raises(ScanFailure) as excinfo:
        ChunkScanner(chunk_dir).scan_snapshot()

    assert excinfo.value.path == blocked
    assert isinstance(excinfo.value.cause, PermissionError)
