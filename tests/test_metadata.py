import json
from datetime import datetime, timezone

import pytest

from chunk_backup.core import metadata
from chunk_backup.core.differ import compare_snapshots
from chunk_backup.core.models import BackupMetadata, TreeNode
from chunk_backup.core.scanner import ChunkScanner
from chunk_backup.exceptions import MetadataLoadFailure, UnsupportedSchemaVersion


CAPTURED_AT = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)


@pytest.fixture
def backup_metadata(chunk_dir):
    return BackupMetadata(
        prefix_digits=2,
        captured_at=CAPTURED_AT,
        snapshot=ChunkScanner(chunk_dir).scan_snapshot(),
        checksums={"0000-00ff": "a" * 64, "ffff-ffff": "b" * 64},
    )


def test_document_layout(backup_metadata):
    document = json.loads(metadata.dumps(backup_metadata))

    assert set(document) == {"version", "prefix_digits", "backup_time", "file_tree", "checksums"}
    assert document["version"] == 1
    assert document["prefix_digits"] == 2
    assert document["checksums"] == {"0000-00ff": "a" * 64, "ffff-ffff": "b" * 64}

    shard = document["file_tree"]["0000"]
    assert shard["name"] == "0000"
    assert shard["is_dir"] is True
    assert set(shard["children"]) == {"file0.dat", "file1.dat", "subdir"}

    leaf = shard["children"]["file0.dat"]
    assert leaf["is_dir"] is False
    assert "children" not in leaf
    assert datetime.fromisoformat(leaf["mod_time"]).timestamp() == 1_700_000_000


def test_loaded_document_describes_the_same_tree(backup_metadata):
    loaded = metadata.loads(metadata.dumps(backup_metadata).encode("utf-8"))

    assert loaded.prefix_digits == 2
    assert loaded.captured_at == CAPTURED_AT
    assert loaded.checksums == backup_metadata.checksums
    assert compare_snapshots(backup_metadata.snapshot, loaded.snapshot) == set()


def test_naive_times_are_treated_as_utc():
    node = TreeNode("0000", 0, datetime(2024, 1, 1), True)
    data = metadata.node_to_dict(node)

    assert metadata.node_from_dict(data).modified_at == datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.mark.parametrize("version", [0, 2, None, "1"])
def test_unknown_schema_version_is_rejected(backup_metadata, version):
    document = metadata.metadata_to_dict(backup_metadata)
    document["version"] = version

    with pytest.raises(UnsupportedSchemaVersion):
        metadata.loads(json.dumps(document))


def test_unsupported_version_is_a_load_failure():
    assert issubclass(UnsupportedSchemaVersion, MetadataLoadFailure)


@pytest.mark.parametrize("content", [
    "not json",
    "[]",
    b"\xff\xfe",
    '{"version": 1, "prefix_digits": 2}',
    '{"version": 1, "prefix_digits": 7, "backup_time": "2024-01-01T00:00:00+00:00"}',
    '{"version": 1, "prefix_digits": 2, "backup_time": "yesterday"}',
    '{"version": 1, "prefix_digits": 2, "backup_time": "2024-01-01T00:00:00+00:00",'
    ' "file_tree": {"0000": {"name": "0000"}}}',
])
def test_malformed_documents_fail_to_load(content):
    with pytest.raises(MetadataLoadFailure):
        metadata.loads(content)


def test_directory_size_must_match_children(backup_metadata):
    document = metadata.metadata_to_dict(backup_metadata)
    document["file_tree"]["0000"]["children"]["subdir"]["size"] += 1

    with pytest.raises(MetadataLoadFailure, match="subdir"):
        metadata.loads(json.dumps(document))


def test_missing_optional_sections_load_empty():
    loaded = metadata.loads('{"version": 1, "prefix_digits": 3, '
                            '"backup_time": "2024-01-01T00:00:00+00:00"}')

    assert loaded.snapshot == {}
    assert loaded.checksums == {}
    assert loaded.prefix_digits == 3
