import os
import stat
import sys
import time
from datetime import datetime, timezone

import pytest

from chunk_backup.core.context import RunContext
from chunk_backup.exceptions import BackupCancelled, StorageError
from chunk_backup.storage import LocalStorage, RcloneStorage
from chunk_backup.storage.base import remote_join
from chunk_backup.storage.rclone import RcloneCommandError, parse_rclone_time


FAKE_RCLONE = """#!/bin/sh
case "$1" in
  lsjson)
    echo '[{"Path":"a.tar.gz","Name":"a.tar.gz","Size":12,"ModTime":"2024-01-02T03:04:05.123456789Z","IsDir":false},'
    echo ' {"Path":"sub","Name":"sub","Size":-1,"ModTime":"2024-01-02T03:04:05Z","IsDir":true}]'
    ;;
  lsf)
    case "$2" in
      *missing*) echo "ERROR : directory not found" >&2; exit 3 ;;
      *broken*) echo "ERROR : permission denied" >&2; exit 1 ;;
      *) echo "$2" ;;
    esac
    ;;
  cat) printf 'small content' ;;
  copyto) cp "$2" "$3" ;;
  slow) exec sleep 5 ;;
  *) echo "unknown command $1" >&2; exit 2 ;;
esac
"""


@pytest.fixture
def local(tmp_path):
    return LocalStorage(str(tmp_path / "remote"))


@pytest.fixture
def source_file(tmp_path):
    path = tmp_path / "source.bin"
    path.write_bytes(b"archive bytes")
    return str(path)


@pytest.fixture
def fake_rclone(tmp_path):
    if sys.platform == "win32":
        pytest.skip("shell script stand-in needs a POSIX shell")
    path = tmp_path / "rclone"
    path.write_text(FAKE_RCLONE)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return RcloneStorage(binary=str(path))


def test_remote_join():
    assert remote_join("", "a.tar.gz") == "a.tar.gz"
    assert remote_join("remote:", "a.tar.gz") == "remote:a.tar.gz"
    assert remote_join("remote:backup", "a.tar.gz") == "remote:backup/a.tar.gz"
    assert remote_join("remote:backup/", "a.tar.gz") == "remote:backup/a.tar.gz"
    assert remote_join("/", "a.tar.gz") == "/a.tar.gz"


def test_local_upload_exists_and_read(local, source_file):
    ctx = RunContext()

    assert not local.exists(ctx, "dir/a.tar.gz")
    local.upload(ctx, source_file, "dir/a.tar.gz")

    assert local.exists(ctx, "dir/a.tar.gz")
    assert local.get_small_file_content(ctx, "/dir/a.tar.gz") == b"archive bytes"


def test_local_list(local, source_file):
    ctx = RunContext()
    local.upload(ctx, source_file, "b.tar.gz")
    local.upload(ctx, source_file, "a.tar.gz")
    local.upload(ctx, source_file, "nested/c.tar.gz")

    files = local.list(ctx, "")

    assert [f.name for f in files] == ["a.tar.gz", "b.tar.gz", "nested"]
    assert files[0].size == len(b"archive bytes")
    assert not files[0].is_directory
    assert files[2].is_directory
    assert isinstance(files[0].modified_time, datetime)
    assert local.list(ctx, "does-not-exist") == []


def test_local_download(local, source_file, tmp_path):
    ctx = RunContext()
    local.upload(ctx, source_file, "a.tar.gz")
    target = tmp_path / "out" / "a.tar.gz"

    local.download(ctx, "a.tar.gz", str(target))

    assert target.read_bytes() == b"archive bytes"
    with pytest.raises(StorageError):
        local.download(ctx, "missing.tar.gz", str(tmp_path / "never"))


def test_local_failed_upload_leaves_nothing(local, tmp_path):
    with pytest.raises(StorageError):
        local.upload(RunContext(), str(tmp_path / "missing"), "a.tar.gz")

    assert os.listdir(local.root) == []


def test_local_rejects_paths_outside_root(local, source_file):
    with pytest.raises(StorageError):
        local.upload(RunContext(), source_file, "../escaped")


def test_local_read_missing_file(local):
    with pytest.raises(StorageError):
        local.get_small_file_content(RunContext(), "missing.json")


def test_local_operations_respect_cancellation(local, source_file):
    ctx = RunContext()
    ctx.cancel()

    with pytest.raises(BackupCancelled):
        local.upload(ctx, source_file, "a.tar.gz")
    with pytest.raises(BackupCancelled):
        local.exists(ctx, "a.tar.gz")


def test_build_command_defaults():
    storage = RcloneStorage()

    assert storage.build_command("copyto", "src", "remote:dst") == [
        "rclone", "copyto", "src", "remote:dst", "--quiet", "--progress=false"]


def test_build_command_with_config_and_args():
    storage = RcloneStorage(binary="/usr/bin/rclone", config_file="/etc/rclone.conf",
                            extra_args=["--transfers=4", "--checkers=8"], verbose=True)

    assert storage.build_command("lsjson", "remote:") == [
        "/usr/bin/rclone", "lsjson", "--config", "/etc/rclone.conf",
        "--transfers=4", "--checkers=8", "remote:"]
    # cat writes file content to stdout, so it stays quiet
    assert storage.build_command("cat", "remote:x")[-2:] == ["--quiet", "--progress=false"]


def test_parse_rclone_time():
    assert parse_rclone_time("2024-01-02T03:04:05.123456789Z") == \
        datetime(2024, 1, 2, 3, 4, 5, 123456, tzinfo=timezone.utc)
    assert parse_rclone_time("2024-01-02T03:04:05+00:00") == \
        datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert parse_rclone_time(None) is None
    assert parse_rclone_time("not a time") is None


def test_rclone_list(fake_rclone):
    files = fake_rclone.list(RunContext(), "remote:backup")

    assert [f.name for f in files] == ["a.tar.gz", "sub"]
    assert files[0].size == 12
    assert files[0].modified_time == datetime(2024, 1, 2, 3, 4, 5, 123456, tzinfo=timezone.utc)
    assert files[1].is_directory


def test_rclone_exists(fake_rclone):
    ctx = RunContext()

    assert fake_rclone.exists(ctx, "remote:backup/present.json")
    assert not fake_rclone.exists(ctx, "remote:backup/missing.json")
    with pytest.raises(RcloneCommandError) as excinfo:
        fake_rclone.exists(ctx, "remote:broken")
    assert excinfo.value.returncode == 1
    assert "permission denied" in str(excinfo.value)


def test_rclone_cat_and_copy(fake_rclone, tmp_path):
    ctx = RunContext()
    source = tmp_path / "src.bin"
    source.write_bytes(b"payload")

    assert fake_rclone.get_small_file_content(ctx, "remote:file") == b"small content"

    fake_rclone.upload(ctx, str(source), str(tmp_path / "uploaded.bin"))
    fake_rclone.download(ctx, str(tmp_path / "uploaded.bin"), str(tmp_path / "downloaded.bin"))
    assert (tmp_path / "downloaded.bin").read_bytes() == b"payload"


def test_rclone_failure_is_storage_error(fake_rclone):
    with pytest.raises(StorageError, match="exit code 2"):
        fake_rclone._run(RunContext(), "bogus")


def test_rclone_missing_binary(tmp_path):
    storage = RcloneStorage(binary=str(tmp_path / "no-rclone"))

    with pytest.raises(StorageError):
        storage.exists(RunContext(), "remote:x")


def test_rclone_killed_when_deadline_passes(fake_rclone):
    started = time.monotonic()

    with pytest.raises(BackupCancelled):
        fake_rclone._run(RunContext(timeout=0.3), "slow")

    assert time.monotonic() - started < 4
