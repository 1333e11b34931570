"""Backup orchestration: full and incremental runs."""

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from . import metadata as metadata_codec
from .archiver import ArchiveBuilder, parse_checksum_record, remove_quietly
from .context import RunContext
from .differ import diff_snapshots
from .grouper import PrefixGrouper, mark_dirty_groups, validate_prefix_digits
from .models import (ArchiveGroup, BackupMetadata, BackupMode, BackupResult, RunState, Snapshot,
                     ARCHIVE_SUFFIX, CHECKSUM_SUFFIX, METADATA_FILE_NAME)
from .scanner import ChunkScanner
from ..exceptions import (BackupCancelled, GroupProcessingError, MetadataLoadFailure,
                          MetadataPersistFailure, NoPriorBackup, StorageError, UploadFailure)
from ..storage.base import Storage, remote_join


DETAIL_UNCHANGED = "unchanged, skipped"
DETAIL_CHECKSUM_UNCHANGED = "checksum unchanged, skipped upload"
DETAIL_UPLOADED = "created and uploaded"

VERIFY_OK = "ok"
VERIFY_MISSING = "missing"
VERIFY_MISMATCH = "checksum mismatch"


@dataclass
class GroupOutcome:
    """Result of processing one dirty archive group."""
    archive_id: str
    checksum: Optional[str] = None
    uploaded: bool = False
    detail: str = ""
    error: Optional[str] = None
    exception: Optional[BaseException] = None
    archive_name: str = ""
    size: int = 0
    uploaded_files: List[str] = field(default_factory=list)


class BackupOrchestrator:
    """Drives full and incremental backups of a chunk directory."""

    def __init__(self, storage: Storage, chunk_path: str, remote_path: str, temp_path: str,
                 prefix_digits: int = 2, workers: int = 1,
                 logger: Optional[logging.Logger] = None):
        """Initialize backup orchestrator.

        Args:
            storage: Remote storage backend.
            chunk_path: Root of the chunk namespace.
            remote_path: Remote directory archives and metadata go to.
            temp_path: Scratch directory for archives and the local metadata copy.
            prefix_digits: Grouping granularity for full backups.
            workers: Number of groups processed concurrently.
            logger: Logger collaborator; defaults to the module logger.

        Raises:
            InvalidPrefixDigits: If prefix_digits is outside [1, 4].
        """
        if workers < 1:
            raise ValueError(f"workers must be at least 1, got {workers}")

        self.storage = storage
        self.chunk_path = chunk_path
        self.remote_path = remote_path
        self.temp_path = temp_path
        self.prefix_digits = validate_prefix_digits(prefix_digits)
        self.workers = workers
        self.logger = logger or logging.getLogger(__name__)
        self.scanner = ChunkScanner(chunk_path, logger=self.logger)
        self.archiver = ArchiveBuilder(chunk_path, temp_path, logger=self.logger)
        self.state = RunState.IDLE

    @property
    def metadata_remote_path(self) -> str:
        return remote_join(self.remote_path, METADATA_FILE_NAME)

    def _transition(self, state: RunState):
        self.logger.debug(f"Run state: {self.state.value} -> {state.value}")
        self.state = state

    def run(self, mode: BackupMode, ctx: Optional[RunContext] = None,
            force: bool = False) -> BackupResult:
        """Run a backup in the given mode."""
        if mode == BackupMode.FULL:
            return self.run_full(ctx, force=force)
        return self.run_incremental(ctx)

    def run_full(self, ctx: Optional[RunContext] = None, force: bool = False) -> BackupResult:
        """Archive every group and upload the ones whose checksum changed.

        Args:
            ctx: Deadline and cancellation for the run.
            force: Upload every archive even if its checksum is unchanged.

        Returns:
            The run result, also when some groups failed.
        """
        ctx = ctx or RunContext()
        result = BackupResult(mode=BackupMode.FULL, started_at=datetime.now(timezone.utc))
        started = time.monotonic()
        self.state = RunState.IDLE

        self.logger.info(f"Starting full backup of {self.chunk_path} to {self.remote_path} "
                         f"(prefix digits: {self.prefix_digits})")
        ctx.check()

        self._transition(RunState.SCANNING)
        snapshot = self.scanner.scan_snapshot()
        previous = self._load_compatible_metadata(ctx, self.prefix_digits)

        self._transition(RunState.GROUPING)
        groups = PrefixGrouper(self.prefix_digits).group(snapshot)
        for group in groups:
            group.dirty = True

        checksums = dict(previous.checksums) if previous else {}
        baseline = {} if force else dict(checksums)

        self._process_groups(ctx, groups, baseline, checksums, result)
        self._persist_metadata(ctx, self.prefix_digits, snapshot, checksums)
        return self._finish(result, started)

    def run_incremental(self, ctx: Optional[RunContext] = None) -> BackupResult:
        """Rebuild only the groups whose shards changed since the last run.

        Raises:
            NoPriorBackup: If no metadata exists at the remote.
        """
        ctx = ctx or RunContext()
        result = BackupResult(mode=BackupMode.INCREMENTAL, started_at=datetime.now(timezone.utc))
        started = time.monotonic()
        self.state = RunState.IDLE

        self.logger.info(f"Starting incremental backup of {self.chunk_path} to {self.remote_path}")
        previous = self.load_metadata(ctx)
        prefix_digits = previous.prefix_digits
        if prefix_digits != self.prefix_digits:
            self.logger.info(f"Using prefix digits {prefix_digits} from previous backup "
                             f"(configured: {self.prefix_digits})")
        ctx.check()

        self._transition(RunState.SCANNING)
        snapshot = self.scanner.scan_snapshot()

        self._transition(RunState.DIFFING)
        diff = diff_snapshots(previous.snapshot, snapshot)
        self.logger.info(f"Changed shards: {len(diff.added)} added, {len(diff.removed)} removed, "
                         f"{len(diff.modified)} modified")

        self._transition(RunState.GROUPING)
        groups = PrefixGrouper(prefix_digits).group(snapshot)
        dirty = mark_dirty_groups(groups, diff.changed)
        self.logger.info(f"{len(dirty)} of {len(groups)} archive groups need updating")

        checksums = dict(previous.checksums)
        for group in groups:
            if not group.dirty:
                result.skipped_archives += 1
                result.details[group.archive_id] = DETAIL_UNCHANGED

        self._process_groups(ctx, groups, dict(previous.checksums), checksums, result)
        self._persist_metadata(ctx, prefix_digits, snapshot, checksums)
        return self._finish(result, started)

    def _process_groups(self, ctx: RunContext, groups: List[ArchiveGroup],
                        baseline: Dict[str, str], checksums: Dict[str, str],
                        result: BackupResult):
        """Process every dirty group and fold the outcomes into the result.

        Outcomes are logged and applied in archive id order regardless of completion
        order. A failed group keeps its checksum from before the run.
        """
        self._transition(RunState.PROCESSING_GROUPS)
        result.total_archives = len(groups)
        dirty = [group for group in groups if group.dirty]
        outcomes: Dict[str, GroupOutcome] = {}

        if self.workers > 1 and len(dirty) > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as executor:
                futures = [
                    executor.submit(self._process_group, ctx, group, baseline.get(group.archive_id))
                    for group in dirty
                ]
                try:
                    for future in as_completed(futures):
                        outcome = future.result()
                        outcomes[outcome.archive_id] = outcome
                except BackupCancelled:
                    for future in futures:
                        future.cancel()
                    raise
        else:
            for group in dirty:
                outcome = self._process_group(ctx, group, baseline.get(group.archive_id))
                outcomes[outcome.archive_id] = outcome

        for archive_id in sorted(outcomes):
            outcome = outcomes[archive_id]
            self._log_outcome(outcome)
            # an archive uploaded before its checksum record failed stays listed
            result.uploaded_files.extend(outcome.uploaded_files)
            if outcome.error is not None:
                result.errors[archive_id] = outcome.error
                result.details[archive_id] = f"error: {outcome.error}"
                continue

            checksums[archive_id] = outcome.checksum
            result.details[archive_id] = outcome.detail
            if outcome.uploaded:
                result.updated_archives += 1
            else:
                result.skipped_archives += 1

    def _process_group(self, ctx: RunContext, group: ArchiveGroup,
                       previous_checksum: Optional[str]) -> GroupOutcome:
        """Build, hash and upload one group.

        Group failures are returned in the outcome; cancellation propagates.
        """
        ctx.check()
        outcome = GroupOutcome(archive_id=group.archive_id, archive_name=group.archive_name)
        archive = None

        try:
            archive = self.archiver.build(group)
            outcome.checksum = archive.checksum
            outcome.size = archive.size

            if previous_checksum == archive.checksum:
                outcome.detail = DETAIL_CHECKSUM_UNCHANGED
                return outcome

            ctx.check()
            self._upload(ctx, archive.path, archive.archive_name, outcome)
            self.archiver.write_checksum_record(archive)
            self._upload(ctx, archive.checksum_path, archive.archive_name + CHECKSUM_SUFFIX, outcome)

            outcome.uploaded = True
            outcome.detail = DETAIL_UPLOADED
        except BackupCancelled:
            raise
        except GroupProcessingError as e:
            outcome.error = str(e)
        except Exception as e:
            outcome.error = f"unexpected error: {e}"
            outcome.exception = e
        finally:
            if archive is not None:
                archive.cleanup()

        return outcome

    def _log_outcome(self, outcome: GroupOutcome):
        if outcome.exception is not None:
            self.logger.error(f"Unexpected error processing {outcome.archive_name}",
                              exc_info=outcome.exception)
        elif outcome.error is not None:
            self.logger.error(f"Failed to process {outcome.archive_name}: {outcome.error}")
        elif outcome.uploaded:
            self.logger.info(f"{outcome.archive_name}: {outcome.detail} ({outcome.size} bytes)")
        else:
            self.logger.info(f"{outcome.archive_name}: {outcome.detail}")

    def _upload(self, ctx: RunContext, local_path: str, name: str, outcome: GroupOutcome):
        try:
            self.storage.upload(ctx, local_path, remote_join(self.remote_path, name))
        except StorageError as e:
            raise UploadFailure(f"failed to upload {name}: {e}") from e
        outcome.uploaded_files.append(name)

    def _persist_metadata(self, ctx: RunContext, prefix_digits: int, snapshot: Snapshot,
                          checksums: Dict[str, str]):
        """Write metadata locally and upload it.

        Raises:
            MetadataPersistFailure: If either step fails.
        """
        self._transition(RunState.PERSISTING_METADATA)
        metadata = BackupMetadata(
            prefix_digits=prefix_digits,
            captured_at=datetime.now(timezone.utc),
            snapshot=snapshot,
            checksums=checksums,
        )
        local_path = os.path.join(self.temp_path, METADATA_FILE_NAME)

        try:
            os.makedirs(self.temp_path, exist_ok=True)
            with open(local_path, 'w', encoding='utf-8') as f:
                f.write(metadata_codec.dumps(metadata))
        except OSError as e:
            raise MetadataPersistFailure(f"failed to save local metadata {local_path}: {e}") from e

        try:
            self.storage.upload(ctx, local_path, self.metadata_remote_path)
        except StorageError as e:
            raise MetadataPersistFailure(f"failed to upload metadata: {e}") from e

        self.logger.info(f"Metadata saved to {self.metadata_remote_path}")

    def _finish(self, result: BackupResult, started: float) -> BackupResult:
        result.duration_seconds = time.monotonic() - started
        self._transition(RunState.PARTIALLY_FAILED if result.errors else RunState.DONE)
        result.state = self.state

        self.logger.info(
            f"Backup completed: {result.total_archives} archives, {result.updated_archives} updated, "
            f"{result.skipped_archives} skipped, {len(result.errors)} errors "
            f"in {result.duration_seconds:.1f}s")
        if result.errors:
            self.logger.warning(f"Backup finished with {len(result.errors)} failed archives: "
                                f"{', '.join(result.error_archives)}")
        return result

    def load_metadata(self, ctx: Optional[RunContext] = None) -> BackupMetadata:
        """Load the metadata of the previous run from remote storage.

        Raises:
            NoPriorBackup: If no metadata document exists.
            MetadataLoadFailure: If it cannot be read or parsed.
        """
        ctx = ctx or RunContext()
        remote = self.metadata_remote_path

        try:
            if not self.storage.exists(ctx, remote):
                raise NoPriorBackup(remote)
            content = self.storage.get_small_file_content(ctx, remote)
        except StorageError as e:
            raise MetadataLoadFailure(f"failed to download metadata from {remote}: {e}") from e

        return metadata_codec.loads(content)

    def _load_compatible_metadata(self, ctx: RunContext, prefix_digits: int) -> Optional[BackupMetadata]:
        """Previous metadata usable as a checksum baseline for a full run."""
        try:
            previous = self.load_metadata(ctx)
        except NoPriorBackup:
            self.logger.info("No previous backup metadata found")
            return None
        except MetadataLoadFailure as e:
            self.logger.warning(f"Ignoring unreadable previous metadata: {e}")
            return None

        if previous.prefix_digits != prefix_digits:
            self.logger.info(f"Previous backup used prefix digits {previous.prefix_digits}, "
                             f"not reusing its checksums")
            return None
        return previous

    def verify(self, ctx: Optional[RunContext] = None) -> Dict[str, str]:
        """Download every recorded archive and check it against its checksum.

        Returns:
            Mapping of archive id to ``ok``, ``missing``, ``checksum mismatch``
            or an error description.
        """
        ctx = ctx or RunContext()
        metadata = self.load_metadata(ctx)
        os.makedirs(self.temp_path, exist_ok=True)
        results = {}

        for archive_id, expected in sorted(metadata.checksums.items()):
            ctx.check()
            name = archive_id + ARCHIVE_SUFFIX
            remote = remote_join(self.remote_path, name)
            local_path = os.path.join(self.temp_path, f"verify-{name}")

            try:
                if not self.storage.exists(ctx, remote):
                    results[archive_id] = VERIFY_MISSING
                    continue
                self.storage.download(ctx, remote, local_path)
                actual = self.archiver.compute_checksum(local_path)
                results[archive_id] = VERIFY_OK if actual == expected else VERIFY_MISMATCH

                record_remote = remote + CHECKSUM_SUFFIX
                if results[archive_id] == VERIFY_OK and self.storage.exists(ctx, record_remote):
                    record = self.storage.get_small_file_content(ctx, record_remote)
                    if parse_checksum_record(record.decode('utf-8', errors='replace')) != expected:
                        results[archive_id] = VERIFY_MISMATCH
            except BackupCancelled:
                raise
            except (StorageError, GroupProcessingError, ValueError) as e:
                results[archive_id] = f"error: {e}"
            finally:
                remove_quietly(local_path)

            self.logger.info(f"Verify {name}: {results[archive_id]}")

        return results

    def status(self, ctx: Optional[RunContext] = None) -> Dict[str, Any]:
        """Summarize the previous backup and the archives present remotely."""
        ctx = ctx or RunContext()
        metadata = self.load_metadata(ctx)
        remote_files = {info.name: info for info in self.storage.list(ctx, self.remote_path)
                        if not info.is_directory}

        archives = []
        for archive_id, checksum in sorted(metadata.checksums.items()):
            remote = remote_files.get(archive_id + ARCHIVE_SUFFIX)
            archives.append({
                'archive_id': archive_id,
                'checksum': checksum,
                'present': remote is not None,
                'size': remote.size if remote else None,
            })

        return {
            'captured_at': metadata.captured_at,
            'prefix_digits': metadata.prefix_digits,
            'shards': len(metadata.snapshot),
            'total_size': sum(node.size for node in metadata.snapshot.values()),
            'archives': archives,
        }
