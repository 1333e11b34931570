"""Storage backed by the rclone command line tool."""

import json
import logging
import re
import subprocess
from datetime import datetime
from typing import List, Optional, Sequence

from .base import RemoteFileInfo, Storage
from ..core.context import RunContext
from ..exceptions import StorageError


POLL_INTERVAL_SECONDS = 0.5
_FRACTION_PATTERN = re.compile(r"\.(\d{6})\d+")


class RcloneCommandError(StorageError):
    """rclone exited with a non-zero status."""

    def __init__(self, command: str, returncode: int, stderr: str):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"rclone {command} failed with exit code {returncode}: {stderr.strip()}")


def parse_rclone_time(value: Optional[str]) -> Optional[datetime]:
    """Parse rclone's RFC 3339 timestamps (nanosecond precision)."""
    if not value:
        return None
    value = _FRACTION_PATTERN.sub(r".\1", value)
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


class RcloneStorage(Storage):
    """Runs rclone subcommands for every storage operation."""

    def __init__(self, binary: str = "rclone", config_file: Optional[str] = None,
                 extra_args: Optional[Sequence[str]] = None, verbose: bool = False,
                 logger: Optional[logging.Logger] = None):
        """Initialize rclone storage.

        Args:
            binary: Path to the rclone executable.
            config_file: Optional rclone config file passed via --config.
            extra_args: Additional arguments for every invocation.
            verbose: Let rclone report progress instead of running quietly.
            logger: Logger to report commands to.
        """
        self.binary = binary
        self.config_file = config_file
        self.extra_args = list(extra_args or [])
        self.verbose = verbose
        self.logger = logger or logging.getLogger(__name__)

    def build_command(self, command: str, *args: str) -> List[str]:
        """Build the argument vector for an rclone subcommand."""
        cmd = [self.binary, command]
        if self.config_file:
            cmd.extend(["--config", self.config_file])
        cmd.extend(self.extra_args)
        cmd.extend(args)
        # cat output is file content, so it always runs quietly
        if command == "cat" or not self.verbose:
            cmd.extend(["--quiet", "--progress=false"])
        return cmd

    def _run(self, ctx: RunContext, command: str, *args: str) -> bytes:
        """Run an rclone subcommand, killing it if the context ends."""
        ctx.check()
        cmd = self.build_command(command, *args)
        self.logger.debug(f"Running {' '.join(cmd)}")

        try:
            proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except OSError as e:
            raise StorageError(f"Failed to start {self.binary}: {e}") from e

        while True:
            try:
                stdout, stderr = proc.communicate(timeout=POLL_INTERVAL_SECONDS)
                break
            except subprocess.TimeoutExpired:
                if ctx.done:
                    proc.kill()
                    proc.communicate()
                    self.logger.warning(f"Killed rclone {command}: run cancelled")
                    ctx.check()

        stderr_text = stderr.decode("utf-8", errors="replace")
        if self.verbose and stderr_text.strip() and command != "cat":
            self.logger.info(stderr_text.strip())

        if proc.returncode != 0:
            raise RcloneCommandError(command, proc.returncode, stderr_text)
        return stdout

    def list(self, ctx: RunContext, remote_path: str) -> List[RemoteFileInfo]:
        output = self._run(ctx, "lsjson", remote_path)
        try:
            entries = json.loads(output.decode("utf-8") or "[]")
        except ValueError as e:
            raise StorageError(f"Failed to parse rclone output: {e}") from e

        return [
            RemoteFileInfo(
                name=entry.get("Name", entry.get("Path", "")),
                size=int(entry.get("Size", 0)),
                modified_time=parse_rclone_time(entry.get("ModTime")),
                is_directory=bool(entry.get("IsDir", False)),
            )
            for entry in entries
        ]

    def upload(self, ctx: RunContext, local_path: str, remote_path: str) -> None:
        self._run(ctx, "copyto", local_path, remote_path)

    def download(self, ctx: RunContext, remote_path: str, local_path: str) -> None:
        self._run(ctx, "copyto", remote_path, local_path)

    def exists(self, ctx: RunContext, remote_path: str) -> bool:
        try:
            output = self._run(ctx, "lsf", remote_path)
        except RcloneCommandError as e:
            if "not found" in e.stderr.lower():
                return False
            raise
        return bool(output.strip())

    def get_small_file_content(self, ctx: RunContext, remote_path: str) -> bytes:
        return self._run(ctx, "cat", remote_path)
