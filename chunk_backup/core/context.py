"""Deadline and cancellation handling for a backup run."""

import threading
import time
from typing import Optional

from ..exceptions import BackupCancelled


class RunContext:
    """Carries a deadline and a cancellation flag through a run.

    Every storage call receives the context and must stop once it is
    cancelled or its deadline has passed.
    """

    def __init__(self, timeout: Optional[float] = None):
        """Initialize run context.

        Args:
            timeout: Seconds until the deadline, or None for no deadline.
        """
        self.deadline = time.monotonic() + timeout if timeout is not None else None
        self._cancelled = threading.Event()

    def cancel(self):
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    @property
    def done(self) -> bool:
        return self.cancelled or self.expired

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, None if there is none."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self):
        """Raise BackupCancelled if the run should stop."""
        if self.cancelled:
            raise BackupCancelled("Backup run cancelled")
        if self.expired:
            raise BackupCancelled("Backup run deadline exceeded")

