"""Exception taxonomy for the harness.

Every failure surfaces to the calling test as one of these. Nothing here is
retried except the low-level poll inside a single quiescence wait.
"""

from __future__ import annotations


class HarnessError(Exception):
    """Base class for all harness failures."""


class SpawnError(HarnessError):
    """The target could not be started (missing executable, no pty)."""


class PtyIOError(HarnessError, OSError):
    """Reading from or writing to the pty failed, usually because the child died."""


class HarnessTimeoutError(HarnessError, TimeoutError):
    """No output at all arrived within the hard bound."""


class ProcessExitedError(HarnessError):
    """The child exited before (or while) an interaction could run."""

    def __init__(self, message: str, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class StartupError(HarnessError):
    """The child exited immediately or printed nothing before the startup timeout."""


class RegistryMisuseError(HarnessError):
    """Acquire after teardown, too many completions, or a bad expected total."""


class LockPoisonedError(HarnessError):
    """A previous holder left the shared session unusable."""
