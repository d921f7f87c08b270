"""Drive long-lived interactive terminal programs from tests.

Spawn the program on a pty, send commands and keys, read settled output,
and share one running instance across a whole test suite.
"""

from termharness.ansi import AnsiSanitizer, clean, strip
from termharness.config import HarnessConfig, SettlePolicy, TerminalSize
from termharness.driver import SessionDriver
from termharness.errors import (
    HarnessError,
    HarnessTimeoutError,
    LockPoisonedError,
    ProcessExitedError,
    PtyIOError,
    RegistryMisuseError,
    SpawnError,
    StartupError,
)
from termharness.registry import RegistryState, SharedSessionRegistry

__version__ = "0.1.0"

__all__ = [
    "AnsiSanitizer",
    "HarnessConfig",
    "HarnessError",
    "HarnessTimeoutError",
    "LockPoisonedError",
    "ProcessExitedError",
    "PtyIOError",
    "RegistryMisuseError",
    "RegistryState",
    "SessionDriver",
    "SettlePolicy",
    "SharedSessionRegistry",
    "SpawnError",
    "StartupError",
    "TerminalSize",
    "clean",
    "strip",
]
