"""PTY process management — a child program on a pseudo-terminal.

ProcessPty owns the child and its master fd; OutputQuiescenceReader turns
the bytes it produces into settled text responses.
"""

from termharness.pty.process import ProcessPty, PtyStatus
from termharness.pty.reader import ByteSource, OutputQuiescenceReader

__all__ = [
    "ByteSource",
    "OutputQuiescenceReader",
    "ProcessPty",
    "PtyStatus",
]
