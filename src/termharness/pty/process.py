"""ProcessPty — a child process attached to a pseudo-terminal."""

from __future__ import annotations

import enum
import errno
import fcntl
import logging
import os
import pty
import select
import shutil
import signal
import struct
import subprocess
import termios

from termharness.config import TerminalSize
from termharness.errors import PtyIOError, SpawnError

logger = logging.getLogger(__name__)

_READ_CHUNK = 4096


class PtyStatus(enum.Enum):
    """Lifecycle states for a pty child."""

    RUNNING = "running"
    KILLING = "killing"  # Termination requested, waiting for the child
    KILLED = "killed"  # Terminated by us
    EXITED = "exited"  # Exited on its own


class ProcessPty:
    """A child process whose stdio is the slave side of a pty.

    The child gets its own session and process group so termination reaches
    everything it spawned. Only the master fd is kept in the parent; it is
    the single byte channel to the child and is closed exactly once.

    Uses subprocess.Popen (not os.fork) so spawning from a multi-threaded
    test runner is safe.
    """

    def __init__(self, proc: subprocess.Popen, master_fd: int, command: list[str]) -> None:
        self._proc = proc
        self._master_fd = master_fd
        self.command = command
        # start_new_session makes the child its own group leader
        self._pgid = proc.pid
        self._status = PtyStatus.RUNNING
        self._at_eof = False
        self._closed = False

    @classmethod
    def spawn(
        cls,
        path: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        size: TerminalSize | None = None,
        cwd: str | None = None,
        term: str = "xterm-256color",
    ) -> ProcessPty:
        """Spawn ``path`` with ``args`` in a new pty of the given size."""
        executable = shutil.which(path)
        if executable is None:
            raise SpawnError(f"Executable not found: {path}")
        if cwd is not None and not os.path.isdir(cwd):
            raise SpawnError(f"Working directory does not exist: {cwd}")

        size = size or TerminalSize()
        try:
            master_fd, slave_fd = pty.openpty()
        except OSError as e:
            raise SpawnError(f"Could not allocate a pty: {e}") from e

        child_env = {**os.environ, **(env or {})}
        child_env["TERM"] = term
        child_env["COLUMNS"] = str(size.cols)
        child_env["LINES"] = str(size.rows)

        command = [executable, *(args or [])]
        try:
            _set_winsize(slave_fd, size)
            proc = subprocess.Popen(
                command,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,
                env=child_env,
                cwd=cwd,
            )
        except OSError as e:
            os.close(master_fd)
            raise SpawnError(f"Failed to spawn {path}: {e}") from e
        finally:
            # Parent always closes the slave fd
            os.close(slave_fd)

        child = cls(proc, master_fd, command)
        logger.info(
            "Spawned pty child: pid=%d pgid=%d size=%dx%d cmd=%s",
            proc.pid,
            child._pgid,
            size.cols,
            size.rows,
            " ".join(command),
        )
        return child

    # ------------------------------------------------------------------
    # Byte channel
    # ------------------------------------------------------------------

    def write(self, data: bytes) -> None:
        """Write all of ``data`` to the child."""
        if self._closed:
            raise PtyIOError("pty is closed")
        view = memoryview(data)
        while view:
            try:
                written = os.write(self._master_fd, view)
            except OSError as e:
                raise PtyIOError(f"Write to pid {self.pid} failed: {e}") from e
            view = view[written:]

    def read_available(self, timeout: float) -> bytes:
        """Return whatever bytes arrive within ``timeout`` seconds.

        Returns ``b""`` on timeout. Once the slave side has been closed by
        the child, returns ``b""`` immediately and ``at_eof`` is set.
        """
        if self._closed:
            raise PtyIOError("pty is closed")
        if self._at_eof:
            return b""
        try:
            ready, _, _ = select.select([self._master_fd], [], [], max(timeout, 0.0))
        except (OSError, ValueError) as e:
            raise PtyIOError(f"Poll on pid {self.pid} failed: {e}") from e
        if not ready:
            return b""
        try:
            data = os.read(self._master_fd, _READ_CHUNK)
        except OSError as e:
            # Linux reports a hung-up slave as EIO
            if e.errno == errno.EIO:
                self._mark_eof()
                return b""
            raise PtyIOError(f"Read from pid {self.pid} failed: {e}") from e
        if not data:
            self._mark_eof()
        return data

    def _mark_eof(self) -> None:
        if not self._at_eof:
            logger.debug("pty of pid %d reached end of file", self.pid)
        self._at_eof = True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def poll(self) -> int | None:
        """Return the exit code if the child has exited, else None."""
        code = self._proc.poll()
        if code is not None and self._status == PtyStatus.RUNNING:
            self._status = PtyStatus.EXITED
            logger.info("pty child %d exited (code=%s)", self.pid, code)
        elif code is not None and self._status == PtyStatus.KILLING:
            self._status = PtyStatus.KILLED
        return code

    def wait_exit(self, timeout: float) -> int | None:
        """Wait up to ``timeout`` seconds for exit. Returns the code or None."""
        try:
            code = self._proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None
        self.poll()
        return code

    def terminate(self, timeout: float = 3.0) -> int | None:
        """SIGTERM the process group, escalating to SIGKILL past ``timeout``.

        Does nothing if the child already exited.
        """
        if self.poll() is not None:
            return self._proc.returncode

        self._status = PtyStatus.KILLING
        self._signal_group(signal.SIGTERM)
        code = self.wait_exit(timeout)
        if code is None:
            logger.warning(
                "pty child %d ignored SIGTERM for %.1fs, sending SIGKILL",
                self.pid,
                timeout,
            )
            self._signal_group(signal.SIGKILL)
            code = self.wait_exit(timeout)
        self._mark_reaped(code)
        return code

    def kill(self) -> None:
        """Kill the entire process tree immediately."""
        if self.poll() is not None:
            return
        self._status = PtyStatus.KILLING
        self._signal_group(signal.SIGKILL)
        # Reap to avoid zombies
        self._mark_reaped(self.wait_exit(2.0))

    def _mark_reaped(self, code: int | None) -> None:
        if code is None:
            logger.warning("pty child %d still not reaped after SIGKILL", self.pid)
            return
        self._status = PtyStatus.KILLED

    def _signal_group(self, sig: signal.Signals) -> None:
        try:
            os.killpg(self._pgid, sig)
            logger.debug("Sent %s to pgid %d", sig.name, self._pgid)
        except ProcessLookupError:
            logger.debug("Process group already gone: %d", self._pgid)
        except PermissionError as e:
            logger.warning("Cannot signal pgid %d: %s", self._pgid, e)

    def close(self) -> None:
        """Kill the child if needed and close the master fd (once)."""
        if self._closed:
            return
        self.kill()
        self._closed = True
        try:
            os.close(self._master_fd)
        except OSError:
            logger.debug("master fd of pid %d already closed", self.pid)

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def alive(self) -> bool:
        return self.poll() is None

    @property
    def exit_code(self) -> int | None:
        return self._proc.returncode

    @property
    def at_eof(self) -> bool:
        return self._at_eof

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def status(self) -> PtyStatus:
        self.poll()
        return self._status

    def __del__(self) -> None:
        """Ensure no orphan survives garbage collection."""
        if getattr(self, "_closed", True):
            return
        self.close()


def _set_winsize(fd: int, size: TerminalSize) -> None:
    """Set the terminal window size on ``fd``."""
    packed = struct.pack("HHHH", size.rows, size.cols, 0, 0)
    fcntl.ioctl(fd, termios.TIOCSWINSZ, packed)
