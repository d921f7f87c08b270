"""Session driver — command- and key-level control of one interactive program."""

from __future__ import annotations

import logging
import re
from typing import Callable

from termharness.ansi import clean
from termharness.config import HarnessConfig, SettlePolicy
from termharness.errors import (
    HarnessTimeoutError,
    ProcessExitedError,
    PtyIOError,
    StartupError,
)
from termharness.keys import lookup
from termharness.pty.process import ProcessPty
from termharness.pty.reader import OutputQuiescenceReader

logger = logging.getLogger(__name__)

PtyFactory = Callable[[HarnessConfig], ProcessPty]


def spawn_from_config(config: HarnessConfig) -> ProcessPty:
    return ProcessPty.spawn(
        config.program,
        args=config.args,
        env=config.env,
        size=config.size,
        cwd=config.cwd,
        term=config.term,
    )


class SessionDriver:
    """One running instance of the target program, driven through a pty.

    Construction spawns the child and waits for its startup banner to
    settle. Each interaction writes input and returns the output produced
    by that input alone: late bytes from the previous response are drained
    before every write.

    Not thread-safe on its own; share it through SharedSessionRegistry.
    """

    def __init__(
        self,
        config: HarnessConfig,
        pty_factory: PtyFactory = spawn_from_config,
    ) -> None:
        self.config = config
        self._pty = pty_factory(config)
        self._reader = OutputQuiescenceReader(self._pty)
        self._faulted: BaseException | None = None
        self._quit = False

        try:
            self.banner = self._read_banner()
        except BaseException:
            self._pty.close()
            raise

        logger.info(
            "Session started: pid=%d, banner %d chars", self._pty.pid, len(self.banner)
        )

    def _read_banner(self) -> str:
        program = self.config.program
        try:
            banner = self._reader.read_until_quiet(self.config.startup)
        except ProcessExitedError as e:
            code = self._pty.wait_exit(1.0)
            raise StartupError(f"{program} exited during startup (code={code})") from e
        except HarnessTimeoutError as e:
            raise StartupError(
                f"{program} printed nothing within {self.config.startup.hard_timeout:.1f}s"
            ) from e

        # A child that printed an error and quit may not be reaped yet; EOF says it's gone.
        if self._pty.at_eof or self._pty.poll() is not None:
            code = self._pty.wait_exit(1.0)
            raise StartupError(
                f"{program} exited right after startup (code={code}): {clean(banner).strip()}"
            )
        return banner

    # ------------------------------------------------------------------
    # Interaction
    # ------------------------------------------------------------------

    def execute_command(
        self, text: str, terminator: str | re.Pattern[str] | None = None
    ) -> str:
        """Send a line command and return its settled output."""
        logger.debug("execute_command %r", text)
        payload = (text + self.config.line_ending).encode()
        return self._interact(payload, self.config.command, terminator, allow_empty=False)

    def send_key_input(
        self,
        data: bytes | str,
        terminator: str | re.Pattern[str] | None = None,
        allow_empty: bool = False,
    ) -> str:
        """Send raw key bytes verbatim and return the redraw they cause."""
        payload = data.encode() if isinstance(data, str) else data
        logger.debug("send_key_input %r", payload)
        return self._interact(payload, self.config.key, terminator, allow_empty)

    def send_key(self, name: str, allow_empty: bool = False) -> str:
        """Send a named key such as ``"down"`` or ``"enter"``."""
        return self.send_key_input(lookup(name), allow_empty=allow_empty)

    def _interact(
        self,
        payload: bytes,
        policy: SettlePolicy,
        terminator: str | re.Pattern[str] | None,
        allow_empty: bool,
    ) -> str:
        self._ensure_running()
        try:
            self._reader.discard_pending()
            self._pty.write(payload)
            return self._reader.read_until_quiet(policy, terminator, allow_empty)
        except (PtyIOError, ProcessExitedError) as e:
            self._faulted = e
            raise

    def _ensure_running(self) -> None:
        if self._quit or self._pty.closed:
            raise ProcessExitedError("Session has been shut down", self._pty.exit_code)
        code = self._pty.poll()
        if code is not None:
            error = ProcessExitedError(f"{self.config.program} exited (code={code})", code)
            self._faulted = error
            raise error

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def quit(self) -> int | None:
        """Exit gracefully, escalating to termination. Safe to call repeatedly."""
        if self._quit:
            return self._pty.exit_code
        self._quit = True

        if self._pty.poll() is None:
            for command in self.config.quit_commands:
                logger.info("Sending quit command %r to pid %d", command, self._pty.pid)
                try:
                    self._reader.discard_pending()
                    self._pty.write((command + self.config.line_ending).encode())
                except PtyIOError as e:
                    logger.debug("Quit command not delivered: %s", e)
                    break
                self._drain_until_exit(self.config.shutdown)
                if self._pty.wait_exit(self.config.shutdown.quiet_period) is not None:
                    break

        if self._pty.poll() is None:
            logger.warning("pid %d did not exit gracefully; terminating", self._pty.pid)
            self._pty.terminate(self.config.shutdown.hard_timeout)

        code = self._pty.exit_code
        self._pty.close()
        logger.info("Session shut down (code=%s)", code)
        return code

    def _drain_until_exit(self, policy: SettlePolicy) -> None:
        """Read goodbye output until exit or quiet so the child never blocks on a full pty."""
        try:
            self._reader.read_until_quiet(policy, allow_empty=True)
        except (PtyIOError, ProcessExitedError) as e:
            logger.debug("Stopped draining shutdown output: %s", e)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def pid(self) -> int:
        return self._pty.pid

    @property
    def alive(self) -> bool:
        return not self._pty.closed and self._pty.alive

    @property
    def healthy(self) -> bool:
        """Alive and no I/O fault observed."""
        return self._faulted is None and self.alive

    @property
    def exit_code(self) -> int | None:
        return self._pty.exit_code

    def __enter__(self) -> SessionDriver:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.quit()
