"""Shared session registry — one driver, many tests, exactly-once teardown.

Starting the target program is slow, so a whole suite shares a single
SessionDriver. The registry builds it lazily on first use, serializes every
interaction behind one lock, and shuts it down exactly once: either when the
last expected consumer reports completion, or when close() is called at the
end of the run, whichever comes first.
"""

from __future__ import annotations

import enum
import logging
import threading
from contextlib import contextmanager
from typing import Callable, Iterator

from termharness.driver import SessionDriver
from termharness.errors import LockPoisonedError, RegistryMisuseError

logger = logging.getLogger(__name__)


class RegistryState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    TORN_DOWN = "torn_down"


class SharedSessionRegistry:
    """Lazily constructed, lock-guarded, count-torn-down shared session.

    Locks, always taken in this order when nested:

    * ``_driver_lock`` (re-entrant) serializes use of the driver,
    * ``_init_lock`` guards construction and state,
    * ``_count_lock`` makes increment-and-compare of the completion count
      indivisible.

    ``_teardown_lock`` only guards the teardown once-flag and is never held
    while waiting for another lock.
    """

    def __init__(
        self,
        factory: Callable[[], SessionDriver],
        expected_total: int,
    ) -> None:
        if expected_total < 1:
            raise RegistryMisuseError(f"expected_total must be at least 1, got {expected_total}")
        self._factory = factory
        self._expected_total = expected_total

        self._init_lock = threading.Lock()
        self._driver_lock = threading.RLock()
        self._count_lock = threading.Lock()
        self._teardown_lock = threading.Lock()

        self._state = RegistryState.UNINITIALIZED
        self._driver: SessionDriver | None = None
        self._init_error: BaseException | None = None
        self._poison: BaseException | None = None
        self._completed = 0
        self._teardown_started = False

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    def _ensure_driver(self) -> SessionDriver:
        with self._init_lock:
            if self._state == RegistryState.TORN_DOWN:
                raise RegistryMisuseError("Shared session already torn down")
            if self._init_error is not None:
                raise self._init_error
            if self._driver is None:
                logger.info("Starting shared session")
                try:
                    self._driver = self._factory()
                except BaseException as e:
                    self._init_error = e
                    logger.error("Shared session failed to start: %s", e)
                    raise
                self._state = RegistryState.READY
            return self._driver

    @contextmanager
    def acquire(self, complete_on_exit: bool = False) -> Iterator[SessionDriver]:
        """Yield the shared driver with exclusive access.

        With ``complete_on_exit`` the caller's completion is signaled however
        the block exits, so a failing test still counts toward teardown.
        """
        try:
            driver = self._ensure_driver()
            with self._driver_lock:
                if self._state == RegistryState.TORN_DOWN:
                    raise RegistryMisuseError("Shared session already torn down")
                if self._poison is not None:
                    raise LockPoisonedError(
                        f"Shared session unusable after earlier failure: {self._poison}"
                    ) from self._poison
                if not driver.healthy:
                    raise LockPoisonedError(
                        f"Shared session process is gone (exit code {driver.exit_code})"
                    )
                try:
                    yield driver
                except BaseException as e:
                    if not driver.healthy:
                        self._poison = e
                        logger.error("Shared session poisoned by %s: %s", type(e).__name__, e)
                    raise
        except BaseException:
            if complete_on_exit:
                self._complete_after_failure()
            raise
        if complete_on_exit:
            self.mark_test_complete()

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def mark_test_complete(self) -> None:
        """Record one finished consumer; the last one tears the session down."""
        with self._count_lock:
            if self._completed >= self._expected_total:
                raise RegistryMisuseError(
                    f"More completions than expected_total={self._expected_total}"
                )
            self._completed += 1
            is_last = self._completed == self._expected_total
            logger.debug("Completed %d/%d", self._completed, self._expected_total)
        if is_last:
            self._teardown("all expected tests completed")

    def _complete_after_failure(self) -> None:
        # The caller's own exception is what the test should see.
        try:
            self.mark_test_complete()
        except RegistryMisuseError as e:
            logger.warning("Completion not recorded: %s", e)

    def close(self) -> None:
        """End-of-run teardown. Idempotent and valid from any state."""
        self._teardown("registry closed")

    def _teardown(self, reason: str) -> None:
        with self._teardown_lock:
            if self._teardown_started:
                return
            self._teardown_started = True
        # Waits for the current holder to leave, if any.
        with self._driver_lock:
            with self._init_lock:
                driver = self._driver
                self._driver = None
                self._state = RegistryState.TORN_DOWN
            if driver is not None:
                logger.info("Tearing down shared session: %s", reason)
                driver.quit()

    # ------------------------------------------------------------------
    # Configuration checks and introspection
    # ------------------------------------------------------------------

    def validate_expected_total(self, actual: int) -> None:
        """Fail fast when the configured total doesn't match real consumers."""
        if actual != self._expected_total:
            raise RegistryMisuseError(
                f"expected_total={self._expected_total} but {actual} tests use the "
                "shared session; teardown would fire "
                + ("never" if actual < self._expected_total else "too early")
            )

    @property
    def state(self) -> RegistryState:
        return self._state

    @property
    def completed(self) -> int:
        with self._count_lock:
            return self._completed

    @property
    def expected_total(self) -> int:
        return self._expected_total
