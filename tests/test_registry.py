"""Tests for termharness.registry.SharedSessionRegistry."""

from __future__ import annotations

import threading
import time

import pytest

from termharness.errors import (
    LockPoisonedError,
    PtyIOError,
    RegistryMisuseError,
    SpawnError,
)
from termharness.registry import RegistryState, SharedSessionRegistry


class FakeDriver:
    """Stands in for SessionDriver; counts shutdowns."""

    def __init__(self) -> None:
        self.quit_calls = 0
        self.healthy = True
        self.exit_code: int | None = None

    def quit(self) -> int:
        self.quit_calls += 1
        self.healthy = False
        self.exit_code = 0
        return 0


class CountingFactory:
    def __init__(self, delay: float = 0.0, error: BaseException | None = None) -> None:
        self.calls = 0
        self.created: list[FakeDriver] = []
        self._delay = delay
        self._error = error

    def __call__(self) -> FakeDriver:
        self.calls += 1
        if self._delay:
            time.sleep(self._delay)
        if self._error is not None:
            raise self._error
        driver = FakeDriver()
        self.created.append(driver)
        return driver


def _run_threads(target, count: int) -> list[BaseException]:
    errors: list[BaseException] = []
    barrier = threading.Barrier(count)

    def run() -> None:
        barrier.wait()
        try:
            target()
        except BaseException as e:  # collected and asserted by the caller
            errors.append(e)

    threads = [threading.Thread(target=run) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)
    return errors


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_invalid_expected_total(self) -> None:
        with pytest.raises(RegistryMisuseError):
            SharedSessionRegistry(CountingFactory(), expected_total=0)

    def test_lazy(self) -> None:
        factory = CountingFactory()
        registry = SharedSessionRegistry(factory, expected_total=2)
        assert factory.calls == 0
        assert registry.state == RegistryState.UNINITIALIZED
        with registry.acquire() as driver:
            assert driver is factory.created[0]
        assert registry.state == RegistryState.READY

    def test_same_instance_on_every_acquire(self) -> None:
        factory = CountingFactory()
        registry = SharedSessionRegistry(factory, expected_total=2)
        with registry.acquire() as first:
            pass
        with registry.acquire() as second:
            pass
        assert first is second
        assert factory.calls == 1

    def test_concurrent_first_acquire_constructs_once(self) -> None:
        factory = CountingFactory(delay=0.1)
        registry = SharedSessionRegistry(factory, expected_total=1)
        seen: list[FakeDriver] = []

        def use() -> None:
            with registry.acquire() as driver:
                seen.append(driver)

        assert _run_threads(use, 8) == []
        assert factory.calls == 1
        assert len(seen) == 8
        assert all(d is seen[0] for d in seen)

    def test_construction_failure_is_sticky(self) -> None:
        error = SpawnError("no such program")
        factory = CountingFactory(error=error)
        registry = SharedSessionRegistry(factory, expected_total=3)
        for _ in range(3):
            with pytest.raises(SpawnError) as excinfo:
                with registry.acquire():
                    pass
            assert excinfo.value is error
        assert factory.calls == 1


# ---------------------------------------------------------------------------
# Mutual exclusion and poisoning
# ---------------------------------------------------------------------------


class TestExclusiveAccess:
    def test_one_holder_at_a_time(self) -> None:
        registry = SharedSessionRegistry(CountingFactory(), expected_total=1)
        holders = 0
        max_holders = 0
        guard = threading.Lock()

        def use() -> None:
            nonlocal holders, max_holders
            for _ in range(5):
                with registry.acquire():
                    with guard:
                        holders += 1
                        max_holders = max(max_holders, holders)
                    time.sleep(0.002)
                    with guard:
                        holders -= 1

        assert _run_threads(use, 6) == []
        assert max_holders == 1

    def test_failed_assertion_does_not_poison(self) -> None:
        registry = SharedSessionRegistry(CountingFactory(), expected_total=2)
        with pytest.raises(AssertionError):
            with registry.acquire():
                raise AssertionError("test failed")
        with registry.acquire() as driver:
            assert driver.healthy

    def test_unhealthy_failure_poisons(self) -> None:
        registry = SharedSessionRegistry(CountingFactory(), expected_total=2)
        error = PtyIOError("pty hung up")
        with pytest.raises(PtyIOError):
            with registry.acquire() as driver:
                driver.healthy = False
                raise error
        with pytest.raises(LockPoisonedError) as excinfo:
            with registry.acquire():
                pass
        assert excinfo.value.__cause__ is error

    def test_dead_driver_rejected_on_acquire(self) -> None:
        registry = SharedSessionRegistry(CountingFactory(), expected_total=2)
        with registry.acquire() as driver:
            driver.healthy = False
            driver.exit_code = 3
        with pytest.raises(LockPoisonedError, match="exit code 3"):
            with registry.acquire():
                pass


# ---------------------------------------------------------------------------
# Teardown
# ---------------------------------------------------------------------------


class TestTeardown:
    def test_last_completion_tears_down(self) -> None:
        factory = CountingFactory()
        registry = SharedSessionRegistry(factory, expected_total=3)
        with registry.acquire():
            pass
        registry.mark_test_complete()
        registry.mark_test_complete()
        assert factory.created[0].quit_calls == 0
        assert registry.state == RegistryState.READY
        registry.mark_test_complete()
        assert factory.created[0].quit_calls == 1
        assert registry.state == RegistryState.TORN_DOWN
        assert registry.completed == 3

    @pytest.mark.parametrize("round_", range(10))
    def test_concurrent_completions_tear_down_exactly_once(self, round_: int) -> None:
        total = 16
        factory = CountingFactory()
        registry = SharedSessionRegistry(factory, expected_total=total)
        with registry.acquire():
            pass
        assert _run_threads(registry.mark_test_complete, total) == []
        assert factory.created[0].quit_calls == 1
        assert registry.state == RegistryState.TORN_DOWN

    def test_concurrent_use_and_complete(self) -> None:
        total = 12
        factory = CountingFactory()
        registry = SharedSessionRegistry(factory, expected_total=total)

        def one_test() -> None:
            with registry.acquire(complete_on_exit=True):
                time.sleep(0.001)

        assert _run_threads(one_test, total) == []
        assert factory.calls == 1
        assert factory.created[0].quit_calls == 1

    def test_complete_on_exit_counts_failures(self) -> None:
        factory = CountingFactory()
        registry = SharedSessionRegistry(factory, expected_total=2)
        with pytest.raises(AssertionError):
            with registry.acquire(complete_on_exit=True):
                raise AssertionError("boom")
        with registry.acquire(complete_on_exit=True):
            pass
        assert factory.created[0].quit_calls == 1
        assert registry.state == RegistryState.TORN_DOWN

    def test_last_completer_inside_its_own_acquire(self) -> None:
        factory = CountingFactory()
        registry = SharedSessionRegistry(factory, expected_total=1)
        with registry.acquire():
            registry.mark_test_complete()
        assert factory.created[0].quit_calls == 1

    def test_close_while_last_completer_is_inside_acquire(self) -> None:
        factory = CountingFactory()
        registry = SharedSessionRegistry(factory, expected_total=1)
        entered = threading.Event()

        def last_test() -> None:
            with registry.acquire():
                entered.set()
                time.sleep(0.3)
                registry.mark_test_complete()

        holder = threading.Thread(target=last_test, daemon=True)
        closer = threading.Thread(target=registry.close, daemon=True)
        holder.start()
        assert entered.wait(5)
        closer.start()
        holder.join(5)
        closer.join(5)
        assert not holder.is_alive()
        assert not closer.is_alive()
        assert factory.created[0].quit_calls == 1
        assert registry.state == RegistryState.TORN_DOWN

    def test_close_waits_for_current_holder(self) -> None:
        factory = CountingFactory()
        registry = SharedSessionRegistry(factory, expected_total=3)
        entered = threading.Event()
        events: list[str] = []

        def holder() -> None:
            with registry.acquire() as driver:
                entered.set()
                time.sleep(0.3)
                events.append(f"released quit_calls={driver.quit_calls}")

        def closer() -> None:
            registry.close()
            events.append("closed")

        threads = [threading.Thread(target=holder, daemon=True)]
        threads[0].start()
        assert entered.wait(5)
        threads.append(threading.Thread(target=closer, daemon=True))
        threads[1].start()
        for t in threads:
            t.join(5)
        assert not any(t.is_alive() for t in threads)
        assert events == ["released quit_calls=0", "closed"]
        assert factory.created[0].quit_calls == 1

    def test_failed_acquire_keeps_its_own_error(self) -> None:
        registry = SharedSessionRegistry(CountingFactory(), expected_total=1)
        with registry.acquire(complete_on_exit=True):
            pass
        with pytest.raises(RegistryMisuseError, match="torn down"):
            with registry.acquire(complete_on_exit=True):
                pass
        assert registry.completed == 1

    def test_acquire_after_teardown(self) -> None:
        registry = SharedSessionRegistry(CountingFactory(), expected_total=1)
        with registry.acquire():
            pass
        registry.mark_test_complete()
        with pytest.raises(RegistryMisuseError, match="torn down"):
            with registry.acquire():
                pass

    def test_too_many_completions(self) -> None:
        registry = SharedSessionRegistry(CountingFactory(), expected_total=1)
        registry.mark_test_complete()
        with pytest.raises(RegistryMisuseError, match="More completions"):
            registry.mark_test_complete()
        assert registry.completed == 1

    def test_completion_without_driver(self) -> None:
        factory = CountingFactory()
        registry = SharedSessionRegistry(factory, expected_total=1)
        registry.mark_test_complete()
        assert registry.state == RegistryState.TORN_DOWN
        assert factory.calls == 0

    def test_close_is_idempotent(self) -> None:
        factory = CountingFactory()
        registry = SharedSessionRegistry(factory, expected_total=5)
        with registry.acquire():
            pass
        registry.close()
        registry.close()
        assert factory.created[0].quit_calls == 1
        assert registry.state == RegistryState.TORN_DOWN

    def test_close_then_count_reaching_total(self) -> None:
        factory = CountingFactory()
        registry = SharedSessionRegistry(factory, expected_total=1)
        with registry.acquire():
            pass
        registry.close()
        registry.mark_test_complete()
        assert factory.created[0].quit_calls == 1

    def test_close_tears_down_poisoned_session(self) -> None:
        factory = CountingFactory()
        registry = SharedSessionRegistry(factory, expected_total=2)
        with pytest.raises(PtyIOError):
            with registry.acquire() as driver:
                driver.healthy = False
                raise PtyIOError("gone")
        registry.close()
        assert factory.created[0].quit_calls == 1


# ---------------------------------------------------------------------------
# validate_expected_total
# ---------------------------------------------------------------------------


class TestValidateExpectedTotal:
    def test_match(self) -> None:
        SharedSessionRegistry(CountingFactory(), expected_total=4).validate_expected_total(4)

    def test_too_high(self) -> None:
        registry = SharedSessionRegistry(CountingFactory(), expected_total=5)
        with pytest.raises(RegistryMisuseError, match="never"):
            registry.validate_expected_total(4)

    def test_too_low(self) -> None:
        registry = SharedSessionRegistry(CountingFactory(), expected_total=3)
        with pytest.raises(RegistryMisuseError, match="too early"):
            registry.validate_expected_total(4)
