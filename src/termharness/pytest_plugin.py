"""pytest integration — one shared session per test run.

Tests that request the ``chat_session`` fixture share a single running
program. The plugin counts those tests after collection (and after ``-k``/
``-m`` deselection), so teardown fires after the last one; ``close()`` at the
end of the run covers anything the count did not.

ini options::

    [pytest]
    termharness_program = q
    termharness_args = chat --trust-all-tools
    termharness_config = harness.json
    termharness_expected_tests = 8
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Iterator

import pytest

from termharness.config import HarnessConfig
from termharness.driver import SessionDriver
from termharness.errors import RegistryMisuseError
from termharness.registry import SharedSessionRegistry

logger = logging.getLogger(__name__)

SESSION_FIXTURE = "chat_session"

_consumers_key = pytest.StashKey[int]()
_config_key = pytest.StashKey[HarnessConfig]()


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("termharness", "shared interactive session")
    group.addoption(
        "--termharness-program",
        dest="termharness_program",
        default=None,
        help="Program to drive in the shared session.",
    )
    parser.addini("termharness_program", "Program to drive in the shared session.", default="")
    parser.addini("termharness_args", "Arguments for the program.", type="args", default=[])
    parser.addini("termharness_config", "Path to a JSON harness config.", default="")
    parser.addini(
        "termharness_expected_tests",
        "Number of tests expected to use the shared session.",
        default="",
    )


def count_session_consumers(items: Iterable[Any]) -> int:
    """Number of collected items that request the shared session fixture."""
    return sum(1 for item in items if SESSION_FIXTURE in getattr(item, "fixturenames", ()))


def load_harness_config(config: pytest.Config) -> HarnessConfig:
    """Build the HarnessConfig for this run: file/env first, then pytest options."""
    if _config_key in config.stash:
        return config.stash[_config_key]

    harness = HarnessConfig.load(config.getini("termharness_config") or None)
    updates: dict[str, Any] = {}
    program = config.getoption("termharness_program") or config.getini("termharness_program")
    if program:
        updates["program"] = program
    args = config.getini("termharness_args")
    if args:
        updates["args"] = list(args)
    expected = config.getini("termharness_expected_tests")
    if expected:
        updates["expected_tests"] = int(expected)
    if updates:
        harness = HarnessConfig.model_validate({**harness.model_dump(), **updates})

    config.stash[_config_key] = harness
    return harness


@pytest.hookimpl(trylast=True)
def pytest_collection_modifyitems(
    session: pytest.Session, config: pytest.Config, items: list[pytest.Item]
) -> None:
    consumers = count_session_consumers(items)
    config.stash[_consumers_key] = consumers
    if not consumers:
        return
    expected = load_harness_config(config).expected_tests
    if expected is not None and expected != consumers:
        raise pytest.UsageError(
            f"termharness_expected_tests={expected} but {consumers} collected tests "
            f"use {SESSION_FIXTURE}"
        )
    logger.debug("%d tests share the termharness session", consumers)


@pytest.fixture(scope="session")
def harness_config(pytestconfig: pytest.Config) -> HarnessConfig:
    return load_harness_config(pytestconfig)


@pytest.fixture(scope="session")
def session_registry(
    pytestconfig: pytest.Config, harness_config: HarnessConfig
) -> Iterator[SharedSessionRegistry]:
    if not harness_config.program:
        pytest.skip("no termharness program configured")

    consumers = pytestconfig.stash.get(_consumers_key, 0)
    registry = SharedSessionRegistry(
        lambda: SessionDriver(harness_config),
        expected_total=max(consumers, 1),
    )
    if harness_config.expected_tests is not None and consumers:
        try:
            registry.validate_expected_total(harness_config.expected_tests)
        except RegistryMisuseError as e:
            pytest.fail(str(e), pytrace=False)
    try:
        yield registry
    finally:
        registry.close()


@pytest.fixture
def chat_session(session_registry: SharedSessionRegistry) -> Iterator[SessionDriver]:
    """The shared driver, held exclusively for the duration of one test."""
    with session_registry.acquire(complete_on_exit=True) as driver:
        yield driver
