"""Shared fixtures: a fast-settling config pointed at the fake chat program."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from termharness.config import HarnessConfig, SettlePolicy

pytest_plugins = ["pytester"]

FAKE_CHAT = Path(__file__).parent / "fixtures" / "fake_chat.py"


def make_fake_chat_config(*flags: str, **overrides: object) -> HarnessConfig:
    """Config for driving fake_chat.py with short settle windows."""
    data: dict[str, object] = {
        "program": sys.executable,
        "args": [str(FAKE_CHAT), *flags],
        "startup": SettlePolicy(quiet_period=0.3, hard_timeout=10.0),
        "command": SettlePolicy(quiet_period=0.3, hard_timeout=10.0),
        "key": SettlePolicy(quiet_period=0.2, hard_timeout=5.0),
        "shutdown": SettlePolicy(quiet_period=0.2, hard_timeout=1.0),
    }
    data.update(overrides)
    return HarnessConfig.model_validate(data)


@pytest.fixture
def fake_chat_config() -> HarnessConfig:
    return make_fake_chat_config()


@pytest.fixture(scope="session")
def harness_config() -> HarnessConfig:
    """Point the shared-session plugin fixtures at the fake chat program."""
    return make_fake_chat_config()


@pytest.fixture
def make_config():
    """Factory fixture: ``make_config("--ignore-quit", line_ending="\\r")``."""
    return make_fake_chat_config
