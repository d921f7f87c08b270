"""Configuration — Pydantic models for harness settings."""

from __future__ import annotations

import json
import os
import shlex
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator


class TerminalSize(BaseModel):
    """Window size reported to the child through the pty."""

    rows: int = Field(default=40, ge=1)
    cols: int = Field(default=120, ge=1)


class SettlePolicy(BaseModel):
    """Idle-time thresholds for one interaction scale.

    A response is considered complete once no bytes arrived for
    ``quiet_period`` seconds. ``hard_timeout`` bounds the whole wait.
    """

    quiet_period: float = Field(default=1.0, gt=0)
    hard_timeout: float = Field(default=30.0, gt=0)
    poll_interval: float = Field(default=0.05, gt=0)


def _startup_policy() -> SettlePolicy:
    return SettlePolicy(quiet_period=1.0, hard_timeout=20.0)


def _command_policy() -> SettlePolicy:
    # Commands may hit a slow backend; wait longer before calling it done.
    return SettlePolicy(quiet_period=2.0, hard_timeout=60.0)


def _key_policy() -> SettlePolicy:
    return SettlePolicy(quiet_period=0.5, hard_timeout=10.0)


def _shutdown_policy() -> SettlePolicy:
    return SettlePolicy(quiet_period=0.5, hard_timeout=5.0)


class HarnessConfig(BaseModel):
    """Top-level harness configuration."""

    program: str = Field(default="", description="Executable to drive")
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(
        default_factory=dict, description="Extra environment for the child"
    )
    cwd: str | None = Field(default=None)
    term: str = Field(default="xterm-256color", description="TERM for the child")
    size: TerminalSize = Field(default_factory=TerminalSize)
    line_ending: str = Field(
        default="\n", description="Appended to every execute_command() text"
    )
    quit_commands: list[str] = Field(
        default_factory=lambda: ["/quit"],
        description="Graceful-exit commands, tried in order",
    )
    startup: SettlePolicy = Field(default_factory=_startup_policy)
    command: SettlePolicy = Field(default_factory=_command_policy)
    key: SettlePolicy = Field(default_factory=_key_policy)
    shutdown: SettlePolicy = Field(default_factory=_shutdown_policy)
    expected_tests: int | None = Field(
        default=None,
        description="Consumers of the shared session; None lets the runner count them",
    )

    @field_validator("expected_tests")
    @classmethod
    def _positive_total(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("expected_tests must be at least 1")
        return value

    @classmethod
    def load(cls, config_path: str | None = None) -> HarnessConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            TERMHARNESS_PROGRAM           - Executable to drive
            TERMHARNESS_ARGS              - Arguments, split like a shell would
            TERMHARNESS_CWD               - Working directory for the child
            TERMHARNESS_TERM              - TERM value for the child
            TERMHARNESS_COLS              - Terminal width
            TERMHARNESS_ROWS              - Terminal height
            TERMHARNESS_COMMAND_QUIET     - Idle seconds that end a command response
            TERMHARNESS_COMMAND_TIMEOUT   - Hard bound for a command response
            TERMHARNESS_KEY_QUIET         - Idle seconds that end a key response
            TERMHARNESS_KEY_TIMEOUT       - Hard bound for a key response
            TERMHARNESS_STARTUP_TIMEOUT   - Hard bound for the startup banner
            TERMHARNESS_EXPECTED_TESTS    - Number of tests sharing one session
        """
        load_dotenv(override=True)

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        env_program = os.environ.get("TERMHARNESS_PROGRAM")
        if env_program:
            config_data["program"] = env_program

        env_args = os.environ.get("TERMHARNESS_ARGS")
        if env_args:
            config_data["args"] = shlex.split(env_args)

        env_cwd = os.environ.get("TERMHARNESS_CWD")
        if env_cwd:
            config_data["cwd"] = env_cwd

        env_term = os.environ.get("TERMHARNESS_TERM")
        if env_term:
            config_data["term"] = env_term

        size = config_data.get("size", {})
        env_cols = os.environ.get("TERMHARNESS_COLS")
        if env_cols:
            size["cols"] = int(env_cols)
        env_rows = os.environ.get("TERMHARNESS_ROWS")
        if env_rows:
            size["rows"] = int(env_rows)
        if size:
            config_data["size"] = size

        _override_policy(config_data, "command", "quiet_period", "TERMHARNESS_COMMAND_QUIET")
        _override_policy(config_data, "command", "hard_timeout", "TERMHARNESS_COMMAND_TIMEOUT")
        _override_policy(config_data, "key", "quiet_period", "TERMHARNESS_KEY_QUIET")
        _override_policy(config_data, "key", "hard_timeout", "TERMHARNESS_KEY_TIMEOUT")
        _override_policy(config_data, "startup", "hard_timeout", "TERMHARNESS_STARTUP_TIMEOUT")

        env_expected = os.environ.get("TERMHARNESS_EXPECTED_TESTS")
        if env_expected:
            config_data["expected_tests"] = int(env_expected)

        return cls.model_validate(config_data)


def _override_policy(
    config_data: dict[str, Any], scale: str, key: str, env_name: str
) -> None:
    value = os.environ.get(env_name)
    if not value:
        return
    policy = config_data.get(scale)
    if policy is None:
        # Start from the scale's own defaults, not the generic SettlePolicy ones.
        policy = HarnessConfig.model_fields[scale].default_factory().model_dump()  # type: ignore[misc]
    policy[key] = float(value)
    config_data[scale] = policy


__all__ = ["HarnessConfig", "SettlePolicy", "TerminalSize"]
