"""
Pytest configuration and fixtures for aibox tests.
"""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path
from typing import Callable, Dict, Generator, List, Tuple, Union

import pytest

from aibox.config import AiboxConfig, reset_config
from aibox.console import Transcript
from aibox.errors import ExecutionError
from aibox.install.executor import Command, CommandExecutor, CommandOutcome, Mode, Operation


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def reset_aibox_state() -> Generator[None, None, None]:
    """Drop cached config and any AIBOX_* variables from the outer shell."""
    original = {k: v for k, v in os.environ.items() if k.startswith("AIBOX_")}
    for key in original:
        del os.environ[key]
    reset_config()

    loggers = [logging.getLogger("aibox"), logging.getLogger("aibox.steps")]
    saved = [(lg, list(lg.handlers), lg.level) for lg in loggers]

    yield

    for lg, handlers, level in saved:
        lg.handlers[:] = handlers
        lg.setLevel(level)
    reset_config()
    for key in [k for k in os.environ if k.startswith("AIBOX_")]:
        del os.environ[key]
    os.environ.update(original)


@pytest.fixture
def bin_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A directory that is the whole PATH; tools exist only once installed."""
    path = tmp_path / "bin"
    path.mkdir()
    monkeypatch.setenv("PATH", str(path))
    return path


@pytest.fixture
def install_tool(bin_dir: Path) -> Callable[[str], Path]:
    """Create an executable stub named ``name`` in ``bin_dir``."""

    def _install(name: str) -> Path:
        tool = bin_dir / name
        tool.write_text("#!/bin/sh\nexit 0\n")
        tool.chmod(tool.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return tool

    return _install


@pytest.fixture
def workstation_config(tmp_path: Path, bin_dir: Path) -> AiboxConfig:
    """Configuration whose every host path lives under tmp_path."""
    home = tmp_path / "home"
    return AiboxConfig(
        brew_prefix=str(tmp_path / "homebrew"),
        shell_profile=str(home / ".zprofile"),
        launch_agents_dir=str(home / "Library" / "LaunchAgents"),
        webui_data_dir=str(home / "docker" / "open-webui"),
        workspace_dirs=[str(home / "dev"), str(home / "data" / "inbox")],
        xcode_wait_attempts=1,
        ready_attempts=1,
        ready_interval_seconds=0,
    )


# ============================================================================
# Executor Fixtures
# ============================================================================

Response = Union[
    Tuple[int, str, str],
    Exception,
    Callable[[Command], Tuple[int, str, str]],
]


class ScriptedExecutor(CommandExecutor):
    """
    Executor whose processes are scripted instead of spawned.

    ``responses`` maps an argv tuple to ``(exit_code, stdout, stderr)``, an
    exception to raise, or a callable producing either from the command.
    A list of responses is consumed in order, the last one repeating.
    Commands without a response go to ``fallback``; without one they fail to
    launch, like a missing binary. Every spawned command is recorded in
    ``spawned``, every mutating operation run or simulated in ``applied``.
    """

    def __init__(self, mode: Mode = Mode.LIVE, responses=None, fallback=None, **kwargs):
        super().__init__(mode, **kwargs)
        self.responses: Dict[Tuple[str, ...], object] = dict(responses or {})
        self.fallback = fallback
        self.spawned: List[Command] = []
        self.applied: List[Operation] = []

    def respond(self, argv, exit_code: int = 0, stdout: str = "", stderr: str = "") -> None:
        self.responses[tuple(argv)] = (exit_code, stdout, stderr)

    @property
    def spawned_argv(self) -> List[Tuple[str, ...]]:
        return [c.argv for c in self.spawned]

    @property
    def mutations(self) -> List[Tuple[str, ...]]:
        return [c.argv for c in self.spawned if not c.read_only]

    def run(self, operation: Operation) -> CommandOutcome:
        outcome = super().run(operation)
        if not operation.read_only:
            self.applied.append(operation)
        return outcome

    def _spawn(self, command: Command) -> CommandOutcome:
        self.spawned.append(command)
        response = self.responses.get(command.argv, self.fallback)
        if isinstance(response, list):
            response = response.pop(0) if len(response) > 1 else response[0]
        if response is None:
            raise ExecutionError(f"Cannot run {command.argv[0]}: not found")
        if callable(response) and not isinstance(response, Exception):
            response = response(command)
        if isinstance(response, Exception):
            raise response
        exit_code, stdout, stderr = response
        return CommandOutcome(command, exit_code, stdout, stderr)


@pytest.fixture
def transcript_output():
    from io import StringIO
    return StringIO()


@pytest.fixture
def transcript(transcript_output) -> Transcript:
    return Transcript(use_colors=False, file=transcript_output)


@pytest.fixture
def live_executor(transcript: Transcript) -> ScriptedExecutor:
    return ScriptedExecutor(Mode.LIVE, transcript=transcript)


@pytest.fixture
def dry_executor(transcript: Transcript) -> ScriptedExecutor:
    return ScriptedExecutor(Mode.DRY_RUN, transcript=transcript)
