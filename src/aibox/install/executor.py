"""
Command executor for provisioning steps.

Every host mutation aibox performs goes through ``CommandExecutor.run``:
external processes (``Command``) and the small set of file operations the
stages need (``WriteFile``, ``AppendLine``, ``MakeDirs``). This is the only
place the run ``Mode`` is consulted:

- live: processes are spawned and block until completion; a nonzero exit is
  returned in the outcome, failure to launch raises ``ExecutionError``.
- dry-run: nothing is spawned and nothing is written. Mutating operations
  are announced on the transcript and come back as simulated successes.

Usage::

    from aibox.install.executor import Command, CommandExecutor, Mode

    executor = CommandExecutor(Mode.DRY_RUN, transcript=Transcript())
    outcome = executor.run(Command(("brew", "install", "jq")))
    assert outcome.simulated
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Mapping, Optional, Sequence, Tuple

from aibox.errors import ExecutionError

if TYPE_CHECKING:
    from aibox.console import Transcript

__all__ = [
    "Mode",
    "Operation",
    "Command",
    "WriteFile",
    "AppendLine",
    "MakeDirs",
    "CommandOutcome",
    "CommandExecutor",
]

logger = logging.getLogger(__name__)


class Mode(str, Enum):
    """Run mode, fixed for the lifetime of one pipeline run."""
    LIVE = "live"
    DRY_RUN = "dry-run"


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


class Operation:
    """Something the executor can run or simulate."""

    read_only: bool = False
    check: bool = True

    def display(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class Command(Operation):
    """
    An external process invocation.

    Attributes:
        argv: Program and arguments; never interpreted by a shell here
        env: Extra environment variables for the child
        timeout: Seconds before the process is considered hung
        read_only: Query that does not mutate the host (probes)
        interactive: Inherit the terminal instead of capturing output
        check: A nonzero exit fails the enclosing action
    """

    argv: Tuple[str, ...]
    env: Mapping[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None
    read_only: bool = False
    interactive: bool = False
    check: bool = True

    def __post_init__(self) -> None:
        if not self.argv:
            raise ValueError("Command argv must not be empty")
        object.__setattr__(self, "argv", tuple(self.argv))

    def display(self) -> str:
        return shlex.join(self.argv)


@dataclass(frozen=True)
class WriteFile(Operation):
    """Write ``content`` to ``path``, replacing any previous content."""

    path: Path
    content: str
    file_mode: int = 0o644

    def display(self) -> str:
        return f"write {self.path}"

    def perform(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(self.content, encoding="utf-8")
        os.chmod(self.path, self.file_mode)


@dataclass(frozen=True)
class AppendLine(Operation):
    """Append ``line`` to ``path`` unless the file already contains it."""

    path: Path
    line: str

    def display(self) -> str:
        return f"append {self.line!r} to {self.path}"

    def perform(self) -> None:
        existing = ""
        if self.path.exists():
            existing = self.path.read_text(encoding="utf-8", errors="surrogateescape")
        if self.line in existing.splitlines():
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            if existing and not existing.endswith("\n"):
                f.write("\n")
            f.write(self.line + "\n")


@dataclass(frozen=True)
class MakeDirs(Operation):
    """Create directories (and parents); existing ones are left alone."""

    paths: Tuple[Path, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "paths", tuple(Path(p) for p in self.paths))

    def display(self) -> str:
        return "mkdir -p " + " ".join(shlex.quote(str(p)) for p in self.paths)

    def perform(self) -> None:
        for path in self.paths:
            path.mkdir(parents=True, exist_ok=True)


@dataclass(frozen=True)
class CommandOutcome:
    """Result of running (or simulating) one operation."""

    operation: Operation
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    simulated: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class CommandExecutor:
    """
    Runs or simulates operations according to a fixed mode.

    Args:
        mode: Live or dry-run; cannot be changed after construction
        transcript: Where dry-run notices are written
        extra_path: Directories prepended to PATH for children and lookups
        default_timeout: Timeout for commands that do not set one
        probe_timeout: Timeout for read-only commands that do not set one
        run_queries_in_dry_run: Execute read-only commands even in dry-run
    """

    def __init__(
        self,
        mode: Mode,
        transcript: Optional["Transcript"] = None,
        extra_path: Sequence[Path] = (),
        default_timeout: Optional[float] = None,
        probe_timeout: Optional[float] = None,
        run_queries_in_dry_run: bool = False,
    ):
        self._mode = Mode(mode)
        self.transcript = transcript
        self.extra_path = tuple(Path(p) for p in extra_path)
        self.default_timeout = default_timeout
        self.probe_timeout = probe_timeout
        self.run_queries_in_dry_run = run_queries_in_dry_run

    @property
    def mode(self) -> Mode:
        return self._mode

    def search_path(self) -> str:
        """PATH used for children and executable lookups."""
        current = os.environ.get("PATH", os.defpath)
        parts = [str(p) for p in self.extra_path]
        parts.extend(p for p in current.split(os.pathsep) if p and p not in parts)
        return os.pathsep.join(parts)

    def child_env(self, extra: Mapping[str, str]) -> dict:
        env = dict(os.environ)
        env["PATH"] = self.search_path()
        env.update(extra)
        return env

    def run(self, operation: Operation) -> CommandOutcome:
        """
        Run an operation, or simulate it in dry-run mode.

        Raises:
            ExecutionError: The operation could not be started at all.
        """
        if self._mode is Mode.DRY_RUN and not (
            operation.read_only and self.run_queries_in_dry_run
        ):
            return self._simulate(operation)

        if isinstance(operation, Command):
            return self._spawn(operation)

        logger.debug("Applying: %s", operation.display())
        try:
            operation.perform()  # type: ignore[attr-defined]
        except (OSError, ValueError) as e:
            raise ExecutionError(f"{operation.display()}: {e}") from e
        return CommandOutcome(operation=operation, exit_code=0)

    def _simulate(self, operation: Operation) -> CommandOutcome:
        if operation.read_only:
            logger.debug("Dry-run query not executed: %s", operation.display())
        elif self.transcript is not None:
            self.transcript.dry_run(operation.display())
        else:
            logger.info("Would: %s", operation.display())
        return CommandOutcome(operation=operation, exit_code=0, simulated=True)

    def _spawn(self, command: Command) -> CommandOutcome:
        timeout = command.timeout
        if timeout is None:
            timeout = self.probe_timeout if command.read_only else self.default_timeout

        logger.debug("Running: %s", command.display())
        try:
            result = subprocess.run(
                list(command.argv),
                env=self.child_env(command.env),
                capture_output=not command.interactive,
                text=True,
                errors="replace",
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise ExecutionError(
                f"{command.display()} timed out after {timeout:g}s"
            ) from e
        except OSError as e:
            # Binary missing or not executable
            raise ExecutionError(f"Cannot run {command.argv[0]}: {e}") from e

        if result.returncode != 0:
            logger.debug(
                "Command exited %d: %s", result.returncode, command.display()
            )
        return CommandOutcome(
            operation=command,
            exit_code=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
        )
