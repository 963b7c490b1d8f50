"""
Existence probes: has a provisioning step already been done?

Each probe answers one question about the host and never mutates it.
Process-based probes issue read-only commands through the executor; in a
dry run those come back simulated, which a probe cannot interpret, so the
probe reports "not satisfied". A check that fails to run at all (the
queried tool is missing, the query times out) also means "not satisfied":
that is the normal state of a fresh machine, not an error.

Usage::

    from aibox.install.probes import BinaryOnPath, ContainerState

    BinaryOnPath("brew").is_satisfied(executor)
    ContainerState("open-webui", ContainerState.RUNNING).is_satisfied(executor)
"""

from __future__ import annotations

import logging
import re
import shutil
import time
from pathlib import Path
from typing import Callable, Optional, Sequence

import httpx

from aibox.errors import ExecutionError, ProbeError
from aibox.install.executor import Command, CommandExecutor, CommandOutcome

__all__ = [
    "Probe",
    "BinaryOnPath",
    "CommandSucceeds",
    "ServiceRunning",
    "ContainerState",
    "ArtifactPresent",
    "ConfigFlagSet",
    "PathPresent",
    "FileContains",
    "HttpReady",
    "AllOf",
    "Poll",
]

logger = logging.getLogger(__name__)


class Probe:
    """Base class; subclasses implement ``_check``."""

    def is_satisfied(self, executor: CommandExecutor) -> bool:
        try:
            return bool(self._check(executor))
        except (ProbeError, ExecutionError) as e:
            logger.debug("%s: not satisfied (%s)", self.describe(), e)
            return False

    def _check(self, executor: CommandExecutor) -> bool:
        raise NotImplementedError

    def describe(self) -> str:
        return type(self).__name__

    def __repr__(self) -> str:
        return f"<{self.describe()}>"


def _query(executor: CommandExecutor, argv: Sequence[str]) -> CommandOutcome:
    """Run a read-only command; a simulated outcome carries no information."""
    outcome = executor.run(Command(tuple(argv), read_only=True))
    if outcome.simulated:
        raise ProbeError(f"{' '.join(argv)} not executed in dry-run")
    return outcome


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------


class BinaryOnPath(Probe):
    """Satisfied when ``name`` resolves on the executor's search path."""

    def __init__(self, name: str):
        self.name = name

    def _check(self, executor: CommandExecutor) -> bool:
        return shutil.which(self.name, path=executor.search_path()) is not None

    def describe(self) -> str:
        return f"BinaryOnPath({self.name})"


class CommandSucceeds(Probe):
    """Satisfied when a read-only command exits zero."""

    def __init__(self, argv: Sequence[str]):
        self.argv = tuple(argv)

    def _check(self, executor: CommandExecutor) -> bool:
        return _query(executor, self.argv).ok

    def describe(self) -> str:
        return f"CommandSucceeds({' '.join(self.argv)})"


class ServiceRunning(Probe):
    """
    Satisfied when a service reports itself running.

    Without ``pattern`` the status command's exit code decides (``colima
    status``). With ``pattern`` the command must succeed and its output must
    match the regex in multiline mode (``brew services list`` listing
    ``ollama ... started``).
    """

    def __init__(
        self,
        descriptor: str,
        status_command: Sequence[str],
        pattern: Optional[str] = None,
    ):
        self.descriptor = descriptor
        self.status_command = tuple(status_command)
        self.pattern = re.compile(pattern, re.MULTILINE) if pattern else None

    def _check(self, executor: CommandExecutor) -> bool:
        outcome = _query(executor, self.status_command)
        if not outcome.ok:
            return False
        if self.pattern is None:
            return True
        return self.pattern.search(outcome.stdout) is not None

    def describe(self) -> str:
        return f"ServiceRunning({self.descriptor})"


class ContainerState(Probe):
    """Satisfied when a container named ``name`` is in the desired state."""

    ABSENT = "absent"
    STOPPED = "stopped"
    PAUSED = "paused"
    RUNNING = "running"

    def __init__(self, name: str, desired: str = RUNNING):
        if desired not in (self.ABSENT, self.STOPPED, self.PAUSED, self.RUNNING):
            raise ValueError(f"Unknown container state: {desired}")
        self.name = name
        self.desired = desired

    @staticmethod
    def observe(executor: CommandExecutor, name: str) -> str:
        """
        Current state of container ``name``.

        Raises:
            ProbeError: The container engine could not be queried.
        """
        outcome = _query(
            executor,
            ("docker", "ps", "-a", "--filter", f"name=^{name}$", "--format", "{{.Names}}\t{{.State}}"),
        )
        if not outcome.ok:
            raise ProbeError(f"docker ps failed: {outcome.stderr.strip()}")
        for line in outcome.stdout.splitlines():
            found, _, state = line.partition("\t")
            if found.strip() == name:
                state = state.strip()
                if state in (ContainerState.RUNNING, ContainerState.PAUSED):
                    return state
                # created, exited, dead and restarting all need `docker start`
                return ContainerState.STOPPED
        return ContainerState.ABSENT

    def _check(self, executor: CommandExecutor) -> bool:
        return self.observe(executor, self.name) == self.desired

    def describe(self) -> str:
        return f"ContainerState({self.name}, {self.desired})"


class ArtifactPresent(Probe):
    """
    Satisfied when ``identifier`` appears in the first column of a listing.

    ``ollama list`` prints ``llama3.2:latest``; an identifier without a tag
    matches any tag of that name.
    """

    def __init__(self, identifier: str, list_command: Sequence[str]):
        self.identifier = identifier
        self.list_command = tuple(list_command)

    def _matches(self, entry: str) -> bool:
        if entry == self.identifier:
            return True
        return ":" not in self.identifier and entry.split(":", 1)[0] == self.identifier

    def _check(self, executor: CommandExecutor) -> bool:
        outcome = _query(executor, self.list_command)
        if not outcome.ok:
            return False
        for line in outcome.stdout.splitlines():
            fields = line.split()
            if fields and self._matches(fields[0]):
                return True
        return False

    def describe(self) -> str:
        return f"ArtifactPresent({self.identifier})"


class ConfigFlagSet(Probe):
    """Satisfied when reading ``key`` yields exactly ``expected``."""

    def __init__(self, key: str, expected: str, read_command: Sequence[str]):
        self.key = key
        self.expected = expected
        self.read_command = tuple(read_command)

    def _check(self, executor: CommandExecutor) -> bool:
        outcome = _query(executor, self.read_command)
        return outcome.ok and outcome.stdout.strip() == self.expected

    def describe(self) -> str:
        return f"ConfigFlagSet({self.key}={self.expected})"


class PathPresent(Probe):
    """Satisfied when every path exists."""

    def __init__(self, *paths: Path):
        self.paths = tuple(Path(p) for p in paths)

    def _check(self, executor: CommandExecutor) -> bool:
        return all(p.exists() for p in self.paths)

    def missing(self) -> list[Path]:
        return [p for p in self.paths if not p.exists()]

    def describe(self) -> str:
        return f"PathPresent({len(self.paths)} paths)"


class FileContains(Probe):
    """
    Satisfied when ``path`` contains ``text``.

    With ``exact`` the whole file must equal ``text``.
    """

    def __init__(self, path: Path, text: str, exact: bool = False):
        self.path = Path(path)
        self.text = text
        self.exact = exact

    def _check(self, executor: CommandExecutor) -> bool:
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return False
        except (OSError, ValueError) as e:
            # Unreadable or not UTF-8 text (a binary plist, for instance)
            raise ProbeError(f"{self.path}: {e}") from e
        return content == self.text if self.exact else self.text in content

    def describe(self) -> str:
        return f"FileContains({self.path})"


class HttpReady(Probe):
    """Satisfied when a GET on ``url`` answers with a status below 400."""

    def __init__(self, url: str, timeout: float = 5.0):
        self.url = url
        self.timeout = timeout

    def _check(self, executor: CommandExecutor) -> bool:
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.get(self.url)
        except httpx.RequestError as e:
            raise ProbeError(f"GET {self.url}: {e}") from e
        return response.status_code < 400

    def describe(self) -> str:
        return f"HttpReady({self.url})"


class AllOf(Probe):
    """Satisfied when every inner probe is; stops at the first miss."""

    def __init__(self, *probes: Probe):
        self.probes = probes

    def _check(self, executor: CommandExecutor) -> bool:
        return all(p.is_satisfied(executor) for p in self.probes)

    def describe(self) -> str:
        return "AllOf(" + ", ".join(p.describe() for p in self.probes) + ")"


class Poll(Probe):
    """
    Re-check ``probe`` up to ``attempts`` times, ``interval`` seconds apart.

    Used as a verification for things that come up asynchronously: a
    service answering after ``brew services start``, or the Xcode tools
    installer finishing in its own dialog.
    """

    def __init__(
        self,
        probe: Probe,
        attempts: int = 10,
        interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.probe = probe
        self.attempts = max(1, attempts)
        self.interval = interval
        self._sleep = sleep

    def _check(self, executor: CommandExecutor) -> bool:
        for attempt in range(1, self.attempts + 1):
            if self.probe.is_satisfied(executor):
                return True
            if attempt < self.attempts:
                self._sleep(self.interval)
        logger.debug("%s still unsatisfied after %d attempts", self.probe.describe(), self.attempts)
        return False

    def describe(self) -> str:
        return f"Poll({self.probe.describe()}, attempts={self.attempts})"
