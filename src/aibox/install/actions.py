"""
Step actions.

An action is a plan of operations executed through the ``CommandExecutor``.
Most actions are a fixed list (``RunOperations``); a few decide what to run
from the host state at execution time (``EnsureContainer`` starts a stopped
container instead of creating a new one, ``InstallMissing`` installs only
the tools that are absent).

``Action.execute`` returns every outcome so the step runner can tell a
simulated run from a real one without looking at the mode itself.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

from aibox.errors import ActionError, ExecutionError, ProbeError
from aibox.install.executor import (
    Command,
    CommandExecutor,
    CommandOutcome,
    MakeDirs,
    Operation,
)
from aibox.install.probes import ContainerState

__all__ = ["Action", "RunOperations", "EnsureContainer", "InstallMissing"]

logger = logging.getLogger(__name__)


class Action:
    """Base action: run the planned operations in order, stop on failure."""

    def plan(self, executor: CommandExecutor) -> List[Operation]:
        raise NotImplementedError

    def execute(self, executor: CommandExecutor) -> List[CommandOutcome]:
        """
        Run the plan.

        Raises:
            ActionError: A checked operation exited nonzero.
            ExecutionError: An operation could not be started.
        """
        outcomes: List[CommandOutcome] = []
        for operation in self.plan(executor):
            outcome = executor.run(operation)
            outcomes.append(outcome)
            if operation.check and not outcome.ok:
                detail = (outcome.stderr or outcome.stdout).strip().splitlines()
                raise ActionError(
                    f"{operation.display()} exited with status {outcome.exit_code}"
                    + (f": {detail[-1]}" if detail else ""),
                    exit_code=outcome.exit_code,
                    stderr=outcome.stderr,
                )
        return outcomes


class RunOperations(Action):
    """A fixed sequence of operations."""

    def __init__(self, *operations: Operation):
        if not operations:
            raise ValueError("RunOperations needs at least one operation")
        self.operations = list(operations)

    def plan(self, executor: CommandExecutor) -> List[Operation]:
        return list(self.operations)


class EnsureContainer(Action):
    """
    Bring a container to the running state.

    A stopped container is started as-is (keeping its data and settings), a
    paused one is unpaused and an absent one is created with ``docker run
    -d``. When the engine cannot be queried (including in a dry run) the
    container is assumed absent.
    """

    def __init__(
        self,
        name: str,
        image: str,
        ports: Optional[Mapping[int, int]] = None,
        volumes: Optional[Mapping[Path, str]] = None,
        env: Optional[Mapping[str, str]] = None,
        restart: str = "unless-stopped",
        timeout: Optional[float] = None,
    ):
        self.name = name
        self.image = image
        self.ports = dict(ports or {})
        self.volumes = {Path(k): v for k, v in (volumes or {}).items()}
        self.env = dict(env or {})
        self.restart = restart
        self.timeout = timeout

    def run_command(self) -> Command:
        argv = ["docker", "run", "-d", "--name", self.name, f"--restart={self.restart}"]
        for host, container in self.ports.items():
            argv += ["-p", f"{host}:{container}"]
        for host_path, container_path in self.volumes.items():
            argv += ["-v", f"{host_path}:{container_path}"]
        for key, value in self.env.items():
            argv += ["-e", f"{key}={value}"]
        argv.append(self.image)
        return Command(tuple(argv), timeout=self.timeout)

    def plan(self, executor: CommandExecutor) -> List[Operation]:
        try:
            state = ContainerState.observe(executor, self.name)
        except (ProbeError, ExecutionError) as e:
            logger.debug("Cannot observe container %s (%s); assuming absent", self.name, e)
            state = ContainerState.ABSENT

        operations: List[Operation] = []
        if self.volumes:
            operations.append(MakeDirs(tuple(self.volumes)))
        if state == ContainerState.PAUSED:
            operations.append(Command(("docker", "unpause", self.name), timeout=self.timeout))
        elif state == ContainerState.STOPPED:
            operations.append(Command(("docker", "start", self.name), timeout=self.timeout))
        elif state == ContainerState.ABSENT:
            operations.append(self.run_command())
        return operations


class InstallMissing(Action):
    """Install, in one package-manager call, only the tools not on PATH."""

    def __init__(
        self,
        tools: Sequence[str],
        install_prefix: Sequence[str] = ("brew", "install"),
        timeout: Optional[float] = None,
    ):
        self.tools = list(tools)
        self.install_prefix = tuple(install_prefix)
        self.timeout = timeout

    def missing(self, executor: CommandExecutor) -> List[str]:
        path = executor.search_path()
        return [t for t in self.tools if shutil.which(t, path=path) is None]

    def plan(self, executor: CommandExecutor) -> List[Operation]:
        missing = self.missing(executor)
        if not missing:
            return []
        return [Command(self.install_prefix + tuple(missing), timeout=self.timeout)]
