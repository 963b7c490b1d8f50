"""
Provisioning steps.

A ``Step`` pairs an existence probe with the action that establishes what
the probe checks, an optional verification, and a criticality that tells
the runner whether a failure stops the whole run.

``run_step`` applies one step:

1. probe satisfied -> ``already_satisfied`` (the action is never called)
2. run the action through the executor; if the executor only simulated
   it -> ``simulated`` with the commands a live run would execute
3. action error -> ``failed``
4. verification present and unsatisfied -> ``failed``
5. otherwise -> ``applied``
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from aibox.errors import ActionError, ExecutionError, VerificationError
from aibox.install.actions import Action
from aibox.install.executor import CommandExecutor, CommandOutcome
from aibox.install.probes import Probe
from aibox.install.report import StepOutcome, StepResult

__all__ = ["Criticality", "Step", "run_step"]

logger = logging.getLogger(__name__)


class Criticality(str, Enum):
    """Whether a step failure aborts the run or is only recorded."""
    FATAL = "fatal"
    RECOVERABLE = "recoverable"


@dataclass
class Step:
    """
    One provisioning unit.

    The action must be safe to skip when the probe is satisfied and safe to
    re-run after an interrupted earlier attempt.

    Attributes:
        name: Stable identifier (``colima-start``)
        title: Human label for the transcript (``Colima``)
        probe: Is the goal of this step already met?
        action: What establishes the goal
        verify: Re-check after a real (not simulated) action
        criticality: Fatal failures abort the run
        remediation: Hint printed when the step fails
    """

    name: str
    probe: Probe
    action: Action
    title: str = ""
    verify: Optional[Probe] = None
    criticality: Criticality = Criticality.RECOVERABLE
    remediation: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.title:
            self.title = self.name
        self.criticality = Criticality(self.criticality)

    @property
    def is_fatal(self) -> bool:
        return self.criticality is Criticality.FATAL


def _mutations(outcomes: List[CommandOutcome]) -> List[CommandOutcome]:
    return [o for o in outcomes if not o.operation.read_only]


def run_step(step: Step, executor: CommandExecutor) -> StepResult:
    """Apply one step and describe what happened."""
    start = time.monotonic()

    def elapsed() -> float:
        return round(time.monotonic() - start, 3)

    if step.probe.is_satisfied(executor):
        return StepResult(
            step_name=step.name,
            outcome=StepOutcome.ALREADY_SATISFIED,
            detail=f"{step.title} already in place",
            duration_seconds=elapsed(),
        )

    try:
        outcomes = step.action.execute(executor)
        mutations = _mutations(outcomes)
        commands = tuple(o.operation.display() for o in mutations)

        if mutations and all(o.simulated for o in mutations):
            return StepResult(
                step_name=step.name,
                outcome=StepOutcome.SIMULATED,
                detail=f"would set up {step.title}",
                commands=commands,
                duration_seconds=elapsed(),
            )

        if step.verify is not None and not step.verify.is_satisfied(executor):
            raise VerificationError(
                f"{step.title} still not in place after applying "
                f"({step.verify.describe()})"
            )
    except (ActionError, VerificationError, ExecutionError) as e:
        logger.debug("Step %s failed: %s", step.name, e)
        return StepResult(
            step_name=step.name,
            outcome=StepOutcome.FAILED,
            detail=str(e),
            error_type=type(e).__name__,
            duration_seconds=elapsed(),
        )

    return StepResult(
        step_name=step.name,
        outcome=StepOutcome.APPLIED,
        detail=f"{step.title} set up",
        commands=commands,
        duration_seconds=elapsed(),
    )
