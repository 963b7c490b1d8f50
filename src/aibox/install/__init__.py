"""
Idempotent step runner.

- executor: runs or simulates operations (the only place the mode matters)
- probes: "is this already done?" checks
- actions: what a step does when its probe is not satisfied
- steps: Step and run_step
- runner: ordered execution with fatal/recoverable handling
- report: StepResult, RunReport and their rendering
- workstation: the concrete AI workstation stages
"""

from aibox.install.executor import Command, CommandExecutor, CommandOutcome, Mode
from aibox.install.report import RunReport, StepOutcome, StepResult
from aibox.install.runner import PipelineRunner
from aibox.install.steps import Criticality, Step, run_step

__all__ = [
    "Command",
    "CommandExecutor",
    "CommandOutcome",
    "Mode",
    "RunReport",
    "StepOutcome",
    "StepResult",
    "PipelineRunner",
    "Criticality",
    "Step",
    "run_step",
]
