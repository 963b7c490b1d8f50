"""
Pipeline runner for provisioning steps.

Runs steps strictly in declared order on the calling thread: later steps
rely on what earlier ones set up (the container runtime must be ready
before the Open WebUI container is touched). A failed fatal step aborts
the run; a failed recoverable step is recorded and the run goes on. The
report is returned complete in every case.

SIGINT/SIGTERM request a stop: the step in progress finishes (its child
process receives the terminal's signal itself), then the runner stops and
marks the report interrupted. Re-running the pipeline resumes, since every
step is idempotent.

Usage::

    runner = PipelineRunner(executor, transcript=Transcript())
    report = runner.execute(build_steps(config))
    sys.exit(report.exit_code)
"""

from __future__ import annotations

import contextlib
import logging
import signal
import threading
from typing import Dict, Iterator, List, Optional, Sequence

from opentelemetry import trace

from aibox.console import Transcript
from aibox.install.executor import CommandExecutor
from aibox.install.report import RunReport, StepOutcome, StepResult
from aibox.install.steps import Step, run_step
from aibox.logger import StepLogger

__all__ = ["PipelineRunner"]

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

_STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class PipelineRunner:
    """
    Executes an ordered list of steps with one executor.

    Args:
        executor: Shared executor; its mode applies to every step
        transcript: Where per-step lines are written (silent if None)
        events: Structured step-event logger
    """

    def __init__(
        self,
        executor: CommandExecutor,
        transcript: Optional[Transcript] = None,
        events: Optional[StepLogger] = None,
    ):
        self.executor = executor
        self.transcript = transcript
        self.events = events or StepLogger(mode=executor.mode.value)
        self._stop_requested = False

    # ------------------------------------------------------------------
    # Interruption
    # ------------------------------------------------------------------

    def request_stop(self) -> None:
        """Stop before the next step."""
        self._stop_requested = True

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def _on_signal(self, signum, frame) -> None:
        logger.warning("Received signal %d; stopping after the current step", signum)
        self.request_stop()

    @contextlib.contextmanager
    def _stop_on_signals(self) -> Iterator[None]:
        if threading.current_thread() is not threading.main_thread():
            yield
            return
        previous = {sig: signal.getsignal(sig) for sig in _STOP_SIGNALS}
        for sig in _STOP_SIGNALS:
            signal.signal(sig, self._on_signal)
        try:
            yield
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(self, steps: Sequence[Step]) -> RunReport:
        """Run ``steps`` in order and return the report of this run."""
        self._stop_requested = False
        report = RunReport(mode=self.executor.mode)
        self.events.log_run_started(step_count=len(steps))

        with tracer.start_as_current_span("aibox.run") as run_span:
            run_span.set_attribute("aibox.mode", self.executor.mode.value)
            run_span.set_attribute("aibox.step_count", len(steps))

            with self._stop_on_signals():
                for step in steps:
                    if self._stop_requested:
                        report.interrupted = True
                        self._say("warning", "Interrupted; remaining steps skipped")
                        break

                    result = self._run_one(step)
                    report.record(result)

                    if result.outcome == StepOutcome.FAILED and step.is_fatal:
                        report.aborted = True
                        report.aborted_by = step.name
                        break

            run_span.set_attribute("aibox.aborted", report.aborted)
            run_span.set_attribute("aibox.interrupted", report.interrupted)

        report.finish()
        self.events.log_run_completed(
            counts=report.counts(),
            aborted_by=report.aborted_by,
            interrupted=report.interrupted,
        )
        return report

    def _run_one(self, step: Step) -> StepResult:
        self._say("info", f"Checking {step.title}...")

        with tracer.start_as_current_span("aibox.step") as span:
            span.set_attribute("aibox.step.name", step.name)
            span.set_attribute("aibox.step.criticality", step.criticality.value)
            result = run_step(step, self.executor)
            span.set_attribute("aibox.step.outcome", result.outcome.value)

        self._announce(step, result)
        return result

    def _announce(self, step: Step, result: StepResult) -> None:
        if result.outcome == StepOutcome.ALREADY_SATISFIED:
            self.events.log_step_satisfied(step.name)
            self._say("success", f"{step.title} already in place")
        elif result.outcome == StepOutcome.APPLIED:
            self.events.log_step_applied(
                step.name, list(result.commands), result.duration_seconds
            )
            self._say("success", f"{step.title} set up")
        elif result.outcome == StepOutcome.SIMULATED:
            self.events.log_step_simulated(step.name, list(result.commands))
            self._say("success", f"{step.title} (dry-run, {len(result.commands)} change(s) planned)")
        else:
            self.events.log_step_failed(
                step.name, result.error_type, result.detail, step.criticality.value
            )
            self._say("error", f"{step.title} failed: {result.detail}")
            if step.remediation:
                self._say("error" if step.is_fatal else "warning", step.remediation)

    def _say(self, kind: str, message: str) -> None:
        if self.transcript is not None:
            getattr(self.transcript, kind)(message)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def check(self, steps: Sequence[Step]) -> Dict[str, bool]:
        """Evaluate every probe without running any action."""
        status: Dict[str, bool] = {}
        for step in steps:
            satisfied = step.probe.is_satisfied(self.executor)
            status[step.name] = satisfied
            if satisfied:
                self._say("success", f"{step.title}: in place")
            else:
                self._say("warning", f"{step.title}: missing")
        return status

    @staticmethod
    def pending(status: Dict[str, bool]) -> List[str]:
        return [name for name, ok in status.items() if not ok]
