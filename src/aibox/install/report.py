"""
Run reports for provisioning pipelines.

A ``RunReport`` is the ordered list of ``StepResult`` entries produced by
one pipeline run. It lives in memory and is discarded at exit unless the
caller captures it with ``save_report`` (``aibox --report PATH``).
"""

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import click
from pydantic import BaseModel, ConfigDict, Field

from aibox.install.executor import Mode

__all__ = [
    "StepOutcome",
    "StepResult",
    "RunReport",
    "render_summary",
    "save_report",
]

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_INTERRUPTED = 130


class StepOutcome(str, Enum):
    """What happened to a step during a run."""
    ALREADY_SATISFIED = "already_satisfied"
    APPLIED = "applied"
    SIMULATED = "simulated"
    FAILED = "failed"


class StepResult(BaseModel):
    """Outcome of one step; created once, never modified."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    step_name: str
    outcome: StepOutcome
    detail: str = ""
    commands: Tuple[str, ...] = Field(
        default=(),
        description="Mutating operations run (applied) or that would run (simulated)",
    )
    error_type: Optional[str] = None
    duration_seconds: float = 0.0


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RunReport(BaseModel):
    """Ordered step results of one pipeline run."""

    model_config = ConfigDict(extra="forbid")

    mode: Mode
    results: List[StepResult] = Field(default_factory=list)
    aborted: bool = False
    aborted_by: Optional[str] = None
    interrupted: bool = False
    started_at: str = Field(default_factory=_now)
    finished_at: Optional[str] = None

    def record(self, result: StepResult) -> None:
        self.results.append(result)

    def finish(self) -> None:
        self.finished_at = _now()

    def by_outcome(self, outcome: StepOutcome) -> List[StepResult]:
        return [r for r in self.results if r.outcome == outcome]

    @property
    def failed(self) -> List[StepResult]:
        return self.by_outcome(StepOutcome.FAILED)

    @property
    def step_names(self) -> List[str]:
        return [r.step_name for r in self.results]

    def counts(self) -> Dict[str, int]:
        return {o.value: len(self.by_outcome(o)) for o in StepOutcome}

    @property
    def exit_code(self) -> int:
        """Process exit status: nonzero only for a fatal abort or an interruption."""
        if self.aborted:
            return EXIT_FATAL
        if self.interrupted:
            return EXIT_INTERRUPTED
        return EXIT_OK


def render_summary(report: RunReport, use_colors: bool = True) -> str:
    """
    Generate a summary of a run.

    Args:
        report: The report to summarise
        use_colors: Whether to style the text (click strips styles again
            when the output is not a terminal)

    Returns:
        Formatted summary string
    """
    def style(text: str, **styles) -> str:
        return click.style(text, **styles) if use_colors else text

    title = "Dry-run summary" if report.mode is Mode.DRY_RUN else "Run summary"
    lines = [style(title, bold=True), "=" * 40]

    status_symbols = {
        StepOutcome.ALREADY_SATISFIED: style("✓", fg="green"),
        StepOutcome.APPLIED: style("✚", fg="green"),
        StepOutcome.SIMULATED: style("○", fg="cyan"),
        StepOutcome.FAILED: style("✗", fg="red"),
    }

    for result in report.results:
        symbol = status_symbols[result.outcome]
        duration = f" ({result.duration_seconds:.1f}s)" if result.duration_seconds >= 0.1 else ""
        error_info = f" - {result.detail}" if result.outcome == StepOutcome.FAILED else ""
        lines.append(
            f"  {symbol} {result.step_name}: {result.outcome.value}{duration}{error_info}"
        )

    if not report.results:
        lines.append("  (no steps run)")

    counts = report.counts()
    lines.append("")
    lines.append(
        ", ".join(f"{n} {name.replace('_', ' ')}" for name, n in counts.items() if n)
        or "nothing to do"
    )
    if report.aborted:
        lines.append(style(f"Aborted at {report.aborted_by}", fg="red"))
    if report.interrupted:
        lines.append(style("Interrupted; re-run to resume", fg="yellow"))

    return "\n".join(lines)


def save_report(report: RunReport, path: Path) -> None:
    """
    Save a report as JSON atomically.

    Uses temporary file + rename to prevent a half-written report.
    Sets file permissions to 600 (owner read/write only).
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=".aibox-report-",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(report.model_dump(mode="json"), f, indent=2)
        os.chmod(temp_path, 0o600)
        os.replace(temp_path, path)
    except Exception:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise
