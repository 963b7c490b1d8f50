"""
Structured logging for provisioning step events.

Outputs JSON-formatted events (one per line) so a run can be replayed or
shipped to a log store. Only outcome-changing events are logged; command
output stays in the module loggers at debug level.

Logged events:
- run.started
- step.satisfied
- step.applied
- step.simulated
- step.failed
- run.completed

Usage:
    from aibox.logger import StepLogger, configure_logging

    configure_logging(level="info", fmt="json")
    events = StepLogger(mode="dry-run")
    events.log_run_started(step_count=13)
    events.log_step_simulated(step="homebrew", commands=["brew install jq"])
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

# Step events logger; handlers are attached by configure_logging()
_events_logger = logging.getLogger("aibox.steps")
_events_logger.propagate = False
if not _events_logger.handlers:
    _events_logger.addHandler(logging.NullHandler())


class _TextEventFormatter(logging.Formatter):
    """Render a JSON event line as ``timestamp level event key=value ...``."""

    def format(self, record: logging.LogRecord) -> str:
        try:
            entry = json.loads(record.getMessage())
        except ValueError:
            return super().format(record)
        head = f"{entry.pop('timestamp', '')} {entry.pop('level', '')} {entry.pop('event', '')}"
        rest = " ".join(f"{k}={v}" for k, v in entry.items() if v is not None)
        return f"{head} {rest}".rstrip()


def configure_logging(
    level: str = "warning",
    fmt: str = "auto",
    event_log: Optional[str] = None,
) -> None:
    """
    Configure diagnostics and step-event logging.

    Args:
        level: debug, info, warning or error
        fmt: json (one JSON object per event), text, or auto (text on an
            interactive terminal, json for files and pipes)
        event_log: File receiving step events; stderr when not set
    """
    numeric = _LEVELS.get(level, logging.WARNING)

    root = logging.getLogger("aibox")
    root.setLevel(numeric)
    if not root.handlers:
        diag = logging.StreamHandler(sys.stderr)
        diag.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        root.addHandler(diag)

    _events_logger.handlers.clear()
    _events_logger.setLevel(numeric)
    handler: logging.Handler
    if event_log:
        handler = logging.FileHandler(event_log, encoding="utf-8")
        interactive = False
    else:
        handler = logging.StreamHandler(sys.stderr)
        interactive = sys.stderr.isatty()
    if fmt == "auto":
        fmt = "text" if interactive else "json"
    if fmt == "text":
        handler.setFormatter(_TextEventFormatter("%(message)s"))
    else:
        handler.setFormatter(logging.Formatter("%(message)s"))
    _events_logger.addHandler(handler)


class StepLogger:
    """
    Structured logger for step events.

    Each entry carries the run mode and the step name so events from a dry
    run and a live run can be told apart.
    """

    def __init__(self, mode: str, service_name: str = "aibox"):
        self.mode = mode
        self.service_name = service_name
        self._logger = _events_logger

    def _emit(
        self,
        event: str,
        step: Optional[str] = None,
        level: str = "info",
        **extra_fields: Any,
    ) -> None:
        """
        Emit a structured log entry.

        Args:
            event: Event type (e.g., "step.applied")
            step: Step name, if the event concerns one step
            level: Log level (info, warn, error)
            **extra_fields: Event-specific fields
        """
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "event": event,
            "service": self.service_name,
            "mode": self.mode,
        }
        if step:
            entry["step"] = step
        entry.update(extra_fields)

        log_line = json.dumps(entry, default=str)

        if level == "error":
            self._logger.error(log_line)
        elif level == "warn":
            self._logger.warning(log_line)
        else:
            self._logger.info(log_line)

    def log_run_started(self, step_count: int) -> None:
        """Log the start of a pipeline run."""
        self._emit(event="run.started", step_count=step_count)

    def log_step_satisfied(self, step: str) -> None:
        self._emit(event="step.satisfied", step=step)

    def log_step_applied(
        self, step: str, commands: List[str], duration_seconds: float
    ) -> None:
        self._emit(
            event="step.applied",
            step=step,
            commands=commands,
            duration_seconds=duration_seconds,
        )

    def log_step_simulated(self, step: str, commands: List[str]) -> None:
        self._emit(event="step.simulated", step=step, commands=commands)

    def log_step_failed(
        self,
        step: str,
        error_type: Optional[str],
        detail: str,
        criticality: str,
    ) -> None:
        """Log a failed step; fatal failures are logged at error level."""
        self._emit(
            event="step.failed",
            step=step,
            level="error" if criticality == "fatal" else "warn",
            error_type=error_type,
            detail=detail,
            criticality=criticality,
        )

    def log_run_completed(
        self,
        counts: Dict[str, int],
        aborted_by: Optional[str] = None,
        interrupted: bool = False,
    ) -> None:
        """Log the end of a run with per-outcome counts."""
        self._emit(
            event="run.completed",
            level="error" if aborted_by else "info",
            counts=counts,
            aborted_by=aborted_by,
            interrupted=interrupted,
        )
