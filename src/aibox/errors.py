"""
Error taxonomy for aibox provisioning.

ProbeError is absorbed inside probes (a check that cannot run means "not
satisfied"). ActionError, VerificationError and ExecutionError are turned
into a failed StepResult by the step runner, which then applies the step's
criticality.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "AiboxError",
    "ProbeError",
    "ActionError",
    "VerificationError",
    "ExecutionError",
]


class AiboxError(Exception):
    """Base class for all aibox errors."""


class ProbeError(AiboxError):
    """Raised when an existence check could not be evaluated."""


class ActionError(AiboxError):
    """Raised when an install/start/configure command reported failure."""

    def __init__(self, message: str, exit_code: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class VerificationError(AiboxError):
    """Raised when post-action confirmation failed."""


class ExecutionError(AiboxError):
    """Raised when the executor could not launch an operation at all."""
