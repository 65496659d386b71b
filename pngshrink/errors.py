"""Exception hierarchy for pngshrink.

Startup errors stop the whole run. Anything deriving from OptimizationError
only aborts the task that raised it.
"""

from __future__ import annotations

from pathlib import Path


class PngShrinkError(Exception):
    """Base exception for all pngshrink errors."""


class ConfigurationError(PngShrinkError):
    """Invalid options (worker count, threshold, timeout)."""


class EngineUnavailableError(PngShrinkError):
    """A required external engine cannot be invoked."""

    def __init__(self, engine: str, reason: str) -> None:
        super().__init__(f"engine '{engine}' is not available: {reason}")
        self.engine = engine
        self.reason = reason


class OptimizationError(PngShrinkError):
    """Per-task failure; other tasks keep running."""


class VerificationError(OptimizationError):
    """The baseline image could not be decoded."""


class WorkingCopyConflictError(OptimizationError):
    """The working copy path is already taken by another file."""

    def __init__(self, path: Path) -> None:
        super().__init__(f"working copy {path} already exists; remove it and retry")
        self.path = path


class InvalidOutcomeError(OptimizationError):
    """An engine altered pixels without making the file smaller."""

    def __init__(self, engine: str, path: Path) -> None:
        super().__init__(f"engine '{engine}' altered pixels of {path} without reducing size")
        self.engine = engine
        self.path = path
