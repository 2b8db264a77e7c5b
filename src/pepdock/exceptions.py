"""Error taxonomy for pepdock.

Every error carries the name of the replicate/stage that failed and the last
sealed artifact, so a caller can resume from that point.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional, Union


class PepdockError(Exception):
    """Base class for all pepdock failures."""

    def __init__(self, message: str, *, stage: Optional[str] = None,
                 last_sealed: Optional[Union[str, Path]] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.last_sealed = Path(last_sealed) if last_sealed else None

    def with_context(self, stage: Optional[str] = None,
                     last_sealed: Optional[Union[str, Path]] = None) -> "PepdockError":
        """Attach stage/artifact context without overwriting what is already set."""
        if stage and not self.stage:
            self.stage = stage
        if last_sealed and not self.last_sealed:
            self.last_sealed = Path(last_sealed)
        return self

    def __str__(self) -> str:
        parts = [self.message]
        if self.stage:
            parts.append(f"stage={self.stage}")
        if self.last_sealed:
            parts.append(f"last_sealed={self.last_sealed}")
        return " | ".join(parts)


class MalformedRecordError(PepdockError, ValueError):
    """Raised when a coordinate record cannot be parsed."""

    def __init__(self, message: str, *, line_number: Optional[int] = None, **kwargs):
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message, **kwargs)
        self.line_number = line_number


class ExternalToolFailure(PepdockError, RuntimeError):
    """Raised on non-zero exit or a missing artifact from an external tool."""

    def __init__(self, message: str, *, command: Optional[list] = None,
                 returncode: Optional[int] = None, stdout: str = "", stderr: str = "",
                 **kwargs):
        super().__init__(message, **kwargs)
        self.command = list(command or [])
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    def __str__(self) -> str:
        text = super().__str__()
        if self.command:
            text += f"\nCommand ({self.returncode}): {' '.join(self.command)}"
        if self.stderr:
            text += f"\n--- stderr ---\n{self.stderr.strip()}"
        return text


class AmbiguousTieError(PepdockError):
    """Raised in strict mode when two replicates tie for the best affinity."""


class RunCancelled(PepdockError):
    """Raised when a caller cancels a running replicate or stage."""


class TargetLockedError(PepdockError):
    """Raised when another run already owns the target's working directory."""


class ConfigError(PepdockError, ValueError):
    """Raised when the run configuration is invalid."""
