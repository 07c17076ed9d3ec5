"""Exception hierarchy for protoscaffold.

Every failure raised by a stage derives from ``ScaffoldError``.  The stage
driver wraps whatever a stage raised in a ``StageError`` that names the
failing stage while keeping the original exception as ``__cause__``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any


class ScaffoldError(Exception):
    """Base class for all protoscaffold errors."""


class PathError(ScaffoldError):
    """Raised when a directory cannot be resolved or created."""


class MergeError(ScaffoldError):
    """Raised when proto fragments conflict or cannot be read.

    Attributes:
        fragment: The fragment that triggered the failure, if known.
    """

    def __init__(self, message: str, fragment: str | Path | None = None) -> None:
        self.fragment = Path(fragment) if fragment is not None else None
        if self.fragment is not None:
            message = f"{self.fragment.name}: {message}"
        super().__init__(message)


class ToolchainError(ScaffoldError):
    """Raised when an external tool is missing or exits non-zero."""

    def __init__(
        self,
        message: str,
        cmd: str | None = None,
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


class ParseError(ScaffoldError):
    """Raised when a proto file cannot be turned into a service descriptor."""


class GenerationError(ScaffoldError):
    """Raised when a file-emission stage fails."""


class PersistenceBootstrapError(ScaffoldError):
    """Raised when a persistence-layer scaffolding step fails."""


class StageError(ScaffoldError):
    """Raised by the stage driver when a stage fails.

    Attributes:
        stage: Name of the stage that failed.
        cause: The exception the stage raised, unmodified.
        results: ``StageResult`` records for every stage that ran, the
            failed one included.
    """

    def __init__(
        self,
        stage: str,
        cause: BaseException,
        results: list[Any] | None = None,
    ) -> None:
        self.stage = stage
        self.cause = cause
        self.results = list(results or [])
        super().__init__(f"stage {stage} failed: {cause}")
