"""Error types raised by the orchestrator and by transform tasks.

Task-level errors are reported and recorded on the task result; they never
stop the orchestrator. `ConfigError` is the only fatal kind and is raised
before any task runs.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable


class SiteBuildError(Exception):
    """Base class for every error raised by sitebuild."""


class ConfigError(SiteBuildError):
    """Missing or invalid configuration. Fatal at startup."""


class TaskError(SiteBuildError):
    """A task failed for this run.

    Carries the task name (filled in by the scheduler when the transform did
    not know it) and the offending source file, when there is one.
    """

    kind = "task"

    def __init__(
        self,
        message: str,
        path: str | Path | None = None,
        task: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.path = Path(path) if path is not None else None
        self.task = task

    def __str__(self) -> str:
        if self.path is not None:
            return f"{self.path}: {self.message}"
        return self.message


class InputError(TaskError):
    """Malformed source: template, stylesheet, script, image or SVG."""

    kind = "input"


class TaskIOError(TaskError):
    """Missing or unreadable input, or an unwritable destination."""

    kind = "io"


@dataclass(frozen=True)
class Violation:
    path: Path
    line: int | None
    rule: str
    message: str

    def __str__(self) -> str:
        where = f"{self.path}:{self.line}" if self.line else str(self.path)
        return f"{where} [{self.rule}] {self.message}"


class LintViolation(TaskError):
    """Raised by lint tasks once every file has been checked."""

    kind = "lint"

    def __init__(self, violations: Iterable[Violation], task: str | None = None):
        self.violations = list(violations)
        count = len(self.violations)
        noun = "violation" if count == 1 else "violations"
        super().__init__(f"{count} lint {noun}", task=task)

    def __str__(self) -> str:
        lines = [self.message]
        lines.extend(f"  {v}" for v in self.violations)
        return "\n".join(lines)
