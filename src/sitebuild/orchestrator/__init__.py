"""In-repo orchestrator for the site asset pipeline.

Provides Task and TaskGraph primitives, change detection, DAG scheduling,
watch/rebuild/reload and a Typer CLI.
"""

from .core import ErrorPolicy, Mode, Status, TaskContext, TaskGraph, TaskSpec, task  # re-export for convenience

__all__ = ["ErrorPolicy", "Mode", "Status", "TaskContext", "TaskGraph", "TaskSpec", "task"]
