"""Task discovery and the graphs the CLI runs.

The build graph mirrors the asset layout: the icon sprite precedes image
optimization and every other asset task is independent. Watch bindings map
each source tree to the smallest set of tasks it feeds.
"""

from __future__ import annotations

import importlib
import pkgutil
from typing import Dict

from .orchestrator.cache import ChangeDetector
from .orchestrator.config import SiteConfig
from .orchestrator.core import TaskGraph, TaskSpec
from .orchestrator.errors import ConfigError
from .orchestrator.logging import get_logger
from .orchestrator.watch import WatchBinding


log = get_logger("pipelines")

TASKS_PACKAGE = "sitebuild.tasks"

BUILD_TASKS = ["sprite", "images", "templates", "styles", "scripts", "fonts"]
BUILD_EDGES = [("sprite", "images")]
LINT_TASKS = ["lint_templates", "lint_styles"]


def discover_tasks(package: str = TASKS_PACKAGE) -> Dict[str, TaskSpec]:
    """Import all modules in the tasks package and collect decorated functions."""
    specs: Dict[str, TaskSpec] = {}
    pkg = importlib.import_module(package)
    for m in pkgutil.iter_modules(pkg.__path__, prefix=f"{package}."):
        mod = importlib.import_module(m.name)
        for attr_name in dir(mod):
            obj = getattr(mod, attr_name)
            spec = getattr(obj, "_task_spec", None)
            if isinstance(spec, TaskSpec):
                specs[spec.name] = spec
    return specs


def _pick(specs: Dict[str, TaskSpec], names: list[str]) -> Dict[str, TaskSpec]:
    missing = [n for n in names if n not in specs]
    if missing:
        raise ConfigError(
            "Missing required tasks: "
            + ", ".join(missing)
            + f"\nCreate them under {TASKS_PACKAGE} and decorate with @task(name=..., inputs=[...])."
        )
    return {n: specs[n] for n in names}


def build_graph(
    config: SiteConfig,
    detector: ChangeDetector | None = None,
    specs: Dict[str, TaskSpec] | None = None,
) -> TaskGraph:
    specs = specs if specs is not None else discover_tasks()
    return TaskGraph(
        tasks=_pick(specs, BUILD_TASKS),
        edges=BUILD_EDGES,
        config=config,
        name="build",
        detector=detector,
    )


def lint_graph(config: SiteConfig, specs: Dict[str, TaskSpec] | None = None) -> TaskGraph:
    specs = specs if specs is not None else discover_tasks()
    return TaskGraph(tasks=_pick(specs, LINT_TASKS), edges=[], config=config, name="lint")


def watch_bindings(config: SiteConfig) -> list[WatchBinding]:
    d = config.dirs
    return [
        WatchBinding("templates", (f"{d.templates}/**/*.html",), ("templates",)),
        WatchBinding("styles", (f"{d.styles}/**/*.scss",), ("styles",)),
        WatchBinding("scripts", (f"{d.scripts}/**/*.js",), ("scripts",)),
        WatchBinding("images", (f"{d.images}/**/*",), ("images", "sprite")),
        WatchBinding("fonts", (f"{d.fonts}/**/*",), ("fonts",)),
    ]


def watch_dirs(config: SiteConfig):
    return [config.path(name) for name in ("templates", "styles", "scripts", "images", "fonts")]
