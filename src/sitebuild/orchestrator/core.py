from __future__ import annotations

import asyncio
import enum
import heapq
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Sequence, Union

from .cache import ChangeDetector
from .config import SiteConfig
from .errors import ConfigError, InputError, TaskError, TaskIOError
from .logging import get_logger
from .utils import atomic_write, expand_globs, is_within


# Allow static lists or callables that build patterns from the config
PathSpec = Union[Sequence[str], Callable[[SiteConfig], Sequence[str]]]
DirSpec = Union[str, Callable[[SiteConfig], str], None]


class ErrorPolicy(enum.Enum):
    REPORT = "report"
    FAIL_FAST = "fail_fast"


class Mode(enum.Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class Status(enum.Enum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"
    BLOCKED = "blocked"


@dataclass
class TaskSpec:
    name: str
    inputs: PathSpec
    fn: Callable[["TaskContext"], None]
    outputs: PathSpec = ()
    output_dir: DirSpec = None
    depends: PathSpec = ()
    aggregate: bool = False
    track_changes: bool = True
    on_error: ErrorPolicy = ErrorPolicy.REPORT


def task(
    name: str,
    inputs: PathSpec,
    outputs: PathSpec = (),
    output_dir: DirSpec = None,
    depends: PathSpec = (),
    aggregate: bool = False,
    track_changes: bool = True,
    on_error: ErrorPolicy = ErrorPolicy.REPORT,
):
    """Decorator to declare a transform task on a function.

    The wrapped function receives a single `TaskContext`. `inputs` and
    `depends` are globs (``!`` excludes), `outputs` lists the generated paths
    that `clean` removes, and `output_dir` bounds where the task may write.
    """

    def deco(fn: Callable[["TaskContext"], None]):
        spec = TaskSpec(
            name=name,
            inputs=inputs,
            fn=fn,
            outputs=outputs,
            output_dir=output_dir,
            depends=depends,
            aggregate=aggregate,
            track_changes=track_changes,
            on_error=on_error,
        )
        setattr(fn, "_task_spec", spec)
        return fn

    return deco


def resolve_patterns(spec: PathSpec, config: SiteConfig) -> list[str]:
    patterns = spec(config) if callable(spec) else spec
    return [str(p) for p in (patterns or [])]


def resolve_output_dir(spec: TaskSpec, config: SiteConfig) -> Path:
    value = spec.output_dir(config) if callable(spec.output_dir) else spec.output_dir
    if value is None:
        return config.path("public")
    return config.resolve(value)


@dataclass
class TaskContext:
    """What a transform sees: its inputs, the config and guarded output writers."""

    name: str
    config: SiteConfig
    inputs: List[Path]
    all_inputs: List[Path]
    output_dir: Path
    logger: logging.Logger
    outputs: Dict[str, List[str]] = field(default_factory=dict)
    written: List[Path] = field(default_factory=list)

    def output_path(self, relative: str | Path) -> Path:
        target = (self.output_dir / relative).absolute()
        if not is_within(target, self.output_dir):
            raise TaskIOError(
                f"refusing to write outside {self.output_dir}", path=target, task=self.name
            )
        return target

    def _record(self, target: Path, source: Path | None) -> None:
        self.written.append(target)
        sources = [source] if source is not None else self.inputs
        for s in sources:
            self.outputs.setdefault(str(s), []).append(str(target))

    def write_bytes(self, relative: str | Path, data: bytes, source: Path | None = None) -> Path:
        target = self.output_path(relative)
        try:
            atomic_write(target, data)
        except OSError as e:
            raise TaskIOError(f"cannot write output: {e}", path=target, task=self.name) from e
        self._record(target, source)
        return target

    def write_text(self, relative: str | Path, text: str, source: Path | None = None) -> Path:
        return self.write_bytes(relative, text.encode("utf-8"), source=source)

    def copy(self, src: Path, relative: str | Path) -> Path:
        target = self.output_path(relative)
        try:
            atomic_write(target, src.read_bytes())
        except OSError as e:
            raise TaskIOError(f"cannot copy: {e}", path=src, task=self.name) from e
        self._record(target, src)
        return target

    def read_text(self, path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise InputError(f"not valid UTF-8: {e}", path=path, task=self.name) from e
        except OSError as e:
            raise TaskIOError(f"cannot read: {e}", path=path, task=self.name) from e


@dataclass
class TaskResult:
    name: str
    status: Status
    processed: List[Path] = field(default_factory=list)
    outputs: List[Path] = field(default_factory=list)
    error: TaskError | None = None
    duration: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status in (Status.OK, Status.SKIPPED)


@dataclass
class RunResult:
    graph: str
    results: Dict[str, TaskResult] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return all(r.succeeded for r in self.results.values())

    @property
    def any_succeeded(self) -> bool:
        return any(r.succeeded for r in self.results.values())

    @property
    def failed(self) -> list[TaskResult]:
        return [r for r in self.results.values() if not r.succeeded]

    @property
    def errors(self) -> list[TaskError]:
        return [r.error for r in self.results.values() if r.error is not None]

    def __getitem__(self, name: str) -> TaskResult:
        return self.results[name]


def topo_sort(nodes: Iterable[str], edges: Iterable[tuple[str, str]]) -> list[str]:
    """Kahn's algorithm; equally ready nodes come out in declaration order."""
    nodes = list(nodes)
    index = {n: i for i, n in enumerate(nodes)}
    incoming = {n: set() for n in nodes}
    outgoing = {n: set() for n in nodes}
    for u, v in edges:
        if u not in incoming or v not in incoming:
            raise ConfigError(f"Edge references unknown task: {(u, v)}")
        outgoing[u].add(v)
        incoming[v].add(u)
    ordered: list[str] = []
    roots = [index[n] for n in nodes if not incoming[n]]
    heapq.heapify(roots)
    while roots:
        n = nodes[heapq.heappop(roots)]
        ordered.append(n)
        for m in list(outgoing[n]):
            incoming[m].discard(n)
            outgoing[n].discard(m)
            if not incoming[m]:
                heapq.heappush(roots, index[m])
    if any(incoming[n] for n in nodes):
        cyclic = sorted(n for n in nodes if incoming[n])
        raise ConfigError("Cycle detected in task graph: " + ", ".join(cyclic))
    return ordered


class TaskGraph:
    def __init__(
        self,
        tasks: dict[str, TaskSpec],
        edges: list[tuple[str, str]],
        config: SiteConfig,
        name: str = "graph",
        detector: ChangeDetector | None = None,
        concurrency: int | None = None,
    ):
        self.name = name
        self.tasks = tasks
        self.edges = edges
        self.config = config
        self.detector = detector if detector is not None else ChangeDetector()
        self.concurrency = concurrency or config.build.concurrency
        self.order = topo_sort(tasks.keys(), edges)
        self.predecessors: dict[str, set[str]] = {n: set() for n in tasks}
        for u, v in edges:
            self.predecessors[v].add(u)
        self.logger = get_logger(self.name)
        self._task_locks: dict[str, asyncio.Lock] = {}
        self._locks_loop: asyncio.AbstractEventLoop | None = None

    def _select(self, only: Iterable[str] | None) -> list[str]:
        if only is None:
            return list(self.order)
        wanted = set(only)
        unknown = wanted - set(self.tasks)
        if unknown:
            raise KeyError(f"Unknown task(s): {', '.join(sorted(unknown))}")
        return [n for n in self.order if n in wanted]

    def _lock_for(self, name: str) -> asyncio.Lock:
        # Locks belong to one event loop; each asyncio.run starts afresh
        loop = asyncio.get_running_loop()
        if loop is not self._locks_loop:
            self._task_locks = {}
            self._locks_loop = loop
        lock = self._task_locks.get(name)
        if lock is None:
            lock = self._task_locks[name] = asyncio.Lock()
        return lock

    def run(self, **kwargs) -> RunResult:
        """Synchronous wrapper around `execute` for one-shot invocations."""
        return asyncio.run(self.execute(**kwargs))

    async def execute(
        self,
        mode: Mode = Mode.PARALLEL,
        only: Iterable[str] | None = None,
        force: bool = False,
    ) -> RunResult:
        selected = self._select(only)
        limit = 1 if mode is Mode.SEQUENTIAL else max(1, self.concurrency)
        self.logger.info("Selected tasks (%s): %s", mode.value, " → ".join(selected) or "-")

        result = RunResult(graph=self.name)
        pending = list(selected)
        running: dict[asyncio.Task, str] = {}
        halted = False

        def blocked_by(name: str) -> list[str]:
            return [
                p
                for p in self.predecessors[name]
                if p in result.results and not result.results[p].succeeded
            ]

        def ready(name: str) -> bool:
            return all(
                p in result.results for p in self.predecessors[name] if p in selected
            )

        try:
            while pending or running:
                progressed = True
                while progressed:
                    progressed = False
                    for name in list(pending):
                        if not ready(name):
                            continue
                        culprits = blocked_by(name)
                        if culprits or halted:
                            pending.remove(name)
                            reason = ", ".join(sorted(culprits)) or "fail-fast stop"
                            self.logger.error("Blocked: %s (after %s)", name, reason)
                            result.results[name] = TaskResult(name, Status.BLOCKED)
                            progressed = True
                            continue
                        if len(running) >= limit:
                            continue
                        pending.remove(name)
                        t = asyncio.ensure_future(self._run_task(self.tasks[name], force))
                        running[t] = name
                if not running:
                    break
                done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
                for t in done:
                    name = running.pop(t)
                    res = t.result()
                    result.results[name] = res
                    if res.status is Status.FAILED and self.tasks[name].on_error is ErrorPolicy.FAIL_FAST:
                        halted = True
        except asyncio.CancelledError:
            for t in running:
                t.cancel()
            # Each task settles only once its worker thread has returned
            await asyncio.gather(*running, return_exceptions=True)
            raise

        # Keep declaration order in the report
        result.results = {n: result.results[n] for n in selected if n in result.results}
        self._report(result)
        return result

    def _report(self, result: RunResult) -> None:
        for res in result.results.values():
            if res.error is not None:
                self.logger.error("%s failed: %s", res.name, res.error)
        summary = ", ".join(f"{r.name}={r.status.value}" for r in result.results.values())
        if result.ok:
            self.logger.info("Done: %s", summary)
        else:
            self.logger.error("Finished with failures: %s", summary)

    async def _run_task(self, spec: TaskSpec, force: bool) -> TaskResult:
        async with self._lock_for(spec.name):
            return await self._run_task_locked(spec, force)

    def _plan(self, spec: TaskSpec, force: bool):
        """Expand globs and pick the inputs to process. Blocking: hashes files."""
        root = self.config.root
        inputs = expand_globs(resolve_patterns(spec.inputs, self.config), root)
        depends = expand_globs(resolve_patterns(spec.depends, self.config), root)
        if spec.track_changes and not force:
            todo = self.detector.changed(spec.name, inputs, depends, aggregate=spec.aggregate)
            # An aggregate task whose last input vanished still has to run
            if not todo and not (spec.aggregate and self.detector.vanished(spec.name, inputs)):
                return inputs, depends, None, {}
        else:
            todo = list(inputs)
        return inputs, depends, todo, self.detector.snapshot([*inputs, *depends])

    async def _in_worker(self, fn, *args):
        """Run `fn` in a worker thread and hold the caller until it returns.

        Cancellation is re-raised only after the worker returns, so the task
        lock stays held for the whole life of the thread.
        """
        work = asyncio.ensure_future(asyncio.to_thread(fn, *args))
        try:
            return await asyncio.shield(work)
        except asyncio.CancelledError:
            while not work.done():
                try:
                    await asyncio.wait([work])
                except asyncio.CancelledError:
                    continue
            if not work.cancelled():
                work.exception()
            raise

    async def _run_task_locked(self, spec: TaskSpec, force: bool) -> TaskResult:
        step_logger = get_logger(f"{self.name}.{spec.name}")
        started = time.perf_counter()

        inputs, depends, todo, fingerprints = await self._in_worker(self._plan, spec, force)
        if todo is None:
            step_logger.info("Skip (unchanged): %s", spec.name)
            return TaskResult(spec.name, Status.SKIPPED)

        ctx = TaskContext(
            name=spec.name,
            config=self.config,
            inputs=todo,
            all_inputs=inputs,
            output_dir=resolve_output_dir(spec, self.config),
            logger=step_logger,
        )
        step_logger.info("Run: %s (%d of %d inputs)", spec.name, len(todo), len(inputs))
        try:
            await self._in_worker(spec.fn, ctx)
        except asyncio.CancelledError:
            step_logger.info("Cancelled: %s (worker finished, nothing committed)", spec.name)
            raise
        except TaskError as e:
            e.task = e.task or spec.name
            return self._failed(spec, e, started)
        except OSError as e:
            err = TaskIOError(str(e), path=getattr(e, "filename", None), task=spec.name)
            return self._failed(spec, err, started)
        except Exception as e:  # noqa: BLE001
            step_logger.exception("Unexpected error in %s", spec.name)
            return self._failed(spec, InputError(f"{type(e).__name__}: {e}", task=spec.name), started)

        if spec.track_changes:
            self.detector.commit(
                spec.name,
                inputs,
                processed=todo,
                fingerprints=fingerprints,
                depends=depends,
                outputs=ctx.outputs,
            )
        duration = time.perf_counter() - started
        step_logger.info("Finished %s in %.2fs (%d outputs)", spec.name, duration, len(ctx.written))
        return TaskResult(
            spec.name, Status.OK, processed=todo, outputs=list(ctx.written), duration=duration
        )

    def _failed(self, spec: TaskSpec, err: TaskError, started: float) -> TaskResult:
        return TaskResult(
            spec.name, Status.FAILED, error=err, duration=time.perf_counter() - started
        )

    def output_paths(self, only: Iterable[str] | None = None) -> list[str]:
        """Generated-output globs declared by the selected tasks."""
        patterns: list[str] = []
        for name in self._select(only):
            patterns.extend(resolve_patterns(self.tasks[name].outputs, self.config))
        return patterns
