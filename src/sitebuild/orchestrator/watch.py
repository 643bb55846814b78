"""Watch orchestrator: filesystem events to minimal rebuilds to reloads.

States:
    IDLE       nothing pending, nothing running
    TRIGGERED  matching events seen, waiting for the debounce window to close
               (or for a busy binding's run to finish)
    RUNNING    at least one rebuild in flight

Events arrive on watchdog observer threads and are handed to the asyncio loop
with ``call_soon_threadsafe``; all state lives on the loop thread. Each
debounce window collapses into one run over the union of the affected
bindings' tasks. A binding is never part of two in-flight runs: a trigger for
a busy binding is queued until its run finishes, or with the ``cancel``
policy the busy run is cancelled and restarted with the new batch.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Sequence

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .core import Mode, RunResult, TaskGraph
from .logging import get_logger
from .utils import matches


logger = get_logger("watch")

RELEVANT_EVENTS = {"created", "modified", "deleted", "moved"}


class WatchState(enum.Enum):
    IDLE = "idle"
    TRIGGERED = "triggered"
    RUNNING = "running"


class RestartPolicy(enum.Enum):
    QUEUE = "queue"
    CANCEL = "cancel"


@dataclass(frozen=True)
class WatchBinding:
    """Files matching `patterns` re-run `tasks`, then reload when `reload`."""

    name: str
    patterns: tuple[str, ...]
    tasks: tuple[str, ...]
    reload: bool = True


class _SourceEventHandler(FileSystemEventHandler):
    def __init__(self, notify: Callable[[str], None]) -> None:
        super().__init__()
        self._notify = notify

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in RELEVANT_EVENTS:
            return
        for attr in ("src_path", "dest_path"):
            path = getattr(event, attr, None)
            if not path:
                continue
            if isinstance(path, bytes):
                path = path.decode("utf-8")
            self._notify(path)


class WatchOrchestrator:
    def __init__(
        self,
        graph: TaskGraph,
        bindings: Sequence[WatchBinding],
        on_reload: Callable[[], None] | None = None,
        debounce: float = 0.2,
        policy: RestartPolicy = RestartPolicy.QUEUE,
        reload_on_failure: bool = False,
        ignore: Iterable[str] = (),
    ) -> None:
        unknown = {t for b in bindings for t in b.tasks} - set(graph.tasks)
        if unknown:
            raise KeyError(f"Watch bindings reference unknown task(s): {', '.join(sorted(unknown))}")
        self.graph = graph
        self.bindings = {b.name: b for b in bindings}
        self.on_reload = on_reload
        self.debounce = debounce
        self.policy = policy
        self.reload_on_failure = reload_on_failure
        self.ignore = list(ignore)
        self.results: List[RunResult] = []
        self.reloads = 0

        self._loop: asyncio.AbstractEventLoop | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._pending: set[str] = set()
        self._queued: set[str] = set()
        self._runs: dict[asyncio.Task, frozenset[str]] = {}
        self._observer = None

    @property
    def state(self) -> WatchState:
        if self._runs:
            return WatchState.RUNNING
        if self._pending or self._queued:
            return WatchState.TRIGGERED
        return WatchState.IDLE

    # Event intake

    def notify(self, path: str | Path) -> None:
        """Thread-safe entry point for filesystem events."""
        if self._loop is None:
            raise RuntimeError("WatchOrchestrator.start() has not been called")
        self._loop.call_soon_threadsafe(self.handle_event, str(path))

    def handle_event(self, path: str | Path) -> bool:
        """Record a change on the loop thread. Returns whether any binding matched."""
        root = self.graph.config.root
        if self.ignore and matches(path, self.ignore, root):
            return False
        hit = [b.name for b in self.bindings.values() if matches(path, b.patterns, root)]
        if not hit:
            return False
        logger.debug("Change: %s -> %s", path, ", ".join(hit))
        self._pending.update(hit)
        loop = self._loop or asyncio.get_running_loop()
        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self.debounce, self._flush)
        return True

    def _flush(self) -> None:
        self._timer = None
        batch, self._pending = self._pending, set()
        self._dispatch(batch)

    # Run management

    def _busy(self, name: str) -> bool:
        return any(name in names for names in self._runs.values())

    def _dispatch(self, batch: set[str]) -> None:
        busy = {b for b in batch if self._busy(b)}
        if busy and self.policy is RestartPolicy.QUEUE:
            logger.info("Queued behind running rebuild: %s", ", ".join(sorted(busy)))
            self._queued |= busy
            batch = batch - busy
        elif busy:
            for t, names in list(self._runs.items()):
                if names & busy:
                    logger.info("Restarting rebuild: %s", ", ".join(sorted(names)))
                    del self._runs[t]
                    t.cancel()
                    batch = batch | names
        if not batch:
            return
        names = frozenset(batch)
        t = asyncio.ensure_future(self._run(names))
        self._runs[t] = names
        t.add_done_callback(self._run_done)

    def _tasks_for(self, names: Iterable[str]) -> list[str]:
        wanted = {t for n in names for t in self.bindings[n].tasks}
        return [t for t in self.graph.order if t in wanted]

    async def _run(self, names: frozenset[str]) -> RunResult:
        tasks = self._tasks_for(names)
        logger.info("Rebuilding %s: %s", ", ".join(sorted(names)), " → ".join(tasks))
        result = await self.graph.execute(mode=Mode.PARALLEL, only=tasks)
        self.results.append(result)
        wants_reload = any(self.bindings[n].reload for n in names)
        if wants_reload and (result.any_succeeded or self.reload_on_failure):
            self._emit_reload()
        elif wants_reload:
            logger.warning("Every task failed; keeping the last good build (no reload)")
        return result

    def _run_done(self, t: asyncio.Task) -> None:
        self._runs.pop(t, None)
        if t.cancelled():
            return
        err = t.exception()
        if err is not None:
            logger.error("Rebuild crashed: %s", err, exc_info=err)
        ready = {b for b in self._queued if not self._busy(b)}
        if ready:
            self._queued -= ready
            self._dispatch(ready)

    def _emit_reload(self) -> None:
        self.reloads += 1
        if self.on_reload is None:
            return
        try:
            self.on_reload()
        except Exception:  # noqa: BLE001
            logger.exception("Reload broadcast failed")

    # Lifecycle

    def start(self, watch_dirs: Iterable[Path] = ()) -> None:
        """Bind to the running loop and, given directories, start watchdog."""
        self._loop = asyncio.get_running_loop()
        dirs = [Path(d) for d in watch_dirs if Path(d).is_dir()]
        if not dirs:
            return
        handler = _SourceEventHandler(self.notify)
        self._observer = Observer()
        for d in dirs:
            self._observer.schedule(handler, str(d), recursive=True)
        self._observer.start()
        logger.info("Watching %s", ", ".join(str(d) for d in dirs))

    async def wait_idle(self) -> None:
        """Wait until no events are pending and no rebuild is running."""
        while self.state is not WatchState.IDLE:
            if self._runs:
                await asyncio.wait(list(self._runs))
            else:
                await asyncio.sleep(min(self.debounce, 0.05) or 0.01)
            # Let done callbacks dispatch queued work
            await asyncio.sleep(0)

    async def stop(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            await asyncio.to_thread(self._observer.join)
            self._observer = None
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending.clear()
        self._queued.clear()
        runs = list(self._runs)
        for t in runs:
            t.cancel()
        if runs:
            await asyncio.gather(*runs, return_exceptions=True)
        self._runs.clear()
