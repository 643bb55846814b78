from __future__ import annotations

import asyncio
import shutil
from typing import Optional

import typer

from ..pipelines import build_graph, discover_tasks, lint_graph, watch_bindings, watch_dirs
from .cache import ChangeDetector
from .config import DEFAULT_CONFIG, SiteConfig, load_config
from .core import Mode, RunResult
from .errors import ConfigError, LintViolation
from .logging import configure_logging, get_logger
from .server import DevServer
from .utils import expand_paths, is_within
from .watch import RestartPolicy, WatchOrchestrator


app = typer.Typer(add_completion=False, help="Static site asset pipeline")
log = get_logger("cli")

ConfigOption = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config")


def _load(config: str, verbose: bool = False) -> SiteConfig:
    try:
        cfg = load_config(config)
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=2)
    configure_logging(cfg.log_path, verbose=verbose)
    return cfg


def _graph_or_exit(factory, *args, **kwargs):
    try:
        return factory(*args, **kwargs)
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=2)


def _echo_failures(result: RunResult) -> None:
    for res in result.failed:
        if res.error is None:
            typer.echo(f"✗ {res.name}: {res.status.value}", err=True)
        elif isinstance(res.error, LintViolation):
            typer.echo(f"✗ {res.name}: {res.error}", err=True)
        else:
            typer.echo(f"✗ {res.name}: {res.error.kind} error: {res.error}", err=True)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: str = ConfigOption,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Without a sub-command, run the development workflow (same as `dev`)."""
    if ctx.invoked_subcommand is None:
        dev(config=config, port=None, verbose=verbose)


@app.command("list")
def list_tasks():
    """List discovered tasks."""
    specs = discover_tasks()
    if not specs:
        typer.echo("No tasks discovered.")
        raise typer.Exit(code=0)
    typer.echo("Discovered tasks:")
    for name in sorted(specs.keys()):
        typer.echo(f"- {name}")


@app.command()
def build(
    config: str = ConfigOption,
    force: bool = typer.Option(False, help="Ignore change records and rebuild everything"),
    concurrency: int = typer.Option(0, help="Max tasks in flight (0 = config value)"),
    only: str = typer.Option("", help="Comma-separated tasks to run"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Run every asset task once, in parallel, without a server."""
    cfg = _load(config, verbose)
    detector = ChangeDetector.load(cfg.cache_path)
    graph = _graph_or_exit(build_graph, cfg, detector=detector)
    if concurrency > 0:
        graph.concurrency = concurrency
    selected = [x.strip() for x in only.split(",") if x.strip()] or None
    try:
        result = graph.run(mode=Mode.PARALLEL, only=selected, force=force)
    except KeyError as e:
        typer.echo(str(e).strip("'\""), err=True)
        raise typer.Exit(code=2)
    if cfg.cache_path is not None:
        detector.save(cfg.cache_path)
    if not result.ok:
        _echo_failures(result)
        raise typer.Exit(code=1)
    typer.echo(f"Build complete ({len(result.results)} tasks)")


@app.command()
def test(
    config: str = ConfigOption,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Lint templates and stylesheets; exit non-zero on any violation."""
    cfg = _load(config, verbose)
    graph = _graph_or_exit(lint_graph, cfg)
    result = graph.run(mode=Mode.PARALLEL)
    if not result.ok:
        _echo_failures(result)
        raise typer.Exit(code=1)
    typer.echo("No lint violations")


@app.command()
def clean(
    config: str = ConfigOption,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Delete generated output and the change-record checkpoint."""
    cfg = _load(config, verbose)
    graph = _graph_or_exit(build_graph, cfg)
    public = cfg.path("public")
    removed = 0
    for p in expand_paths(graph.output_paths(), cfg.root):
        if not is_within(p, public):
            log.warning("Not removing %s: outside %s", p, public)
            continue
        if p.is_dir():
            shutil.rmtree(p)
        elif p.exists():
            p.unlink()
        else:
            continue
        removed += 1
        log.info("Removed %s", p)
    if cfg.cache_path is not None and cfg.cache_path.exists():
        cfg.cache_path.unlink()
    typer.echo(f"Removed {removed} generated path(s)")


@app.command()
def serve(
    config: str = ConfigOption,
    port: Optional[int] = typer.Option(None, help="Override server port"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Serve the public directory without building or watching."""
    cfg = _load(config, verbose)
    server = DevServer(cfg.path("public"), host=cfg.server.host, port=port or cfg.server.port)
    server.start()
    try:
        asyncio.run(_wait_forever())
    except KeyboardInterrupt:
        pass
    finally:
        server.stop()


@app.command()
def dev(
    config: str = ConfigOption,
    port: Optional[int] = typer.Option(None, help="Override server port"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Build sequentially, then serve with live reload and rebuild on change."""
    cfg = _load(config, verbose)
    try:
        asyncio.run(_dev(cfg, port))
    except KeyboardInterrupt:
        typer.echo("Stopped.")


async def _wait_forever() -> None:
    await asyncio.Event().wait()


async def _dev(cfg: SiteConfig, port: int | None) -> None:
    graph = _graph_or_exit(build_graph, cfg)
    result = await graph.execute(mode=Mode.SEQUENTIAL)
    if not result.ok:
        _echo_failures(result)
        typer.echo("Initial build had failures; watching for fixes.", err=True)

    server = DevServer(cfg.path("public"), host=cfg.server.host, port=port or cfg.server.port)
    server.start()
    watcher = WatchOrchestrator(
        graph,
        watch_bindings(cfg),
        on_reload=server.reload,
        debounce=cfg.watch.debounce,
        policy=RestartPolicy(cfg.watch.restart_policy),
        reload_on_failure=cfg.watch.reload_on_failure,
        ignore=[f"{cfg.dirs.public}/**"],
    )
    watcher.start(watch_dirs(cfg))
    try:
        await _wait_forever()
    finally:
        await watcher.stop()
        server.stop()


def run():  # pragma: no cover
    app()


if __name__ == "__main__":  # pragma: no cover
    run()
