from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from sitebuild.orchestrator.cli import app


runner = CliRunner()


@pytest.fixture
def cfg_arg(site):
    return ["--config", str(site / "sitebuild.yaml")]


def _snapshot(root: Path) -> dict[str, bytes]:
    return {p.relative_to(root).as_posix(): p.read_bytes() for p in sorted(root.rglob("*")) if p.is_file()}


def test_build_writes_outputs_and_checkpoint(site, public, cfg_arg):
    result = runner.invoke(app, ["build", *cfg_arg])
    assert result.exit_code == 0, result.output
    assert "Build complete" in result.output
    assert (public / "home.html").is_file()
    assert (public / "css/main.css").is_file()
    assert (site / ".sitebuild/cache.json").is_file()


def test_build_failure_exits_non_zero_but_builds_the_rest(site, public, cfg_arg, write):
    write(site / "src/styles/main.scss", "body {\n  color: red\n")
    result = runner.invoke(app, ["build", *cfg_arg])
    assert result.exit_code == 1
    assert "styles" in result.output
    assert "main.scss" in result.output
    assert (public / "js/app.js").is_file()
    assert (public / "images/photo.jpg").is_file()
    assert not (public / "css/main.css").exists()


def test_build_only_selected_tasks(public, cfg_arg):
    result = runner.invoke(app, ["build", *cfg_arg, "--only", "fonts"])
    assert result.exit_code == 0, result.output
    assert (public / "fonts/inter.woff2").is_file()
    assert not (public / "home.html").exists()


def test_build_unknown_task_is_usage_error(cfg_arg):
    result = runner.invoke(app, ["build", *cfg_arg, "--only", "nope"])
    assert result.exit_code == 2
    assert "nope" in result.output


def test_clean_then_rebuild_is_identical(site, public, cfg_arg):
    sources = _snapshot(site / "src")
    assert runner.invoke(app, ["build", *cfg_arg]).exit_code == 0
    first = _snapshot(public)
    assert first

    result = runner.invoke(app, ["clean", *cfg_arg])
    assert result.exit_code == 0, result.output
    assert _snapshot(public) == {}
    assert not (site / ".sitebuild/cache.json").exists()
    assert _snapshot(site / "src") == sources

    assert runner.invoke(app, ["build", *cfg_arg]).exit_code == 0
    assert _snapshot(public) == first


def test_clean_keeps_unrelated_public_files(site, public, cfg_arg, write):
    runner.invoke(app, ["build", *cfg_arg])
    keep = write(public / "robots.txt", "User-agent: *\n")
    assert runner.invoke(app, ["clean", *cfg_arg]).exit_code == 0
    assert keep.is_file()
    assert not (public / "home.html").exists()


def test_lint_command_passes_on_clean_sources(cfg_arg):
    result = runner.invoke(app, ["test", *cfg_arg])
    assert result.exit_code == 0, result.output
    assert "No lint violations" in result.output


def test_lint_command_fails_on_violation(site, cfg_arg, write):
    write(site / "src/templates/pages/home.html", "<p>trailing</p>  \n")
    result = runner.invoke(app, ["test", *cfg_arg])
    assert result.exit_code == 1
    assert "trailing-whitespace" in result.output
    assert "home.html:1" in result.output


def test_missing_config_exits_with_config_error(tmp_path):
    result = runner.invoke(app, ["build", "--config", str(tmp_path / "absent.yaml")])
    assert result.exit_code == 2
    assert "Configuration error" in result.output


def test_invalid_config_exits_with_config_error(site, cfg_arg, write):
    write(site / "sitebuild.yaml", "dirs:\n  templates: t\n")
    result = runner.invoke(app, ["test", *cfg_arg])
    assert result.exit_code == 2
    assert "Missing required directory" in result.output


def test_list_shows_discovered_tasks():
    result = runner.invoke(app, ["list"])
    assert result.exit_code == 0
    for name in ("sprite", "images", "templates", "styles", "scripts", "fonts", "lint_templates", "lint_styles"):
        assert f"- {name}" in result.output
