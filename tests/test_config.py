from __future__ import annotations

from pathlib import Path

import pytest

from sitebuild.orchestrator.config import from_dict, load_config
from sitebuild.orchestrator.errors import ConfigError


DIRS = {
    "templates": "src/templates",
    "styles": "src/styles",
    "scripts": "src/scripts",
    "images": "src/images",
    "fonts": "src/fonts",
    "public": "public/",
}


def test_defaults_fill_optional_sections(tmp_path):
    cfg = from_dict({"dirs": DIRS}, root=tmp_path)
    assert cfg.env == "production"
    assert not cfg.development
    assert cfg.server.port == 8080
    assert cfg.build.concurrency == 4
    assert cfg.watch.restart_policy == "queue"
    assert cfg.watch.reload_on_failure is False
    assert cfg.dirs.public == "public"
    assert cfg.path("public") == tmp_path / "public"
    assert cfg.cache_path == tmp_path / ".sitebuild" / "cache.json"
    assert cfg.log_path is None


def test_missing_directory_mapping_is_fatal(tmp_path):
    dirs = {k: v for k, v in DIRS.items() if k != "fonts"}
    with pytest.raises(ConfigError, match="fonts"):
        from_dict({"dirs": dirs}, root=tmp_path)


@pytest.mark.parametrize(
    "raw, message",
    [
        ({"dirs": DIRS, "watch": {"restart_policy": "sometimes"}}, "restart_policy"),
        ({"dirs": DIRS, "build": {"concurrency": 0}}, "concurrency"),
        ({"dirs": DIRS, "build": {"concurrency": "many"}}, "concurrency"),
        ({"dirs": DIRS, "server": ["not", "a", "mapping"]}, "server"),
        (["not", "a", "mapping"], "mapping"),
    ],
)
def test_invalid_values_raise_config_error(tmp_path, raw, message):
    with pytest.raises(ConfigError, match=message):
        from_dict(raw, root=tmp_path)


def test_environment_overrides_file(tmp_path, monkeypatch):
    monkeypatch.setenv("SITEBUILD_ENV", "development")
    monkeypatch.setenv("SITEBUILD_PORT", "9123")
    cfg = from_dict({"dirs": DIRS, "env": "production", "server": {"port": 3000}}, root=tmp_path)
    assert cfg.development
    assert cfg.server.port == 9123


def test_bad_port_in_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("SITEBUILD_PORT", "eighty")
    with pytest.raises(ConfigError, match="port"):
        from_dict({"dirs": DIRS}, root=tmp_path)


def test_load_config_reads_yaml_and_sets_root(config, site):
    assert config.root == site
    assert config.watch.debounce == pytest.approx(0.05)
    assert config.path("styles") == site / "src" / "styles"


def test_load_config_reads_dotenv_next_to_config(site, write):
    write(site / ".env", "SITEBUILD_ENV=development\n")
    cfg = load_config(site / "sitebuild.yaml")
    assert cfg.development


def test_missing_config_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "nope.yaml")


def test_invalid_yaml(tmp_path, write):
    p = write(tmp_path / "sitebuild.yaml", "dirs: [unclosed\n")
    with pytest.raises(ConfigError, match="Invalid YAML"):
        load_config(p)


def test_include_paths_and_log_file(tmp_path: Path):
    cfg = from_dict(
        {"dirs": DIRS, "styles": {"include_paths": ["vendor/scss"]}, "log_file": "logs/build.log"},
        root=tmp_path,
    )
    assert cfg.include_paths == ("vendor/scss",)
    assert cfg.log_path == tmp_path / "logs" / "build.log"
