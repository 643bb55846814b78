"""Site configuration: a YAML file turned into a frozen `SiteConfig`.

The config is loaded once at startup and passed explicitly to the task graph;
nothing reads it from module state afterwards.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Tuple

import yaml
from dotenv import load_dotenv

from .errors import ConfigError


DEFAULT_CONFIG = "sitebuild.yaml"
REQUIRED_DIRS = ("templates", "styles", "scripts", "images", "fonts", "public")
RESTART_POLICIES = ("queue", "cancel")


@dataclass(frozen=True)
class Dirs:
    templates: str
    styles: str
    scripts: str
    images: str
    fonts: str
    public: str


@dataclass(frozen=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass(frozen=True)
class BuildConfig:
    concurrency: int = 4
    cache_file: str | None = ".sitebuild/cache.json"


@dataclass(frozen=True)
class WatchConfig:
    debounce: float = 0.2
    restart_policy: str = "queue"
    reload_on_failure: bool = False


@dataclass(frozen=True)
class SiteConfig:
    root: Path
    dirs: Dirs
    env: str = "production"
    server: ServerConfig = field(default_factory=ServerConfig)
    build: BuildConfig = field(default_factory=BuildConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    include_paths: Tuple[str, ...] = ()
    prettify_html: bool = True
    log_file: str | None = None

    @property
    def development(self) -> bool:
        return self.env == "development"

    def path(self, name: str) -> Path:
        """Absolute path of a logical directory (``templates``, ``public``...)."""
        return self.resolve(getattr(self.dirs, name))

    def resolve(self, value: str | Path) -> Path:
        return Path(os.path.normpath(self.root / value))

    @property
    def cache_path(self) -> Path | None:
        if not self.build.cache_file:
            return None
        return self.resolve(self.build.cache_file)

    @property
    def log_path(self) -> Path | None:
        return self.resolve(self.log_file) if self.log_file else None


def _section(raw: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"`{key}` must be a mapping, got {type(value).__name__}")
    return value


def _dir(value: Any) -> str:
    return str(value).rstrip("/\\") or "."


def from_dict(raw: Dict[str, Any], root: Path) -> SiteConfig:
    """Validate a parsed mapping and build the config. Raises ConfigError."""
    if not isinstance(raw, dict):
        raise ConfigError("Configuration root must be a mapping")
    dirs_raw = _section(raw, "dirs")
    missing = [d for d in REQUIRED_DIRS if not dirs_raw.get(d)]
    if missing:
        raise ConfigError("Missing required directory mapping(s): " + ", ".join(missing))
    dirs = Dirs(**{d: _dir(dirs_raw[d]) for d in REQUIRED_DIRS})

    env = str(os.getenv("SITEBUILD_ENV") or raw.get("env") or "production")

    server_raw = _section(raw, "server")
    try:
        port = int(os.getenv("SITEBUILD_PORT") or server_raw.get("port", 8080))
    except ValueError as e:
        raise ConfigError(f"Invalid server port: {e}") from e
    server = ServerConfig(host=str(server_raw.get("host", "0.0.0.0")), port=port)

    build_raw = _section(raw, "build")
    try:
        concurrency = int(build_raw.get("concurrency", 4))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid build.concurrency: {e}") from e
    if concurrency < 1:
        raise ConfigError("build.concurrency must be at least 1")
    build = BuildConfig(
        concurrency=concurrency,
        cache_file=build_raw.get("cache_file", BuildConfig.cache_file),
    )

    watch_raw = _section(raw, "watch")
    policy = str(watch_raw.get("restart_policy", "queue"))
    if policy not in RESTART_POLICIES:
        raise ConfigError(
            f"watch.restart_policy must be one of {', '.join(RESTART_POLICIES)}, got {policy!r}"
        )
    watch = WatchConfig(
        debounce=float(watch_raw.get("debounce", 0.2)),
        restart_policy=policy,
        reload_on_failure=bool(watch_raw.get("reload_on_failure", False)),
    )

    styles_raw = _section(raw, "styles")
    include_paths = tuple(str(p) for p in styles_raw.get("include_paths") or [])

    templates_raw = _section(raw, "templates")
    prettify_html = bool(templates_raw.get("prettify", True))

    return SiteConfig(
        root=Path(os.path.abspath(root)),
        dirs=dirs,
        env=env,
        server=server,
        build=build,
        watch=watch,
        include_paths=include_paths,
        prettify_html=prettify_html,
        log_file=raw.get("log_file"),
    )


def load_config(path: str | Path = DEFAULT_CONFIG) -> SiteConfig:
    p = Path(path)
    if not p.is_file():
        raise ConfigError(f"Config file not found: {p}")
    load_dotenv(p.parent / ".env")
    try:
        with open(p, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {p}: {e}") from e
    return from_dict(raw, root=p.absolute().parent)
