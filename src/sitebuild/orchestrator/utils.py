"""Path helpers: gulp-style glob matching and safe output writes."""

from __future__ import annotations

import os
import re
import tempfile
import threading
from functools import lru_cache
from pathlib import Path
from typing import Iterable


@lru_cache(maxsize=512)
def glob_regex(pattern: str) -> re.Pattern:
    """Compile a glob into a regex over posix paths.

    ``*`` and ``?`` never cross a ``/``; ``**/`` matches zero or more
    directories and a trailing ``**`` matches everything below.
    """
    out: list[str] = []
    i, n = 0, len(pattern)
    while i < n:
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            out.append("[^/]")
            i += 1
        elif pattern[i] == "[":
            j = pattern.find("]", i + 2)
            if j == -1:
                out.append(re.escape("["))
                i += 1
                continue
            body = pattern[i + 1 : j]
            if body.startswith("!"):
                body = "^" + body[1:]
            out.append(f"[{body}]")
            i = j + 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(out) + r"\Z")


def absolute_pattern(pattern: str, root: Path) -> str:
    if not os.path.isabs(pattern):
        pattern = os.path.join(os.path.abspath(root), pattern)
    return Path(os.path.normpath(pattern)).as_posix()


def split_patterns(patterns: Iterable[str], root: Path) -> tuple[list[str], list[str]]:
    """Separate include globs from ``!``-prefixed excludes, both made absolute."""
    include: list[str] = []
    exclude: list[str] = []
    for pat in patterns:
        pat = str(pat)
        if pat.startswith("!"):
            exclude.append(absolute_pattern(pat[1:], root))
        else:
            include.append(absolute_pattern(pat, root))
    return include, exclude


def matches(path: str | Path, patterns: Iterable[str], root: Path) -> bool:
    include, exclude = split_patterns(patterns, root)
    p = Path(os.path.abspath(path)).as_posix()
    if not any(glob_regex(pat).match(p) for pat in include):
        return False
    return not any(glob_regex(pat).match(p) for pat in exclude)


def _static_base(pattern: str) -> Path:
    parts = []
    for part in pattern.split("/"):
        if any(ch in part for ch in "*?["):
            break
        parts.append(part)
    return Path("/".join(parts) or "/")


def expand_globs(patterns: Iterable[str], root: Path) -> list[Path]:
    """Files matching any include pattern and no exclude, sorted and unique."""
    include, exclude = split_patterns(patterns, root)
    found: set[str] = set()
    for pat in include:
        if not any(ch in pat for ch in "*?["):
            if os.path.isfile(pat):
                found.add(pat)
            continue
        base = _static_base(pat)
        regex = glob_regex(pat)
        for dirpath, _, files in os.walk(base):
            for name in files:
                p = Path(dirpath, name).as_posix()
                if regex.match(p):
                    found.add(p)
    excluded = [glob_regex(pat) for pat in exclude]
    return [Path(p) for p in sorted(found) if not any(r.match(p) for r in excluded)]


def expand_paths(patterns: Iterable[str], root: Path) -> list[Path]:
    """Like `expand_globs` but also returns matching directories (used by clean)."""
    include, exclude = split_patterns(patterns, root)
    found: set[str] = set()
    for pat in include:
        if not any(ch in pat for ch in "*?["):
            if os.path.exists(pat):
                found.add(pat)
            continue
        regex = glob_regex(pat)
        for dirpath, dirs, files in os.walk(_static_base(pat)):
            for name in dirs + files:
                p = Path(dirpath, name).as_posix()
                if regex.match(p):
                    found.add(p)
    excluded = [glob_regex(pat) for pat in exclude]
    return [Path(p) for p in sorted(found) if not any(r.match(p) for r in excluded)]


def is_within(path: Path, parent: Path) -> bool:
    try:
        Path(os.path.abspath(path)).relative_to(os.path.abspath(parent))
    except ValueError:
        return False
    return True


_locks_guard = threading.Lock()
_path_locks: dict[str, threading.Lock] = {}


def path_lock(path: Path) -> threading.Lock:
    key = os.path.abspath(path)
    with _locks_guard:
        lock = _path_locks.get(key)
        if lock is None:
            lock = _path_locks[key] = threading.Lock()
        return lock


def atomic_write(path: Path, data: bytes) -> None:
    """Replace `path` with `data` in one step; concurrent writers are serialized."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path_lock(path):
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.chmod(tmp, 0o644)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
