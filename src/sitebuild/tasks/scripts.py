"""Scripts: each top-level ``.js`` file is an entry bundled into ``js/``.

Entries pull in other files with ``//= require path/to/file`` lines, resolved
relative to the requiring file. Shared code lives in sub-directories, whose
changes rebuild every entry. A file is included once per bundle; a require
cycle is an input error.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import List, Set

import rjsmin

from ..orchestrator import task
from ..orchestrator.errors import InputError


REQUIRE_RE = re.compile(r"""^[ \t]*//=[ \t]*require[ \t]+["']?([^"'\s]+)["']?[ \t]*$""", re.M)


def bundle(ctx, entry: Path) -> str:
    seen: Set[Path] = set()
    return _inline(ctx, entry.resolve(), seen, [])


def _inline(ctx, path: Path, seen: Set[Path], stack: List[Path]) -> str:
    if path in stack:
        chain = " -> ".join(p.name for p in [*stack, path])
        raise InputError(f"circular require: {chain}", path=stack[-1])
    if path in seen:
        return ""
    seen.add(path)
    text = ctx.read_text(path)

    def replace(m: re.Match) -> str:
        target = (path.parent / m.group(1)).resolve()
        if not target.suffix:
            target = target.with_suffix(".js")
        if not target.is_file():
            raise InputError(f"required file not found: {m.group(1)}", path=path)
        return _inline(ctx, target, seen, [*stack, path]).rstrip("\n")

    return REQUIRE_RE.sub(replace, text)


@task(
    name="scripts",
    inputs=lambda c: [f"{c.dirs.scripts}/*.js"],
    depends=lambda c: [f"{c.dirs.scripts}/*/**/*.js"],
    outputs=lambda c: [f"{c.dirs.public}/js"],
    output_dir=lambda c: f"{c.dirs.public}/js",
)
def build_scripts(ctx):
    for entry in ctx.inputs:
        code = bundle(ctx, entry)
        if not ctx.config.development:
            code = rjsmin.jsmin(code)
        ctx.write_text(entry.name, code, source=entry)
