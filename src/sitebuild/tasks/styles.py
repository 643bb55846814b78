"""Stylesheets: SCSS entry files compiled with libsass.

Partials (``_*.scss`` and anything in sub-directories) are dependencies, not
outputs. Development builds embed a source map; other builds are minified
with csscompressor.
"""

from __future__ import annotations

import re
from pathlib import Path

import csscompressor
import sass

from ..orchestrator import task
from ..orchestrator.errors import InputError


LINE_RE = re.compile(r"on line (\d+)")


def include_paths(config) -> list[str]:
    paths = [str(config.path("styles"))]
    paths.extend(str(config.resolve(p)) for p in config.include_paths)
    return paths


def compile_file(path: Path, config, output_hint: Path | None = None) -> str:
    """Compile one entry file; CompileError becomes InputError."""
    kwargs = dict(
        filename=str(path),
        include_paths=include_paths(config),
        output_style="expanded",
    )
    try:
        if config.development and output_hint is not None:
            css, _ = sass.compile(
                source_map_filename=str(output_hint) + ".map",
                output_filename_hint=str(output_hint),
                source_map_embed=True,
                source_map_contents=True,
                **kwargs,
            )
            return css
        return sass.compile(**kwargs)
    except sass.CompileError as e:
        raise InputError(str(e).strip(), path=path) from e


def error_line(err: InputError) -> int | None:
    m = LINE_RE.search(err.message)
    return int(m.group(1)) if m else None


@task(
    name="styles",
    inputs=lambda c: [f"{c.dirs.styles}/*.scss", f"!{c.dirs.styles}/_*.scss"],
    depends=lambda c: [f"{c.dirs.styles}/**/_*.scss", f"{c.dirs.styles}/*/**/*.scss"],
    outputs=lambda c: [f"{c.dirs.public}/css"],
    output_dir=lambda c: f"{c.dirs.public}/css",
)
def build_styles(ctx):
    for src in ctx.inputs:
        name = f"{src.stem}.css"
        css = compile_file(src, ctx.config, output_hint=ctx.output_path(name))
        if not ctx.config.development:
            css = csscompressor.compress(css)
        ctx.write_text(name, css, source=src)
