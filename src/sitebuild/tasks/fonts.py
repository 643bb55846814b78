"""Fonts are copied verbatim, keeping their layout under ``fonts/``."""

from ..orchestrator import task


@task(
    name="fonts",
    inputs=lambda c: [f"{c.dirs.fonts}/**/*"],
    outputs=lambda c: [f"{c.dirs.public}/fonts"],
    output_dir=lambda c: f"{c.dirs.public}/fonts",
)
def build_fonts(ctx):
    base = ctx.config.path("fonts")
    for src in ctx.inputs:
        ctx.copy(src, src.relative_to(base))
