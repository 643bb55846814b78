"""Page templates: Jinja2 pages rendered to HTML in the public root.

Only files under ``pages/`` become output; layouts, partials and macros next
to them are dependencies, so editing a layout re-renders every page. Rendered
HTML is re-indented with BeautifulSoup unless ``templates.prettify`` is off.
"""

from __future__ import annotations

from bs4 import BeautifulSoup
from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError, TemplateSyntaxError

from ..orchestrator import task
from ..orchestrator.errors import InputError


def prettify(html: str) -> str:
    return BeautifulSoup(html, "html.parser").prettify()


def _environment(ctx) -> Environment:
    return Environment(
        loader=FileSystemLoader(str(ctx.config.path("templates"))),
        undefined=StrictUndefined,
        keep_trailing_newline=True,
        autoescape=False,
    )


@task(
    name="templates",
    inputs=lambda c: [f"{c.dirs.templates}/pages/*.html"],
    depends=lambda c: [f"{c.dirs.templates}/**/*.html", f"!{c.dirs.templates}/pages/*.html"],
    outputs=lambda c: [f"{c.dirs.public}/*.html"],
    output_dir=lambda c: c.dirs.public,
)
def build_templates(ctx):
    env = _environment(ctx)
    root = ctx.config.path("templates")
    for page in ctx.inputs:
        name = page.relative_to(root).as_posix()
        try:
            html = env.get_template(name).render(env=ctx.config.env, page=page.stem)
        except TemplateSyntaxError as e:
            where = e.filename or str(page)
            raise InputError(f"line {e.lineno}: {e.message}", path=where) from e
        except TemplateError as e:
            raise InputError(str(e), path=page) from e
        if ctx.config.prettify_html:
            html = prettify(html)
        ctx.write_text(page.name, html, source=page)
        ctx.logger.debug("Rendered %s", name)
