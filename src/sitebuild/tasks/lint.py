"""Lint tasks behind ``sitebuild test``.

Both tasks check every file before failing so one run reports all
violations. They never skip unchanged inputs.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Iterator, List

from jinja2 import Environment, TemplateSyntaxError

from ..orchestrator import task
from ..orchestrator.errors import InputError, LintViolation, Violation
from .styles import compile_file, error_line


EMPTY_RULE_RE = re.compile(r"[^{};\s][^{};]*\{\s*\}")
IMPORTANT_RE = re.compile(r"!\s*important\b", re.I)
LINE_COMMENT_RE = re.compile(r"//.*$")


def _line_of(text: str, offset: int) -> int:
    return text.count("\n", 0, offset) + 1


def whitespace_violations(path: Path, text: str) -> Iterator[Violation]:
    for lineno, line in enumerate(text.splitlines(), start=1):
        if line != line.rstrip():
            yield Violation(path, lineno, "trailing-whitespace", "line ends with whitespace")
        indent = line[: len(line) - len(line.lstrip())]
        if "\t" in indent:
            yield Violation(path, lineno, "indentation", "tab used for indentation")


@task(
    name="lint_templates",
    inputs=lambda c: [f"{c.dirs.templates}/**/*.html", f"!{c.dirs.templates}/macros/**"],
    track_changes=False,
)
def lint_templates(ctx):
    env = Environment()
    violations: List[Violation] = []
    for path in ctx.inputs:
        text = ctx.read_text(path)
        try:
            env.parse(text, name=path.name, filename=str(path))
        except TemplateSyntaxError as e:
            violations.append(Violation(path, e.lineno, "syntax", e.message or str(e)))
        violations.extend(whitespace_violations(path, text))
    ctx.logger.info("Checked %d template(s)", len(ctx.inputs))
    if violations:
        raise LintViolation(violations)


def style_violations(path: Path, text: str) -> Iterator[Violation]:
    yield from whitespace_violations(path, text)
    for lineno, line in enumerate(text.splitlines(), start=1):
        code = LINE_COMMENT_RE.sub("", line)
        if IMPORTANT_RE.search(code):
            yield Violation(path, lineno, "no-important", "avoid !important")
    for m in EMPTY_RULE_RE.finditer(text):
        yield Violation(path, _line_of(text, m.start()), "no-empty-rulesets", "empty rule set")


@task(
    name="lint_styles",
    inputs=lambda c: [f"{c.dirs.styles}/**/*.scss"],
    track_changes=False,
)
def lint_styles(ctx):
    violations: List[Violation] = []
    for path in ctx.inputs:
        text = ctx.read_text(path)
        violations.extend(style_violations(path, text))
        # Partials only compile in the context of an entry file
        if not path.name.startswith("_"):
            try:
                compile_file(path, ctx.config)
            except InputError as e:
                violations.append(Violation(path, error_line(e), "syntax", e.message))
    ctx.logger.info("Checked %d stylesheet(s)", len(ctx.inputs))
    if violations:
        raise LintViolation(violations)
