"""Icon sprite: every ``images/icons/*.svg`` folded into one ``<symbol>`` sheet."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from pathlib import Path

from ..orchestrator import task
from ..orchestrator.errors import InputError


SVG_NS = "http://www.w3.org/2000/svg"
XLINK_NS = "http://www.w3.org/1999/xlink"
ET.register_namespace("", SVG_NS)
ET.register_namespace("xlink", XLINK_NS)

SPRITE_NAME = "sprite.svg"
DROP_TAGS = {f"{{{SVG_NS}}}metadata", f"{{{SVG_NS}}}title", f"{{{SVG_NS}}}desc"}


def parse_svg(path: Path) -> ET.Element:
    try:
        root = ET.parse(path).getroot()
    except ET.ParseError as e:
        raise InputError(f"invalid SVG: {e}", path=path) from e
    except OSError as e:
        raise InputError(f"cannot read SVG: {e}", path=path) from e
    if root.tag != f"{{{SVG_NS}}}svg":
        raise InputError(f"root element is {root.tag!r}, expected svg", path=path)
    return root


def strip(elem: ET.Element) -> ET.Element:
    """Drop metadata-like children and whitespace-only text, recursively."""
    for child in list(elem):
        if child.tag in DROP_TAGS:
            elem.remove(child)
            continue
        strip(child)
    if elem.text is not None and not elem.text.strip():
        elem.text = None
    if elem.tail is not None and not elem.tail.strip():
        elem.tail = None
    return elem


def view_box(root: ET.Element) -> str | None:
    box = root.get("viewBox")
    if box:
        return box
    width, height = root.get("width"), root.get("height")
    if width and height:
        try:
            return f"0 0 {float(width.rstrip('px')):g} {float(height.rstrip('px')):g}"
        except ValueError:
            return None
    return None


def build_sprite(icons: list[Path]) -> str:
    sheet = ET.Element(f"{{{SVG_NS}}}svg", {"style": "display:none"})
    for icon in icons:
        root = strip(parse_svg(icon))
        symbol = ET.SubElement(sheet, f"{{{SVG_NS}}}symbol", {"id": icon.stem})
        box = view_box(root)
        if box:
            symbol.set("viewBox", box)
        for child in root:
            symbol.append(child)
    return ET.tostring(sheet, encoding="unicode")


@task(
    name="sprite",
    inputs=lambda c: [f"{c.dirs.images}/icons/*.svg"],
    outputs=lambda c: [f"{c.dirs.public}/images/icons/{SPRITE_NAME}"],
    output_dir=lambda c: f"{c.dirs.public}/images/icons",
    aggregate=True,
)
def build_sprite_sheet(ctx):
    if not ctx.all_inputs:
        stale = ctx.output_path(SPRITE_NAME)
        if stale.exists():
            stale.unlink()
            ctx.logger.info("No icons left; removed %s", stale)
        else:
            ctx.logger.info("No icons found")
        return
    ctx.write_text(SPRITE_NAME, build_sprite(ctx.all_inputs) + "\n")
