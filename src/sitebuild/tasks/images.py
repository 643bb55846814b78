"""Image optimization.

Raster images are re-encoded with Pillow (JPEG quality 90 progressive, PNG
and GIF optimized) and the smaller of original and re-encoded bytes is kept.
SVGs lose comments, metadata and insignificant whitespace. Anything else is
copied as-is. Icons are left to the sprite task.
"""

from __future__ import annotations

import io
import xml.etree.ElementTree as ET
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from ..orchestrator import task
from ..orchestrator.errors import InputError
from .sprite import parse_svg, strip


RASTER_FORMATS = {
    ".jpg": "JPEG",
    ".jpeg": "JPEG",
    ".png": "PNG",
    ".gif": "GIF",
}


def optimize_raster(path: Path, fmt: str) -> bytes:
    original = path.read_bytes()
    try:
        with Image.open(io.BytesIO(original)) as img:
            buf = io.BytesIO()
            if fmt == "JPEG":
                if img.mode not in ("RGB", "L", "CMYK"):
                    img = img.convert("RGB")
                img.save(buf, "JPEG", quality=90, progressive=True, optimize=True)
            elif fmt == "PNG":
                img.save(buf, "PNG", optimize=True)
            else:
                img.save(buf, "GIF", optimize=True, save_all=getattr(img, "is_animated", False))
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise InputError(f"cannot optimize image: {e}", path=path) from e
    optimized = buf.getvalue()
    return optimized if len(optimized) < len(original) else original


def optimize_svg(path: Path) -> bytes:
    root = strip(parse_svg(path))
    return ET.tostring(root, encoding="utf-8", xml_declaration=False)


@task(
    name="images",
    inputs=lambda c: [f"{c.dirs.images}/**/*", f"!{c.dirs.images}/icons/**"],
    outputs=lambda c: [f"{c.dirs.public}/images"],
    output_dir=lambda c: f"{c.dirs.public}/images",
)
def build_images(ctx):
    base = ctx.config.path("images")
    for src in ctx.inputs:
        rel = src.relative_to(base)
        ext = src.suffix.lower()
        if ext in RASTER_FORMATS:
            ctx.write_bytes(rel, optimize_raster(src, RASTER_FORMATS[ext]), source=src)
        elif ext == ".svg":
            ctx.write_bytes(rel, optimize_svg(src), source=src)
        else:
            ctx.copy(src, rel)
