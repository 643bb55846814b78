"""Shared fixtures: a small site tree in a temporary directory."""

from __future__ import annotations

import os
from pathlib import Path

import pytest
from PIL import Image

from sitebuild.orchestrator.config import SiteConfig, load_config


SITE_YAML = """\
dirs:
  templates: src/templates
  styles: src/styles
  scripts: src/scripts
  images: src/images
  fonts: src/fonts
  public: public
env: production
build:
  concurrency: 4
  cache_file: .sitebuild/cache.json
watch:
  debounce: 0.05
"""

BASE_LAYOUT = """\
<!doctype html>
<html>
<head><title>{% block title %}Site{% endblock %}</title></head>
<body>
{% block content %}{% endblock %}
</body>
</html>
"""

HOME_PAGE = """\
{% extends "layouts/base.html" %}
{% block title %}Home{% endblock %}
{% block content %}<h1>Welcome ({{ env }})</h1>{% endblock %}
"""

ABOUT_PAGE = """\
{% extends "layouts/base.html" %}
{% block content %}<p>About {{ page }}</p>{% endblock %}
"""

VARS_SCSS = "$primary: #336699;\n"

MAIN_SCSS = """\
@import "vars";

body {
  color: $primary;

  a {
    text-decoration: none;
  }
}
"""

APP_JS = """\
//= require lib/util
function main() {
  return util(1, 2);
}
main();
"""

UTIL_JS = """\
function util(a, b) {
  // add the numbers
  return a + b;
}
"""

ICON_SVG = """\
<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 24 24">
  <title>{name}</title>
  <path d="M0 0h24v24H0z"/>
</svg>
"""


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def site(tmp_path: Path) -> Path:
    """A complete, valid site source tree; returns the project root."""
    _write(tmp_path / "sitebuild.yaml", SITE_YAML)
    src = tmp_path / "src"
    _write(src / "templates/layouts/base.html", BASE_LAYOUT)
    _write(src / "templates/pages/home.html", HOME_PAGE)
    _write(src / "templates/pages/about.html", ABOUT_PAGE)
    _write(src / "styles/_vars.scss", VARS_SCSS)
    _write(src / "styles/main.scss", MAIN_SCSS)
    _write(src / "scripts/app.js", APP_JS)
    _write(src / "scripts/lib/util.js", UTIL_JS)
    _write(src / "images/icons/home.svg", ICON_SVG.format(name="home"))
    _write(src / "images/icons/search.svg", ICON_SVG.format(name="search"))
    (src / "images").mkdir(parents=True, exist_ok=True)
    Image.new("RGB", (16, 16), (200, 30, 30)).save(src / "images/photo.jpg", "JPEG", quality=100)
    Image.new("RGBA", (8, 8), (0, 128, 0, 255)).save(src / "images/dot.png", "PNG")
    (src / "fonts").mkdir(parents=True, exist_ok=True)
    (src / "fonts/inter.woff2").write_bytes(b"wOF2\x00\x01fake-font")
    return tmp_path


@pytest.fixture
def config(site: Path) -> SiteConfig:
    return load_config(site / "sitebuild.yaml")


@pytest.fixture
def public(site: Path) -> Path:
    return site / "public"


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    # load_dotenv writes straight into os.environ
    for key in ("SITEBUILD_ENV", "SITEBUILD_PORT"):
        monkeypatch.delenv(key, raising=False)
    yield
    for key in ("SITEBUILD_ENV", "SITEBUILD_PORT"):
        os.environ.pop(key, None)


@pytest.fixture
def write():
    """Helper that writes a text file, creating parent directories."""
    return _write
