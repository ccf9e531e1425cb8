"""Shared fixtures: a small source tree and fake pipeline collaborators."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List

import pytest

from santa_release.config import ReleaseConfig
from santa_release.documents import parse_html
from santa_release.loader import Compiled, StylesheetCompiler
from santa_release.models import EntryPoint
from santa_release.transpile import Babel, TransformResult

PNG_BYTES = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR" + b"\x00" * 80

PROD_INDEX = """<!DOCTYPE html>
<html>
<head>
<title msgid="santatracker">Santa Tracker</title>
<meta property="og:title" content="">
<meta property="og:image" content="https://example.com/default.png">
<meta name="twitter:image" content="https://example.com/default.png">
<script id="DEV" src="dev.js"></script>
</head>
<body>
<h1><i18n-msg msgid="santatracker">Santa Tracker</i18n-msg></h1>
</body>
</html>
"""

PROD_ERROR = """<!DOCTYPE html>
<html>
<head><title msgid="santatracker">Santa Tracker</title></head>
<body><p msgid="error">Error</p></body>
</html>
"""

STATIC_INDEX = """<!DOCTYPE html>
<html>
<head>
<link rel="stylesheet" href="style.css">
<link rel="stylesheet" href="https://fonts.example.com/font.css">
<script src="lib.js"></script>
<script src="https://cdn.example.com/analytics.js"></script>
<script id="DEV">window.dev = true;</script>
</head>
<body>
<script type="module" src="app.js"></script>
</body>
</html>
"""

SCENE_INDEX = """<!DOCTYPE html>
<html>
<head><script src="../../lib.js"></script></head>
<body>
<script type="module">
import {greet} from '../../util.js';
greet('icehockey');
</script>
</body>
</html>
"""


def write(root: Path, rel: str, content: str) -> Path:
    target = root / rel
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")
    return target


def write_messages(root: Path, catalogs: Dict[str, Dict[str, str]]) -> None:
    for lang, messages in catalogs.items():
        data = {msgid: {"message": text} for msgid, text in messages.items()}
        write(root, f"_messages/{lang}.json", json.dumps(data))


def make_entry(entry_id: str, directory: Path, code: str) -> EntryPoint:
    document = parse_html('<script type="module"></script>')
    return EntryPoint(entry_id, directory, code, document.script)


class IdentityEngine:
    """Transform engine that records its inputs and returns them unchanged."""

    def __init__(self, banner: str = "") -> None:
        self.banner = banner
        self.calls: List[str] = []

    def transform(self, code: str, filename: str) -> TransformResult:
        self.calls.append(filename)
        return TransformResult(self.banner + code)


class FakeStylesheets(StylesheetCompiler):
    """Stylesheet compiler that never needs libsass."""

    def __init__(self) -> None:
        super().__init__()
        self.compiled: List[str] = []

    def compile(self, path: Path, minify: bool = True) -> str:
        self.compiled.append(path.name)
        if path.is_file():
            return path.read_text(encoding="utf-8").strip()
        return f".{path.stem}{{}}"


async def fake_scene_compiler(scene_name: str) -> Compiled:
    return Compiled(f"export const scene = {json.dumps(scene_name)};\n")


@pytest.fixture
def site(tmp_path: Path) -> Path:
    root = tmp_path / "site"
    write_messages(
        root,
        {
            "en": {
                "santatracker": "Santa Tracker",
                "scene_icehockey": "Ice Hockey",
                "error": "Something went wrong",
            },
            "fr": {
                "santatracker": "Suivi du Père Noël",
                "error": "Une erreur est survenue",
            },
        },
    )
    write(root, "scenes.json", json.dumps({"": {}, "icehockey": {}}))
    write(root, "prod/index.html", PROD_INDEX)
    write(root, "prod/error.html", PROD_ERROR)
    write(root, "prod/manifest.json", json.dumps({"name": "", "display": "standalone"}))
    write(root, "prod/robots.txt", "User-agent: *\n")
    og = root / "prod/images/og/icehockey.png"
    og.parent.mkdir(parents=True, exist_ok=True)
    og.write_bytes(PNG_BYTES)

    write(root, "index.html", STATIC_INDEX)
    write(root, "scenes/icehockey/index.html", SCENE_INDEX)
    write(root, "style.css", "body { margin: 0; }")
    write(root, "lib.js", "window.lib = {};\n")
    write(root, "app.js", "import {greet} from './util.js';\ngreet('app');\n")
    write(root, "util.js", "export function greet(name) {\n  return 'hello ' + name;\n}\n")
    write(root, "img/logo.png", "not really a png")
    return root


@pytest.fixture
def config(site: Path, tmp_path: Path) -> ReleaseConfig:
    return ReleaseConfig(
        root=site,
        output_root=tmp_path / "dist",
        build="v201912240000",
        prod_url="https://santa.example.com/",
        base_url="https://static.example.com/",
    )


@pytest.fixture(scope="session")
def babel() -> Babel:
    """One Babel interpreter for the whole run; loading it is slow."""
    return Babel()
