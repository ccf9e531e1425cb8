"""Tests for per-scene, per-language prod document fanout."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

from bs4 import BeautifulSoup

from conftest import PNG_BYTES, write
from santa_release.assets import has_image
from santa_release.catalog import LanguageCatalog, load_catalogs
from santa_release.config import ReleaseConfig
from santa_release.documents import DocumentTemplate, localize, parse_html
from santa_release.fanout import load_scenes, release_prod
from santa_release.models import MissingMessageLedger, SceneDescriptor


def _release(config: ReleaseConfig) -> MissingMessageLedger:
    async def run() -> MissingMessageLedger:
        ledger = MissingMessageLedger()
        langs = await load_catalogs(config.root / "_messages", "en", ledger)
        scenes = await load_scenes(config.root / "scenes.json")
        written = await release_prod(config, scenes, langs)
        assert len(written) == 6
        return ledger

    return asyncio.run(run())


def _read(path: Path) -> BeautifulSoup:
    return BeautifulSoup(path.read_text(encoding="utf-8"), "html.parser")


def test_scene_is_written_for_every_language(config: ReleaseConfig) -> None:
    ledger = _release(config)

    prod = config.output_root / "prod"
    assert (prod / "icehockey.html").is_file()
    assert (prod / "intl" / "fr_ALL" / "icehockey.html").is_file()
    assert ledger.missing == {"scene_icehockey": {"fr"}}

    french = _read(prod / "intl" / "fr_ALL" / "icehockey.html")
    assert french.html["lang"] == "fr"
    assert french.title.string == "Ice Hockey"
    assert french.select_one('[property="og:title"]')["content"] == "Ice Hockey"
    assert french.h1.get_text() == "Suivi du Père Noël"
    assert french.select_one("[msgid]") is None
    assert french.find(id="DEV") is None


def test_scene_metadata_points_at_og_image(config: ReleaseConfig) -> None:
    _release(config)

    page = _read(config.output_root / "prod" / "icehockey.html")
    expected = "https://santa.example.com/images/og/icehockey.png"
    assert page.select_one('[property="og:image"]')["content"] == expected
    assert page.select_one('[name="twitter:image"]')["content"] == expected
    assert page.body["data-static"] == "https://static.example.com/v201912240000/"
    assert page.body["data-version"] == "v201912240000"

    index = _read(config.output_root / "prod" / "index.html")
    assert index.select_one('[property="og:image"]')["content"] == "https://example.com/default.png"
    assert index.title.string == "Santa Tracker"


def test_other_pages_manifests_and_files(config: ReleaseConfig) -> None:
    _release(config)

    prod = config.output_root / "prod"
    error = _read(prod / "intl" / "fr_ALL" / "error.html")
    assert error.p.string == "Une erreur est survenue"
    assert error.body["data-static"] == config.static_path

    manifest = json.loads((prod / "intl" / "fr_ALL" / "manifest.json").read_text(encoding="utf-8"))
    assert manifest == {"name": "Suivi du Père Noël", "display": "standalone"}
    assert (prod / "robots.txt").read_text(encoding="utf-8") == "User-agent: *\n"
    assert (prod / "images" / "og" / "icehockey.png").read_bytes() == PNG_BYTES


def test_scene_without_valid_image_keeps_default(config: ReleaseConfig) -> None:
    write(config.root, "prod/images/og/icehockey.png", "tiny")
    _release(config)

    page = _read(config.output_root / "prod" / "icehockey.html")
    assert page.select_one('[property="og:image"]')["content"] == "https://example.com/default.png"


def test_has_image(tmp_path: Path) -> None:
    image = tmp_path / "ok.png"
    image.write_bytes(PNG_BYTES)
    text = write(tmp_path, "bad.png", "x" * 100)

    assert asyncio.run(has_image(image))
    assert not asyncio.run(has_image(text))
    assert not asyncio.run(has_image(tmp_path / "missing.png"))


def test_scene_descriptor_message_ids() -> None:
    assert SceneDescriptor("").msgid == "santatracker"
    assert SceneDescriptor("").filename == "index.html"
    assert SceneDescriptor("boatload").msgid == "scene_boatload"
    assert SceneDescriptor("carpool", video=True).msgid == "scene_videoscene_carpool"
    assert SceneDescriptor("tracker", msgid_override="tracker_title").msgid == "tracker_title"
    assert SceneDescriptor("blank", video=True, msgid_override="").msgid == ""
    assert SceneDescriptor("orphan", has_info=False).msgid == "santatracker"


def test_scene_registry_message_ids(tmp_path: Path) -> None:
    path = write(
        tmp_path,
        "scenes.json",
        json.dumps({
            "": {},
            "orphan": None,
            "blank": {"msgid": "", "video": True},
            "carpool": {"video": True},
            "boatload": {},
        }),
    )

    scenes = asyncio.run(load_scenes(path))
    assert {scene_id: scene.msgid for scene_id, scene in scenes.items()} == {
        "": "santatracker",
        "orphan": "santatracker",
        "blank": "",
        "carpool": "scene_videoscene_carpool",
        "boatload": "scene_boatload",
    }
    assert scenes["orphan"].filename == "orphan.html"


def test_localize_leaves_template_untouched(tmp_path: Path) -> None:
    path = write(tmp_path, "page.html", '<html><body><p msgid="hi">Hi</p></body></html>')
    template = asyncio.run(DocumentTemplate.prod(path))
    catalog = LanguageCatalog("de", {"hi": "Hallo"})

    rendered = parse_html(template.render(catalog))
    assert rendered.p.string == "Hallo"
    assert template.document.p["msgid"] == "hi"
    assert localize(template.document, catalog).html["lang"] == "de"
