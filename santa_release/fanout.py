"""Per-scene and per-language fanout of the prod HTML documents."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Dict, List, Mapping

from bs4 import BeautifulSoup

from .assets import has_image
from .catalog import LanguageCatalog
from .config import ReleaseConfig
from .documents import DocumentTemplate, apply_attribute, apply_attribute_to_all
from .errors import ConfigurationError
from .models import SceneDescriptor
from .utils import copy_all, glob_all, read_text, write_text

logger = logging.getLogger("santa_release.fanout")

OG_IMAGE_SELECTORS = ['[property="og:image"]', '[name="twitter:image"]']
TITLE_SELECTORS = ["title", '[property="og:title"]', '[name="twitter:title"]']


async def load_scenes(path: Path) -> Dict[str, SceneDescriptor]:
    """Read the static scene registry."""
    try:
        data = json.loads(await read_text(path))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid scene registry {path}: {exc}") from exc

    scenes: Dict[str, SceneDescriptor] = {}
    for scene_id, info in data.items():
        if info is None:
            scenes[scene_id] = SceneDescriptor(scene_id=scene_id, has_info=False)
            continue
        scenes[scene_id] = SceneDescriptor(
            scene_id=scene_id,
            video=bool(info.get("video")),
            msgid_override=info.get("msgid"),
        )
    logger.info("Found %d scenes", len(scenes))
    return scenes


async def write_for_langs(
    template: DocumentTemplate,
    filename: str,
    langs: Mapping[str, LanguageCatalog],
    config: ReleaseConfig,
) -> List[Path]:
    """Render `template` once per language into the prod output tree."""
    targets: List[Path] = []
    writes = []
    for lang, catalog in langs.items():
        target = config.prod_dir / config.path_for_lang(lang) / filename
        targets.append(target)
        writes.append(write_text(target, template.render(catalog)))
    await asyncio.gather(*writes)
    return targets


async def release_other_pages(
    config: ReleaseConfig,
    langs: Mapping[str, LanguageCatalog],
) -> List[Path]:
    """Fan out the non-index prod pages (error, cast and similar)."""

    def customize(document: BeautifulSoup) -> None:
        apply_attribute(document.body, "data-static", config.static_path)

    pages = glob_all(config.root, "prod/*.html", "!prod/index.html")
    written: List[Path] = []
    for page in pages:
        template = await DocumentTemplate.prod(config.root / page, customize)
        written.extend(await write_for_langs(template, page.name, langs, config))
    return written


async def scene_template(
    config: ReleaseConfig,
    scene: SceneDescriptor,
) -> DocumentTemplate:
    """Build the customized prod index document for a single scene."""

    async def customize(document: BeautifulSoup) -> None:
        head = document.head
        apply_attribute(document.body, "data-static", config.static_path)
        apply_attribute(document.body, "data-version", config.build)

        image = config.root / "prod" / "images" / "og" / f"{scene.scene_id}.png"
        if scene.scene_id and await has_image(image):
            url = f"{config.prod_url}images/og/{scene.scene_id}.png"
            apply_attribute_to_all(head, OG_IMAGE_SELECTORS, "content", url)

        apply_attribute_to_all(head, TITLE_SELECTORS, "msgid", scene.msgid)

    return await DocumentTemplate.prod(config.root / "prod" / "index.html", customize)


async def release_scenes(
    config: ReleaseConfig,
    scenes: Mapping[str, SceneDescriptor],
    langs: Mapping[str, LanguageCatalog],
) -> List[Path]:
    """Fan out `prod/index.html` to every scene and language."""

    async def release_scene(scene: SceneDescriptor) -> List[Path]:
        template = await scene_template(config, scene)
        return await write_for_langs(template, scene.filename, langs, config)

    results = await asyncio.gather(*(release_scene(scene) for scene in scenes.values()))
    return [path for paths in results for path in paths]


async def release_manifests(
    config: ReleaseConfig,
    langs: Mapping[str, LanguageCatalog],
) -> List[Path]:
    """Write a localized `manifest.json` at every language root."""
    source = config.root / "prod" / "manifest.json"
    if not source.is_file():
        logger.warning("No manifest found at %s", source)
        return []
    manifest = json.loads(await read_text(source))

    targets: List[Path] = []
    for lang, catalog in langs.items():
        localized = dict(manifest)
        localized["name"] = catalog.lookup("santatracker")
        target = config.prod_dir / config.path_for_lang(lang) / "manifest.json"
        await write_text(target, json.dumps(localized))
        targets.append(target)
    return targets


async def release_prod_files(config: ReleaseConfig) -> int:
    """Copy every non-HTML prod file verbatim."""
    files = glob_all(config.root, "prod/**", "!prod/*.html", "!prod/manifest.json")
    return await copy_all(config.root, files, config.output_root)


async def release_prod(
    config: ReleaseConfig,
    scenes: Mapping[str, SceneDescriptor],
    langs: Mapping[str, LanguageCatalog],
) -> List[Path]:
    """Run every prod fanout step; returns the HTML documents written."""
    copied = await release_prod_files(config)
    logger.debug("Copied %d prod files", copied)

    written = await release_other_pages(config, langs)
    written.extend(await release_scenes(config, scenes, langs))
    logger.info("Written %d prod HTML files", len(written))

    await release_manifests(config, langs)
    return written
