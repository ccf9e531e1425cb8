"""High-level orchestration of a release build."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .assets import release_assets, release_required_scripts
from .bundler import Bundler, link_entry_scripts
from .catalog import LanguageCatalog, load_catalogs
from .config import ReleaseConfig
from .documents import serialize
from .extract import EntryExtractor, Extraction, apply_extraction
from .fanout import load_scenes, release_prod
from .loader import ModuleLoader, StylesheetCompiler
from .models import BundleArtifact, MissingMessageLedger
from .resolver import ModuleResolver, SceneCompiler
from .transpile import TransformEngine, Transpiler
from .utils import write_text

logger = logging.getLogger("santa_release")


@dataclass
class ReleaseResult:
    """Summary of a finished release build."""

    languages: List[str]
    prod_pages: List[Path]
    artifacts: Dict[str, BundleArtifact]
    legacy_bundles: List[Path]
    modern_bytes: int
    ledger: MissingMessageLedger
    total_seconds: float = 0.0
    static_documents: List[Path] = field(default_factory=list)


@dataclass
class Collaborators:
    """Pluggable engines used by the module pipeline."""

    stylesheets: Optional[StylesheetCompiler] = None
    scene_compiler: Optional[SceneCompiler] = None
    modern: Optional[TransformEngine] = None
    legacy: Optional[TransformEngine] = None


def report_missing_messages(ledger: MissingMessageLedger) -> None:
    """Log which message ids are missing and for what share of languages."""
    if not len(ledger):
        return
    logger.info("Missing %d messages:", len(ledger))
    for line in ledger.summary():
        logger.info("  %s", line)


async def write_static_documents(config: ReleaseConfig, extraction: Extraction) -> List[Path]:
    targets = []
    for html_file, document in extraction.documents.items():
        target = config.static_dir / html_file
        await write_text(target, serialize(document))
        targets.append(target)
    return targets


async def build_modules(
    config: ReleaseConfig,
    collaborators: Collaborators,
    stylesheets: StylesheetCompiler,
) -> Tuple[Extraction, Dict[str, BundleArtifact], List[Path], int]:
    """Extract entries, bundle them and run both transpile passes."""
    extractor = EntryExtractor(config.root, stylesheets)
    extraction = await extractor.extract()
    apply_extraction(extraction.documents, extraction.report, config.build)

    entries = extraction.entries
    resolver = ModuleResolver(
        config.root,
        entries,
        ModuleLoader(stylesheets),
        scene_compiler=collaborators.scene_compiler,
    )
    bundler = Bundler(resolver)
    artifacts = await bundler.bundle(list(entries))
    link_entry_scripts(entries, artifacts, config.root)

    transpiler = Transpiler(
        config.root,
        config.static_dir,
        stylesheets,
        modern=collaborators.modern,
        legacy=collaborators.legacy,
    )
    modern_bytes, legacy = await asyncio.gather(
        transpiler.modern_pass(artifacts),
        transpiler.legacy_pass(bundler, list(entries)),
    )

    await release_required_scripts(config.root, config.static_dir, extraction.report.required_scripts)
    return extraction, artifacts, legacy, modern_bytes


async def release(
    config: ReleaseConfig,
    collaborators: Optional[Collaborators] = None,
) -> ReleaseResult:
    """Run the whole release pipeline for `config`."""
    collaborators = collaborators or Collaborators()
    start = time.perf_counter()
    logger.info("Building release %s...", config.build)
    ledger = MissingMessageLedger()
    langs: Dict[str, LanguageCatalog] = await load_catalogs(
        config.root / "_messages",
        config.default_lang,
        ledger,
        default_only=config.default_only,
    )
    config.prod_dir.mkdir(parents=True, exist_ok=True)
    config.static_dir.mkdir(parents=True, exist_ok=True)

    scenes = await load_scenes(config.root / "scenes.json")
    prod_pages = await release_prod(config, scenes, langs)

    stylesheets = collaborators.stylesheets or StylesheetCompiler([config.root / "styles"])
    extraction, artifacts, legacy, modern_bytes = await build_modules(config, collaborators, stylesheets)

    await release_assets(config.root, config.static_dir, config.static_assets)
    static_documents = await write_static_documents(config, extraction)

    report_missing_messages(ledger)
    elapsed = time.perf_counter() - start
    logger.info("Done in %.2fs", elapsed)
    return ReleaseResult(
        languages=list(langs),
        prod_pages=prod_pages,
        artifacts=artifacts,
        legacy_bundles=legacy,
        modern_bytes=modern_bytes,
        ledger=ledger,
        total_seconds=elapsed,
        static_documents=static_documents,
    )
