"""Static asset discovery, validation and copying."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Iterable, Optional

from filetype import guess

from .utils import copy_all, glob_all

logger = logging.getLogger("santa_release.assets")

MIN_IMAGE_BYTES = 64
ALLOWED_IMAGE_TYPES = {"png", "jpg", "gif", "webp"}


def detect_image_format(data: bytes) -> Optional[str]:
    """Detect image type using filetype; returns lowercase extension."""
    kind = guess(data)
    if kind and kind.mime.startswith("image/"):
        ext = kind.extension.lower()
        if ext == "jpeg":
            return "jpg"
        return ext
    return None


def _read_image_format(path: Path) -> Optional[str]:
    try:
        data = path.read_bytes()
    except OSError:
        return None
    if len(data) < MIN_IMAGE_BYTES:
        return None
    return detect_image_format(data)


async def has_image(path: Path) -> bool:
    """Whether `path` exists and holds a usable image."""
    if not path.is_file():
        return False
    extension = await asyncio.to_thread(_read_image_format, path)
    if extension not in ALLOWED_IMAGE_TYPES:
        logger.warning("Ignoring %s: not a recognized image", path)
        return False
    return True


async def release_assets(root: Path, target_root: Path, patterns: Iterable[str]) -> int:
    """Copy every file matching `patterns` under `root` into `target_root`."""
    assets = glob_all(root, *patterns)
    logger.info("Copying %d static assets", len(assets))
    return await copy_all(root, assets, target_root)


async def release_required_scripts(
    root: Path,
    target_root: Path,
    scripts: Iterable[Path],
) -> int:
    """Copy classic script dependencies verbatim, keeping their relative paths."""
    rel_paths = []
    for script in scripts:
        try:
            rel_paths.append(script.resolve().relative_to(root.resolve()))
        except ValueError:
            raise FileNotFoundError(f"Required script {script} is outside {root}") from None
    logger.info("Copying %d required scripts", len(rel_paths))
    return await copy_all(root, rel_paths, target_root)
