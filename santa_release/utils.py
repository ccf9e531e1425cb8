"""Utility helpers for URL checks, globbing and async file access."""

from __future__ import annotations

import asyncio
import re
import shutil
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

URL_PATTERN = re.compile(r"^([a-z][a-z0-9+.-]*:|//)", re.IGNORECASE)


def is_url(value: Optional[str]) -> bool:
    """Whether `value` points at a remote resource rather than a local file."""
    return bool(value) and bool(URL_PATTERN.match(value))


def glob_all(root: Path, *patterns: str) -> List[Path]:
    """Expand glob patterns relative to `root`; `!`-prefixed patterns exclude."""
    included: Dict[Path, None] = {}
    excluded: Set[Path] = set()
    for pattern in patterns:
        negate = pattern.startswith("!")
        pattern = pattern[1:] if negate else pattern
        if pattern.endswith("**"):
            pattern += "/*"
        for match in sorted(root.glob(pattern)):
            if not match.is_file():
                continue
            rel = match.relative_to(root)
            if negate:
                excluded.add(rel)
            else:
                included.setdefault(rel, None)
    return [rel for rel in included if rel not in excluded]


def _write_text(target: Path, content: str) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")


def _copy(src: Path, dst: Path) -> None:
    dst.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(src, dst)


async def write_text(target: Path, content: str) -> None:
    await asyncio.to_thread(_write_text, target, content)


async def read_text(path: Path) -> str:
    return await asyncio.to_thread(path.read_text, encoding="utf-8")


async def copy_file(src: Path, dst: Path) -> None:
    await asyncio.to_thread(_copy, src, dst)


async def copy_all(root: Path, rel_paths: Iterable[Path], target_root: Path) -> int:
    """Mirror each root-relative path into `target_root`; returns the count."""
    rel_paths = list(rel_paths)
    await asyncio.gather(*(copy_file(root / rel, target_root / rel) for rel in rel_paths))
    return len(rel_paths)
