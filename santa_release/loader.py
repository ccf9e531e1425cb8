"""Compiling loader for module sources and stylesheets."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

import rcssmin

logger = logging.getLogger("santa_release.loader")

SCRIPT_SUFFIXES = {".js", ".mjs"}
STYLE_SUFFIXES = {".css", ".scss"}


@dataclass(frozen=True)
class Compiled:
    """A source the loader recognized and compiled to module text."""

    body: str
    map: Optional[str] = None


@dataclass(frozen=True)
class NotApplicable:
    """The path is not something the loader compiles."""


@dataclass(frozen=True)
class LoadError:
    """The path looked compilable but could not be compiled."""

    reason: str


LoadResult = Union[Compiled, NotApplicable, LoadError]

NOT_APPLICABLE = NotApplicable()


class StylesheetCompiler:
    """Compiles SCSS or plain CSS into browser-ready text."""

    def __init__(self, include_paths: Optional[List[Path]] = None) -> None:
        self.include_paths = [str(path) for path in include_paths or []]

    def _compile_scss(self, path: Path, minify: bool) -> str:
        import sass

        try:
            return sass.compile(
                filename=str(path),
                output_style="compressed" if minify else "expanded",
                include_paths=self.include_paths,
            )
        except sass.CompileError as exc:
            raise ValueError(str(exc)) from exc

    def compile(self, path: Path, minify: bool = True) -> str:
        """Compile the stylesheet at `path`."""
        if path.suffix == ".scss":
            return self._compile_scss(path, minify)
        css = path.read_text(encoding="utf-8")
        return rcssmin.cssmin(css) if minify else css

    async def compile_async(self, path: Path, minify: bool = True) -> str:
        return await asyncio.to_thread(self.compile, path, minify)


class ModuleLoader:
    """Turns files into ES module text for the resolver."""

    def __init__(self, stylesheets: StylesheetCompiler) -> None:
        self.stylesheets = stylesheets

    def _load(self, path: Path) -> LoadResult:
        suffix = path.suffix
        if suffix not in SCRIPT_SUFFIXES | {".json"} | STYLE_SUFFIXES:
            return NOT_APPLICABLE
        if not path.is_file():
            return NOT_APPLICABLE

        try:
            if suffix in SCRIPT_SUFFIXES:
                return Compiled(path.read_text(encoding="utf-8"))
            if suffix == ".json":
                data = json.loads(path.read_text(encoding="utf-8"))
                return Compiled(f"export default {json.dumps(data)};\n")
            css = self.stylesheets.compile(path, minify=True)
            return Compiled(f"export default {json.dumps(css)};\n")
        except (OSError, UnicodeDecodeError, ValueError) as exc:
            return LoadError(f"{path}: {exc}")

    async def load(self, path: Path) -> LoadResult:
        """Compile `path`, or report that it is not a compilable source."""
        result = await asyncio.to_thread(self._load, path)
        if isinstance(result, Compiled):
            logger.debug("Compiled %s (%d chars)", path, len(result.body))
        return result
