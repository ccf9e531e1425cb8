"""Modern and legacy code generation for bundled chunks."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

import rjsmin

from .bundler import OUTPUT_DIR, Bundler
from .errors import TransformError
from .jsmodule import tokenize
from .loader import StylesheetCompiler
from .models import BundleArtifact
from .regenerator import with_generator_runtime
from .utils import write_text

logger = logging.getLogger("santa_release.transpile")

LEGACY_PREFIX = "_"
IMPORT_META_PLACEHOLDER = "__import_meta__"

TemplateTagReplacer = Callable[[str, str], Optional[str]]


@dataclass
class TransformResult:
    code: str
    map: Optional[str] = None


class TransformEngine(Protocol):
    def transform(self, code: str, filename: str) -> TransformResult: ...


def expand_template_tags(code: str, replacer: TemplateTagReplacer) -> str:
    """Replace tagged templates like ``_style`name` `` with string literals.

    The tag may be a bare name or a member of a linked namespace
    (``__i0._style`name` ``). Templates with substitutions are left alone,
    as are tags the replacer returns None for.
    """
    tokens = tokenize(code)
    edits: List[Tuple[int, int, str]] = []
    for index, token in enumerate(tokens):
        if token.kind != "template" or index == 0:
            continue
        if len(token.value) < 2 or not token.value.endswith("`") or not token.value.startswith("`"):
            continue
        tag = tokens[index - 1]
        if tag.kind != "name":
            continue
        start = tag.start
        if index >= 3 and tokens[index - 2].value == "." and tokens[index - 3].kind == "name":
            start = tokens[index - 3].start
        replacement = replacer(tag.value, token.value[1:-1])
        if replacement is None:
            continue
        edits.append((start, token.end, json.dumps(replacement)))

    for start, end, text in reversed(edits):
        code = code[:start] + text + code[end:]
    return code


class Babel:
    """Babel 6, loaded once into an embedded JavaScript interpreter.

    dukpy ships the babel-standalone build; compiling it takes a while, so
    every engine of a release shares one interpreter. Calls are serialized
    because the passes run engines from worker threads.
    """

    def __init__(self) -> None:
        self._interpreter: Any = None
        self._error: Any = None
        self._lock = threading.Lock()

    def _ensure_babel(self) -> None:
        if self._interpreter is None:
            import dukpy
            from dukpy.babel import BABEL_COMPILER

            logger.info("Loading Babel from %s", BABEL_COMPILER)
            interpreter = dukpy.JSInterpreter()
            interpreter.evaljs(Path(BABEL_COMPILER).read_text(encoding="utf-8"))
            self._interpreter = interpreter
            self._error = dukpy.JSRuntimeError

    def transform(self, code: str, options: Dict[str, Any]) -> TransformResult:
        with self._lock:
            self._ensure_babel()
            try:
                result = self._interpreter.evaljs(
                    "var result = Babel.transform(dukpy.source, dukpy.options);"
                    "result = {code: result.code, map: result.map};",
                    source=code,
                    options=options,
                )
            except self._error as exc:
                raise TransformError(f"Babel failed on {options.get('filename')}: {exc}") from exc
        source_map = result.get("map")
        return TransformResult(
            result["code"],
            json.dumps(source_map) if isinstance(source_map, dict) else source_map,
        )


def mask_import_meta(code: str) -> str:
    """Swap ``import.meta`` for a plain name that Babel 6 can parse."""
    tokens = tokenize(code)
    for index in reversed(range(len(tokens) - 2)):
        first, dot, prop = tokens[index : index + 3]
        if first.kind == "name" and first.value == "import" and dot.value == "." and prop.value == "meta":
            code = code[: first.start] + IMPORT_META_PLACEHOLDER + code[prop.end :]
    return code


def unmask_import_meta(code: str) -> str:
    return code.replace(IMPORT_META_PLACEHOLDER, "import.meta")


class ModernEngine:
    """Target for browsers with native module support.

    Syntax those browsers lack (object rest/spread and class fields) is
    lowered, module syntax is kept, and the result is minified.
    """

    plugins: List[Any] = [
        ["transform-object-rest-spread", {"useBuiltIns": True}],
        "transform-class-properties",
    ]

    def __init__(self, babel: Optional[Babel] = None) -> None:
        self.babel = babel or Babel()

    def options(self, filename: str) -> Dict[str, Any]:
        return {"filename": filename, "sourceType": "module", "plugins": self.plugins}

    def transform(self, code: str, filename: str) -> TransformResult:
        result = self.babel.transform(mask_import_meta(code), self.options(filename))
        return TransformResult(rjsmin.jsmin(unmask_import_meta(result.code)), result.map)


class LegacyEngine:
    """Lowers classic-script bundles to ES5.

    Async functions become generators, which regenerator turns into state
    machines; bundles that need it get the generator runtime prepended.
    Promise is expected from the page's polyfills.
    """

    presets: List[Any] = ["es2015-no-commonjs", "es2016"]
    plugins: List[Any] = [
        "transform-async-to-generator",
        "transform-object-rest-spread",
        "transform-class-properties",
    ]

    def __init__(self, babel: Optional[Babel] = None) -> None:
        self.babel = babel or Babel()

    def options(self, filename: str) -> Dict[str, Any]:
        return {
            "filename": filename,
            "sourceType": "script",
            "presets": self.presets,
            "plugins": self.plugins,
        }

    def transform(self, code: str, filename: str) -> TransformResult:
        result = self.babel.transform(code, self.options(filename))
        return TransformResult(with_generator_runtime(result.code), result.map)


class Transpiler:
    """Runs the modern and legacy passes and writes their output."""

    def __init__(
        self,
        root: Path,
        output_dir: Path,
        stylesheets: StylesheetCompiler,
        modern: Optional[TransformEngine] = None,
        legacy: Optional[TransformEngine] = None,
    ) -> None:
        self.root = root
        self.output_dir = output_dir
        self.stylesheets = stylesheets
        babel = Babel()
        self.modern = modern or ModernEngine(babel)
        self.legacy = legacy or LegacyEngine(babel)
        self._styles: Dict[str, str] = {}

    def template_tag_replacer(self, name: str, arg: str) -> Optional[str]:
        if name != "_style":
            return None
        if arg not in self._styles:
            self._styles[arg] = self.stylesheets.compile(self.root / "styles" / f"{arg}.scss", minify=True)
        return self._styles[arg]

    def _modern(self, artifact: BundleArtifact) -> str:
        code = expand_template_tags(artifact.code, self.template_tag_replacer)
        return self.modern.transform(code, artifact.filename).code

    def _legacy(self, artifact: BundleArtifact) -> str:
        code = expand_template_tags(artifact.code, self.template_tag_replacer)
        return self.legacy.transform(code, artifact.filename).code

    async def modern_pass(self, artifacts: Mapping[str, BundleArtifact]) -> int:
        """Transform and write every chunk; returns the total bytes written."""

        async def emit(artifact: BundleArtifact) -> int:
            code = await asyncio.to_thread(self._modern, artifact)
            await write_text(self.output_dir / OUTPUT_DIR / artifact.filename, code)
            return len(code.encode("utf-8"))

        sizes = await asyncio.gather(*(emit(artifact) for artifact in artifacts.values()))
        total = sum(sizes)
        logger.info("Written %d bytes of ES module code", total)
        return total

    async def legacy_pass(self, bundler: Bundler, entry_ids: Sequence[str]) -> List[Path]:
        """Rebundle each entry on its own and lower it for legacy runtimes."""

        async def emit(entry_id: str) -> Path:
            logger.debug("Building legacy bundle for %s", entry_id)
            artifact = await bundler.bundle_single(entry_id)
            code = await asyncio.to_thread(self._legacy, artifact)
            target = self.output_dir / OUTPUT_DIR / f"{LEGACY_PREFIX}{entry_id}"
            await write_text(target, code)
            return target

        written = await asyncio.gather(*(emit(entry_id) for entry_id in entry_ids))
        logger.info("Written %d legacy bundles", len(written))
        return list(written)
