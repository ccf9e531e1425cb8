"""Virtual module resolution over entry points, compiled sources and files."""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import os
import re
from pathlib import Path
from typing import Awaitable, Callable, Dict, Iterator, List, Mapping, Optional

from .errors import ResolutionError
from .loader import Compiled, LoadError, ModuleLoader
from .models import EntryPoint

logger = logging.getLogger("santa_release.resolver")

# An identifier may carry its source inline as `<name>::\0<base64 body>`.
INLINE_MARKER = "::\0"
SCENE_COMPILE_PATTERN = re.compile(r"^scenes/([\w-]+)/:closure\.js$")
RESOLVE_EXTENSIONS = ("", ".js", ".mjs", "/index.js")
PACKAGE_ENTRY_FIELDS = ("module", "jsnext:main", "main")

SceneCompiler = Callable[[str], Awaitable[Compiled]]


def inline_id(name: str, code: str) -> str:
    """Build an identifier that carries `code` inline."""
    return name + INLINE_MARKER + base64.b64encode(code.encode("utf-8")).decode("ascii")


def decode_inline(identifier: str) -> Optional[str]:
    """Return the source embedded in an inline identifier, if it is one."""
    index = identifier.find(INLINE_MARKER)
    if index == -1:
        return None
    try:
        return base64.b64decode(identifier[index + len(INLINE_MARKER) :], validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise ResolutionError(f"Invalid inline module {identifier[:index]!r}: {exc}") from exc


def is_relative(specifier: str) -> bool:
    return specifier.startswith(("./", "../", "/")) or specifier in (".", "..")


class ModuleCache:
    """Resolved module id to source text, written once per id."""

    def __init__(self) -> None:
        self._entries: Dict[str, str] = {}

    def __contains__(self, module_id: object) -> bool:
        return module_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def put(self, module_id: str, code: str) -> None:
        if module_id in self._entries:
            raise RuntimeError(f"Module {module_id} was already cached")
        self._entries[module_id] = code

    def get(self, module_id: str) -> str:
        try:
            return self._entries[module_id]
        except KeyError:
            raise ResolutionError(f"Module {module_id} was loaded before it was resolved") from None


class ModuleResolver:
    """Resolves import identifiers and owns the module cache.

    Root identifiers are entry point ids (or inline identifiers). Every other
    identifier is resolved relative to its importer, compiled through the
    module loader, and falls back to filesystem lookup when the loader does
    not recognize the path. Concurrent requests for the same target share a
    single in-flight task, so each module is compiled at most once.
    """

    def __init__(
        self,
        root: Path,
        entries: Mapping[str, EntryPoint],
        loader: ModuleLoader,
        cache: Optional[ModuleCache] = None,
        scene_compiler: Optional[SceneCompiler] = None,
    ) -> None:
        self.root = root.resolve()
        self.entries = entries
        self.loader = loader
        self.cache = cache if cache is not None else ModuleCache()
        self.scene_compiler = scene_compiler
        self._pending: Dict[str, "asyncio.Future[str]"] = {}

    def resolve_root(self, identifier: str) -> str:
        """Seed the cache with an entry point (or inline) source."""
        if identifier in self.cache:
            return identifier
        inline = decode_inline(identifier)
        if inline is not None:
            self.cache.put(identifier, inline)
            return identifier
        entry = self.entries.get(identifier)
        if entry is None:
            raise ResolutionError(f"Unknown entry point {identifier!r}")
        self.cache.put(identifier, entry.code)
        return identifier

    def base_dir(self, importer: str) -> Path:
        entry = self.entries.get(importer)
        if entry is not None:
            return entry.directory.resolve()
        if INLINE_MARKER in importer:
            return self.root
        return Path(importer).parent

    def schedule(self, specifier: str, importer: Optional[str] = None) -> "asyncio.Future[str]":
        """Start resolving `specifier`; the returned future yields the module id."""
        if importer is None:
            future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
            try:
                future.set_result(self.resolve_root(specifier))
            except ResolutionError as exc:
                future.set_exception(exc)
            return future

        base = self.base_dir(importer)
        if is_relative(specifier):
            anchor = self.root if specifier.startswith("/") else base
            target = os.path.normpath(anchor / specifier.lstrip("/"))
            return self._once(target, lambda: self._resolve_path(target, specifier, importer))

        key = f"{base}\0{specifier}"
        return self._once(key, lambda: self._resolve_package(specifier, base, importer))

    async def resolve(self, specifier: str, importer: Optional[str] = None) -> str:
        return await self.schedule(specifier, importer)

    def load(self, module_id: str) -> str:
        """Source of an already resolved module; never compiles."""
        return self.cache.get(module_id)

    def _once(self, key: str, factory: Callable[[], Awaitable[str]]) -> "asyncio.Future[str]":
        future = self._pending.get(key)
        if future is None:
            future = asyncio.ensure_future(factory())
            self._pending[key] = future
        return future

    def relative_id(self, path: str) -> str:
        return Path(os.path.relpath(path, self.root)).as_posix()

    async def _compile_scene(self, scene_name: str, target: str) -> str:
        if self.scene_compiler is None:
            raise ResolutionError(f"Scene {scene_name} needs a scene compiler but none is configured")
        logger.info("Compiling scene %s", scene_name)
        compiled = await self.scene_compiler(scene_name)
        self.cache.put(target, compiled.body)
        return target

    async def _resolve_path(self, target: str, specifier: str, importer: str) -> str:
        scene = SCENE_COMPILE_PATTERN.match(self.relative_id(target))
        if scene is not None:
            return await self._compile_scene(scene.group(1), target)

        result = await self.loader.load(Path(target))
        if isinstance(result, Compiled):
            self.cache.put(target, result.body)
            return target
        if isinstance(result, LoadError):
            raise ResolutionError(f"Could not compile '{specifier}' from {importer}: {result.reason}")

        # NotApplicable: try the target with each resolvable extension.
        found = self._find_file(Path(target))
        if found is None or str(found) == target:
            raise ResolutionError(f"Could not resolve '{specifier}' from {importer}")
        return await self._once(str(found), lambda: self._resolve_path(str(found), specifier, importer))

    def _find_file(self, target: Path) -> Optional[Path]:
        for suffix in RESOLVE_EXTENSIONS:
            candidate = Path(str(target) + suffix)
            if candidate.is_file():
                return candidate
        return None

    def _package_dirs(self, base: Path, name: str) -> List[Path]:
        dirs: List[Path] = []
        for parent in (base, *base.parents):
            dirs.append(parent / "node_modules" / name)
            if parent == self.root:
                break
        return dirs

    def _package_entry(self, package_dir: Path) -> Optional[Path]:
        manifest = package_dir / "package.json"
        if manifest.is_file():
            try:
                data = json.loads(manifest.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                raise ResolutionError(f"Invalid package manifest {manifest}: {exc}") from exc
            for field_name in PACKAGE_ENTRY_FIELDS:
                value = data.get(field_name)
                if isinstance(value, str):
                    found = self._find_file(package_dir / value)
                    if found is not None:
                        return found
        return self._find_file(package_dir / "index")

    async def _resolve_package(self, specifier: str, base: Path, importer: str) -> str:
        parts = specifier.split("/")
        depth = 2 if specifier.startswith("@") else 1
        name, subpath = "/".join(parts[:depth]), "/".join(parts[depth:])

        for package_dir in self._package_dirs(base, name):
            if not package_dir.is_dir():
                continue
            found = self._find_file(package_dir / subpath) if subpath else self._package_entry(package_dir)
            if found is not None:
                logger.debug("Resolved package import %s to %s", specifier, found)
                path = str(found.resolve())
                return await self._once(path, lambda: self._resolve_path(path, specifier, importer))
        raise ResolutionError(f"Could not resolve package '{specifier}' from {importer}")
