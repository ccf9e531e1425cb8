"""Import graph construction, shared-chunk splitting and chunk generation."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence

from .jsmodule import ModuleSource
from .models import BundleArtifact, EntryPoint
from .resolver import INLINE_MARKER, ModuleResolver

logger = logging.getLogger("santa_release.bundler")

OUTPUT_DIR = "src"

RUNTIME = """\
var __registry = typeof globalThis !== "undefined" ? globalThis : typeof self !== "undefined" ? self : this;
__registry = __registry.__releaseModules || (__registry.__releaseModules = {factories: {}, cache: {}});
function __define(id, factory) {
  if (!(id in __registry.factories)) __registry.factories[id] = factory;
}
function __require(id) {
  if (id in __registry.cache) return __registry.cache[id];
  var factory = __registry.factories[id];
  if (!factory) throw new Error("Missing module: " + id);
  var exports = __registry.cache[id] = {};
  factory(__require, exports);
  return exports;
}
function __export(target, getters) {
  Object.keys(getters).forEach(function (name) {
    Object.defineProperty(target, name, {enumerable: true, get: getters[name]});
  });
}
function __reexport(target, source) {
  Object.keys(source).forEach(function (name) {
    if (name !== "default" && !Object.prototype.hasOwnProperty.call(target, name)) {
      Object.defineProperty(target, name, {enumerable: true, get: function () { return source[name]; }});
    }
  });
}
"""

MODULE_META = "const __meta = import.meta;\n"
SCRIPT_META = (
    'var __meta = {url: typeof document !== "undefined" && document.currentScript'
    ' ? document.currentScript.src : typeof location !== "undefined" ? location.href : ""};\n'
)


@dataclass
class ModuleRecord:
    """A module in the import graph and the ids its specifiers resolved to."""

    module_id: str
    output_id: str
    source: ModuleSource
    dependencies: Dict[str, str] = field(default_factory=dict)


ModuleGraph = Dict[str, ModuleRecord]


def chunk_hash(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()[:8]


def entry_reachability(graph: ModuleGraph, entry_ids: Sequence[str]) -> Dict[str, FrozenSet[str]]:
    """For every module, the set of entry points that transitively import it."""
    reached: Dict[str, set] = {module_id: set() for module_id in graph}
    for entry_id in entry_ids:
        stack = [entry_id]
        while stack:
            module_id = stack.pop()
            if entry_id in reached[module_id]:
                continue
            reached[module_id].add(entry_id)
            stack.extend(graph[module_id].dependencies.values())
    return {module_id: frozenset(entries) for module_id, entries in reached.items()}


class Bundler:
    """Builds an import graph through the resolver and emits linked chunks."""

    def __init__(self, resolver: ModuleResolver) -> None:
        self.resolver = resolver
        self._sources: Dict[str, ModuleSource] = {}

    def output_id(self, module_id: str) -> str:
        """Stable, path-free id used for a module inside generated code."""
        if module_id in self.resolver.entries:
            return module_id
        if INLINE_MARKER in module_id:
            name = module_id.split(INLINE_MARKER, 1)[0] or "inline"
            return f"{name}-{chunk_hash(module_id)}"
        return self.resolver.relative_id(module_id)

    def _source(self, module_id: str) -> ModuleSource:
        source = self._sources.get(module_id)
        if source is None:
            source = ModuleSource(self.resolver.load(module_id), name=self.output_id(module_id))
            self._sources[module_id] = source
        return source

    async def build_graph(self, entry_ids: Sequence[str]) -> ModuleGraph:
        """Resolve every module reachable from `entry_ids`, one layer at a time."""
        graph: ModuleGraph = {}
        layer = [self.resolver.resolve_root(entry_id) for entry_id in entry_ids]
        while layer:
            fresh = [module_id for module_id in dict.fromkeys(layer) if module_id not in graph]
            records = [
                ModuleRecord(module_id, self.output_id(module_id), self._source(module_id))
                for module_id in fresh
            ]
            for record in records:
                graph[record.module_id] = record

            pending = [
                (record, specifier, self.resolver.schedule(specifier, record.module_id))
                for record in records
                for specifier in record.source.specifiers
            ]
            resolved = await asyncio.gather(*(future for _, _, future in pending))

            layer = []
            for (record, specifier, _), module_id in zip(pending, resolved):
                record.dependencies[specifier] = module_id
                layer.append(module_id)
        logger.debug("Resolved %d modules from %d entries", len(graph), len(entry_ids))
        return graph

    def _link(self, record: ModuleRecord, graph: ModuleGraph) -> str:
        ids = {
            specifier: graph[module_id].output_id
            for specifier, module_id in record.dependencies.items()
        }
        body = record.source.link(ids)
        return (
            f"__define({json.dumps(record.output_id)}, function (__require, __exports) {{\n"
            f"{body}}});\n"
        )

    def _render(
        self,
        records: Iterable[ModuleRecord],
        graph: ModuleGraph,
        imports: Sequence[str] = (),
        entry: Optional[ModuleRecord] = None,
        as_module: bool = True,
    ) -> str:
        parts: List[str] = [f'import "./{name}";\n' for name in imports]
        parts.append(MODULE_META if as_module else SCRIPT_META)
        parts.append(RUNTIME)
        parts.extend(self._link(record, graph) for record in records)
        if entry is not None:
            parts.append(f"__require({json.dumps(entry.output_id)});\n")
        code = "".join(parts)
        if not as_module:
            code = "(function () {\n" + code + "})();\n"
        return code

    def split(self, graph: ModuleGraph, entry_ids: Sequence[str]) -> Dict[str, BundleArtifact]:
        """Assign modules to entry or shared chunks and render every chunk."""
        reach = entry_reachability(graph, entry_ids)
        groups: Dict[FrozenSet[str], List[str]] = {}
        for module_id in graph:
            groups.setdefault(reach[module_id], []).append(module_id)

        chunk_of: Dict[str, str] = {}
        output: Dict[str, BundleArtifact] = {}

        # Modules only ever depend on modules reached by a superset of their
        # entries, so larger sets are rendered (and hashed) first.
        ordered = sorted(
            (entries for entries in groups if len(entries) > 1),
            key=lambda entries: (-len(entries), sorted(entries)),
        )
        ordered.extend(frozenset([entry_id]) for entry_id in entry_ids)

        for entries in ordered:
            module_ids = groups.get(entries, [])
            records = [graph[module_id] for module_id in module_ids]
            imports: Dict[str, None] = {}
            for record in records:
                for dependency in record.dependencies.values():
                    name = chunk_of.get(dependency)
                    if name is not None and dependency not in module_ids:
                        imports.setdefault(name, None)

            if len(entries) == 1:
                (entry_id,) = entries
                filename = entry_id
                code = self._render(records, graph, list(imports), entry=graph[entry_id])
            else:
                code = self._render(records, graph, list(imports))
                filename = f"c{chunk_hash(code)}.js"

            for module_id in module_ids:
                chunk_of[module_id] = filename
            output[filename] = BundleArtifact(
                filename=filename,
                code=code,
                is_entry=len(entries) == 1,
                entry_id=filename if len(entries) == 1 else None,
                imports=list(imports),
                modules=[graph[module_id].output_id for module_id in module_ids],
            )
        return output

    async def bundle(self, entry_ids: Sequence[str]) -> Dict[str, BundleArtifact]:
        """Bundle all entries together, hoisting shared modules into chunks."""
        graph = await self.build_graph(entry_ids)
        output = self.split(graph, entry_ids)
        logger.info("Generated %d total chunks from %d modules", len(output), len(graph))
        return output

    async def bundle_single(self, entry_id: str) -> BundleArtifact:
        """Bundle one entry into a self-contained classic script."""
        graph = await self.build_graph([entry_id])
        code = self._render(graph.values(), graph, entry=graph[entry_id], as_module=False)
        return BundleArtifact(
            filename=entry_id,
            code=code,
            is_entry=True,
            entry_id=entry_id,
            modules=[record.output_id for record in graph.values()],
        )


def link_entry_scripts(
    entries: Mapping[str, EntryPoint],
    artifacts: Mapping[str, BundleArtifact],
    root: Path,
) -> int:
    """Point each entry's script node at its generated bundle."""
    linked = 0
    for filename, artifact in artifacts.items():
        if not artifact.is_entry:
            continue
        entry = entries[filename]
        target = root / OUTPUT_DIR / filename
        entry.script_node["src"] = Path(os.path.relpath(target, entry.directory)).as_posix()
        linked += 1
    return linked
