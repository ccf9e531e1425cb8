"""Tests for template tag expansion and the modern and legacy passes."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Dict, Optional

import dukpy
import pytest

from conftest import FakeStylesheets, IdentityEngine, make_entry, write
from santa_release.bundler import Bundler
from santa_release.errors import TransformError
from santa_release.loader import ModuleLoader
from santa_release.models import BundleArtifact
from santa_release.regenerator import GENERATOR_RUNTIME
from santa_release.resolver import ModuleResolver
from santa_release.transpile import (
    Babel,
    LegacyEngine,
    ModernEngine,
    Transpiler,
    expand_template_tags,
    mask_import_meta,
)

# Promise stand-in that settles synchronously, so a lowered async call
# completes within a single evaluation.
SYNC_PROMISE = """
var Promise = function (executor) {
  var promise = this;
  executor(
    function (value) { promise.value = value; },
    function (error) { promise.error = String(error); }
  );
};
Promise.resolve = function (value) {
  return {then: function (onValue) { return onValue(value); }};
};
"""


def _styles(name: str, arg: str) -> Optional[str]:
    return f".{arg}{{color:red}}" if name == "_style" else None


def test_expand_template_tags() -> None:
    code = (
        "const a = _style`main`;\n"
        "const b = __i0._style`scene/ice`;\n"
        "const c = other`main`;\n"
        "const d = _style`x${y}`;\n"
    )

    assert expand_template_tags(code, _styles) == (
        'const a = ".main{color:red}";\n'
        'const b = ".scene/ice{color:red}";\n'
        "const c = other`main`;\n"
        "const d = _style`x${y}`;\n"
    )


def test_modern_engine_minifies(babel: Babel) -> None:
    result = ModernEngine(babel).transform("function f ( a ) {\n  // note\n  return a  +  1;\n}\n", "e0.js")

    assert result.code == "function f(a){return a+1;}"


def test_mask_import_meta() -> None:
    code = "const m = import.meta;\nimport('./x.js');\nconst s = 'import.meta';\n"

    assert mask_import_meta(code) == (
        "const m = __import_meta__;\nimport('./x.js');\nconst s = 'import.meta';\n"
    )


def test_modern_engine_lowers_newer_syntax(babel: Babel) -> None:
    code = ModernEngine(babel).transform(
        'import "./c0000abcd.js";\n'
        "const __meta = import.meta;\n"
        "const merged = {...defaults, size: 2};\n"
        "class Sled {\n  speed = 3;\n}\n",
        "e0.js",
    ).code

    assert '"./c0000abcd.js"' in code
    assert "import.meta" in code
    assert "__import_meta__" not in code
    assert "..." not in code
    assert "Object.assign(" in code
    assert "this.speed=3" in code


def test_babel_errors_name_the_file(babel: Babel) -> None:
    with pytest.raises(TransformError, match="e3.js"):
        ModernEngine(babel).transform("const = 1;\n", "e3.js")
    with pytest.raises(TransformError, match="e4.js"):
        LegacyEngine(babel).transform("let = ;\n", "e4.js")


def _bundle(root: Path, modules: Dict[str, str]) -> BundleArtifact:
    for name, code in modules.items():
        write(root, name, code)
    entries = {"e0.js": make_entry("e0.js", root, "".join(f"import './{name}';\n" for name in modules))}
    bundler = Bundler(ModuleResolver(root, entries, ModuleLoader(FakeStylesheets())))
    return asyncio.run(bundler.bundle_single("e0.js"))


def test_legacy_engine_lowers_bundled_async_code(babel: Babel, tmp_path: Path) -> None:
    artifact = _bundle(
        tmp_path.resolve(),
        {
            "util.js": (
                "export const double = (value) => value * 2;\n"
                "export async function total(values) {\n"
                "  let sum = 0;\n"
                "  for (let i = 0; i < values.length; i++) {\n"
                "    sum += await double(values[i]);\n"
                "  }\n"
                "  return sum;\n"
                "}\n"
                "export const pending = total([1, 2, 3]);\n"
            ),
        },
    )

    code = LegacyEngine(babel).transform(artifact.code, artifact.filename).code

    assert "=>" not in code
    assert "async function" not in code
    assert "await " not in code
    assert code.startswith(GENERATOR_RUNTIME)
    result = dukpy.evaljs([
        SYNC_PROMISE,
        code,
        'var util = __releaseModules.cache["util.js"];',
        "[util.double(5), util.pending.value]",
    ])
    assert result == [10, 12]


def test_legacy_generators_keep_try_semantics(babel: Babel, tmp_path: Path) -> None:
    artifact = _bundle(
        tmp_path.resolve(),
        {
            "count.js": (
                "export const log = [];\n"
                "export const seen = [];\n"
                "function* count(limit) {\n"
                "  try {\n"
                "    for (let i = 0; i < limit; i++) {\n"
                "      if (i === 2) throw new Error('two');\n"
                "      yield i;\n"
                "    }\n"
                "  } catch (error) {\n"
                "    yield error.message;\n"
                "  } finally {\n"
                "    log.push('done');\n"
                "  }\n"
                "}\n"
                "const it = count(5);\n"
                "let step;\n"
                "while (!(step = it.next()).done) seen.push(step.value);\n"
            ),
        },
    )

    code = LegacyEngine(babel).transform(artifact.code, artifact.filename).code

    assert "function*" not in code
    result = dukpy.evaljs([
        code,
        'var count = __releaseModules.cache["count.js"];',
        "[count.seen, count.log]",
    ])
    assert result == [[0, 1, "two"], ["done"]]


def test_code_without_generators_has_no_runtime(babel: Babel) -> None:
    code = LegacyEngine(babel).transform("var add = (a, b) => a + b;\n", "e5.js").code

    assert "regeneratorRuntime" not in code
    assert "=>" not in code
    assert dukpy.evaljs([code, "add(2, 3)"]) == 5


@pytest.fixture
def transpiler(tmp_path: Path) -> Transpiler:
    return Transpiler(
        tmp_path,
        tmp_path / "out",
        FakeStylesheets(),
        modern=IdentityEngine("/*modern*/"),
        legacy=IdentityEngine("/*legacy*/"),
    )


def test_template_styles_are_compiled_once(transpiler: Transpiler) -> None:
    assert transpiler.template_tag_replacer("_style", "main") == ".main{}"
    assert transpiler.template_tag_replacer("_style", "main") == ".main{}"
    assert transpiler.template_tag_replacer("_other", "main") is None
    assert transpiler.stylesheets.compiled == ["main.scss"]


def test_modern_pass_writes_every_chunk(transpiler: Transpiler, tmp_path: Path) -> None:
    artifacts = {
        "e0.js": BundleArtifact("e0.js", "const css = _style`main`;\n", is_entry=True, entry_id="e0.js"),
        "c0000abcd.js": BundleArtifact("c0000abcd.js", "var shared = 1;\n", is_entry=False),
    }

    total = asyncio.run(transpiler.modern_pass(artifacts))

    entry = (tmp_path / "out" / "src" / "e0.js").read_text(encoding="utf-8")
    shared = (tmp_path / "out" / "src" / "c0000abcd.js").read_text(encoding="utf-8")
    assert entry == '/*modern*/const css = ".main{}";\n'
    assert shared == "/*modern*/var shared = 1;\n"
    assert total == len(entry.encode("utf-8")) + len(shared.encode("utf-8"))
    assert sorted(transpiler.modern.calls) == ["c0000abcd.js", "e0.js"]


def test_legacy_pass_rebundles_each_entry(transpiler: Transpiler, tmp_path: Path) -> None:
    root = tmp_path.resolve()
    write(root, "util.js", "export const css = _style`main`;\n")
    entries = {
        "e0.js": make_entry("e0.js", root, "import {css} from './util.js';\nconsole.log(css);\n"),
        "e1.js": make_entry("e1.js", root, "import './util.js';\n"),
    }
    bundler = Bundler(ModuleResolver(root, entries, ModuleLoader(FakeStylesheets())))

    written = asyncio.run(transpiler.legacy_pass(bundler, ["e0.js", "e1.js"]))

    assert written == [tmp_path / "out" / "src" / "_e0.js", tmp_path / "out" / "src" / "_e1.js"]
    for path in written:
        code = path.read_text(encoding="utf-8")
        assert code.startswith("/*legacy*/(function () {\n")
        assert '__define("util.js"' in code
        assert 'const css = ".main{}";' in code
    assert sorted(transpiler.legacy.calls) == ["e0.js", "e1.js"]
    assert len(bundler.resolver.cache) == 3
