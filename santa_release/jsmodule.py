"""Lexing and linking of ES module sources into registry factories."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from .errors import ModuleSyntaxError

WHITESPACE = " \t\v\f\u00a0\ufeff"
LINE_TERMINATORS = "\n\r\u2028\u2029"

NAME_PATTERN = re.compile(r"[A-Za-z_$\u0080-\uffff][A-Za-z0-9_$\u0080-\uffff]*")
NUMBER_PATTERN = re.compile(
    r"0[xXoObB][0-9a-fA-F_]+n?|(?:\d[\d_]*\.?[\d_]*|\.\d[\d_]*)(?:[eE][+-]?\d+)?n?"
)

# After these keywords a `/` starts a regular expression, not a division.
REGEX_KEYWORDS = {
    "return", "typeof", "instanceof", "in", "of", "new", "delete", "void",
    "throw", "case", "do", "else", "yield", "await",
}

OPENERS = {"(": ")", "[": "]", "{": "}"}
CLOSERS = {")", "]", "}"}

DEFAULT_LOCAL = "__default"


@dataclass(frozen=True)
class Token:
    kind: str  # name, punct, string, template, regex, number
    value: str
    start: int
    end: int
    newline_before: bool = False


class _Lexer:
    def __init__(self, source: str) -> None:
        self.source = source
        self.pos = 0
        self.tokens: List[Token] = []
        self.newline = False
        self.brace_depth = 0
        self.template_braces: List[int] = []

    def error(self, message: str, pos: int) -> ModuleSyntaxError:
        line = self.source.count("\n", 0, pos) + 1
        return ModuleSyntaxError(f"{message} at line {line}")

    def emit(self, kind: str, start: int, end: int) -> None:
        self.tokens.append(Token(kind, self.source[start:end], start, end, self.newline))
        self.newline = False
        self.pos = end

    def regex_allowed(self) -> bool:
        if not self.tokens:
            return True
        prev = self.tokens[-1]
        if prev.kind == "name":
            return prev.value in REGEX_KEYWORDS
        if prev.kind == "template":
            return prev.value.endswith("${")
        if prev.kind == "punct":
            return prev.value not in CLOSERS
        return False

    def run(self) -> List[Token]:
        src = self.source
        length = len(src)
        while self.pos < length:
            ch = src[self.pos]
            start = self.pos
            if ch in LINE_TERMINATORS:
                self.newline = True
                self.pos += 1
            elif ch in WHITESPACE:
                self.pos += 1
            elif src.startswith("//", start):
                end = start
                while end < length and src[end] not in LINE_TERMINATORS:
                    end += 1
                self.pos = end
            elif src.startswith("/*", start):
                end = src.find("*/", start + 2)
                if end == -1:
                    raise self.error("Unterminated comment", start)
                if any(c in src[start:end] for c in LINE_TERMINATORS):
                    self.newline = True
                self.pos = end + 2
            elif ch in "'\"":
                self.string(start, ch)
            elif ch == "`":
                self.template(start)
            elif ch == "}" and self.template_braces and self.template_braces[-1] == self.brace_depth:
                self.template_braces.pop()
                self.template(start)
            elif NAME_PATTERN.match(ch):
                match = NAME_PATTERN.match(src, start)
                self.emit("name", start, match.end() if match else start + 1)
            elif ch.isdigit() or (ch == "." and src[start + 1 : start + 2].isdigit()):
                match = NUMBER_PATTERN.match(src, start)
                self.emit("number", start, match.end() if match else start + 1)
            elif ch == "/" and self.regex_allowed():
                self.regex(start)
            else:
                if ch == "{":
                    self.brace_depth += 1
                elif ch == "}":
                    self.brace_depth -= 1
                self.emit("punct", start, start + 1)
        if self.template_braces:
            raise self.error("Unterminated template literal", length)
        return self.tokens

    def string(self, start: int, quote: str) -> None:
        src = self.source
        pos = start + 1
        while pos < len(src):
            ch = src[pos]
            if ch == "\\":
                pos += 2
                continue
            if ch == quote:
                self.emit("string", start, pos + 1)
                return
            if ch in "\n\r":
                break
            pos += 1
        raise self.error("Unterminated string", start)

    def template(self, start: int) -> None:
        src = self.source
        pos = start + 1
        while pos < len(src):
            ch = src[pos]
            if ch == "\\":
                pos += 2
                continue
            if ch == "`":
                self.emit("template", start, pos + 1)
                return
            if src.startswith("${", pos):
                self.emit("template", start, pos + 2)
                self.template_braces.append(self.brace_depth)
                return
            pos += 1
        raise self.error("Unterminated template literal", start)

    def regex(self, start: int) -> None:
        src = self.source
        pos = start + 1
        in_class = False
        while pos < len(src):
            ch = src[pos]
            if ch == "\\":
                pos += 2
                continue
            if ch in LINE_TERMINATORS:
                break
            if ch == "[":
                in_class = True
            elif ch == "]":
                in_class = False
            elif ch == "/" and not in_class:
                pos += 1
                while pos < len(src) and (src[pos].isalnum() or src[pos] in "_$"):
                    pos += 1
                self.emit("regex", start, pos)
                return
            pos += 1
        raise self.error("Unterminated regular expression", start)


def tokenize(source: str) -> List[Token]:
    """Split JavaScript source into significant tokens."""
    return _Lexer(source).run()


def string_value(token: Token) -> str:
    """Decode a string literal token (simple escapes only)."""
    body = token.value[1:-1]
    if "\\" not in body:
        return body
    return re.sub(r"\\(.)", lambda m: {"n": "\n", "t": "\t", "r": "\r"}.get(m.group(1), m.group(1)), body)


def match_brackets(tokens: List[Token]) -> Dict[int, int]:
    """Map the index of every opening bracket to its closing bracket."""
    pairs: Dict[int, int] = {}
    stack: List[int] = []
    for index, token in enumerate(tokens):
        if token.kind != "punct":
            continue
        if token.value in OPENERS:
            stack.append(index)
        elif token.value in CLOSERS and stack:
            pairs[stack.pop()] = index
    return pairs


@dataclass(frozen=True)
class ImportBinding:
    imported: str  # "default", "*" or an export name
    local: str


@dataclass
class StaticImport:
    start: int
    end: int
    specifier: str
    bindings: List[ImportBinding] = field(default_factory=list)


@dataclass
class DynamicImport:
    start: int
    end: int
    specifier: str


@dataclass
class ReExport:
    start: int
    end: int
    specifier: str
    names: List[Tuple[str, str]] = field(default_factory=list)  # (imported, exported)
    star: bool = False
    alias: Optional[str] = None


@dataclass
class _Edit:
    start: int
    end: int
    text: str


def _quote_key(name: str) -> str:
    return name if NAME_PATTERN.fullmatch(name) else json.dumps(name)


class ModuleSource:
    """A parsed ES module that can be linked into a registry factory."""

    def __init__(self, source: str, name: str = "<module>") -> None:
        self.source = source
        self.name = name
        self.tokens = tokenize(source)
        self.pairs = match_brackets(self.tokens)
        self.imports: List[StaticImport] = []
        self.dynamic_imports: List[DynamicImport] = []
        self.reexports: List[ReExport] = []
        self.exports: Dict[str, str] = {}  # exported name -> local binding
        self.meta_refs: List[Tuple[int, int]] = []
        self._edits: List[_Edit] = []
        self._claimed: List[Tuple[int, int]] = []
        self._parse()

    @property
    def specifiers(self) -> List[str]:
        """Every literal import specifier, static ones first, without duplicates."""
        ordered: Dict[str, None] = {}
        for record in self.imports:
            ordered.setdefault(record.specifier, None)
        for record in self.reexports:
            ordered.setdefault(record.specifier, None)
        for record in self.dynamic_imports:
            ordered.setdefault(record.specifier, None)
        return list(ordered)

    def _error(self, message: str, token: Token) -> ModuleSyntaxError:
        line = self.source.count("\n", 0, token.start) + 1
        return ModuleSyntaxError(f"{message} in {self.name} at line {line}")

    def _tok(self, index: int) -> Optional[Token]:
        return self.tokens[index] if 0 <= index < len(self.tokens) else None

    def _is(self, index: int, value: str, kind: str = "punct") -> bool:
        token = self._tok(index)
        return token is not None and token.kind == kind and token.value == value

    def _statement_end(self, index: int) -> Tuple[int, int]:
        """Consume an optional `;` after token `index`; returns (next index, end offset)."""
        if self._is(index + 1, ";"):
            return index + 2, self.tokens[index + 1].end
        return index + 1, self.tokens[index].end

    def _expect_string(self, index: int) -> str:
        token = self._tok(index)
        if token is None or token.kind != "string":
            raise self._error("Expected module specifier", token or self.tokens[-1])
        return string_value(token)

    def _parse(self) -> None:
        index = 0
        while index < len(self.tokens):
            token = self.tokens[index]
            prev = self._tok(index - 1)
            is_keyword = (
                token.kind == "name"
                and not (prev is not None and prev.kind == "punct" and prev.value == ".")
                and not self._is(index + 1, ":")
            )
            if is_keyword and token.value == "import":
                index = self._parse_import(index)
            elif is_keyword and token.value == "export":
                index = self._parse_export(index)
            else:
                index += 1

    def _parse_specifier_list(self, index: int) -> Tuple[List[Tuple[str, str]], int]:
        """Parse `{ a, b as c }` starting at `{`; returns pairs and the index after `}`."""
        close = self.pairs.get(index)
        if close is None:
            raise self._error("Unbalanced braces", self.tokens[index])
        pairs: List[Tuple[str, str]] = []
        cursor = index + 1
        while cursor < close:
            token = self.tokens[cursor]
            if token.kind == "punct" and token.value == ",":
                cursor += 1
                continue
            if token.kind not in ("name", "string"):
                raise self._error("Unsupported specifier", token)
            first = string_value(token) if token.kind == "string" else token.value
            second = first
            if self._is(cursor + 1, "as", "name"):
                target = self.tokens[cursor + 2]
                second = string_value(target) if target.kind == "string" else target.value
                cursor += 3
            else:
                cursor += 1
            pairs.append((first, second))
        return pairs, close + 1

    def _skip_attributes(self, index: int) -> int:
        """Skip an import attributes clause (`with {...}`) if present."""
        token = self._tok(index)
        if token is not None and token.kind == "name" and token.value in ("with", "assert"):
            if not token.newline_before and self._is(index + 1, "{"):
                return self.pairs.get(index + 1, index + 1) + 1
        return index

    def _claim(self, start: int, end: int, text: str = "") -> None:
        self._edits.append(_Edit(start, end, text))
        self._claimed.append((start, end))

    def _parse_import(self, index: int) -> int:
        token = self.tokens[index]
        nxt = self._tok(index + 1)
        if nxt is None:
            raise self._error("Unexpected end of input after import", token)

        if nxt.kind == "punct" and nxt.value == "(":
            arg = self._tok(index + 2)
            if arg is not None and arg.kind == "string" and self._is(index + 3, ")"):
                self.dynamic_imports.append(
                    DynamicImport(token.start, self.tokens[index + 3].end, string_value(arg))
                )
                return index + 4
            return index + 1

        if nxt.kind == "punct" and nxt.value == ".":
            if self._is(index + 2, "meta", "name"):
                self.meta_refs.append((token.start, self.tokens[index + 2].end))
                return index + 3
            return index + 1

        if nxt.kind == "string":
            last = self._skip_attributes(index + 2) - 1
            after, end = self._statement_end(last)
            self.imports.append(StaticImport(token.start, end, string_value(nxt)))
            self._claimed.append((token.start, end))
            return after

        bindings: List[ImportBinding] = []
        cursor = index + 1
        current = self.tokens[cursor]
        following = self._tok(cursor + 1)
        is_from_clause = current.value == "from" and following is not None and following.kind == "string"
        if current.kind == "name" and not is_from_clause:
            bindings.append(ImportBinding("default", current.value))
            cursor += 1
            if self._is(cursor, ","):
                cursor += 1
        if self._is(cursor, "*"):
            if not self._is(cursor + 1, "as", "name"):
                raise self._error("Expected 'as' in namespace import", self.tokens[cursor])
            bindings.append(ImportBinding("*", self.tokens[cursor + 2].value))
            cursor += 3
        elif self._is(cursor, "{"):
            pairs, cursor = self._parse_specifier_list(cursor)
            bindings.extend(ImportBinding(imported, local) for imported, local in pairs)
        if not self._is(cursor, "from", "name"):
            raise self._error("Unsupported import syntax", self.tokens[min(cursor, len(self.tokens) - 1)])
        specifier = self._expect_string(cursor + 1)
        last = self._skip_attributes(cursor + 2) - 1
        after, end = self._statement_end(last)
        self.imports.append(StaticImport(token.start, end, specifier, bindings))
        self._claimed.append((token.start, end))
        return after

    def _declaration_end(self, index: int) -> int:
        """Offset just past the body of the function or class starting at `index`."""
        cursor = index
        while cursor < len(self.tokens):
            token = self.tokens[cursor]
            if token.kind == "punct" and token.value == "{":
                close = self.pairs.get(cursor)
                if close is None:
                    break
                return self.tokens[close].end
            if token.kind == "punct" and token.value in "([" and cursor in self.pairs:
                cursor = self.pairs[cursor] + 1
                continue
            cursor += 1
        raise self._error("Unterminated declaration", self.tokens[index])

    def _declared_name(self, index: int) -> Optional[str]:
        """Name bound by the function or class keyword at `index`, if any."""
        cursor = index + 1
        if self._is(cursor, "*"):
            cursor += 1
        token = self._tok(cursor)
        if token is None or token.kind != "name" or token.value == "extends":
            return None
        return token.value

    def _variable_names(self, index: int) -> List[str]:
        """Binding names of `const a = 1, b = 2` starting at the keyword."""
        first = self._tok(index + 1)
        if first is None or first.kind != "name":
            raise self._error("Unsupported export declaration", first or self.tokens[index])
        names = [first.value]
        cursor = index + 2
        while cursor < len(self.tokens):
            token = self.tokens[cursor]
            if token.kind == "punct" and token.value in OPENERS and cursor in self.pairs:
                cursor = self.pairs[cursor] + 1
                continue
            if token.kind == "punct" and token.value == ";":
                break
            if token.kind == "punct" and token.value in CLOSERS:
                break
            if token.newline_before and token.kind == "name":
                prev = self.tokens[cursor - 1]
                if not (prev.kind == "punct" and prev.value in ",=+-*/%&|^!?:<>.~"):
                    break
            if token.kind == "punct" and token.value == ",":
                nxt = self._tok(cursor + 1)
                after = self._tok(cursor + 2)
                if (
                    nxt is not None
                    and nxt.kind == "name"
                    and (after is None or after.value in ("=", ",", ";") or after.newline_before)
                ):
                    names.append(nxt.value)
            cursor += 1
        return names

    def _parse_export(self, index: int) -> int:
        token = self.tokens[index]
        nxt = self._tok(index + 1)
        if nxt is None:
            raise self._error("Unexpected end of input after export", token)

        if nxt.kind == "punct" and nxt.value == "*":
            cursor = index + 2
            alias = None
            if self._is(cursor, "as", "name"):
                alias_token = self.tokens[cursor + 1]
                alias = string_value(alias_token) if alias_token.kind == "string" else alias_token.value
                cursor += 2
            if not self._is(cursor, "from", "name"):
                raise self._error("Expected 'from' in export", self.tokens[min(cursor, len(self.tokens) - 1)])
            specifier = self._expect_string(cursor + 1)
            after, end = self._statement_end(cursor + 1)
            self.reexports.append(ReExport(token.start, end, specifier, star=alias is None, alias=alias))
            self._claim(token.start, end)
            return after

        if nxt.kind == "punct" and nxt.value == "{":
            pairs, cursor = self._parse_specifier_list(index + 1)
            if self._is(cursor, "from", "name"):
                specifier = self._expect_string(cursor + 1)
                after, end = self._statement_end(cursor + 1)
                self.reexports.append(ReExport(token.start, end, specifier, names=pairs))
            else:
                after, end = self._statement_end(cursor - 1)
                for local, exported in pairs:
                    self.exports[exported] = local
            self._claim(token.start, end)
            return after

        if nxt.kind == "name" and nxt.value == "default":
            return self._parse_export_default(index)

        if nxt.kind == "name" and nxt.value in ("const", "let", "var"):
            for name in self._variable_names(index + 1):
                self.exports[name] = name
        elif nxt.kind == "name" and nxt.value in ("function", "class", "async"):
            keyword = index + 2 if nxt.value == "async" else index + 1
            name = self._declared_name(keyword)
            if name is None:
                raise self._error("Exported declaration needs a name", nxt)
            self.exports[name] = name
        else:
            raise self._error("Unsupported export syntax", nxt)
        self._claim(token.start, nxt.start)
        return index + 1

    def _parse_export_default(self, index: int) -> int:
        token = self.tokens[index]
        default = self.tokens[index + 1]
        body = self._tok(index + 2)
        keyword = index + 2
        if body is not None and body.value == "async" and self._is(index + 3, "function", "name"):
            keyword = index + 3
        keyword_token = self._tok(keyword)
        if keyword_token is not None and keyword_token.kind == "name" and keyword_token.value in ("function", "class"):
            name = self._declared_name(keyword)
            if name is not None:
                self.exports["default"] = name
                self._claim(token.start, body.start)
                return index + 2
            end = self._declaration_end(keyword)
            self._claim(token.start, body.start, f"const {DEFAULT_LOCAL} = ")
            self._edits.append(_Edit(end, end, ";"))
        else:
            self._claim(token.start, default.end, f"const {DEFAULT_LOCAL} =")
        self.exports["default"] = DEFAULT_LOCAL
        return index + 2

    def _is_claimed(self, token: Token) -> bool:
        return any(start <= token.start < end for start, end in self._claimed)

    def _reference_edits(self, locals_: Mapping[str, str]) -> List[_Edit]:
        """Rewrite references to imported bindings as namespace member reads."""
        edits: List[_Edit] = []
        stack: List[str] = []
        tokens = self.tokens
        for index, token in enumerate(tokens):
            if token.kind == "punct":
                if token.value in OPENERS:
                    stack.append(token.value)
                elif token.value in CLOSERS and stack:
                    stack.pop()
                continue
            if token.kind != "name" or token.value not in locals_ or self._is_claimed(token):
                continue

            prev = self._tok(index - 1)
            nxt = self._tok(index + 1)
            prev_value = prev.value if prev is not None and prev.kind == "punct" else None
            next_value = nxt.value if nxt is not None and nxt.kind == "punct" else None
            if prev_value == "#" or (prev_value == "." and not self._is(index - 2, ".")):
                continue
            in_braces = bool(stack) and stack[-1] == "{"
            if in_braces and prev_value in ("{", ",") and next_value == ":":
                continue
            if next_value == "(" and (index + 1) in self.pairs and self._is(self.pairs[index + 1] + 1, "{"):
                continue

            replacement = locals_[token.value]
            if in_braces and prev_value in ("{", ",") and next_value in ("}", ","):
                edits.append(_Edit(token.start, token.end, f"{token.value}: {replacement}"))
            elif next_value == "(":
                edits.append(_Edit(token.start, token.end, f"(0, {replacement})"))
            else:
                edits.append(_Edit(token.start, token.end, replacement))
        return edits

    def link(
        self,
        module_ids: Mapping[str, str],
        require: str = "__require",
        exports: str = "__exports",
        meta: str = "__meta",
    ) -> str:
        """Return the module body rewritten to use the module registry.

        `module_ids` maps every literal specifier in this module to the
        registry id of the module it resolved to.
        """

        def module_id(specifier: str) -> str:
            try:
                return json.dumps(module_ids[specifier])
            except KeyError:
                raise ModuleSyntaxError(
                    f"Unresolved import '{specifier}' in {self.name}"
                ) from None

        header: List[str] = []
        getters: Dict[str, str] = {}
        locals_: Dict[str, str] = {}

        for number, record in enumerate(self.imports):
            target = module_id(record.specifier)
            namespace = f"__i{number}"
            named = [b for b in record.bindings if b.imported != "*"]
            for binding in record.bindings:
                if binding.imported == "*":
                    header.append(f"const {binding.local} = {require}({target});")
            if named:
                header.append(f"const {namespace} = {require}({target});")
                for binding in named:
                    key = binding.imported
                    access = f"{namespace}.{key}" if NAME_PATTERN.fullmatch(key) else f"{namespace}[{json.dumps(key)}]"
                    locals_[binding.local] = access
            elif not record.bindings:
                header.append(f"{require}({target});")

        for number, record in enumerate(self.reexports):
            target = module_id(record.specifier)
            if record.star:
                header.append(f"__reexport({exports}, {require}({target}));")
                continue
            namespace = f"__r{number}"
            header.append(f"const {namespace} = {require}({target});")
            if record.alias is not None:
                getters[record.alias] = namespace
            for imported, exported in record.names:
                getters[exported] = f"{namespace}[{json.dumps(imported)}]"

        for exported, local in self.exports.items():
            getters[exported] = locals_.get(local, local)

        edits = list(self._edits)
        edits.extend(_Edit(start, end, "") for start, end in self._claimed if not any(
            e.start == start and e.end == end for e in self._edits
        ))
        edits.extend(self._reference_edits(locals_))
        for record in self.dynamic_imports:
            edits.append(_Edit(
                record.start,
                record.end,
                f"Promise.resolve().then(() => {require}({module_id(record.specifier)}))",
            ))
        for start, end in self.meta_refs:
            edits.append(_Edit(start, end, meta))

        body = self.source
        for edit in sorted(edits, key=lambda e: (e.start, e.end), reverse=True):
            body = body[: edit.start] + edit.text + body[edit.end :]

        lines: List[str] = []
        if getters:
            entries = ", ".join(f"{_quote_key(name)}: () => {value}" for name, value in getters.items())
            lines.append(f"__export({exports}, {{{entries}}});")
        lines.extend(header)
        lines.append(body.strip("\n"))
        return "\n".join(lines) + "\n"
