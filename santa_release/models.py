"""Data models shared by the release pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from bs4 import Tag


@dataclass(frozen=True)
class SceneDescriptor:
    """Static registry entry describing a scene."""

    scene_id: str
    video: bool = False
    msgid_override: Optional[str] = None
    has_info: bool = True

    @property
    def msgid(self) -> str:
        """Message id used for naming the scene in titles and metadata."""
        if not self.scene_id or not self.has_info:
            return "santatracker"
        if self.msgid_override is not None:
            return self.msgid_override
        if self.video:
            return f"scene_videoscene_{self.scene_id}"
        return f"scene_{self.scene_id}"

    @property
    def filename(self) -> str:
        return f"{self.scene_id}.html" if self.scene_id else "index.html"


@dataclass(frozen=True)
class EntryPoint:
    """A module script discovered in an HTML document."""

    entry_id: str
    directory: Path
    code: str
    script_node: Tag = field(compare=False, repr=False)


@dataclass(frozen=True)
class StylesheetReplacement:
    """A local stylesheet link and the compiled CSS that replaces it."""

    link_node: Tag = field(compare=False, repr=False)
    css: str = ""


@dataclass(frozen=True)
class ExtractionReport:
    """Immutable result of scanning the HTML entry documents."""

    entries: Tuple[EntryPoint, ...]
    required_scripts: Tuple[Path, ...]
    stylesheets: Tuple[StylesheetReplacement, ...]

    def entry(self, entry_id: str) -> Optional[EntryPoint]:
        for entry in self.entries:
            if entry.entry_id == entry_id:
                return entry
        return None

    @property
    def entry_ids(self) -> List[str]:
        return [entry.entry_id for entry in self.entries]


@dataclass
class BundleArtifact:
    """A generated chunk, either an entry bundle or a shared chunk."""

    filename: str
    code: str
    is_entry: bool
    entry_id: Optional[str] = None
    imports: List[str] = field(default_factory=list)
    modules: List[str] = field(default_factory=list)


@dataclass
class MissingMessageLedger:
    """Records which languages lack which message ids."""

    missing: Dict[str, Set[str]] = field(default_factory=dict)
    language_count: int = 0

    def record(self, lang: str, msgid: str) -> None:
        self.missing.setdefault(msgid, set()).add(lang)

    def languages_missing(self, msgid: str) -> FrozenSet[str]:
        return frozenset(self.missing.get(msgid, ()))

    def __len__(self) -> int:
        return len(self.missing)

    def summary(self, language_count: Optional[int] = None) -> List[str]:
        """Render one report line per missing message id."""
        if language_count is None:
            language_count = self.language_count
        lines: List[str] = []
        for msgid in sorted(self.missing):
            langs = self.missing[msgid]
            ratio = len(langs) / language_count * 100 if language_count else 0.0
            rest = f" [{','.join(sorted(langs))}]" if len(langs) <= 10 else ""
            lines.append(f"{msgid} for {ratio:.0f}% of langs{rest}")
        return lines
