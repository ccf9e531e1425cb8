"""Discovery of stylesheets, classic scripts and module entry points in HTML."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from bs4 import BeautifulSoup, Tag

from .documents import read_document
from .loader import StylesheetCompiler
from .models import EntryPoint, ExtractionReport, StylesheetReplacement
from .utils import glob_all, is_url

logger = logging.getLogger("santa_release.extract")

CLASSIC_SCRIPT_TYPES = {"", "text/javascript"}


def entry_html_files(root: Path) -> List[Path]:
    """The main document followed by one document per scene."""
    return [Path("index.html"), *glob_all(root, "scenes/*/index.html")]


def module_source(script: Tag) -> str:
    """Source text standing in for a module script."""
    src = script.get("src")
    if src:
        src = str(src)
        if not src.startswith("."):
            src = f"./{src}"
        return f"import '{src}';"
    return str(script.string or "")


def local_scripts(document: BeautifulSoup) -> List[Tag]:
    return [
        script
        for script in document.find_all("script")
        if not (script.get("src") and is_url(str(script.get("src"))))
    ]


def local_stylesheets(document: BeautifulSoup) -> List[Tag]:
    links = []
    for link in document.find_all("link"):
        rel = link.get("rel") or []
        if isinstance(rel, str):
            rel = rel.split()
        if "stylesheet" in rel and link.get("href") and not is_url(str(link["href"])):
            links.append(link)
    return links


class EntryExtractor:
    """Scans HTML documents and catalogs everything the bundle step needs."""

    def __init__(self, root: Path, stylesheets: StylesheetCompiler) -> None:
        self.root = root
        self.stylesheets = stylesheets

    async def scan(
        self,
        documents: Mapping[Path, BeautifulSoup],
    ) -> ExtractionReport:
        """Read pass: collect entries and replacements without touching documents."""
        entries: List[EntryPoint] = []
        required: Dict[Path, None] = {}
        replacements: List[StylesheetReplacement] = []

        for html_file, document in documents.items():
            directory = (self.root / html_file).parent

            for link in local_stylesheets(document):
                css = await self.stylesheets.compile_async(directory / str(link["href"]), minify=True)
                replacements.append(StylesheetReplacement(link, css))

            scripts = local_scripts(document)
            for script in scripts:
                script_type = str(script.get("type") or "")
                if script_type in CLASSIC_SCRIPT_TYPES and script.get("src"):
                    required.setdefault(Path(os.path.normpath(directory / str(script["src"]))), None)

            for script in scripts:
                if script.get("type") != "module":
                    continue
                entry_id = f"e{len(entries)}.js"
                entries.append(EntryPoint(entry_id, directory, module_source(script), script))

        return ExtractionReport(
            entries=tuple(entries),
            required_scripts=tuple(required),
            stylesheets=tuple(replacements),
        )

    async def extract(self, html_files: Optional[Sequence[Path]] = None) -> "Extraction":
        """Read every entry document and scan it."""
        html_files = list(html_files) if html_files is not None else entry_html_files(self.root)
        documents: Dict[Path, BeautifulSoup] = {}
        for html_file in html_files:
            documents[html_file] = await read_document(self.root / html_file)
        report = await self.scan(documents)
        logger.info("Found %d module entrypoints", len(report.entries))
        return Extraction(documents, report)


class Extraction:
    """Parsed entry documents together with their extraction report."""

    def __init__(self, documents: Dict[Path, BeautifulSoup], report: ExtractionReport) -> None:
        self.documents = documents
        self.report = report

    @property
    def entries(self) -> Dict[str, EntryPoint]:
        return {entry.entry_id: entry for entry in self.report.entries}


def apply_extraction(
    documents: Mapping[Path, BeautifulSoup],
    report: ExtractionReport,
    build: str,
) -> None:
    """Rewrite pass: apply a report to the documents it was scanned from."""
    for document in documents.values():
        if document.body is not None:
            document.body["data-version"] = build
        dev_node = document.find(id="DEV")
        if dev_node is not None:
            dev_node.decompose()

    for replacement in report.stylesheets:
        link = replacement.link_node
        style = BeautifulSoup("", "html.parser").new_tag("style")
        style.string = replacement.css
        link.replace_with(style)

    for entry in report.entries:
        node = entry.script_node
        node.string = ""
        if node.has_attr("src"):
            del node["src"]
