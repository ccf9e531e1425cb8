"""HTML parsing, attribute rewriting and localization helpers."""

from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional, Union

from bs4 import BeautifulSoup, Tag

from .catalog import LanguageCatalog
from .utils import read_text

logger = logging.getLogger("santa_release.documents")

PARSER = "html.parser"

Customizer = Callable[[BeautifulSoup], Union[None, Awaitable[None]]]


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, PARSER)


async def read_document(path: Path) -> BeautifulSoup:
    """Read and parse an HTML file."""
    return parse_html(await read_text(path))


def serialize(document: BeautifulSoup) -> str:
    return document.decode(formatter="html5")


def apply_attribute(node: Optional[Tag], name: str, value: str) -> None:
    if node is not None:
        node[name] = value


def apply_attribute_to_all(
    root: Optional[Tag],
    selectors: Iterable[str],
    name: str,
    value: str,
) -> int:
    """Set `name=value` on every node under `root` matching any selector."""
    if root is None:
        return 0
    count = 0
    for selector in selectors:
        for node in root.select(selector):
            node[name] = value
            count += 1
    return count


def localize(document: BeautifulSoup, catalog: LanguageCatalog) -> BeautifulSoup:
    """Return a copy of `document` with every `msgid` node translated."""
    localized = copy.copy(document)
    html = localized.find("html")
    if isinstance(html, Tag):
        html["lang"] = catalog.lang

    for node in localized.select("[msgid]"):
        msgid = node.get("msgid")
        del node["msgid"]
        text = catalog.lookup(str(msgid))
        if node.name == "meta":
            node["content"] = text
        elif node.name == "i18n-msg":
            node.replace_with(text)
        else:
            node.string = text
    return localized


class DocumentTemplate:
    """A language-neutral document that renders to one HTML string per language."""

    def __init__(self, document: BeautifulSoup) -> None:
        self._document = document

    @classmethod
    async def prod(
        cls,
        path: Path,
        customize: Optional[Customizer] = None,
    ) -> "DocumentTemplate":
        """Load a prod page, strip development-only nodes and apply `customize`."""
        document = await read_document(path)
        dev_node = document.find(id="DEV")
        if dev_node is not None:
            dev_node.decompose()
        if customize is not None:
            result = customize(document)
            if result is not None:
                await result
        return cls(document)

    @property
    def document(self) -> BeautifulSoup:
        return self._document

    def render(self, catalog: LanguageCatalog) -> str:
        return serialize(localize(self._document, catalog))
