"""Loading of per-language message catalogs."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, FrozenSet, Mapping, Optional

from .errors import ConfigurationError
from .models import MissingMessageLedger
from .utils import read_text

logger = logging.getLogger("santa_release.catalog")

UNKNOWN_MESSAGE = "?"

MissingCallback = Callable[[str, str], None]


@dataclass(frozen=True)
class LanguageCatalog:
    """Resolved messages for one language, backfilled from the default."""

    lang: str
    messages: Mapping[str, str]
    backfilled: FrozenSet[str] = frozenset()

    def lookup(self, msgid: str) -> str:
        return self.messages.get(msgid, UNKNOWN_MESSAGE)

    __call__ = lookup


def _message_text(entry: object) -> Optional[str]:
    if isinstance(entry, str):
        return entry
    if isinstance(entry, dict):
        text = entry.get("raw") or entry.get("message")
        return text if isinstance(text, str) else None
    return None


async def read_catalog_file(path: Path) -> Dict[str, str]:
    """Parse a Chrome-style `{msgid: {message, raw?}}` catalog file."""
    try:
        data = json.loads(await read_text(path))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid message catalog {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Message catalog {path} is not an object")

    messages: Dict[str, str] = {}
    for msgid, entry in data.items():
        text = _message_text(entry)
        if text is not None:
            messages[msgid] = text
    return messages


async def load_all(
    messages_dir: Path,
    default_lang: str,
    on_missing: MissingCallback,
) -> Dict[str, LanguageCatalog]:
    """Load every catalog, reporting each `(lang, msgid)` backfilled from the default."""
    paths = sorted(messages_dir.glob("*.json"))
    raw = await asyncio.gather(*(read_catalog_file(path) for path in paths))
    by_lang = {path.stem: messages for path, messages in zip(paths, raw)}

    if default_lang not in by_lang:
        raise ConfigurationError(
            f"default lang '{default_lang}' not found in {messages_dir}"
        )

    baseline = by_lang[default_lang]
    catalogs: Dict[str, LanguageCatalog] = {}
    for lang, own in by_lang.items():
        missing = [msgid for msgid in baseline if msgid not in own]
        for msgid in missing:
            on_missing(lang, msgid)
        merged = dict(baseline)
        merged.update(own)
        catalogs[lang] = LanguageCatalog(lang, merged, frozenset(missing))
        logger.debug("Loaded %d messages for %s (%d missing)", len(own), lang, len(missing))
    return catalogs


async def load_catalogs(
    messages_dir: Path,
    default_lang: str,
    ledger: MissingMessageLedger,
    default_only: bool = False,
) -> Dict[str, LanguageCatalog]:
    """Load catalogs into `ledger`, optionally keeping only the default language."""
    catalogs = await load_all(messages_dir, default_lang, ledger.record)
    ledger.language_count = len(catalogs)
    if default_only:
        catalogs = {default_lang: catalogs[default_lang]}
    logger.info("Found %d languages", len(catalogs))
    return catalogs
