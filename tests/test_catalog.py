"""Tests for message catalog loading and the missing-message ledger."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from conftest import write, write_messages
from santa_release.catalog import load_catalogs, read_catalog_file
from santa_release.errors import ConfigurationError
from santa_release.models import MissingMessageLedger


def test_backfills_from_default_and_records_missing(site: Path) -> None:
    ledger = MissingMessageLedger()
    langs = asyncio.run(load_catalogs(site / "_messages", "en", ledger))

    assert sorted(langs) == ["en", "fr"]
    fr = langs["fr"]
    assert fr.lookup("santatracker") == "Suivi du Père Noël"
    assert fr.lookup("scene_icehockey") == "Ice Hockey"
    assert fr.backfilled == frozenset({"scene_icehockey"})
    assert fr("no_such_message") == "?"
    assert ledger.missing == {"scene_icehockey": {"fr"}}
    assert ledger.languages_missing("scene_icehockey") == frozenset({"fr"})
    assert ledger.language_count == 2


def test_missing_default_language_is_fatal(tmp_path: Path) -> None:
    write_messages(tmp_path, {"fr": {"santatracker": "Suivi"}})

    with pytest.raises(ConfigurationError, match="default lang 'en'"):
        asyncio.run(load_catalogs(tmp_path / "_messages", "en", MissingMessageLedger()))


def test_default_only_keeps_one_catalog(site: Path) -> None:
    ledger = MissingMessageLedger()
    langs = asyncio.run(load_catalogs(site / "_messages", "en", ledger, default_only=True))

    assert list(langs) == ["en"]
    assert ledger.language_count == 2
    assert ledger.summary() == ["scene_icehockey for 50% of langs [fr]"]


def test_raw_text_wins_over_message(tmp_path: Path) -> None:
    path = write(
        tmp_path,
        "en.json",
        json.dumps({
            "a": {"message": "Cooked", "raw": "Raw <b>text</b>"},
            "b": {"message": "Plain"},
            "c": {"description": "no text"},
        }),
    )

    assert asyncio.run(read_catalog_file(path)) == {"a": "Raw <b>text</b>", "b": "Plain"}


def test_invalid_catalog_raises(tmp_path: Path) -> None:
    path = write(tmp_path, "en.json", "{not json")

    with pytest.raises(ConfigurationError):
        asyncio.run(read_catalog_file(path))


def test_summary_omits_long_language_lists() -> None:
    ledger = MissingMessageLedger(language_count=20)
    for index in range(11):
        ledger.record(f"l{index:02d}", "many")
    ledger.record("de", "few")
    ledger.record("af", "few")

    assert ledger.summary() == [
        "few for 10% of langs [af,de]",
        "many for 55% of langs",
    ]
