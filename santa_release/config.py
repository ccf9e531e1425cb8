"""Configuration objects and constants for the release build."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

DEFAULT_BASE_URL = "https://maps.gstatic.com/mapfiles/santatracker/"
DEFAULT_PROD_URL = "https://santatracker.google.com/"
DEFAULT_LANG = "en"

DEFAULT_STATIC_ASSETS = [
    "audio/*",
    "img/**/*",
    "!img/**/*_og.png",
    "third_party/**",
    "scenes/**/models/**",
    "scenes/**/img/**",
]


def default_static_version(now: dt.datetime | None = None) -> str:
    """Generate a version like `vYYYYMMDDHHMM`, in UTC time."""
    now = now or dt.datetime.now(dt.timezone.utc)
    return "v" + now.astimezone(dt.timezone.utc).strftime("%Y%m%d%H%M")


@dataclass
class ReleaseConfig:
    """Top-level settings that control a release build."""

    root: Path
    output_root: Path
    build: str = field(default_factory=default_static_version)
    default_lang: str = DEFAULT_LANG
    default_only: bool = False
    base_url: str = DEFAULT_BASE_URL
    prod_url: str = DEFAULT_PROD_URL
    static_assets: List[str] = field(default_factory=lambda: list(DEFAULT_STATIC_ASSETS))

    @property
    def static_path(self) -> str:
        return f"{self.base_url}{self.build}/"

    @property
    def prod_dir(self) -> Path:
        return self.output_root / "prod"

    @property
    def static_dir(self) -> Path:
        return self.output_root / "static"

    def path_for_lang(self, lang: str) -> Path:
        """Directory, relative to a prod root, holding pages for `lang`."""
        if lang == self.default_lang:
            return Path(".")
        return Path("intl") / f"{lang}_ALL"
