"""Command-line entry point for the release build."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Sequence

from .config import (
    DEFAULT_BASE_URL,
    DEFAULT_LANG,
    DEFAULT_PROD_URL,
    ReleaseConfig,
    default_static_version,
)
from .release import release

logger = logging.getLogger("santa_release.cli")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Build a localized, bundled release of the Santa Tracker site.",
    )
    parser.add_argument(
        "--root",
        default=".",
        type=Path,
        help="Source tree to release",
    )
    parser.add_argument(
        "--output",
        default="dist",
        type=Path,
        help="Directory where the prod and static trees should be written",
    )
    parser.add_argument(
        "-b",
        "--build",
        default=None,
        help="Release version stamped into documents (default: vYYYYMMDDHHMM in UTC)",
    )
    parser.add_argument(
        "--default-lang",
        default=DEFAULT_LANG,
        help="Language whose pages live at the top of the prod tree",
    )
    parser.add_argument(
        "-o",
        "--default-only",
        action="store_true",
        help="Only write pages for the default language",
    )
    parser.add_argument(
        "--baseurl",
        default=DEFAULT_BASE_URL,
        help="URL that static assets are served from",
    )
    parser.add_argument(
        "--prod",
        default=DEFAULT_PROD_URL,
        help="URL that prod pages are served from",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )

    config = ReleaseConfig(
        root=Path(args.root).resolve(),
        output_root=Path(args.output).resolve(),
        build=args.build or default_static_version(),
        default_lang=args.default_lang,
        default_only=args.default_only,
        base_url=args.baseurl,
        prod_url=args.prod,
    )

    try:
        result = asyncio.run(release(config))
    except Exception:
        logger.exception("Release %s failed", config.build)
        sys.exit(1)

    logger.info(
        "Released %s: %d languages, %d prod pages, %d chunks, %d legacy bundles",
        config.build,
        len(result.languages),
        len(result.prod_pages),
        len(result.artifacts),
        len(result.legacy_bundles),
    )


if __name__ == "__main__":
    main()
