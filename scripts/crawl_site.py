#!/usr/bin/env python3
"""Crawl a stored site and save the result on the site record.

Usage:
    python scripts/crawl_site.py <site_id> [--deep]

Needs DATABASE_URL to point at the database holding the site.
"""

import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from autopublish.config import load_config
from autopublish.errors import ValidationError
from autopublish.pipeline import Pipeline
from autopublish.utils.logger import setup_logging


def main(argv=None):
    args = list(sys.argv[1:] if argv is None else argv)
    preset = "deep" if "--deep" in args else "quick"
    args = [a for a in args if a != "--deep"]
    if len(args) != 1:
        print(__doc__)
        return 2

    config = load_config(str(PROJECT_ROOT / "config.yaml"))
    setup_logging(log_dir=config["log_dir"], level=config["log_level"])
    if not config["database_url"]:
        print("DATABASE_URL is not set; nothing to crawl.", file=sys.stderr)
        return 1

    pipeline = Pipeline.from_config(config)
    try:
        result = pipeline.crawl_site(args[0], preset=preset)
    except ValidationError as e:
        print(f"FAILED: {e}", file=sys.stderr)
        return 1

    print(f"Crawled {result.total_pages} pages from {result.start_url} ({preset})")
    for error in result.errors[:10]:
        print(f"  ! {error['url']}: {error['error']}")
    if result.sitemaps:
        print(f"Sitemaps: {', '.join(result.sitemaps)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
