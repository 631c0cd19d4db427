"""Helper script to harvest a single URL.

Runs the crawl driver against one page without an input file. Useful for
quick smoke tests of a results type or for debugging a session cookie file.
"""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
import sys

# Guarantee imports resolve to the local source tree when running from a checkout.
PROJECT_ROOT = Path(__file__).resolve().parent.parent
SRC_PATH = PROJECT_ROOT / "src"
if SRC_PATH.exists():
    src_str = str(SRC_PATH)
    if src_str not in sys.path:
        sys.path.insert(0, src_str)

from insta_harvester.core.config import load_configuration, validate_configuration
from insta_harvester.core.errors import ConfigurationError, CredentialExhaustedError
from insta_harvester.core.models import ResultType
from insta_harvester.crawl.driver import CrawlDriver
from insta_harvester.crawl.utils import build_work_items
from insta_harvester.storage.kv_store import JsonKeyValueStore
from insta_harvester.storage.sink import DatasetSink


def parse_arguments() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Harvest a single Instagram URL")
    parser.add_argument("url", help="Profile, hashtag, place or post URL")
    parser.add_argument(
        "--results-type",
        default=ResultType.POSTS.value,
        choices=ResultType.values(),
        help="What to extract (default: posts)",
    )
    parser.add_argument("--limit", type=int, default=20, help="Maximum records per page (default: 20)")
    parser.add_argument("--output", default="single_url.jsonl", help="Output file (default: single_url.jsonl)")
    parser.add_argument(
        "--headless",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Force headless mode (default comes from .env/environment)",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_arguments()

    try:
        config = load_configuration(
            overrides={
                "resultsType": args.results_type,
                "resultsLimit": args.limit,
                "output": args.output,
                "headless": args.headless,
            }
        )
        validate_configuration(config)
    except ConfigurationError as exc:
        print(f"[!] {exc}")
        sys.exit(1)

    items = build_work_items([args.url], config.results_type)
    driver = CrawlDriver(config, DatasetSink(config.output_path), JsonKeyValueStore(config.state_dir))

    print(f"[*] Harvesting {args.url} ({config.results_type})")
    try:
        report = asyncio.run(driver.run(items))
    except KeyboardInterrupt:
        print("[!] Run interrupted by the user")
        return
    except CredentialExhaustedError as exc:
        print(f"[!] {exc}")
        sys.exit(2)

    print(f"[+] Records written to {config.output_path}")
    print(f"    Records emitted : {report.emitted}")
    print(f"    Retries         : {report.retried}")
    print(f"    Skipped         : {report.skipped}")
    print(f"    Failed          : {report.dead_lettered}")


if __name__ == "__main__":
    main()
