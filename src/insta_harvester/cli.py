"""Command line interface for the Instagram harvester."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .core.artifacts import HarvestReport
from .core.config import HarvestConfig, load_configuration, validate_configuration
from .core.errors import ConfigurationError, CredentialExhaustedError
from .core.models import ResultType
from .crawl.driver import CrawlDriver
from .crawl.utils import UrlDiscovery, collect_work_items, resolve_hook
from .storage.kv_store import JsonKeyValueStore
from .storage.sink import DatasetSink

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_CREDENTIALS_EXHAUSTED = 2


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Instagram harvester")
    parser.add_argument("--input", type=Path, help="JSON file with the run input")
    parser.add_argument(
        "--direct-url",
        action="append",
        dest="direct_urls",
        help="Page to scrape; may be given several times",
    )
    parser.add_argument("--results-type", choices=ResultType.values(), help="What to extract from each page")
    parser.add_argument("--output", help="JSON lines file receiving the records")
    parser.add_argument("--state-dir", help="Directory for the key-value store")
    parser.add_argument(
        "--headless",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Run the browser headless (default comes from .env/environment)",
    )
    parser.add_argument("--report", type=Path, help="Write the run summary as JSON to this file")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"), help="Logging level (default: INFO)")
    return parser.parse_args(argv)


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    return {
        "directUrls": args.direct_urls,
        "resultsType": args.results_type,
        "output": args.output,
        "stateDir": args.state_dir,
        "headless": args.headless,
    }


def print_summary(report: HarvestReport, config: HarvestConfig) -> None:
    print(f"    Pages processed : {report.succeeded}")
    print(f"    Pages skipped   : {report.skipped}")
    print(f"    Retries         : {report.retried}")
    print(f"    Failed pages    : {report.dead_lettered}")
    print(f"    Records emitted : {report.emitted}")
    if report.invalid_sessions:
        print(f"    Invalid cookies : {report.invalid_sessions}")
    print(f"[+] Dataset written to {config.output_path}")


def run_cli(argv: Optional[List[str]] = None, discovery: Optional[UrlDiscovery] = None) -> int:
    args = parse_arguments(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print("=== [1/3] Configuration ===")
    try:
        config = load_configuration(args.input, overrides=_overrides(args))
        validate_configuration(config)
        output_hook = resolve_hook(config.extend_output_function)
        page_hook = resolve_hook(config.extend_scraper_function)
    except ConfigurationError as exc:
        print(f"[!] {exc}")
        return EXIT_CONFIG_ERROR

    items = []
    if config.results_type != ResultType.COOKIES.value:
        items = collect_work_items(config.direct_urls, config.results_type, discovery)
        if not items:
            print("[*] No URLs to process")
            return EXIT_OK
        print(f"[+] {len(items)} URLs queued for {config.results_type}")

    store = JsonKeyValueStore(config.state_dir)
    sink = DatasetSink(config.output_path)
    driver = CrawlDriver(config, sink, store, output_hook=output_hook, page_hook=page_hook)

    print("\n=== [2/3] Crawl ===")
    try:
        report = asyncio.run(driver.run(items))
    except CredentialExhaustedError as exc:
        print(f"[!] {exc}")
        return EXIT_CREDENTIALS_EXHAUSTED
    except KeyboardInterrupt:
        print("[!] Run interrupted by the user")
        return EXIT_OK

    print("\n=== [3/3] Summary ===")
    print_summary(report, config)
    if args.report:
        report.save(args.report)
        print(f"[+] Report saved to {args.report}")
    return EXIT_OK


def main() -> None:
    sys.exit(run_cli())


if __name__ == "__main__":
    main()
