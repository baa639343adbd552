#!/usr/bin/env python3
"""Refresh a local usage cache from a running tokenviz server.

Usage:
  python -m tokenviz.scripts.cache_sync
  python -m tokenviz.scripts.cache_sync --rescan --replace
  python -m tokenviz.scripts.cache_sync --export-csv usage.csv
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any

import requests

from tokenviz import config
from tokenviz.exports import records_to_csv, records_to_json
from tokenviz.reconcile import LocalUsageCache

logger = logging.getLogger("tokenviz.cache")

TIMEOUT_SECONDS = 30


def fetch_remote_records(base_url: str) -> list[dict[str, Any]]:
    res = requests.get(f"{base_url}/api/messages", timeout=TIMEOUT_SECONDS)
    res.raise_for_status()
    data = res.json().get("data")
    return data if isinstance(data, list) else []


def trigger_rescan(base_url: str) -> dict[str, Any]:
    res = requests.post(f"{base_url}/api/rescan", timeout=TIMEOUT_SECONDS)
    res.raise_for_status()
    return res.json()


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync the local usage cache with a tokenviz server.")
    parser.add_argument("--url", default=f"http://localhost:{config.PORT}", help="Server base URL")
    parser.add_argument("--cache", type=Path, default=config.LOCAL_CACHE_PATH, help="Local cache file")
    parser.add_argument("--rescan", action="store_true", help="Ask the server to rescan before fetching")
    parser.add_argument("--replace", action="store_true", help="Replace the cache instead of merging")
    parser.add_argument("--export-json", type=Path, help="Write the cache as JSON to this path")
    parser.add_argument("--export-csv", type=Path, help="Write the cache as CSV to this path")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    args = _parse_args(argv)
    base_url = args.url.rstrip("/")
    cache = LocalUsageCache(args.cache)

    try:
        if args.rescan:
            result = trigger_rescan(base_url)
            print(f"Server processed {result.get('count', 0)} messages")
        remote = fetch_remote_records(base_url)
    except requests.RequestException as e:
        print(f"Server not available, using local data only: {e}")
        entries = cache.load()
    else:
        outcome = cache.refresh(remote, replace=args.replace)
        entries = outcome.entries
        if outcome.replaced:
            print(f"Replaced local cache with {len(entries)} records")
        else:
            print(f"Added {outcome.added} new records ({len(entries)} total)")

    if args.export_json:
        args.export_json.write_text(records_to_json(entries), encoding="utf-8")
        print(f"Wrote {len(entries)} records to {args.export_json}")
    if args.export_csv:
        args.export_csv.write_text(records_to_csv(entries), encoding="utf-8")
        print(f"Wrote {len(entries)} records to {args.export_csv}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
