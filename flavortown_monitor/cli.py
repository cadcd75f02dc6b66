"""
Flavortown Monitor
==================
One run = one cycle, meant to be started by a scheduler:

1. Crawl every region and merge into one catalog (images rehosted on the CDN)
2. Diff against the previous snapshot
3. Post the changes to Slack
4. Save the new snapshot

Any failure aborts the run with exit status 1 and leaves the previous
snapshot as the baseline, so the next run picks up from there.
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from typing import List, Optional

import aiohttp

from .alerts import send_status_webhook
from .cdn import CdnClient
from .config import Settings, load_settings, setup_logging
from .crawler import RegionCrawler
from .diff import compute_diff
from .errors import ConfigError
from .image_cache import ImageCache
from .merger import CatalogMerger
from .notify import LoggingNotifier, WebhookNotifier, build_messages, dispatch
from .page_source import PageSource
from .storage import FileStore, SnapshotStore


logger = logging.getLogger(__name__)


async def run_cycle_async(settings: Settings, merger: CatalogMerger, image_cache: ImageCache,
                          snapshots: SnapshotStore, notifier, dry_run: bool = False) -> dict:
    """Run a single monitoring cycle"""
    start_time = datetime.now()

    image_cache.load()
    try:
        catalog = await merger.build_catalog()
    finally:
        # Uploads that already succeeded are kept even if the crawl failed
        image_cache.flush()

    result = {
        "total_products": len(catalog),
        "baseline": False,
        "changes": "",
        "messages": 0,
    }

    previous = snapshots.load_latest()
    if previous is None:
        logger.info("First run: saving baseline snapshot without notifying")
        result["baseline"] = True
        if not dry_run:
            snapshots.write_new(catalog)
    else:
        diff = compute_diff(previous, catalog)
        result["changes"] = diff.summary()
        logger.info(f"Diff: {diff.summary()}")
        if not diff.is_empty():
            messages = build_messages(diff, settings.base_url)
            result["messages"] = await dispatch(messages, notifier)
            if not dry_run:
                snapshots.write_new(catalog)

    result["duration"] = (datetime.now() - start_time).total_seconds()
    return result


async def run_async(settings: Settings, dry_run: bool = False) -> dict:
    """Wire up the shared HTTP session and storage, then run one cycle"""
    connector = aiohttp.TCPConnector(
        limit=settings.max_concurrent_requests * 2,
        ttl_dns_cache=300,
        keepalive_timeout=60
    )
    # The configured session cookie is sent as-is on every request
    async with aiohttp.ClientSession(connector=connector, cookie_jar=aiohttp.DummyCookieJar()) as session:
        store = FileStore(settings.storage_path)
        crawler = RegionCrawler(PageSource(session, settings), settings)
        image_cache = ImageCache(store, CdnClient(session, settings))
        merger = CatalogMerger(crawler, image_cache)
        snapshots = SnapshotStore(store, settings.snapshot_retention)
        if dry_run:
            notifier = LoggingNotifier()
        else:
            notifier = WebhookNotifier(session, settings.webhook_url, settings.request_timeout)
        return await run_cycle_async(settings, merger, image_cache, snapshots, notifier, dry_run=dry_run)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flavortown-monitor",
        description="Crawl the Flavortown shop in every region and post catalog changes to Slack.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="log the rendered messages instead of sending them and don't save a snapshot",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point"""
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings()
    except ConfigError as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        return 1

    log_file = setup_logging(settings.log_dir)
    logger.info(f"Starting Flavortown Monitor (dry run: {args.dry_run}), logging to {log_file}")

    try:
        result = asyncio.run(run_async(settings, dry_run=args.dry_run))
    except Exception as e:
        logger.exception(f"Run failed: {e!r}")
        send_status_webhook(settings.status_webhook_url, f"❌ Flavortown monitor run failed: {e}")
        return 1

    if result["baseline"]:
        send_status_webhook(settings.status_webhook_url,
                            f"📦 Baseline snapshot saved: {result['total_products']} items")
    elif result["messages"]:
        send_status_webhook(settings.status_webhook_url,
                            f"✅ Shop update posted: {result['changes']} ({result['messages']} messages)")

    print(f"\n{'='*60}")
    print("RUN COMPLETE")
    print(f"Duration: {result['duration']:.1f} seconds")
    print(f"Items: {result['total_products']}")
    print(f"Changes: {result['changes'] or 'baseline run'}")
    print(f"Messages sent: {result['messages']}")
    print(f"{'='*60}\n")
    return 0
