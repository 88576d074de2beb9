"""Manual price lookup runner.

Scrapes one retailer for a list of GTINs through the batch processor and
prints the results. Ctrl+C stops after the in-flight items and closes all
browsers.

Usage:
    python scripts/run_scraper.py --retailer mueller 4066447240726
    python scripts/run_scraper.py --retailer dm --file gtins.csv
    python scripts/run_scraper.py --retailer metro --file items.json --concurrency 2
"""

import argparse
import asyncio
import os
import sys
from typing import List

from pydantic import ValidationError

# Add backend to path so we can import pricewatch without installing it
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

from pricewatch.config import settings
from pricewatch.core.exceptions import ScraperConfigurationError
from pricewatch.core.logging import configure_logging
from pricewatch.scrapers.batch import BatchItem, BatchProcessor, BatchProgress, BatchResult
from pricewatch.scrapers.factory import ScraperFactory
from pricewatch.scrapers.register_adapters import register_all_scrapers
from pricewatch.scrapers.utils.browser_pool import BrowserPool, install_signal_handlers
from pricewatch.services.item_source import load_items_from_file


def _print_progress(progress: BatchProgress) -> None:
    print(
        f"  Batch {progress.current_batch}/{progress.total_batches}: "
        f"{progress.completed}/{progress.total} done, "
        f"{progress.successful} ok, {progress.failed} failed, {progress.cached} cached, "
        f"~{progress.estimated_time_remaining:.0f}s remaining"
    )


def _print_result(result: BatchResult) -> None:
    if not result.success:
        print(f"  ✗ {result.gtin}: {result.error}")
    elif result.data is None or result.data.price is None:
        print(f"  - {result.gtin}: not found")
    else:
        cached = " (cached)" if result.cached else ""
        print(f"  ✓ {result.gtin}: €{result.data.price:.2f}{cached}  {result.data.product_url or ''}")


def _collect_items(args: argparse.Namespace) -> List[BatchItem]:
    items = [BatchItem(id=g, gtin=g) for g in args.gtins]
    if args.file:
        items.extend(load_items_from_file(args.file))
    return items


async def run(args: argparse.Namespace) -> int:
    items = _collect_items(args)
    if not items:
        print("No GTINs given. Pass them as arguments or with --file.")
        return 2

    pool = BrowserPool(settings.pool_settings())
    factory = ScraperFactory(pool)
    register_all_scrapers(factory, settings)

    if not factory.has_scraper(args.retailer):
        print(f"Unknown retailer '{args.retailer}'. Available:")
        for slug in sorted(factory.get_registered_retailers()):
            print(f"   - {slug}")
        return 2

    try:
        runner = factory.create_runner(args.retailer)
    except ScraperConfigurationError as e:
        print(f"Configuration error: {e.message}")
        return 2

    try:
        config = settings.batch_config().with_overrides(
            concurrency=args.concurrency, batch_size=args.batch_size
        )
    except ValidationError as e:
        print(f"Invalid batch options:\n{e}")
        return 2

    processor = BatchProcessor(
        config,
        on_progress=_print_progress,
        on_item_complete=_print_result if args.verbose else None,
    )
    batch_done = asyncio.Event()
    install_signal_handlers(
        pool,
        on_signal=processor.stop,
        drain=batch_done.wait,
        drain_timeout=settings.SHUTDOWN_DRAIN_TIMEOUT,
    )

    print(f"\n{'=' * 70}")
    print(f"  {args.retailer.upper()}: {len(items)} products")
    print(f"{'=' * 70}\n")

    await pool.start()
    try:
        results = await processor.process_batch(items, runner)
    finally:
        batch_done.set()
        await pool.shutdown()

    print(f"\n{'=' * 70}")
    print("  Results")
    print(f"{'=' * 70}")
    for result in results:
        _print_result(result)

    failed = sum(1 for r in results if not r.success)
    print(f"\n  {len(results) - failed} ok, {failed} failed, {len(items) - len(results)} skipped\n")
    return 1 if failed else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Look up retailer prices by GTIN")
    parser.add_argument("gtins", nargs="*", help="GTINs to look up")
    parser.add_argument(
        "--retailer", "-r", required=True, help="Retailer slug (dm, mueller, metro)"
    )
    parser.add_argument("--file", "-f", help="JSON or CSV file with items to look up")
    parser.add_argument("--concurrency", "-c", type=int, help="Concurrent lookups per batch")
    parser.add_argument("--batch-size", "-b", type=int, help="Items per batch")
    parser.add_argument("--verbose", "-v", action="store_true", help="Print each result as it completes")
    args = parser.parse_args()

    configure_logging(settings.LOG_LEVEL, json=settings.LOG_JSON)
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
