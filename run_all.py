#!/usr/bin/env python
import argparse
import logging
import sys
from functools import partial
from typing import List

import config
import scrape_bat as bat
import scrape_cargurus as cg
import scrape_carsandbids as cab
import scrape_carscom as ccom
import scrape_classic as classic
import scrape_pcarmarket as pcar
from errors import PipelineError
from export import export_listings, listings_frame, summary
from ingest import Ingestor
from raw_cache import RawHtmlCache
from records import QueueStatus, RunParams, RunReport
from store import LocalBlobStore, Store
from utils.console import console, setup_logging
from utils.fetcher import PageFetcher

log = logging.getLogger(__name__)
print = partial(console.print, markup=False)

SCRAPERS = {mod.SOURCE: mod for mod in (bat, cab, classic, pcar, ccom, cg)}


def build_ingestor() -> Ingestor:
    store = Store.from_url(config.DATABASE_URL)
    cache = RawHtmlCache(store, LocalBlobStore(config.RAW_HTML_DIR))
    return Ingestor(store, cache, PageFetcher())


def print_report(report: RunReport) -> None:
    style = "red" if report.aborted else "green"
    console.print(
        f"  {report.source}: {report.new} new, {report.updated} updated, {report.relisted} relisted, "
        f"{report.merged} merged, {report.skipped} skipped, {report.failed} failed, "
        f"{report.rejected} rejected; {report.enqueued} queued from {report.pages} pages "
        f"({report.duplicate_rate}% known)",
        style=style,
        markup=False,
    )
    if report.aborted:
        console.print(f"  aborted: {report.abort_reason}", style="red", markup=False)


def parse_sources(value: str) -> List[str]:
    names = [s.strip() for s in value.split(",") if s.strip()]
    unknown = [n for n in names if n not in SCRAPERS]
    if unknown:
        raise argparse.ArgumentTypeError(f"unknown source(s): {', '.join(unknown)}")
    return names


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(description="Ingest Porsche listings from auction and dealer sites.")
    ap.add_argument("--sources", type=parse_sources, default=list(SCRAPERS))
    ap.add_argument("--pages", type=int, default=config.MAX_INDEX_PAGES)
    ap.add_argument("--start-page", type=int, default=1)
    sold = ap.add_mutually_exclusive_group()
    sold.add_argument("--only-sold", dest="only_sold", action="store_true", default=True)
    sold.add_argument("--include-active", dest="only_sold", action="store_false")
    ap.add_argument("--model")
    ap.add_argument("--trim")
    phase = ap.add_mutually_exclusive_group()
    phase.add_argument("--index-only", action="store_true")
    phase.add_argument("--details-only", action="store_true")
    ap.add_argument("--renormalize", action="store_true", help="re-apply normalization to stored rows and exit")
    ap.add_argument("--reparse-cache", action="store_true", help="re-parse cached pages instead of crawling")
    ap.add_argument("--requeue", action="store_true", help="move needs_rescrape items back to pending first")
    ap.add_argument("--cleanup-cache", action="store_true", help="delete expired cached pages and exit")
    ap.add_argument("--export", action="store_true", help="write listings to OUTPUT_DIR after the run")
    ap.add_argument("--no-parquet", action="store_true")
    ap.add_argument("--workers", type=int, default=config.DETAIL_WORKERS)
    ap.add_argument("--log-level", default=config.LOG_LEVEL)
    args = ap.parse_args(argv)

    # Propagate run-time config to shared config
    for k, v in dict(MAX_INDEX_PAGES=args.pages, DETAIL_WORKERS=args.workers, LOG_LEVEL=args.log_level).items():
        setattr(config, k, v)
    setup_logging(args.log_level)

    ingestor = build_ingestor()
    try:
        if args.cleanup_cache:
            removed = ingestor.cache.cleanup_expired()
            print(f"Removed {removed} expired cache entries.")
            return 0
        if args.renormalize:
            for name in args.sources:
                changed = ingestor.renormalize_all(name)
                print(f"→ {name}: {changed} listings renormalized")
            return 0

        exit_code = 0
        for name in args.sources:
            scraper = SCRAPERS[name]
            print(f"→ {name}…")
            if args.requeue:
                moved = ingestor.store.requeue(name, QueueStatus.NEEDS_RESCRAPE)
                print(f"  {name}: {moved} items requeued")
            try:
                if args.reparse_cache:
                    report = ingestor.reparse_cached(scraper)
                else:
                    params = RunParams(
                        source=name,
                        max_pages=args.pages,
                        start_page=args.start_page,
                        only_sold=args.only_sold,
                        model=args.model,
                        trim=args.trim,
                        index_only=args.index_only,
                        details_only=args.details_only,
                    )
                    report = ingestor.run(scraper, params)
            except PipelineError as exc:
                console.print(f"  {name} failed: {exc}", style="red", markup=False)
                exit_code = 1
                continue
            except Exception as exc:  # one broken source must not stop the others
                log.exception("%s: unexpected error", name)
                console.print(f"  {name} failed: {exc!r}", style="red", markup=False)
                exit_code = 1
                continue
            print_report(report)
            if report.aborted:
                exit_code = 1

        if args.export:
            paths = export_listings(ingestor.store, config.OUTPUT_DIR, parquet=not args.no_parquet)
            print("\n=== Summary ===")
            print(summary(listings_frame(ingestor.store.iter_listings())).to_string())
            print(f"\nListings → {paths['csv']}")
        return exit_code
    finally:
        ingestor.fetcher.close()


if __name__ == "__main__":
    sys.exit(main())
