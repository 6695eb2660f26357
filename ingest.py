"""Two-phase crawl of one source: index pages into the queue, then details.

Every queue status change and every cache write is committed as it happens,
so a run can be stopped at any point and the next one picks up the pending
queue items instead of starting again from page one.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from types import ModuleType
from typing import Callable, Dict, Iterable, List, Optional, Set, Union

from sqlalchemy.exc import IntegrityError

import config
from dedup import DuplicateRateTracker, filter_new_urls, should_stop_pagination
from errors import ConsecutiveFailureAbort, FetchBlocked, FetchError, TransientFetchError
from merge import MergeDecision, classify
from normalize import normalize_listing, other_model, parse_model_trim, renormalize
from raw_cache import RawHtmlCache
from records import (
    LISTING_FIELDS,
    ExtractionFailure,
    Listing,
    MergeAction,
    PartialListing,
    QueueStatus,
    RunParams,
    RunReport,
    ScrapeQueueItem,
)
from store import Store
from utils.fetcher import PageFetcher
from utils.throttle import polite_sleep, retry_delay

log = logging.getLogger(__name__)

HIGH_VALUE_PRICE = 200_000

# Field groups whose absence leaves a queue item in needs_rescrape.
FIELD_GROUPS = {
    "price": ("price",),
    "mileage": ("mileage",),
    "vin": ("vin",),
    "colors": ("exterior_color", "interior_color"),
}

DetailOutcome = Union[PartialListing, ExtractionFailure, FetchError]


def queue_priority(hints: Dict) -> int:
    price = hints.get("price")
    return 1 if isinstance(price, int) and price > HIGH_VALUE_PRICE else 2


def missing_groups(listing: Listing) -> List[str]:
    return [
        group
        for group, names in FIELD_GROUPS.items()
        if all(getattr(listing, name) is None for name in names)
    ]


def matches_filter(hints: Dict, params: RunParams) -> bool:
    """Drop candidates whose title clearly names another model or trim."""
    if not (params.model or params.trim) or not hints.get("title"):
        return True
    if params.model and other_model(hints["title"]):
        return False
    model, trim = parse_model_trim(hints["title"])
    if params.model and model and model.lower() != params.model.lower():
        return False
    if params.trim and trim and trim.lower() != params.trim.lower():
        return False
    return True


class Ingestor:
    def __init__(
        self,
        store: Store,
        cache: RawHtmlCache,
        fetcher: PageFetcher,
        reference_year: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.cache = cache
        self.fetcher = fetcher
        self.reference_year = reference_year
        self._sleep = sleep
        self._deferred: Set[str] = set()
        self._index_fetches = 0

    # -- entry points -----------------------------------------------------

    def run(self, scraper: ModuleType, params: RunParams) -> RunReport:
        report = RunReport(source=scraper.SOURCE)
        self.fetcher.check_credentials()
        if not params.details_only:
            self.index_phase(scraper, params, report)
        if not params.index_only:
            self.detail_phase(scraper, params, report)
        log.info("%s run finished: %s", scraper.SOURCE, report.as_dict())
        return report

    def ingest_batch(self, partials: Iterable[PartialListing], report: Optional[RunReport] = None) -> RunReport:
        """Normalize and merge already-parsed listings, in order."""
        partials = list(partials)
        if report is None:
            report = RunReport(source=partials[0].source if partials else "")
        for partial in partials:
            self.ingest_partial(partial, report)
        return report

    def reparse_cached(self, scraper: ModuleType) -> RunReport:
        """Re-derive listings from cached pages with the current parser."""
        report = RunReport(source=scraper.SOURCE)
        for entry in self.store.cache_entries(scraper.SOURCE):
            html = self.cache.get(entry.source, entry.url)
            if html is None:
                continue
            result = scraper.parse_detail(html, entry.url)
            if isinstance(result, ExtractionFailure):
                report.failed += 1
                log.debug("reparse failed for %s: %s", entry.url, result.reason)
                continue
            self.ingest_partial(result, report)
        return report

    def renormalize_all(self, source: Optional[str] = None) -> int:
        """Bring every stored row in line with the current canonical rules."""
        changed = 0
        for listing in self.store.iter_listings(source):
            fresh = renormalize(listing, self.reference_year)
            diff = {
                name: getattr(fresh, name)
                for name in LISTING_FIELDS
                if getattr(fresh, name) != getattr(listing, name)
            }
            if diff:
                self.store.update_listing(listing.id, diff)
                changed += 1
        log.info("renormalized %d listings", changed)
        return changed

    # -- index phase ------------------------------------------------------

    def _index_fetch(self, url: str) -> str:
        if self._index_fetches:
            polite_sleep(config.INDEX_DELAY_RANGE)
        self._index_fetches += 1
        return self._fetch_with_retry(url)

    def index_phase(self, scraper: ModuleType, params: RunParams, report: RunReport) -> None:
        source = scraper.SOURCE
        tracker = DuplicateRateTracker()
        self._index_fetches = 0
        pages = scraper.index_pages(params, self._index_fetch)
        try:
            for page in pages:
                report.pages += 1
                hints = {c.url: c.hints for c in page.candidates}
                result = filter_new_urls(self.store, source, list(hints))
                report.seen_urls += result.stats.total
                report.known_urls += result.stats.existing

                items = [
                    ScrapeQueueItem(source=source, url=url, priority=queue_priority(hints[url]), hints=hints[url])
                    for url in result.new_urls
                    if matches_filter(hints[url], params)
                ]
                added = self.store.enqueue(items)
                report.enqueued += added
                rate = tracker.add(result.stats)
                log.info(
                    "%s page %d: %d candidates, %d new, %d queued, %.1f%% known",
                    source, page.page, result.stats.total, result.stats.new, added, rate,
                )
                if should_stop_pagination(rate):
                    log.info("%s: stopping pagination after page %d", source, page.page)
                    break
        except FetchError as exc:
            log.warning("%s index phase stopped: %s", source, exc)
        finally:
            pages.close()

    # -- detail phase -----------------------------------------------------

    def detail_phase(self, scraper: ModuleType, params: RunParams, report: RunReport) -> None:
        consecutive = 0
        self._deferred = set()
        while True:
            batch = self.store.pending(scraper.SOURCE, config.DETAIL_BATCH_SIZE, exclude=self._deferred)
            if not batch:
                break
            try:
                consecutive = self._process_batch(scraper, batch, params, report, consecutive)
            except ConsecutiveFailureAbort as exc:
                report.aborted = True
                report.abort_reason = str(exc)
                log.error("%s detail phase aborted: %s", scraper.SOURCE, exc)
                break

    def _process_batch(
        self,
        scraper: ModuleType,
        batch: List[ScrapeQueueItem],
        params: RunParams,
        report: RunReport,
        consecutive: int,
    ) -> int:
        workers = max(1, config.DETAIL_WORKERS)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(self._fetch_detail, scraper, item) for item in batch]
            try:
                for item, future in zip(batch, futures):
                    ok = self._apply_outcome(item, future.result(), params, report)
                    consecutive = 0 if ok else consecutive + 1
                    if consecutive >= config.MAX_CONSECUTIVE_FAILURES:
                        raise ConsecutiveFailureAbort(consecutive)
            except ConsecutiveFailureAbort:
                for future in futures:
                    future.cancel()
                raise
        return consecutive

    def _fetch_with_retry(self, url: str) -> str:
        attempts = max(1, config.RETRY_ATTEMPTS)
        for attempt in range(1, attempts + 1):
            try:
                return self.fetcher.fetch(url)
            except TransientFetchError as exc:
                if attempt == attempts:
                    raise
                delay = retry_delay(attempt, config.RETRY_DELAY)
                log.warning("%s (attempt %d/%d); retrying in %.1fs", exc, attempt, attempts, delay)
                self._sleep(delay)
        raise AssertionError("unreachable")

    def _fetch_detail(self, scraper: ModuleType, item: ScrapeQueueItem) -> DetailOutcome:
        def fetch(url: str) -> str:
            html = self.cache.get(item.source, url)
            if html is not None:
                return html
            polite_sleep(config.DETAIL_DELAY_RANGE)
            html = self._fetch_with_retry(url)
            self.cache.put(item.source, url, html)
            return html

        try:
            return scraper.detail_page(item.url, fetch)
        except FetchError as exc:
            return exc

    def _apply_outcome(
        self, item: ScrapeQueueItem, outcome: DetailOutcome, params: RunParams, report: RunReport
    ) -> bool:
        """Record one detail result. Returns False when it counts as a failure."""
        source, url = item.source, item.url
        if isinstance(outcome, FetchBlocked):
            report.failed += 1
            self.store.mark(source, url, QueueStatus.PENDING, error=str(outcome))
            self._deferred.add(url)
            log.warning("%s blocked on %s; backing off %.0fs", source, url, config.BLOCKED_BACKOFF)
            self._sleep(config.BLOCKED_BACKOFF)
            return False
        if isinstance(outcome, FetchError):
            report.failed += 1
            self.store.mark(source, url, QueueStatus.FAILED, error=str(outcome))
            log.warning("%s fetch failed for %s: %s", source, url, outcome)
            return False
        if isinstance(outcome, ExtractionFailure):
            report.failed += 1
            self.store.mark(source, url, QueueStatus.FAILED, error=f"extraction: {outcome.reason}")
            log.warning("%s could not parse %s: %s", source, url, outcome.reason)
            return False

        if params.only_sold and (outcome.sold is False or (outcome.sold is None and outcome.sold_date is None)):
            report.skipped += 1
            self.store.mark(source, url, QueueStatus.DONE, error="not sold")
            return True

        decision = self.ingest_partial(outcome, report)
        if decision is None:
            self.store.mark(source, url, QueueStatus.DONE, error="rejected by validation")
            return True
        missing = missing_groups(decision.listing)
        status = QueueStatus.NEEDS_RESCRAPE if missing else QueueStatus.DONE
        self.store.mark(source, url, status, rescrape_fields=missing)
        return True

    # -- merge ------------------------------------------------------------

    def ingest_partial(self, partial: PartialListing, report: RunReport) -> Optional[MergeDecision]:
        result = normalize_listing(partial, self.reference_year)
        if result.dropped:
            report.rejected += 1
            log.info("rejected %s: %s", partial.source_url, "; ".join(result.problems))
            return None
        decision = self.apply(result.listing)
        report.count(decision.action)
        return decision

    def apply(self, listing: Listing) -> MergeDecision:
        """Classify ``listing`` against the store and write the outcome."""
        for attempt in (1, 2):
            by_url = self.store.get_listing(listing.source, listing.source_url)
            by_vin = self.store.listings_by_vin(listing.vin) if listing.vin else []
            decision = classify(listing, by_url, by_vin)
            try:
                self._write(decision)
            except IntegrityError:
                # another writer inserted the same key first; classify again
                if attempt == 2:
                    raise
                log.info("conflict on %s; reclassifying", listing.source_url)
                continue
            return decision
        raise AssertionError("unreachable")

    def _write(self, decision: MergeDecision) -> None:
        if decision.action in (MergeAction.NEW, MergeAction.RELIST, MergeAction.MERGE):
            decision.listing = self.store.insert_listing(decision.listing)
        elif decision.action is MergeAction.UPDATE:
            self.store.update_listing(decision.target_id, decision.changes)
        for listing_id, changes in decision.related_changes.items():
            self.store.update_listing(listing_id, changes)
