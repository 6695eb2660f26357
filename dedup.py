"""Decide which candidate URLs are worth fetching.

Existence checks only read the store. The duplicate rate feeds a pagination
breaker: once index pages come back mostly known, later pages are assumed to
hold nothing new. That is a cost heuristic and says nothing about coverage.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Deque, Dict, Iterable, List, Optional, Set, Tuple

import config
from store import Store

log = logging.getLogger(__name__)


@dataclass
class DedupStats:
    total: int = 0
    new: int = 0
    existing: int = 0
    duplicate_rate: float = 0.0
    estimated_savings: float = 0.0


@dataclass
class DedupResult:
    new_urls: List[str] = field(default_factory=list)
    existing_urls: List[str] = field(default_factory=list)
    stats: DedupStats = field(default_factory=DedupStats)


def _unique(urls: Iterable[str]) -> List[str]:
    seen: Set[str] = set()
    ordered = []
    for url in urls:
        if url and url not in seen:
            seen.add(url)
            ordered.append(url)
    return ordered


def estimated_savings(existing: int) -> float:
    """Dollars not spent fetching ``existing`` pages through the proxy."""
    gigabytes = existing * config.AVG_PAGE_MB / 1024
    return round(gigabytes * config.COST_PER_GB, 2)


def filter_new_urls(
    store: Store, source: str, urls: Iterable[str], batch_size: Optional[int] = None
) -> DedupResult:
    """Split ``urls`` into ones not yet stored as listings and ones that are."""
    batch_size = batch_size or config.EXISTENCE_BATCH_SIZE
    ordered = _unique(urls)

    known: Set[str] = set()
    for start in range(0, len(ordered), batch_size):
        known |= store.existing_urls(source, ordered[start:start + batch_size])

    result = DedupResult(
        new_urls=[u for u in ordered if u not in known],
        existing_urls=[u for u in ordered if u in known],
    )
    total = len(ordered)
    existing = len(result.existing_urls)
    result.stats = DedupStats(
        total=total,
        new=total - existing,
        existing=existing,
        duplicate_rate=round(existing / total * 100, 1) if total else 0.0,
        estimated_savings=estimated_savings(existing),
    )
    log.debug(
        "%s: %d/%d urls already stored (%.1f%%)", source, existing, total, result.stats.duplicate_rate
    )
    return result


def get_existing_cached_urls(store: Store, source: str) -> Set[str]:
    """URLs with live cache entries, whether or not a listing was accepted."""
    return store.cached_urls(source, now=datetime.now(timezone.utc).replace(tzinfo=None))


def should_stop_pagination(recent_duplicate_rate: float, threshold: Optional[float] = None) -> bool:
    if threshold is None:
        threshold = config.DUPLICATE_STOP_THRESHOLD
    return recent_duplicate_rate >= threshold


class DuplicateRateTracker:
    """Rolling duplicate rate over the last ``window`` index pages."""

    def __init__(self, window: Optional[int] = None):
        self.pages: Deque[Tuple[int, int]] = deque(maxlen=window or config.DUPLICATE_WINDOW)

    def add(self, stats: DedupStats) -> float:
        self.pages.append((stats.existing, stats.total))
        return self.rate

    @property
    def rate(self) -> float:
        existing = sum(e for e, _ in self.pages)
        total = sum(t for _, t in self.pages)
        return round(existing / total * 100, 1) if total else 0.0


def deduplication_stats(store: Store, source: str, days: int = 7) -> Dict[str, object]:
    since = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=days)
    listings = store.count_listings(source, since=since)
    cached = store.count_cache_entries(source, since=since)
    return {
        "source": source,
        "days": days,
        "new_listings": listings,
        "pages_fetched": cached,
        "listings_total": store.count_listings(source),
        "cache_total": store.count_cache_entries(source),
    }
