"""Plain record types passed between scrapers, normalization and the store.

Scrapers only share these types with each other. Everything site-specific
stays inside the ``scrape_*`` modules.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, asdict
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class QueueStatus:
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"
    NEEDS_RESCRAPE = "needs_rescrape"

    ALL = (PENDING, DONE, FAILED, NEEDS_RESCRAPE)


class MergeAction(str, Enum):
    NEW = "new"
    UPDATE = "update"
    RELIST = "relist"
    MERGE = "merge"
    SKIP = "skip"


@dataclass
class IndexCandidate:
    url: str
    hints: Dict[str, Any] = field(default_factory=dict)


@dataclass
class IndexPage:
    page: int
    url: str
    candidates: List[IndexCandidate]


@dataclass
class PartialListing:
    """Raw fields pulled off a detail page, before normalization."""

    source: str
    source_url: str
    title: Optional[str] = None
    vin: Optional[str] = None
    year: Optional[int] = None
    model: Optional[str] = None
    trim: Optional[str] = None
    generation: Optional[str] = None
    price: Optional[int] = None
    mileage: Optional[int] = None
    exterior_color: Optional[str] = None
    interior_color: Optional[str] = None
    transmission: Optional[str] = None
    location: Optional[str] = None
    list_date: Optional[date] = None
    sold_date: Optional[date] = None
    sold: Optional[bool] = None
    options_text: Optional[str] = None


@dataclass
class ExtractionFailure:
    source: str
    url: str
    reason: str


@dataclass
class Listing:
    source: str
    source_url: str
    vin: Optional[str] = None
    title: Optional[str] = None
    year: Optional[int] = None
    model: Optional[str] = None
    trim: Optional[str] = None
    generation: Optional[str] = None
    price: Optional[int] = None
    mileage: Optional[int] = None
    exterior_color: Optional[str] = None
    is_paint_to_sample: bool = False
    interior_color: Optional[str] = None
    transmission: Optional[str] = None
    location: Optional[str] = None
    list_date: Optional[date] = None
    sold_date: Optional[date] = None
    scraped_at: Optional[datetime] = None
    first_seen_at: Optional[datetime] = None
    options_text: Optional[str] = None
    id: Optional[int] = None

    @property
    def key(self):
        return (self.source, self.source_url)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


LISTING_FIELDS = tuple(f.name for f in fields(Listing) if f.name != "id")


@dataclass
class VinDecodeResult:
    vin: str
    valid: bool = False
    wmi: Optional[str] = None
    manufacturer: Optional[str] = None
    plant_code: Optional[str] = None
    plant: Optional[str] = None
    model_year: Optional[int] = None
    body_style: Optional[str] = None
    engine_type: Optional[str] = None
    model: Optional[str] = None
    generation: Optional[str] = None
    check_digit_ok: bool = False
    confidence: str = "low"


@dataclass
class ScrapeQueueItem:
    source: str
    url: str
    status: str = QueueStatus.PENDING
    priority: int = 2
    hints: Dict[str, Any] = field(default_factory=dict)
    attempts: int = 0
    last_error: Optional[str] = None
    rescrape_fields: List[str] = field(default_factory=list)


@dataclass
class RawHtmlCacheEntry:
    source: str
    url: str
    path: str
    byte_size: int
    content_hash: str
    fetched_at: datetime
    expires_at: Optional[datetime] = None
    compressed: bool = True


@dataclass
class RunParams:
    source: str
    max_pages: int = 10
    start_page: int = 1
    only_sold: bool = True
    model: Optional[str] = None
    trim: Optional[str] = None
    index_only: bool = False
    details_only: bool = False


@dataclass
class RunReport:
    source: str
    new: int = 0
    updated: int = 0
    relisted: int = 0
    merged: int = 0
    skipped: int = 0
    failed: int = 0
    rejected: int = 0
    enqueued: int = 0
    pages: int = 0
    seen_urls: int = 0
    known_urls: int = 0
    aborted: bool = False
    abort_reason: Optional[str] = None

    @property
    def duplicate_rate(self) -> float:
        if not self.seen_urls:
            return 0.0
        return round(self.known_urls / self.seen_urls * 100, 1)

    def count(self, action: MergeAction) -> None:
        attr = {
            MergeAction.NEW: "new",
            MergeAction.UPDATE: "updated",
            MergeAction.RELIST: "relisted",
            MergeAction.MERGE: "merged",
            MergeAction.SKIP: "skipped",
        }[action]
        setattr(self, attr, getattr(self, attr) + 1)

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["duplicate_rate"] = self.duplicate_rate
        return data
