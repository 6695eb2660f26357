"""Persistence for listings, the scrape queue and the raw page cache.

``Store`` opens one short session per call and commits before returning, so
queue and cache progress survive an interrupted run. Conflicts on the natural
keys are resolved with insert-or-ignore / insert-or-update statements rather
than locks.
"""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Set

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import sessionmaker

from db import make_engine, make_session_factory
from db_models import CacheRow, ListingRow, QueueRow
from records import LISTING_FIELDS, Listing, QueueStatus, RawHtmlCacheEntry, ScrapeQueueItem

log = logging.getLogger(__name__)


def _listing(row: ListingRow) -> Listing:
    data = {name: getattr(row, name) for name in LISTING_FIELDS}
    data["is_paint_to_sample"] = bool(data["is_paint_to_sample"])
    return Listing(id=row.id, **data)


def _queue_item(row: QueueRow) -> ScrapeQueueItem:
    return ScrapeQueueItem(
        source=row.source,
        url=row.url,
        status=row.status,
        priority=row.priority,
        hints=dict(row.hints or {}),
        attempts=row.attempts or 0,
        last_error=row.last_error,
        rescrape_fields=list(row.rescrape_fields or []),
    )


def _cache_entry(row: CacheRow) -> RawHtmlCacheEntry:
    return RawHtmlCacheEntry(
        source=row.source,
        url=row.url,
        path=row.path,
        byte_size=row.byte_size,
        content_hash=row.content_hash,
        fetched_at=row.fetched_at,
        expires_at=row.expires_at,
        compressed=bool(row.compressed),
    )


class Store:
    def __init__(self, session_factory: sessionmaker):
        self._sessions = session_factory
        self._dialect = session_factory.kw["bind"].dialect.name

    @classmethod
    def from_url(cls, url: Optional[str] = None) -> "Store":
        return cls(make_session_factory(make_engine(url)))

    def _insert(self, table):
        if self._dialect == "postgresql":
            return pg_insert(table)
        return sqlite_insert(table)

    # -- listings -------------------------------------------------------

    def existing_urls(self, source: str, urls: Iterable[str]) -> Set[str]:
        urls = list(urls)
        if not urls:
            return set()
        with self._sessions() as s:
            rows = s.execute(
                select(ListingRow.source_url).where(
                    ListingRow.source == source, ListingRow.source_url.in_(urls)
                )
            )
            return {r[0] for r in rows}

    def get_listing(self, source: str, url: str) -> Optional[Listing]:
        with self._sessions() as s:
            row = s.execute(
                select(ListingRow).where(ListingRow.source == source, ListingRow.source_url == url)
            ).scalar_one_or_none()
            return _listing(row) if row else None

    def listings_by_vin(self, vin: str) -> List[Listing]:
        with self._sessions() as s:
            rows = s.execute(
                select(ListingRow).where(ListingRow.vin == vin).order_by(ListingRow.id)
            ).scalars()
            return [_listing(r) for r in rows]

    def insert_listing(self, listing: Listing) -> Listing:
        data = {name: getattr(listing, name) for name in LISTING_FIELDS}
        if data["first_seen_at"] is None:
            data["first_seen_at"] = datetime.now(timezone.utc).replace(tzinfo=None)
        with self._sessions() as s, s.begin():
            row = ListingRow(**data)
            s.add(row)
            s.flush()
            return _listing(row)

    def update_listing(self, listing_id: int, changes: Dict) -> None:
        if not changes:
            return
        with self._sessions() as s, s.begin():
            s.execute(update(ListingRow).where(ListingRow.id == listing_id).values(**changes))

    def iter_listings(self, source: Optional[str] = None, batch_size: int = 500) -> Iterator[Listing]:
        last_id = 0
        while True:
            with self._sessions() as s:
                stmt = select(ListingRow).where(ListingRow.id > last_id)
                if source:
                    stmt = stmt.where(ListingRow.source == source)
                rows = s.execute(stmt.order_by(ListingRow.id).limit(batch_size)).scalars().all()
            if not rows:
                return
            for row in rows:
                yield _listing(row)
            last_id = rows[-1].id

    def count_listings(self, source: Optional[str] = None, since: Optional[datetime] = None) -> int:
        with self._sessions() as s:
            stmt = select(func.count(ListingRow.id))
            if source:
                stmt = stmt.where(ListingRow.source == source)
            if since:
                stmt = stmt.where(ListingRow.first_seen_at >= since)
            return s.execute(stmt).scalar_one()

    # -- scrape queue ---------------------------------------------------

    def enqueue(self, items: Iterable[ScrapeQueueItem]) -> int:
        """Insert queue items; URLs already queued for the source are left alone."""
        values = [
            {
                "source": i.source,
                "url": i.url,
                "status": i.status,
                "priority": i.priority,
                "hints": i.hints,
                "attempts": i.attempts,
                "rescrape_fields": i.rescrape_fields,
            }
            for i in items
        ]
        if not values:
            return 0
        stmt = self._insert(QueueRow.__table__).values(values)
        stmt = stmt.on_conflict_do_nothing(index_elements=["source", "url"])
        with self._sessions() as s, s.begin():
            result = s.execute(stmt)
            return max(result.rowcount or 0, 0)

    def queued_urls(self, source: str, urls: Iterable[str]) -> Set[str]:
        urls = list(urls)
        if not urls:
            return set()
        with self._sessions() as s:
            rows = s.execute(
                select(QueueRow.url).where(QueueRow.source == source, QueueRow.url.in_(urls))
            )
            return {r[0] for r in rows}

    def get_queue_item(self, source: str, url: str) -> Optional[ScrapeQueueItem]:
        with self._sessions() as s:
            row = s.execute(
                select(QueueRow).where(QueueRow.source == source, QueueRow.url == url)
            ).scalar_one_or_none()
            return _queue_item(row) if row else None

    def pending(self, source: str, limit: int, exclude: Iterable[str] = ()) -> List[ScrapeQueueItem]:
        exclude = list(exclude)
        with self._sessions() as s:
            stmt = select(QueueRow).where(
                QueueRow.source == source, QueueRow.status == QueueStatus.PENDING
            )
            if exclude:
                stmt = stmt.where(QueueRow.url.not_in(exclude))
            stmt = stmt.order_by(QueueRow.priority, QueueRow.id).limit(limit)
            return [_queue_item(r) for r in s.execute(stmt).scalars()]

    def mark(
        self,
        source: str,
        url: str,
        status: str,
        error: Optional[str] = None,
        rescrape_fields: Optional[List[str]] = None,
        attempted: bool = True,
    ) -> None:
        values = {"status": status, "last_error": error, "rescrape_fields": rescrape_fields or []}
        if attempted:
            values["attempts"] = QueueRow.attempts + 1
        with self._sessions() as s, s.begin():
            s.execute(
                update(QueueRow)
                .where(QueueRow.source == source, QueueRow.url == url)
                .values(**values)
            )

    def requeue(self, source: str, status: str = QueueStatus.NEEDS_RESCRAPE) -> int:
        """Move items in ``status`` back to pending."""
        with self._sessions() as s, s.begin():
            result = s.execute(
                update(QueueRow)
                .where(QueueRow.source == source, QueueRow.status == status)
                .values(status=QueueStatus.PENDING)
            )
            return result.rowcount or 0

    def queue_counts(self, source: str) -> Dict[str, int]:
        with self._sessions() as s:
            rows = s.execute(
                select(QueueRow.status, func.count(QueueRow.id))
                .where(QueueRow.source == source)
                .group_by(QueueRow.status)
            )
            return {status: count for status, count in rows}

    # -- raw page cache metadata ------------------------------------------

    def upsert_cache_entry(self, entry: RawHtmlCacheEntry) -> None:
        values = {
            "source": entry.source,
            "url": entry.url,
            "path": entry.path,
            "byte_size": entry.byte_size,
            "content_hash": entry.content_hash,
            "compressed": entry.compressed,
            "fetched_at": entry.fetched_at,
            "expires_at": entry.expires_at,
        }
        stmt = self._insert(CacheRow.__table__).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["source", "url"],
            set_={k: stmt.excluded[k] for k in values if k not in ("source", "url")},
        )
        with self._sessions() as s, s.begin():
            s.execute(stmt)

    def get_cache_entry(self, source: str, url: str) -> Optional[RawHtmlCacheEntry]:
        with self._sessions() as s:
            row = s.execute(
                select(CacheRow).where(CacheRow.source == source, CacheRow.url == url)
            ).scalar_one_or_none()
            return _cache_entry(row) if row else None

    def cache_entries(self, source: Optional[str] = None) -> List[RawHtmlCacheEntry]:
        with self._sessions() as s:
            stmt = select(CacheRow).order_by(CacheRow.id)
            if source:
                stmt = stmt.where(CacheRow.source == source)
            return [_cache_entry(r) for r in s.execute(stmt).scalars()]

    def cached_urls(self, source: str, now: Optional[datetime] = None) -> Set[str]:
        with self._sessions() as s:
            stmt = select(CacheRow.url).where(CacheRow.source == source)
            if now is not None:
                stmt = stmt.where((CacheRow.expires_at.is_(None)) | (CacheRow.expires_at > now))
            return {r[0] for r in s.execute(stmt)}

    def count_cache_entries(self, source: Optional[str] = None, since: Optional[datetime] = None) -> int:
        with self._sessions() as s:
            stmt = select(func.count(CacheRow.id))
            if source:
                stmt = stmt.where(CacheRow.source == source)
            if since:
                stmt = stmt.where(CacheRow.fetched_at >= since)
            return s.execute(stmt).scalar_one()

    def delete_cache_entry(self, source: str, url: str) -> None:
        with self._sessions() as s, s.begin():
            s.execute(delete(CacheRow).where(CacheRow.source == source, CacheRow.url == url))


class LocalBlobStore:
    """Blob storage on the local filesystem, addressed by relative path."""

    def __init__(self, root: str):
        self.root = Path(root)

    def _path(self, path: str) -> Path:
        full = (self.root / path).resolve()
        if self.root.resolve() not in full.parents:
            raise ValueError(f"blob path escapes store root: {path}")
        return full

    def put(self, path: str, data: bytes) -> None:
        full = self._path(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        tmp = full.with_suffix(full.suffix + ".tmp")
        tmp.write_bytes(data)
        os.replace(tmp, full)

    def get(self, path: str) -> Optional[bytes]:
        full = self._path(path)
        if not full.exists():
            return None
        return full.read_bytes()

    def delete(self, path: str) -> None:
        full = self._path(path)
        if full.exists():
            full.unlink()

    def list(self, prefix: str = "") -> List[str]:
        base = self.root / prefix if prefix else self.root
        if not base.exists():
            return []
        return sorted(
            str(p.relative_to(self.root)) for p in base.rglob("*") if p.is_file() and p.suffix != ".tmp"
        )
