"""Read-through cache of fetched detail pages.

Pages are gzip-compressed into blob storage at a path derived only from the
source and URL, and a metadata row keyed by ``(source, url)`` records size,
hash and expiry. Writing the same URL again replaces the blob and updates the
row in place.
"""

import gzip
import hashlib
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Set

import config
from records import RawHtmlCacheEntry
from store import LocalBlobStore, Store

log = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def _utc_now() -> datetime:
    # naive UTC, as stored in the metadata rows
    return datetime.now(timezone.utc).replace(tzinfo=None)


def url_hash(url: str) -> str:
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


def url_slug(url: str, length: int = 50) -> str:
    path = url.split("://", 1)[-1].split("/", 1)[-1]
    slug = _SLUG_RE.sub("-", path.lower()).strip("-")
    return slug[:length].rstrip("-") or "index"


def cache_path(source: str, url: str) -> str:
    """Deterministic blob path for ``url``."""
    digest = url_hash(url)
    return f"{source}/{digest[:2]}/{url_slug(url)}_{digest[:16]}.html.gz"


class RawHtmlCache:
    def __init__(self, store: Store, blobs: LocalBlobStore, ttl_days: Optional[int] = None):
        self.store = store
        self.blobs = blobs
        self.ttl_days = config.CACHE_TTL_DAYS if ttl_days is None else ttl_days

    def _live_entry(self, source: str, url: str, now: Optional[datetime] = None) -> Optional[RawHtmlCacheEntry]:
        entry = self.store.get_cache_entry(source, url)
        if entry is None:
            return None
        now = now or _utc_now()
        if entry.expires_at is not None and entry.expires_at <= now:
            return None
        return entry

    def has(self, source: str, url: str) -> bool:
        return self._live_entry(source, url) is not None

    def get(self, source: str, url: str) -> Optional[str]:
        entry = self._live_entry(source, url)
        if entry is None:
            return None
        data = self.blobs.get(entry.path)
        if data is None:
            log.warning("cache row for %s has no blob at %s", url, entry.path)
            return None
        if entry.compressed:
            data = gzip.decompress(data)
        return data.decode("utf-8")

    def put(self, source: str, url: str, html: str) -> RawHtmlCacheEntry:
        raw = html.encode("utf-8")
        # mtime=0 keeps the compressed bytes stable for identical input
        packed = gzip.compress(raw, mtime=0)
        path = cache_path(source, url)
        self.blobs.put(path, packed)

        now = _utc_now()
        entry = RawHtmlCacheEntry(
            source=source,
            url=url,
            path=path,
            byte_size=len(packed),
            content_hash=hashlib.sha256(raw).hexdigest(),
            fetched_at=now,
            expires_at=now + timedelta(days=self.ttl_days) if self.ttl_days else None,
            compressed=True,
        )
        self.store.upsert_cache_entry(entry)
        log.debug("cached %s (%d bytes) at %s", url, len(packed), path)
        return entry

    def cached_urls(self, source: str) -> Set[str]:
        return self.store.cached_urls(source, now=_utc_now())

    def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        now = now or _utc_now()
        removed = 0
        for entry in self.store.cache_entries():
            if entry.expires_at is not None and entry.expires_at <= now:
                self.blobs.delete(entry.path)
                self.store.delete_cache_entry(entry.source, entry.url)
                removed += 1
        if removed:
            log.info("removed %d expired cache entries", removed)
        return removed

    def stats(self, source: Optional[str] = None) -> Dict[str, object]:
        entries = self.store.cache_entries(source)
        by_source: Dict[str, int] = {}
        for entry in entries:
            by_source[entry.source] = by_source.get(entry.source, 0) + 1
        total = sum(e.byte_size for e in entries)
        return {
            "files": len(entries),
            "total_bytes": total,
            "total_mb": round(total / 1024 / 1024, 2),
            "by_source": by_source,
        }
