"""Per-item guard for results-page parsing."""

import logging
from typing import Callable, Iterable, List, Optional, TypeVar

from records import IndexCandidate

log = logging.getLogger(__name__)

T = TypeVar("T")

# Raised by the extraction helpers on a card or JSON item of an unexpected shape.
ITEM_ERRORS = (AttributeError, KeyError, IndexError, TypeError, ValueError)


def collect(
    items: Iterable[T], build: Callable[[T], Optional[IndexCandidate]], source: str
) -> List[IndexCandidate]:
    """Run ``build`` over ``items``; items it cannot read are logged and skipped."""
    results: List[IndexCandidate] = []
    skipped = 0
    for item in items:
        try:
            candidate = build(item)
        except ITEM_ERRORS as exc:
            skipped += 1
            log.debug("%s: malformed index item: %r", source, exc)
            continue
        if candidate is not None:
            results.append(candidate)
    if skipped:
        log.warning("%s: skipped %d malformed index item(s)", source, skipped)
    return unique_by_url(results)


def unique_by_url(candidates: Iterable[IndexCandidate]) -> List[IndexCandidate]:
    """First occurrence wins; nested cards often repeat the same link."""
    seen = set()
    ordered = []
    for candidate in candidates:
        if candidate.url not in seen:
            seen.add(candidate.url)
            ordered.append(candidate)
    return ordered
