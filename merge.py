"""Merge classification for a normalized listing against what is stored.

``classify`` is a pure function of the candidate and the rows that share its
``(source, url)`` or its VIN. The caller looks those rows up and applies the
decision; nothing here touches the network or the database.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from records import Listing, MergeAction

# Fields that describe an offering and may change while it is live.
OFFER_FIELDS = ("price", "mileage", "sold_date")

# Fields that describe the car. Filled when missing, never overwritten by UPDATE.
VEHICLE_FIELDS = (
    "vin",
    "year",
    "model",
    "trim",
    "generation",
    "exterior_color",
    "interior_color",
    "transmission",
)

FILL_FIELDS = VEHICLE_FIELDS + ("title", "location", "options_text", "list_date")

# Set once on insert.
FIRST_SEEN_FIELDS = ("first_seen_at", "list_date")


@dataclass
class MergeDecision:
    action: MergeAction
    listing: Listing
    target_id: Optional[int] = None
    changes: Dict[str, Any] = field(default_factory=dict)
    # updates to other rows sharing the VIN: {listing id: {field: value}}
    related_changes: Dict[int, Dict[str, Any]] = field(default_factory=dict)


def completeness(listing: Listing) -> int:
    return sum(1 for name in FILL_FIELDS + OFFER_FIELDS if getattr(listing, name) is not None)


def effective_date(listing: Listing) -> Optional[date]:
    return listing.list_date or listing.sold_date


def _update_changes(candidate: Listing, existing: Listing) -> Dict[str, Any]:
    changes: Dict[str, Any] = {}
    for name in OFFER_FIELDS:
        new = getattr(candidate, name)
        if new is not None and new != getattr(existing, name):
            changes[name] = new
    for name in FILL_FIELDS:
        if name in FIRST_SEEN_FIELDS and getattr(existing, name) is not None:
            continue
        if getattr(existing, name) is None and getattr(candidate, name) is not None:
            changes[name] = getattr(candidate, name)
    if candidate.is_paint_to_sample and not existing.is_paint_to_sample:
        changes["is_paint_to_sample"] = True
    return changes


def _rank(listing: Listing):
    # Highest completeness, then most recent, then lowest (source, url).
    scraped = listing.scraped_at.timestamp() if listing.scraped_at else 0.0
    return (-completeness(listing), -scraped, listing.source, listing.source_url)


def reconcile(records: List[Listing]) -> Dict[str, Any]:
    """Pick one value per vehicle field across records of the same VIN."""
    ordered = sorted(records, key=_rank)
    merged: Dict[str, Any] = {}
    for name in VEHICLE_FIELDS:
        for record in ordered:
            value = getattr(record, name)
            if value is not None:
                merged[name] = value
                break
    merged["is_paint_to_sample"] = any(r.is_paint_to_sample for r in records)
    return merged


def _apply(listing: Listing, values: Dict[str, Any]) -> Listing:
    data = listing.to_dict()
    data.update(values)
    return Listing(**data)


def classify(
    candidate: Listing,
    by_url: Optional[Listing] = None,
    by_vin: Optional[List[Listing]] = None,
) -> MergeDecision:
    """Decide what to do with ``candidate``.

    ``by_url`` is the stored row with the same ``(source, source_url)``, if
    any. ``by_vin`` are stored rows with the same VIN from any source.
    """
    if by_url is not None:
        changes = _update_changes(candidate, by_url)
        if not changes:
            return MergeDecision(MergeAction.SKIP, by_url, target_id=by_url.id)
        changes["scraped_at"] = candidate.scraped_at
        return MergeDecision(MergeAction.UPDATE, _apply(by_url, changes), by_url.id, changes)

    others = [r for r in (by_vin or []) if r.key != candidate.key]
    if not candidate.vin or not others:
        return MergeDecision(MergeAction.NEW, candidate)

    same_source = [r for r in others if r.source == candidate.source]
    if same_source:
        latest = max(same_source, key=lambda r: (effective_date(r) or date.min, r.id or 0))
        when, latest_when = effective_date(candidate), effective_date(latest)
        if when is not None and when == latest_when and candidate.price == latest.price:
            # same offering reachable under a second URL
            return MergeDecision(MergeAction.SKIP, latest, target_id=latest.id)
        if when is not None and (latest_when is None or when > latest_when):
            action = MergeAction.RELIST
        else:
            # an older offering of the car, inserted as history
            action = MergeAction.NEW
    else:
        action = MergeAction.MERGE

    reconciled = reconcile(others + [candidate])
    listing = _apply(candidate, reconciled)
    related: Dict[int, Dict[str, Any]] = {}
    for row in others:
        diff = {k: v for k, v in reconciled.items() if getattr(row, k) != v}
        if diff and row.id is not None:
            related[row.id] = diff
    return MergeDecision(action, listing, changes=reconciled, related_changes=related)
