"""Flat exports of normalized listings for analysis."""

import datetime as dt
import logging
import pathlib
from typing import Dict, Iterable, Optional

import pandas as pd

from records import LISTING_FIELDS, Listing
from store import Store

log = logging.getLogger(__name__)

COLUMNS = ("id",) + LISTING_FIELDS


def listings_frame(listings: Iterable[Listing]) -> pd.DataFrame:
    rows = [listing.to_dict() for listing in listings]
    if not rows:
        return pd.DataFrame(columns=list(COLUMNS))
    df = pd.DataFrame(rows, columns=list(COLUMNS))
    for col in ("id", "year", "price", "mileage"):
        df[col] = pd.to_numeric(df[col], errors="coerce").astype("Int64")
    for col in ("list_date", "sold_date", "scraped_at", "first_seen_at"):
        df[col] = pd.to_datetime(df[col], errors="coerce")
    df["source"] = df["source"].astype("category")
    df["is_paint_to_sample"] = df["is_paint_to_sample"].astype(bool)
    return df


def summary(df: pd.DataFrame) -> pd.DataFrame:
    """Per-source listing counts and price medians."""
    if df.empty:
        return pd.DataFrame(columns=["listings", "sold", "with_vin", "median_price"])
    grouped = df.groupby("source", observed=True)
    return pd.DataFrame(
        {
            "listings": grouped["source_url"].count(),
            "sold": grouped["sold_date"].count(),
            "with_vin": grouped["vin"].count(),
            "median_price": grouped["price"].median(),
        }
    )


def export_listings(
    store: Store,
    out_dir: str,
    parquet: bool = True,
    source: Optional[str] = None,
) -> Dict[str, pathlib.Path]:
    """Write every stored listing to a timestamped CSV (and parquet) file."""
    out = pathlib.Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    df = listings_frame(store.iter_listings(source))
    df = df.sort_values(["source", "sold_date", "price"], na_position="last")

    ts = dt.datetime.now(dt.timezone.utc).strftime("%Y%m%d-%H%M%S")
    stem = f"listings-{source}-{ts}" if source else f"listings-{ts}"
    paths = {"csv": out / f"{stem}.csv"}
    df.to_csv(paths["csv"], index=False)
    if parquet:
        paths["parquet"] = out / f"{stem}.parquet"
        df.to_parquet(paths["parquet"], index=False)
    log.info("exported %d listings to %s", len(df), paths["csv"])
    return paths
