from datetime import date

import pandas as pd

from export import COLUMNS, export_listings, listings_frame, summary
from records import Listing


def _listings():
    return [
        Listing(
            source="bat",
            source_url="https://bringatrailer.com/listing/2018-porsche-911-gt3-1/",
            vin="WP0AC2A99JS176782",
            year=2018,
            model="911",
            trim="GT3",
            price=182_000,
            mileage=4_100,
            sold_date=date(2024, 3, 1),
        ),
        Listing(
            source="bat",
            source_url="https://bringatrailer.com/listing/2001-porsche-911-carrera-2/",
            year=2001,
            model="911",
            trim="Carrera",
            price=38_000,
        ),
        Listing(
            source="carscom",
            source_url="https://www.cars.com/vehicledetail/abc/",
            year=2021,
            model="911",
            trim="Carrera S",
            price=139_900,
            is_paint_to_sample=True,
        ),
    ]


def test_listings_frame_types():
    df = listings_frame(_listings())
    assert list(df.columns) == list(COLUMNS)
    assert len(df) == 3
    assert str(df["price"].dtype) == "Int64"
    assert df["mileage"].isna().sum() == 2
    assert pd.api.types.is_datetime64_any_dtype(df["sold_date"])
    assert df["is_paint_to_sample"].tolist() == [False, False, True]


def test_listings_frame_empty():
    df = listings_frame([])
    assert df.empty
    assert list(df.columns) == list(COLUMNS)


def test_summary_per_source():
    result = summary(listings_frame(_listings()))
    assert result.loc["bat", "listings"] == 2
    assert result.loc["bat", "sold"] == 1
    assert result.loc["bat", "with_vin"] == 1
    assert result.loc["bat", "median_price"] == 110_000
    assert result.loc["carscom", "sold"] == 0


def test_export_writes_csv(store, tmp_path):
    for listing in _listings():
        store.insert_listing(listing)
    paths = export_listings(store, str(tmp_path / "out"), parquet=False)
    assert set(paths) == {"csv"}
    df = pd.read_csv(paths["csv"])
    assert len(df) == 3
    assert df["source"].tolist() == ["bat", "bat", "carscom"]
    assert df["price"].iloc[0] == 182_000


def test_export_single_source_with_parquet(store, tmp_path):
    for listing in _listings():
        store.insert_listing(listing)
    paths = export_listings(store, str(tmp_path), source="carscom")
    assert paths["csv"].name.startswith("listings-carscom-")
    df = pd.read_parquet(paths["parquet"])
    assert df["source_url"].tolist() == ["https://www.cars.com/vehicledetail/abc/"]
