import unittest
from datetime import date, datetime
from unittest.mock import patch

import pytest

import config
import normalize as nz
from records import Listing, PartialListing

REF = 2025
SCRAPED = datetime(2025, 1, 15, 12, 0, 0)


def partial(**kwargs) -> PartialListing:
    data = dict(source="bat", source_url="https://bringatrailer.com/listing/x/")
    data.update(kwargs)
    return PartialListing(**data)


@pytest.mark.parametrize(
    "title, expected",
    [
        ("2018 Porsche 911 GT3 6-Speed", ("911", "GT3")),
        ("2019 Porsche 911 GT3 RS Weissach", ("911", "GT3 RS")),
        ("2022 Porsche 911 GT3 Touring", ("911", "GT3 Touring")),
        ("2023 Porsche 718 Cayman GT4 RS", ("718 Cayman", "GT4 RS")),
        ("2016 Porsche Cayman GT4", ("718 Cayman", "GT4")),
        ("2024 Porsche 718 Spyder RS", ("718 Spyder", "Spyder RS")),
        ("2011 Porsche Boxster Spyder", ("718 Spyder", "Spyder")),
        ("2021 Porsche 911 Carrera 4S Cabriolet", ("911", "Carrera 4S")),
        ("2005 Porsche Carrera GT", ("Carrera GT", None)),
        ("2020 Porsche Cayenne Turbo", ("Cayenne", "Turbo")),
        ("1995 Porsche 993 Carrera", ("911", "Carrera")),
        ("2018 Porsche 911 Turbo S", ("911", "Turbo S")),
        ("1986 Porsche 944 Turbo", (None, None)),
        ("1979 Porsche 928 5-Speed", (None, None)),
        ("1958 Porsche 356A Carrera Speedster", (None, None)),
        ("1990 Porsche 944 S2 Cabriolet", (None, None)),
        ("1973 Porsche 914/6", (None, None)),
        ("1989 Porsche 928S4 Automatic", (None, None)),
        ("1960 Porsche 356 Carrera", (None, None)),
        ("2019 Porsche 911 Carrera T 944 Miles", ("911", "Carrera T")),
        ("2011 Porsche 911 Turbo S 2,944-Mile", ("911", "Turbo S")),
        ("Porsche", (None, None)),
    ],
)
def test_parse_model_trim(title, expected):
    assert nz.parse_model_trim(title) == expected


class GenerationTests(unittest.TestCase):
    def test_911_boundaries(self):
        cases = {
            1994: "964",
            1998: "993",
            1999: "996",
            2004: "996",
            2005: "997.1",
            2009: "997.2",
            2012: "991.1",
            2017: "991.2",
            2019: "991.2",
            2020: "992.1",
            2025: "992.2",
        }
        for year, code in cases.items():
            with self.subTest(year=year):
                self.assertEqual(nz.generation_for("911", year), code)

    def test_cayman_starts_later_than_boxster(self):
        self.assertEqual(nz.generation_for("718 Boxster", 2005), "987.1")
        self.assertIsNone(nz.generation_for("718 Cayman", 2005))
        self.assertEqual(nz.generation_for("718 Cayman", 2017), "982")

    def test_unknown(self):
        self.assertIsNone(nz.generation_for(None, 2018))
        self.assertIsNone(nz.generation_for("911", None))
        self.assertIsNone(nz.generation_for("911", 1950))

    def test_major_generation(self):
        self.assertEqual(nz.major_generation("991.2"), "991")
        self.assertEqual(nz.major_generation("996"), "996")
        self.assertIsNone(nz.major_generation(None))

    def test_generations_for_model(self):
        self.assertEqual(nz.generations_for_model("718 Spyder"), ["987.2", "981", "982"])


class ColorTests(unittest.TestCase):
    def test_paint_to_sample_flagged_and_stripped(self):
        self.assertEqual(nz.clean_color("Paint-to-Sample Gulf Blue"), ("Gulf Blue", True))
        self.assertEqual(nz.clean_color("Oak Green Metallic (PTS)"), ("Oak Green Metallic", True))

    def test_pts_palette_colour_is_pts(self):
        self.assertEqual(nz.clean_color("lizard green"), ("Lizard Green", True))

    def test_aliases(self):
        self.assertEqual(nz.clean_color("GT Silver"), ("GT Silver Metallic", False))
        self.assertEqual(nz.clean_color("gray"), ("Grey", False))

    def test_wrap_is_not_paint(self):
        self.assertEqual(nz.clean_color("Satin Black Wrap"), (None, False))

    def test_empty(self):
        self.assertEqual(nz.clean_color("  "), (None, False))
        self.assertEqual(nz.clean_color(None), (None, False))

    def test_idempotent(self):
        name, _ = nz.clean_color("Paint-to-Sample Gulf Blue")
        self.assertEqual(nz.clean_color(name)[0], name)


def test_canonical_transmission():
    assert nz.canonical_transmission("7-Speed PDK") == "PDK"
    assert nz.canonical_transmission("Six-Speed Manual Transaxle") == "Manual"
    assert nz.canonical_transmission("Tiptronic S") == "Automatic"
    assert nz.canonical_transmission("6-speed") == "Manual"
    assert nz.canonical_transmission(None) is None
    assert nz.canonical_transmission("PDK") == "PDK"


class PlausibilityTests(unittest.TestCase):
    def test_price_floor_and_ceiling(self):
        self.assertIsNotNone(nz.price_problem(9_500))
        self.assertIsNotNone(nz.price_problem(6_000_000))
        self.assertIsNone(nz.price_problem(45_000))
        self.assertIsNone(nz.price_problem(None))

    def test_trim_price_floor(self):
        self.assertIn("GT3 RS floor", nz.price_problem(95_000, "GT3 RS"))
        self.assertIsNone(nz.price_problem(95_000, "GT3"))
        self.assertIsNone(nz.price_problem(95_000, "Carrera"))

    def test_mileage(self):
        self.assertIsNotNone(nz.mileage_problem(600_000, None))
        self.assertIsNotNone(nz.mileage_problem(200_000, 2023, reference_year=REF))
        self.assertIsNone(nz.mileage_problem(60_000, 2015, reference_year=REF))

    def test_year(self):
        self.assertIsNotNone(nz.year_problem(2027, reference_year=REF))
        self.assertIsNotNone(nz.year_problem(1940))
        self.assertIsNotNone(nz.year_problem(2004, "718 Cayman"))
        self.assertIsNotNone(nz.year_problem(2020, "718 Cayman", "GT4 RS"))
        self.assertIsNone(nz.year_problem(2022, "718 Cayman", "GT4 RS"))


class NormalizeListingTests(unittest.TestCase):
    def test_full_record(self):
        result = nz.normalize_listing(
            partial(
                title="2018 Porsche 911 GT3 6-Speed",
                vin="WP0AC2A99JS176782",
                price=172_500,
                mileage=8_000,
                exterior_color="Guards Red",
                interior_color="Black Leather",
                transmission="Six-Speed Manual Transaxle",
                location="  Austin,  Texas ",
                sold_date=date(2024, 3, 14),
            ),
            reference_year=REF,
            scraped_at=SCRAPED,
        )
        self.assertFalse(result.dropped)
        listing = result.listing
        self.assertEqual(listing.model, "911")
        self.assertEqual(listing.trim, "GT3")
        self.assertEqual(listing.year, 2018)
        self.assertEqual(listing.generation, "991.2")
        self.assertEqual(listing.transmission, "Manual")
        self.assertEqual(listing.location, "Austin, Texas")
        self.assertEqual(listing.scraped_at, SCRAPED)
        self.assertEqual(result.problems, [])

    def test_vin_fills_missing_model_year_and_trim(self):
        result = nz.normalize_listing(
            partial(title="Porsche track car", vin="WP0AC2A99JS176782", price=160_000), reference_year=REF
        )
        self.assertEqual(result.listing.model, "911")
        self.assertEqual(result.listing.year, 2018)
        self.assertEqual(result.listing.trim, "GT3")

    def test_high_confidence_vin_year_wins(self):
        result = nz.normalize_listing(
            partial(title="2017 Porsche 911 GT3", vin="WP0AC2A99JS176782"), reference_year=REF
        )
        self.assertEqual(result.listing.year, 2018)
        self.assertTrue(any("disagrees" in p for p in result.problems))

    def test_invalid_vin_is_nulled(self):
        result = nz.normalize_listing(
            partial(title="2018 Porsche 911 GT3", vin="NOT-A-VIN"), reference_year=REF
        )
        self.assertIsNone(result.listing.vin)
        self.assertIn("invalid vin NOT-A-VIN", result.problems)

    def test_price_below_trim_floor_is_nulled_not_dropped(self):
        result = nz.normalize_listing(
            partial(title="2019 Porsche 911 GT3 RS", price=45_000), reference_year=REF
        )
        self.assertFalse(result.dropped)
        self.assertIsNone(result.listing.price)

    def test_trim_before_it_existed_is_nulled(self):
        result = nz.normalize_listing(partial(title="2019 Porsche 718 Cayman GT4 RS"), reference_year=REF)
        self.assertEqual(result.listing.model, "718 Cayman")
        self.assertIsNone(result.listing.trim)

    def test_unrecoverable_year_is_dropped(self):
        result = nz.normalize_listing(partial(title="Porsche 911 GT3"), reference_year=REF)
        self.assertTrue(result.dropped)
        self.assertIsNone(result.listing)

    def test_other_porsche_line_is_not_read_as_911(self):
        result = nz.normalize_listing(partial(title="1986 Porsche 944 Turbo", price=32_000), reference_year=REF)
        self.assertTrue(result.dropped)
        self.assertIn("model/year unrecoverable", result.problems)
        self.assertEqual(nz.other_model("1986 Porsche 944 Turbo"), "944")
        self.assertIsNone(nz.other_model("2018 Porsche 911 Turbo S"))

    def test_untracked_model_is_dropped(self):
        result = nz.normalize_listing(partial(title="2020 Porsche Cayenne Turbo"), reference_year=REF)
        self.assertTrue(result.dropped)
        with patch.object(config, "TRACKED_MODELS", ["911", "Cayenne"]):
            kept = nz.normalize_listing(partial(title="2020 Porsche Cayenne Turbo"), reference_year=REF)
        self.assertFalse(kept.dropped)

    def test_pts_flag(self):
        result = nz.normalize_listing(
            partial(title="2022 Porsche 911 GT3 Touring", exterior_color="PTS Shark Blue"), reference_year=REF
        )
        self.assertTrue(result.listing.is_paint_to_sample)
        self.assertEqual(result.listing.exterior_color, "Shark Blue")


class RenormalizeTests(unittest.TestCase):
    def test_idempotent(self):
        listing = nz.normalize_listing(
            partial(
                title="2022 Porsche 911 GT3 Touring",
                vin="WP0AC2A91NS270001",
                price=265_000,
                mileage=2_900,
                exterior_color="Paint to Sample Gulf Blue",
                transmission="Manual (6-Speed)",
            ),
            reference_year=REF,
            scraped_at=SCRAPED,
        ).listing
        once = nz.renormalize(listing, REF)
        self.assertEqual(once, listing)
        self.assertEqual(nz.renormalize(once, REF), once)

    def test_repairs_legacy_values(self):
        legacy = Listing(
            source="bat",
            source_url="https://bringatrailer.com/listing/old/",
            title="2019 Porsche 911 GT3 RS",
            year=2019,
            model="911",
            trim="gt3 rs",
            price=40_000,
            exterior_color="gt silver",
            transmission="7-speed PDK",
        )
        fixed = nz.renormalize(legacy, REF)
        self.assertEqual(fixed.trim, "GT3 RS")
        self.assertIsNone(fixed.price)
        self.assertEqual(fixed.exterior_color, "GT Silver Metallic")
        self.assertEqual(fixed.transmission, "PDK")
        self.assertEqual(fixed.generation, "991.2")
