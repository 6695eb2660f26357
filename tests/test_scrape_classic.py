import unittest
from datetime import date
from pathlib import Path

import scrape_classic as classic
from records import RunParams

FIXTURES = Path(__file__).parent / "fixtures"
INDEX_HTML = (FIXTURES / "classic_index.html").read_text(encoding="utf-8")
DETAIL_HTML = (FIXTURES / "classic_detail.html").read_text(encoding="utf-8")
DETAIL_URL = "https://www.classic.com/veh/2023-porsche-718-cayman-gt4-rs-wp0ae2a89ps270123-4kXz9Qp/"


class ClassicScraperTests(unittest.TestCase):
    def test_build_search_url(self):
        url = classic.build_search_url(1, RunParams(source="classic", model="718 Cayman", trim="GT4 RS"))
        self.assertEqual(url, "https://www.classic.com/m/porsche/718-cayman/gt4-rs/?page=1&status=sold")
        url = classic.build_search_url(2, RunParams(source="classic", only_sold=False))
        self.assertEqual(url, "https://www.classic.com/m/porsche/?page=2")

    def test_parse_index_dedupes_links(self):
        candidates = classic.parse_index(INDEX_HTML)
        self.assertEqual(len(candidates), 2)
        self.assertEqual(candidates[0].url, DETAIL_URL)
        self.assertEqual(candidates[0].hints["price"], 182000)
        self.assertTrue(candidates[0].hints["sold"])
        self.assertFalse(candidates[1].hints["sold"])

    def test_parse_detail_reads_labelled_lines(self):
        listing = classic.parse_detail(DETAIL_HTML, DETAIL_URL)
        self.assertEqual(listing.title, "2023 Porsche 718 Cayman GT4 RS")
        self.assertEqual(listing.vin, "WP0AE2A89PS270123")
        self.assertEqual(listing.mileage, 1250)
        self.assertEqual(listing.exterior_color, "Arctic Grey")
        self.assertEqual(listing.interior_color, "Black")
        self.assertEqual(listing.transmission, "7-Speed PDK")
        self.assertEqual(listing.location, "Scottsdale, AZ")
        self.assertEqual(listing.price, 182000)
        self.assertTrue(listing.sold)
        self.assertEqual(listing.sold_date, date(2024, 2, 3))
