import unittest
from datetime import date
from pathlib import Path
from unittest.mock import MagicMock

import scrape_pcarmarket as pcar
from records import RunParams

FIXTURES = Path(__file__).parent / "fixtures"
INDEX_HTML = (FIXTURES / "pcarmarket_index.html").read_text(encoding="utf-8")
DETAIL_HTML = (FIXTURES / "pcarmarket_detail.html").read_text(encoding="utf-8")
DETAIL_URL = "https://www.pcarmarket.com/auction/2019-porsche-911-gt3-rs-weissach-7/"


class PcarmarketScraperTests(unittest.TestCase):
    def test_parse_index(self):
        candidates = pcar.parse_index(INDEX_HTML)
        self.assertEqual([c.url for c in candidates][0], DETAIL_URL)
        self.assertEqual(len(candidates), 2)
        self.assertEqual(candidates[0].hints["price"], 289000)
        self.assertTrue(candidates[0].hints["sold"])
        self.assertFalse(candidates[1].hints["sold"])

    def test_index_pages_only_sold(self):
        fetch = MagicMock(side_effect=[INDEX_HTML, "<html></html>"])
        pages = list(pcar.index_pages(RunParams(source="pcarmarket", model="911"), fetch))
        self.assertEqual(len(pages), 1)
        self.assertEqual(len(pages[0].candidates), 1)
        self.assertIn("model=911", fetch.call_args_list[0].args[0])

    def test_parse_detail(self):
        listing = pcar.parse_detail(DETAIL_HTML, DETAIL_URL)
        self.assertEqual(listing.title, "2019 Porsche 911 GT3 RS Weissach")
        self.assertEqual(listing.vin, "WP0AF2A99KS281234")
        self.assertEqual(listing.mileage, 3100)
        self.assertEqual(listing.exterior_color, "Lizard Green")
        self.assertEqual(listing.interior_color, "Black/Lizard Green")
        self.assertEqual(listing.transmission, "7-Speed PDK")
        self.assertEqual(listing.location, "Miami, FL")
        self.assertEqual(listing.price, 289000)
        self.assertTrue(listing.sold)
        self.assertEqual(listing.sold_date, date(2024, 6, 10))
        self.assertEqual(listing.options_text, "Weissach Package; Magnesium wheels")

    def test_reserve_not_met(self):
        html = DETAIL_HTML.replace('<span class="status">Sold</span>', '<span class="status">Reserve Not Met</span>')
        listing = pcar.parse_detail(html, DETAIL_URL)
        self.assertFalse(listing.sold)
        self.assertEqual(listing.list_date, date(2024, 6, 10))
