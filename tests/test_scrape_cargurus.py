import unittest
from datetime import date
from pathlib import Path
from unittest.mock import MagicMock

import scrape_cargurus as cg
from records import ExtractionFailure, RunParams


FIXTURE_PATH = Path(__file__).parent / "fixtures" / "cargurus_page1.html"
HTML = FIXTURE_PATH.read_text(encoding="utf-8")
DETAIL_HTML = (Path(__file__).parent / "fixtures" / "cargurus_detail.html").read_text(encoding="utf-8")
DETAIL_URL = "https://www.cargurus.com/details/341207761"


class CarGurusScraperTests(unittest.TestCase):
    def test_parse_index_from_embedded_json(self):
        candidates = cg.parse_index(HTML)
        self.assertEqual(len(candidates), 2)
        first, second = candidates
        self.assertEqual(first.url, DETAIL_URL)
        self.assertEqual(first.hints["price"], 104900)
        self.assertEqual(first.hints["mileage"], 18450)
        self.assertEqual(first.hints["year"], 2016)
        self.assertEqual(second.url, "https://www.cargurus.com/details/339981204")
        self.assertEqual(second.hints["title"], "2014 Porsche Cayman S")
        self.assertEqual(second.hints["price"], 48750)
        self.assertEqual(second.hints["mileage"], 52310)

    def test_parse_index_html_cards(self):
        html = """
        <div data-test="inventory-listing">
          <a data-test="listing-link" href="/details/1001">2020 Porsche 911 Carrera</a>
          <span data-test="listing-price">$99,500</span>
          <span data-test="mileage">8,000 mi</span>
        </div>
        """
        candidates = cg.parse_index(html)
        self.assertEqual(len(candidates), 1)
        self.assertEqual(candidates[0].url, "https://www.cargurus.com/details/1001")
        self.assertEqual(candidates[0].hints["price"], 99500)

    def test_search_url_uses_offsets(self):
        url = cg.build_search_url(3, RunParams(source="cargurus", model="718 Cayman"))
        self.assertIn("startIndex=30", url)
        self.assertIn("makeName=Porsche", url)

    def test_only_sold_yields_nothing(self):
        fetch = MagicMock()
        self.assertEqual(list(cg.index_pages(RunParams(source="cargurus"), fetch)), [])
        fetch.assert_not_called()

    def test_parse_detail_from_json_ld(self):
        listing = cg.parse_detail(DETAIL_HTML, DETAIL_URL)
        self.assertEqual(listing.title, "2016 Porsche Cayman GT4")
        self.assertEqual(listing.vin, "WP0AC2A89GK191234")
        self.assertEqual(listing.year, 2016)
        self.assertEqual(listing.mileage, 18450)
        self.assertEqual(listing.price, 104900)
        self.assertEqual(listing.exterior_color, "Racing Yellow")
        self.assertEqual(listing.transmission, "6-Speed Manual")
        self.assertEqual(listing.list_date, date(2024, 4, 18))
        self.assertFalse(listing.sold)

    def test_parse_detail_without_anything(self):
        self.assertIsInstance(cg.parse_detail("<html></html>", DETAIL_URL), ExtractionFailure)
