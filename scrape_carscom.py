"""cars.com used-inventory search for Porsche sports cars.

Dealer retail only: nothing here is a completed sale, so an only-sold run
yields no pages.
"""

import os
from typing import Callable, Dict, Iterator, List, Optional, Union
from urllib.parse import urlencode

from bs4 import BeautifulSoup

from records import ExtractionFailure, IndexCandidate, IndexPage, PartialListing, RunParams
from utils.items import collect
from utils.text import clean_number, extract_year, find_vin, parse_mileage, squash
from utils.url import absolute_url, canonical_url

SOURCE = "carscom"
BASE_URL = "https://www.cars.com/shopping/results/"
SITE_URL = "https://www.cars.com"
PAGE_SIZE = int(os.getenv("CARS_PAGE_SIZE", "50"))

MODEL_PARAMS = {
    "911": "porsche-911",
    "718 Cayman": "porsche-718_cayman",
    "718 Boxster": "porsche-718_boxster",
    "718 Spyder": "porsche-718_spyder",
}


def build_search_url(page: int, params: RunParams) -> str:
    query = [
        ("stock_type", "used"),
        ("makes[]", "porsche"),
    ]
    models = [MODEL_PARAMS[params.model]] if params.model in MODEL_PARAMS else list(MODEL_PARAMS.values())
    query.extend(("models[]", m) for m in models)
    if params.trim:
        query.append(("keyword", params.trim))
    query.extend([("page", page), ("page_size", PAGE_SIZE)])
    return f"{BASE_URL}?{urlencode(query)}"


def _candidate_from_card(card) -> Optional[IndexCandidate]:
    link = card.select_one('a.vehicle-card-link, a[href*="/vehicledetail/"]')
    href_val = link.get("href") if link else None
    if isinstance(href_val, list):
        href_val = href_val[0] if href_val else None
    if not isinstance(href_val, str):
        return None

    title_el = card.select_one("h2, a.vehicle-card-link")
    title = squash(title_el.get_text(" ", strip=True)) if title_el else None

    price_el = card.select_one(".primary-price, [data-test='vehicleCardPricingBlockPrice']")
    mileage_el = card.select_one(".mileage, [data-test='vehicleMileage']")

    return IndexCandidate(
        url=absolute_url(SITE_URL, href_val),
        hints={
            "title": title,
            "year": extract_year(title),
            "price": clean_number(price_el.get_text(strip=True)) if price_el else None,
            "mileage": clean_number(mileage_el.get_text(strip=True)) if mileage_el else None,
            "sold": False,
        },
    )


def parse_index(html: str) -> List[IndexCandidate]:
    soup = BeautifulSoup(html, "lxml")
    # The markup sometimes nests an <article> with class ``vehicle-card``
    # inside another element with the same class; collect keeps the first.
    return collect(soup.select(".vehicle-card, article.vehicle-card"), _candidate_from_card, SOURCE)


def index_pages(params: RunParams, fetch: Callable[[str], str]) -> Iterator[IndexPage]:
    if params.only_sold:
        return
    for page in range(params.start_page, params.start_page + params.max_pages):
        url = build_search_url(page, params)
        candidates = parse_index(fetch(url))
        if not candidates:
            return
        yield IndexPage(page, url, candidates)


def _basics(soup: BeautifulSoup) -> Dict[str, str]:
    basics: Dict[str, str] = {}
    for dl in soup.select("dl.fancy-description-list"):
        for dt in dl.find_all("dt"):
            dd = dt.find_next_sibling("dd")
            if dd is not None:
                basics[dt.get_text(strip=True).lower()] = squash(dd.get_text(" ", strip=True)) or ""
    return basics


def _parse_detail(html: str, url: str) -> Union[PartialListing, ExtractionFailure]:
    soup = BeautifulSoup(html, "lxml")
    title_el = soup.select_one("h1.listing-title, h1")
    title = squash(title_el.get_text(" ", strip=True)) if title_el else None
    basics = _basics(soup)

    listing = PartialListing(source=SOURCE, source_url=canonical_url(url), title=title, sold=False)
    listing.year = extract_year(title)
    price_el = soup.select_one(".listing-overview .primary-price, span.primary-price")
    listing.price = clean_number(price_el.get_text(strip=True)) if price_el else None
    listing.vin = find_vin(basics.get("vin"))
    listing.mileage = parse_mileage(basics.get("mileage"))
    listing.exterior_color = basics.get("exterior color")
    listing.interior_color = basics.get("interior color")
    listing.transmission = basics.get("transmission")

    dealer_el = soup.select_one(".dealer-address, [data-qa='dealer-address']")
    listing.location = squash(dealer_el.get_text(" ", strip=True)) if dealer_el else None

    features = [squash(li.get_text(" ", strip=True)) for li in soup.select(".vehicle-features-list li")]
    listing.options_text = "; ".join(f for f in features if f) or None

    if not (listing.title or listing.price or listing.vin):
        return ExtractionFailure(SOURCE, url, "no title, price or VIN on page")
    return listing


def parse_detail(html: str, url: str) -> Union[PartialListing, ExtractionFailure]:
    try:
        return _parse_detail(html, url)
    except Exception as exc:  # one bad page must not stop the batch
        return ExtractionFailure(SOURCE, url, f"parse error: {exc!r}")


def detail_page(url: str, fetch: Callable[[str], str]) -> Union[PartialListing, ExtractionFailure]:
    return parse_detail(fetch(url), url)
