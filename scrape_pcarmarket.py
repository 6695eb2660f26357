"""PCARMARKET completed auctions."""

import re
from typing import Callable, Dict, Iterator, List, Optional, Union
from urllib.parse import urlencode

from bs4 import BeautifulSoup

from records import ExtractionFailure, IndexCandidate, IndexPage, PartialListing, RunParams
from utils.items import collect
from utils.text import clean_number, extract_year, find_vin, parse_date, parse_mileage, squash
from utils.url import absolute_url, canonical_url

SOURCE = "pcarmarket"
BASE_URL = "https://www.pcarmarket.com"
COMPLETED_PATH = "/auction/completed/"

MODEL_PARAMS = {
    "911": "911",
    "718 Cayman": "cayman",
    "718 Boxster": "boxster",
    "718 Spyder": "boxster",
}


def build_search_url(page: int, params: RunParams) -> str:
    query = {"make": "porsche"}
    if params.model in MODEL_PARAMS:
        query["model"] = MODEL_PARAMS[params.model]
    if params.trim:
        query["trim"] = params.trim.lower().replace(" ", "-")
    query["page"] = page
    return f"{BASE_URL}{COMPLETED_PATH}?{urlencode(query)}"


def _candidate_from_card(card) -> Optional[IndexCandidate]:
    link = card.select_one('a[href*="/auction/"]')
    if not link or "/auction/completed" in link.get("href", ""):
        return None
    title_el = card.select_one(".auctionTitle, h2, h3") or link
    title = squash(title_el.get_text(" ", strip=True))
    price_el = card.select_one(".auction-price, .auctionPrice")
    price_text = price_el.get_text(" ", strip=True) if price_el else ""
    return IndexCandidate(
        url=absolute_url(BASE_URL, link["href"]),
        hints={
            "title": title,
            "year": extract_year(title),
            "price": clean_number(price_text),
            "sold": price_text.lower().startswith("sold") if price_text else None,
        },
    )


def parse_index(html: str) -> List[IndexCandidate]:
    soup = BeautifulSoup(html, "lxml")
    return collect(soup.select(".auction-item, .post-content"), _candidate_from_card, SOURCE)


def index_pages(params: RunParams, fetch: Callable[[str], str]) -> Iterator[IndexPage]:
    for page in range(params.start_page, params.start_page + params.max_pages):
        url = build_search_url(page, params)
        candidates = parse_index(fetch(url))
        if not candidates:
            return
        if params.only_sold:
            candidates = [c for c in candidates if c.hints.get("sold") is not False]
        yield IndexPage(page, url, candidates)


def _details(soup: BeautifulSoup) -> Dict[str, str]:
    details: Dict[str, str] = {}
    for li in soup.select(".auction-details li"):
        label_el = li.find("strong")
        if label_el is None:
            continue
        label = label_el.get_text(strip=True).rstrip(":").lower()
        label_el.extract()
        details[label] = squash(li.get_text(" ", strip=True)) or ""
    return details


def _parse_detail(html: str, url: str) -> Union[PartialListing, ExtractionFailure]:
    soup = BeautifulSoup(html, "lxml")
    title_el = soup.select_one("h1.auction-title, h1")
    title = squash(title_el.get_text(" ", strip=True)) if title_el else None
    details = _details(soup)

    listing = PartialListing(source=SOURCE, source_url=canonical_url(url), title=title)
    listing.year = extract_year(title)
    listing.vin = find_vin(details.get("vin"))
    listing.mileage = parse_mileage(details.get("mileage"))
    listing.exterior_color = details.get("exterior") or details.get("exterior color")
    listing.interior_color = details.get("interior") or details.get("interior color")
    listing.transmission = details.get("transmission")
    listing.location = details.get("location")

    result_el = soup.select_one(".auction-result")
    if result_el is not None:
        amount_el = result_el.select_one(".amount")
        listing.price = clean_number(amount_el.get_text() if amount_el else result_el.get_text())
        status_el = result_el.select_one(".status")
        status = (status_el.get_text(strip=True) if status_el else result_el.get_text(" ", strip=True)).lower()
        listing.sold = status.startswith("sold") or " sold" in f" {status}"
        if "not sold" in status or "reserve not met" in status:
            listing.sold = False

    ends_el = soup.select_one(".ends-at")
    ended = None
    if ends_el is not None:
        ended = parse_date(ends_el.get("data-end")) or parse_date(
            re.sub(r"^(ended|ends)\s+", "", ends_el.get_text(" ", strip=True), flags=re.I)
        )
    if listing.sold:
        listing.sold_date = ended
    else:
        listing.list_date = ended

    options = [squash(li.get_text(" ", strip=True)) for li in soup.select(".description li")]
    listing.options_text = "; ".join(o for o in options if o) or None

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
