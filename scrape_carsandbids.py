"""Cars & Bids past auctions."""

import re
from typing import Callable, Dict, Iterator, List, Optional, Union
from urllib.parse import urlencode

from bs4 import BeautifulSoup

from records import ExtractionFailure, IndexCandidate, IndexPage, PartialListing, RunParams
from utils.items import collect
from utils.text import clean_number, extract_year, find_vin, parse_date, parse_mileage, squash
from utils.url import absolute_url, canonical_url

SOURCE = "carsandbids"
BASE_URL = "https://carsandbids.com"
SEARCH_PATH = "/past-auctions/"

_MONEY_RE = re.compile(r"\$\s?([\d,]+)")


def build_search_url(page: int, params: RunParams) -> str:
    query = " ".join(part for part in ("porsche", params.model, params.trim) if part)
    return f"{BASE_URL}{SEARCH_PATH}?{urlencode({'q': query, 'page': page})}"


def _candidate_from_card(card) -> Optional[IndexCandidate]:
    link = card.select_one('.auction-title a[href*="/auctions/"], a[href*="/auctions/"]')
    if not link or not link.get("href"):
        return None
    title = squash(link.get_text(" ", strip=True))
    bid_el = card.select_one(".bid-value, .sold-for")
    status_el = card.select_one(".auction-status")
    status = status_el.get_text(" ", strip=True).lower() if status_el else ""
    return IndexCandidate(
        url=absolute_url(BASE_URL, link["href"]),
        hints={
            "title": title,
            "year": extract_year(title),
            "price": clean_number(bid_el.get_text()) if bid_el else None,
            "sold": "sold" in status if status else None,
        },
    )


def parse_index(html: str) -> List[IndexCandidate]:
    soup = BeautifulSoup(html, "lxml")
    return collect(soup.select("li.auction-item"), _candidate_from_card, SOURCE)


def index_pages(params: RunParams, fetch: Callable[[str], str]) -> Iterator[IndexPage]:
    for page in range(params.start_page, params.start_page + params.max_pages):
        url = build_search_url(page, params)
        candidates = parse_index(fetch(url))
        if not candidates:
            return
        if params.only_sold:
            candidates = [c for c in candidates if c.hints.get("sold") is not False]
        yield IndexPage(page, url, candidates)


def _quick_facts(soup: BeautifulSoup) -> Dict[str, str]:
    facts: Dict[str, str] = {}
    for dl in soup.select(".quick-facts dl"):
        for dt in dl.find_all("dt"):
            dd = dt.find_next_sibling("dd")
            if dd is not None:
                facts[dt.get_text(strip=True).lower()] = squash(dd.get_text(" ", strip=True)) or ""
    return facts


def _result(soup: BeautifulSoup) -> Dict[str, Optional[object]]:
    status_el = soup.select_one(".auction-status, .sold-for, .winning-bid")
    status = squash(status_el.get_text(" ", strip=True)) if status_el else ""
    bid_el = soup.select_one(".current-bid .bid-value, .winning-bid .bid-value, .bid-value")
    price_text = status if _MONEY_RE.search(status or "") else (bid_el.get_text() if bid_el else None)
    match = _MONEY_RE.search(price_text or "")
    return {
        "sold": ("sold for" in status.lower()) if status else None,
        "price": clean_number(match.group(1)) if match else None,
    }


def _parse_detail(html: str, url: str) -> Union[PartialListing, ExtractionFailure]:
    soup = BeautifulSoup(html, "lxml")
    title_el = soup.select_one(".auction-title h1, h1")
    title = squash(title_el.get_text(" ", strip=True)) if title_el else None
    facts = _quick_facts(soup)

    listing = PartialListing(source=SOURCE, source_url=canonical_url(url), title=title)
    listing.year = extract_year(title)
    listing.model = facts.get("model")
    listing.vin = find_vin(facts.get("vin"))
    listing.mileage = parse_mileage(facts.get("mileage"))
    listing.exterior_color = facts.get("exterior color")
    listing.interior_color = facts.get("interior color")
    listing.transmission = facts.get("transmission")
    listing.location = facts.get("location")

    result = _result(soup)
    listing.price = result["price"]
    listing.sold = result["sold"]

    time_el = soup.select_one(".end-time time[datetime], time[datetime]")
    ended = parse_date(time_el["datetime"]) if time_el else None
    if listing.sold:
        listing.sold_date = ended
    else:
        listing.list_date = ended

    highlights = [
        squash(li.get_text(" ", strip=True))
        for li in soup.select(".detail-highlights li, .detail-equipment li")
    ]
    listing.options_text = "; ".join(h for h in highlights if h) or None

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
