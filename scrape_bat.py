"""Bring a Trailer: completed Porsche auctions.

Index pages embed their results as ``var auctionsCompletedInitialData =
{...};``. Detail pages carry the facts in the "essentials" block as a plain
``<ul>`` of short lines ("Chassis: WP0...", "8k Miles", "Guards Red Paint").
"""

import json
import re
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from bs4 import BeautifulSoup

from records import ExtractionFailure, IndexCandidate, IndexPage, PartialListing, RunParams
from utils.items import collect
from utils.text import clean_number, extract_year, find_vin, parse_date, parse_mileage, squash
from utils.url import absolute_url, canonical_url

SOURCE = "bat"
BASE_URL = "https://bringatrailer.com"

MODEL_PATHS = {
    "911": "porsche/911",
    "718 Cayman": "porsche/cayman",
    "718 Boxster": "porsche/boxster",
    "718 Spyder": "porsche/boxster",
}

_DATA_MARKER = "auctionsCompletedInitialData"
_PRICE_RE = re.compile(r"(?:USD\s*)?\$\s?([\d,]+)")
_DATE_RE = re.compile(r"\bon\s+(\d{1,2}/\d{1,2}/\d{2,4})")
_TRANSMISSION_RE = re.compile(r"transaxle|transmission|gearbox|\bpdk\b|manual|tiptronic", re.I)
_SKIP_OPTION_RE = re.compile(r"\bchassis\b|\bmiles\b|\bliter\b|flat-six|\bengine\b", re.I)

# Buyer's premium BaT adds on top of the hammer price.
BUYER_FEE_RATE = 0.05
BUYER_FEE_CAP = 7500


def apply_bat_fee(price: Optional[int]) -> Optional[int]:
    """What the buyer paid: hammer price plus 5%, the fee capped at $7,500."""
    if price is None:
        return None
    return price + min(round(price * BUYER_FEE_RATE), BUYER_FEE_CAP)


def build_search_url(page: int, params: RunParams) -> str:
    path = MODEL_PATHS.get(params.model or "", "porsche")
    url = f"{BASE_URL}/{path}/"
    if page > 1:
        url += f"page/{page}/"
    return url


def _embedded_items(html: str) -> Optional[List[Dict[str, Any]]]:
    start = html.find(_DATA_MARKER)
    if start == -1:
        return None
    brace = html.find("{", start)
    if brace == -1:
        return None
    try:
        data, _ = json.JSONDecoder().raw_decode(html[brace:])
    except json.JSONDecodeError:
        return None
    items = data.get("items") if isinstance(data, dict) else None
    return items if isinstance(items, list) else None


def _candidate_from_item(item: Dict[str, Any]) -> Optional[IndexCandidate]:
    url = item.get("url")
    if not url:
        return None
    sold_text = item.get("sold_text") or ""
    match = _PRICE_RE.search(sold_text)
    price = clean_number(match.group(1)) if match else None
    if price is None and item.get("current_bid") is not None:
        price = clean_number(str(item["current_bid"]))
    sold = sold_text.lower().startswith("sold")
    hints = {
        "title": squash(item.get("title")),
        "year": clean_number(str(item["year"])) if item.get("year") else extract_year(item.get("title")),
        "price": apply_bat_fee(price) if sold else price,
        "sold": sold,
    }
    return IndexCandidate(url=absolute_url(BASE_URL, url), hints=hints)


def _candidate_from_link(link) -> IndexCandidate:
    title_el = link.select_one("h3") or link
    title = squash(title_el.get_text(" ", strip=True))
    return IndexCandidate(url=absolute_url(BASE_URL, link["href"]), hints={"title": title, "year": extract_year(title)})


def parse_index(html: str) -> List[IndexCandidate]:
    """Candidates from one results page; embedded JSON first, then links."""
    items = _embedded_items(html)
    if items:
        return collect((i for i in items if isinstance(i, dict)), _candidate_from_item, SOURCE)

    soup = BeautifulSoup(html, "lxml")
    links = soup.select('a.listing-card[href*="/listing/"], .listing-card a[href*="/listing/"]')
    return collect(links, _candidate_from_link, SOURCE)


def _wanted(candidate: IndexCandidate, params: RunParams) -> bool:
    return not (params.only_sold and candidate.hints.get("sold") is False)


def index_pages(params: RunParams, fetch: Callable[[str], str]) -> Iterator[IndexPage]:
    for page in range(params.start_page, params.start_page + params.max_pages):
        url = build_search_url(page, params)
        candidates = parse_index(fetch(url))
        if not candidates:
            return
        yield IndexPage(page, url, [c for c in candidates if _wanted(c, params)])


def _essentials(soup: BeautifulSoup) -> List[str]:
    box = soup.select_one(".essentials, .listing-essentials")
    items = box.select("ul li") if box else soup.select("ul li")
    return [squash(li.get_text(" ", strip=True)) or "" for li in items]


def _parse_detail(html: str, url: str) -> Union[PartialListing, ExtractionFailure]:
    soup = BeautifulSoup(html, "lxml")
    title_el = soup.select_one("h1.post-title, h1.listing-title, h1")
    title = squash(title_el.get_text(" ", strip=True)) if title_el else None

    listing = PartialListing(source=SOURCE, source_url=canonical_url(url), title=title)
    listing.year = extract_year(title)

    result_el = soup.select_one(".listing-available-info, .listing-result")
    result_text = squash(result_el.get_text(" ", strip=True)) if result_el else ""
    if result_text:
        price_match = _PRICE_RE.search(result_text)
        listing.price = clean_number(price_match.group(1)) if price_match else None
        listing.sold = "sold for" in result_text.lower()
        date_match = _DATE_RE.search(result_text)
        ended = parse_date(date_match.group(1)) if date_match else None
        if listing.sold:
            listing.price = apply_bat_fee(listing.price)
            listing.sold_date = ended
        else:
            listing.list_date = ended

    options: List[str] = []
    for line in _essentials(soup):
        lowered = line.lower()
        if not line:
            continue
        if lowered.startswith("location"):
            listing.location = squash(line.split(":", 1)[-1])
        elif "chassis" in lowered:
            listing.vin = find_vin(line, porsche_only=True) or find_vin(line)
        elif re.search(r"\bmiles\b", lowered) and listing.mileage is None:
            listing.mileage = parse_mileage(line)
        elif lowered.endswith("upholstery") or "upholstery" in lowered:
            listing.interior_color = squash(re.sub(r"\s*upholstery$", "", line, flags=re.I))
        elif re.search(r"\bpaint\b|paint-to-sample", lowered) and listing.exterior_color is None:
            listing.exterior_color = squash(re.sub(r"\s+paint$", "", line, flags=re.I))
        elif _TRANSMISSION_RE.search(line) and listing.transmission is None:
            listing.transmission = line
        elif not _SKIP_OPTION_RE.search(line):
            options.append(line)
    listing.options_text = "; ".join(options) or None

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
