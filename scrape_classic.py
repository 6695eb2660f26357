"""classic.com vehicle pages.

The markup is utility-class soup with few stable hooks, so detail fields are
read from ``Label: value`` lines of the page text.
"""

import re
from typing import Callable, Dict, Iterator, List, Union
from urllib.parse import urlencode

from bs4 import BeautifulSoup

from records import ExtractionFailure, IndexCandidate, IndexPage, PartialListing, RunParams
from utils.items import collect
from utils.text import clean_number, extract_year, find_vin, parse_date, parse_mileage, squash
from utils.url import absolute_url, canonical_url

SOURCE = "classic"
BASE_URL = "https://www.classic.com"

MODEL_SLUGS = {
    "911": "911",
    "718 Cayman": "718-cayman",
    "718 Boxster": "718-boxster",
    "718 Spyder": "718-spyder",
}

_LABELS = {
    "vin": "vin",
    "mileage": "mileage",
    "odometer": "mileage",
    "exterior color": "exterior_color",
    "exterior": "exterior_color",
    "interior color": "interior_color",
    "interior": "interior_color",
    "transmission": "transmission",
    "location": "location",
    "sale date": "sale_date",
    "listed": "listed",
    "listing date": "listed",
}
_LINE_RE = re.compile(r"^\s*([A-Za-z ]{3,20}?)\s*:\s*(.+?)\s*$")
_SOLD_FOR_RE = re.compile(r"sold for\s*\$\s?([\d,]+)", re.I)


def build_search_url(page: int, params: RunParams) -> str:
    path = "/m/porsche/"
    if params.model in MODEL_SLUGS:
        path += MODEL_SLUGS[params.model] + "/"
        if params.trim:
            path += re.sub(r"[^a-z0-9]+", "-", params.trim.lower()).strip("-") + "/"
    query = {"page": page}
    if params.only_sold:
        query["status"] = "sold"
    return f"{BASE_URL}{path}?{urlencode(query)}"


def _candidate_from_link(link) -> IndexCandidate:
    title = squash(link.get_text(" ", strip=True))
    card = link.find_parent(["div", "li", "article"])
    price_el = card.select_one(".text-xl.font-medium") if card else None
    card_text = card.get_text(" ", strip=True).lower() if card else ""
    return IndexCandidate(
        url=absolute_url(BASE_URL, link["href"]),
        hints={
            "title": title,
            "year": extract_year(title),
            "price": clean_number(price_el.get_text()) if price_el else None,
            "sold": "sold" in card_text if card_text else None,
        },
    )


def parse_index(html: str) -> List[IndexCandidate]:
    soup = BeautifulSoup(html, "lxml")
    return collect(soup.select('a[href^="/veh/"]'), _candidate_from_link, SOURCE)


def index_pages(params: RunParams, fetch: Callable[[str], str]) -> Iterator[IndexPage]:
    for page in range(params.start_page, params.start_page + params.max_pages):
        url = build_search_url(page, params)
        candidates = parse_index(fetch(url))
        if not candidates:
            return
        yield IndexPage(page, url, candidates)


def _labelled_lines(soup: BeautifulSoup) -> Dict[str, str]:
    found: Dict[str, str] = {}
    for line in soup.get_text("\n").splitlines():
        match = _LINE_RE.match(line)
        if not match:
            continue
        key = _LABELS.get(match.group(1).strip().lower())
        if key and key not in found:
            found[key] = match.group(2)
    return found


def _parse_detail(html: str, url: str) -> Union[PartialListing, ExtractionFailure]:
    soup = BeautifulSoup(html, "lxml")
    # Labels and values often sit in sibling spans; put each row on one line.
    for row in soup.select("li, tr, dl > div"):
        row.replace_with(soup.new_string("\n" + row.get_text(" ", strip=True) + "\n"))

    title_el = soup.select_one("h1")
    title = squash(title_el.get_text(" ", strip=True)) if title_el else None
    text = soup.get_text(" ", strip=True)
    fields = _labelled_lines(soup)

    listing = PartialListing(source=SOURCE, source_url=canonical_url(url), title=title)
    listing.year = extract_year(title)
    listing.vin = find_vin(fields.get("vin")) or find_vin(text)
    listing.mileage = parse_mileage(fields.get("mileage"))
    listing.exterior_color = fields.get("exterior_color")
    listing.interior_color = fields.get("interior_color")
    listing.transmission = fields.get("transmission")
    listing.location = squash(fields.get("location"))

    sold_match = _SOLD_FOR_RE.search(text)
    listing.sold = bool(sold_match) or "sale date" in text.lower()
    price_el = soup.select_one(".text-xl.font-medium")
    if price_el is not None:
        listing.price = clean_number(price_el.get_text())
    elif sold_match:
        listing.price = clean_number(sold_match.group(1))
    listing.sold_date = parse_date(fields.get("sale_date")) if listing.sold else None
    listing.list_date = parse_date(fields.get("listed"))

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
