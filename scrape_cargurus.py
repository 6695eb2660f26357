"""CarGurus dealer inventory.

Search results paginate by offset (``startIndex``) rather than page number.
Detail pages carry a schema.org ``Car`` block in JSON-LD, which is read in
preference to the rendered markup.
"""

import json
from typing import Any, Callable, Dict, Iterator, List, Optional, Union
from urllib.parse import urlencode

from bs4 import BeautifulSoup

from records import ExtractionFailure, IndexCandidate, IndexPage, PartialListing, RunParams
from utils.items import collect
from utils.text import clean_number, extract_year, find_vin, parse_date, parse_mileage, squash
from utils.url import absolute_url, canonical_url

SOURCE = "cargurus"
BASE_URL = "https://www.cargurus.com/Cars/inventorylisting/viewDetailsFilterViewInventoryListing.action"
SITE_URL = "https://www.cargurus.com"
PAGE_STEP = 15


def build_search_url(page: int, params: RunParams) -> str:
    query = {
        "sourceContext": "carGurusHomePageModel",
        "makeName": "Porsche",
        "modelName": params.model or "911",
        "inventorySearch": "true",
        "startIndex": (page - 1) * PAGE_STEP,
    }
    if params.trim:
        query["trimName"] = params.trim
    return f"{BASE_URL}?{urlencode(query)}"


def _find_listings_in_data(data: Any) -> Optional[List[Dict[str, Any]]]:
    """Recursively search for a list of listing-like dictionaries."""
    if isinstance(data, list):
        if data and all(isinstance(x, dict) for x in data):
            sample = data[0]
            # Heuristic: listings typically include a price or mileage field
            if any(k in sample for k in ("price", "mileage", "canonicalUrl")):
                return data  # type: ignore[return-value]
        for item in data:
            found = _find_listings_in_data(item)
            if found:
                return found
    elif isinstance(data, dict):
        for v in data.values():
            found = _find_listings_in_data(v)
            if found:
                return found
    return None


def _candidate_from_item(item: Dict[str, Any]) -> Optional[IndexCandidate]:
    url = item.get("canonicalUrl") or item.get("url") or item.get("link") or item.get("detailUrl")
    if not url:
        return None
    title = squash(item.get("title") or item.get("name") or item.get("listingTitle"))
    price = item.get("price") or item.get("listingPrice") or item.get("priceString")
    mileage = item.get("mileage") or item.get("mileageString")
    return IndexCandidate(
        url=absolute_url(SITE_URL, str(url)),
        hints={
            "title": title,
            "year": item.get("year") or extract_year(title),
            "price": clean_number(str(price)) if price is not None else None,
            "mileage": clean_number(str(mileage)) if mileage is not None else None,
            "sold": False,
        },
    )


def _candidate_from_card(card) -> Optional[IndexCandidate]:
    link = card.select_one("a[data-test='listing-link'], a[itemprop='url'], a[href]")
    href = link.get("href") if link else None
    if not isinstance(href, str):
        return None
    title = squash(link.get_text(" ", strip=True))
    price_el = card.select_one(
        "[data-test='listing-price'], [itemprop='price'], [data-cg-ft='listing-price']"
    )
    mileage_el = card.select_one(
        "[data-test='mileage'], [data-test='listing-mileage'], [itemprop='mileage']"
    )
    return IndexCandidate(
        url=absolute_url(SITE_URL, href),
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

    # Attempt to find JSON data embedded in script tags
    for script in soup.find_all("script"):
        text = script.string or ""
        if "{" not in text or script.get("type") == "application/ld+json":
            continue
        candidate = text.strip()
        if "=" in candidate and not candidate.startswith("{"):
            # e.g., window.__DATA__ = {...};
            candidate = candidate.split("=", 1)[1].strip()
        candidate = candidate.strip(";\n ")
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        listings = _find_listings_in_data(data)
        if listings:
            results = collect(listings, _candidate_from_item, SOURCE)
            if results:
                return results

    # Fallback to parsing visible HTML cards
    cards = soup.select(
        "[data-test='inventory-listing'], [data-cg-ft='inventory-listing'], div[data-listingid]"
    )
    return collect(cards, _candidate_from_card, SOURCE)


def index_pages(params: RunParams, fetch: Callable[[str], str]) -> Iterator[IndexPage]:
    if params.only_sold:
        return
    for page in range(params.start_page, params.start_page + params.max_pages):
        url = build_search_url(page, params)
        candidates = parse_index(fetch(url))
        if not candidates:
            return
        yield IndexPage(page, url, candidates)


def _vehicle_json_ld(soup: BeautifulSoup) -> Optional[Dict[str, Any]]:
    for script in soup.find_all("script", type="application/ld+json"):
        try:
            data = json.loads(script.string or "")
        except json.JSONDecodeError:
            continue
        for item in data if isinstance(data, list) else [data]:
            if isinstance(item, dict) and item.get("@type") in ("Car", "Vehicle", "Product"):
                return item
    return None


def _value(obj: Any) -> Optional[str]:
    if isinstance(obj, dict):
        obj = obj.get("value") or obj.get("name")
    return str(obj) if obj not in (None, "") else None


def _parse_detail(html: str, url: str) -> Union[PartialListing, ExtractionFailure]:
    soup = BeautifulSoup(html, "lxml")
    listing = PartialListing(source=SOURCE, source_url=canonical_url(url), sold=False)

    data = _vehicle_json_ld(soup)
    if data:
        offers = data.get("offers") or {}
        if isinstance(offers, list):
            offers = offers[0] if offers else {}
        listing.title = squash(data.get("name"))
        listing.vin = find_vin(_value(data.get("vehicleIdentificationNumber")))
        listing.year = clean_number(_value(data.get("modelDate")))
        listing.mileage = parse_mileage(_value(data.get("mileageFromOdometer")))
        listing.exterior_color = _value(data.get("color"))
        listing.interior_color = _value(data.get("vehicleInteriorColor"))
        listing.transmission = _value(data.get("vehicleTransmission"))
        listing.price = clean_number(_value(offers.get("price")))
        listing.list_date = parse_date(_value(data.get("datePosted")))
    else:
        title_el = soup.select_one("h1")
        listing.title = squash(title_el.get_text(" ", strip=True)) if title_el else None
        price_el = soup.select_one("[data-test='listing-price'], [itemprop='price']")
        listing.price = clean_number(price_el.get_text(strip=True)) if price_el else None
        listing.vin = find_vin(soup.get_text(" ", strip=True))

    listing.year = listing.year or extract_year(listing.title)
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
