"""Small text helpers used by the site scrapers."""

import re
from datetime import date, datetime
from typing import Optional

VIN_RE = re.compile(r"\b([A-HJ-NPR-Z0-9]{17})\b")
PORSCHE_VIN_RE = re.compile(r"\b(WP[01][A-HJ-NPR-Z0-9]{14})\b")
YEAR_RE = re.compile(r"\b(19[4-9]\d|20[0-4]\d)\b")

_DATE_FORMATS = (
    "%m/%d/%y",
    "%m/%d/%Y",
    "%Y-%m-%d",
    "%B %d, %Y",
    "%b %d, %Y",
    "%b. %d, %Y",
    "%d %B %Y",
)


def clean_number(text: Optional[str]) -> Optional[int]:
    if not text:
        return None
    digits = "".join(ch for ch in str(text) if ch.isdigit())
    return int(digits) if digits else None


def parse_mileage(text: Optional[str]) -> Optional[int]:
    """Read mileage text such as ``"12,345 Miles"`` or ``"12k miles"``."""
    if not text:
        return None
    match = re.search(r"(\d[\d,]*(?:\.\d+)?)\s*(k)?\b", text, re.IGNORECASE)
    if not match:
        return None
    number = float(match.group(1).replace(",", ""))
    if match.group(2):
        number *= 1000
    return int(number)


def extract_year(text: Optional[str]) -> Optional[int]:
    if not text:
        return None
    match = YEAR_RE.search(text)
    return int(match.group(1)) if match else None


def find_vin(text: Optional[str], porsche_only: bool = False) -> Optional[str]:
    if not text:
        return None
    pattern = PORSCHE_VIN_RE if porsche_only else VIN_RE
    match = pattern.search(text.upper())
    return match.group(1) if match else None


def parse_date(text: Optional[str]) -> Optional[date]:
    """Parse the handful of date formats the marketplaces print."""
    if not text:
        return None
    value = text.strip().rstrip(".")
    if "T" in value and value[:4].isdigit():
        value = value.split("T", 1)[0]
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def squash(text: Optional[str]) -> Optional[str]:
    """Collapse whitespace; empty strings become ``None``."""
    if text is None:
        return None
    value = " ".join(str(text).split())
    return value or None
