"""Canonical model/trim vocabulary, generation table and plausibility rules.

Everything here is deterministic and idempotent: feeding a normalized value
back in returns the same value. The full-dataset pass in ``ingest`` relies on
that to converge.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from typing import List, Optional, Tuple

import config
from records import Listing, PartialListing
from utils.text import extract_year, squash

log = logging.getLogger(__name__)

MODELS = (
    "911",
    "718 Cayman",
    "718 Boxster",
    "718 Spyder",
    "Carrera GT",
    "Cayenne",
    "Macan",
    "Panamera",
    "Taycan",
)

# (model, generation, first model year, last model year or None if current).
# Model years, not calendar years. This table is the only place generation
# boundaries live; the VIN decoder reads it too.
GENERATIONS: List[Tuple[str, str, int, Optional[int]]] = [
    ("911", "964", 1989, 1994),
    ("911", "993", 1995, 1998),
    ("911", "996", 1999, 2004),
    ("911", "997.1", 2005, 2008),
    ("911", "997.2", 2009, 2011),
    ("911", "991.1", 2012, 2016),
    ("911", "991.2", 2017, 2019),
    ("911", "992.1", 2020, 2024),
    ("911", "992.2", 2025, None),
    ("718 Boxster", "986", 1997, 2004),
    ("718 Boxster", "987.1", 2005, 2008),
    ("718 Boxster", "987.2", 2009, 2012),
    ("718 Boxster", "981", 2013, 2016),
    ("718 Boxster", "982", 2017, None),
    ("718 Cayman", "987.1", 2006, 2008),
    ("718 Cayman", "987.2", 2009, 2012),
    ("718 Cayman", "981", 2013, 2016),
    ("718 Cayman", "982", 2017, None),
    ("718 Spyder", "987.2", 2010, 2012),
    ("718 Spyder", "981", 2015, 2016),
    ("718 Spyder", "982", 2020, None),
    ("Carrera GT", "980", 2004, 2006),
    ("Cayenne", "9PA", 2003, 2010),
    ("Cayenne", "92A", 2011, 2018),
    ("Cayenne", "9YA", 2019, None),
    ("Macan", "95B", 2015, None),
    ("Panamera", "970", 2010, 2016),
    ("Panamera", "971", 2017, None),
    ("Taycan", "J1", 2020, None),
]

# Other Porsche lines whose titles also say Turbo, Carrera or Targa.
_OTHER_MODEL_RE = re.compile(
    r"(?<![\d,.$])\b(?:944|928|968|924|914|356|959)(?:[a-z]{1,2}\d?|/\d)?\b"
    r"(?![\s-]*(?:miles?\b|mi\b|km\b|hp\b))",
    re.I,
)

_MODEL_PATTERNS = [
    (re.compile(r"\bcarrera\s*gt\b", re.I), "Carrera GT"),
    (re.compile(r"\bcayenne\b", re.I), "Cayenne"),
    (re.compile(r"\bmacan\b", re.I), "Macan"),
    (re.compile(r"\bpanamera\b", re.I), "Panamera"),
    (re.compile(r"\btaycan\b", re.I), "Taycan"),
    (re.compile(r"\b(?:718\s*)?spyder\s*rs\b|\b718\s*spyder\b|\bboxster\s*spyder\b", re.I), "718 Spyder"),
    (re.compile(r"\bcayman\b|\bgt4\b", re.I), "718 Cayman"),
    (re.compile(r"\bboxster\b", re.I), "718 Boxster"),
    (
        re.compile(
            r"\b911\b|\b9(?:64|93|96|97|91|92)(?:\.\d)?\b|\bgt[23]\b|\bgt[23]\s*rs\b|\bcarrera\b|\btarga\b|\bturbo\b",
            re.I,
        ),
        "911",
    ),
]

# Most specific first.
_TRIM_PATTERNS = [
    (re.compile(r"\bgt3\s*rs\b", re.I), "GT3 RS"),
    (re.compile(r"\bgt2\s*rs\b", re.I), "GT2 RS"),
    (re.compile(r"\bgt4\s*rs\b", re.I), "GT4 RS"),
    (re.compile(r"\bspyder\s*rs\b", re.I), "Spyder RS"),
    (re.compile(r"\bgt3\b[^,;]*?\btouring\b", re.I), "GT3 Touring"),
    (re.compile(r"\bgt3\b", re.I), "GT3"),
    (re.compile(r"\bgt2\b", re.I), "GT2"),
    (re.compile(r"\bgt4\b", re.I), "GT4"),
    (re.compile(r"\bturbo\s*s\b", re.I), "Turbo S"),
    (re.compile(r"\bturbo\b", re.I), "Turbo"),
    (re.compile(r"\bs/t\b", re.I), "S/T"),
    (re.compile(r"\bsport\s+classic\b", re.I), "Sport Classic"),
    (re.compile(r"\bspeedster\b", re.I), "Speedster"),
    (re.compile(r"\bdakar\b", re.I), "Dakar"),
    (re.compile(r"\bgts\s*4\.0\b", re.I), "GTS 4.0"),
    (re.compile(r"\bcarrera\s*4\s*gts\b", re.I), "Carrera 4 GTS"),
    (re.compile(r"\bcarrera\s*gts\b", re.I), "Carrera GTS"),
    (re.compile(r"\btarga\s*4\s*gts\b", re.I), "Targa 4 GTS"),
    (re.compile(r"\bgts\b", re.I), "GTS"),
    (re.compile(r"\bcarrera\s*4\s*s\b", re.I), "Carrera 4S"),
    (re.compile(r"\bcarrera\s*s\b", re.I), "Carrera S"),
    (re.compile(r"\bcarrera\s*4\b", re.I), "Carrera 4"),
    (re.compile(r"\bcarrera\s*t\b", re.I), "Carrera T"),
    (re.compile(r"\btarga\s*4\s*s\b", re.I), "Targa 4S"),
    (re.compile(r"\btarga\s*4\b", re.I), "Targa 4"),
    (re.compile(r"\btarga\b", re.I), "Targa"),
    (re.compile(r"\bcarrera\b", re.I), "Carrera"),
    (re.compile(r"\bspyder\b", re.I), "Spyder"),
    (re.compile(r"\b(?:cayman|boxster)\s+r\b", re.I), "R"),
    (re.compile(r"\b(?:cayman|boxster|718)\s+s\b", re.I), "S"),
    (re.compile(r"\b(?:cayman|boxster|718)\s+t\b", re.I), "T"),
]

TRIMS = tuple(label for _, label in _TRIM_PATTERNS) + ("Base",)

PRICE_FLOOR = 15_000
PRICE_CEILING = 5_000_000

# Below these a price is assumed to be a bid, a deposit or a parse error.
TRIM_PRICE_FLOORS = {
    "GT3 RS": 150_000,
    "GT2 RS": 250_000,
    "GT4 RS": 180_000,
    "Spyder RS": 180_000,
    "GT3 Touring": 120_000,
    "GT3": 70_000,
    "Sport Classic": 150_000,
    "S/T": 250_000,
    "Dakar": 180_000,
}

TRIM_MIN_YEARS = {
    "GT4 RS": 2022,
    "Spyder RS": 2024,
    "GT3 Touring": 2018,
    "S/T": 2023,
    "Dakar": 2023,
    "GTS 4.0": 2020,
    "GT4": 2016,
    "GT2 RS": 2011,
    "Sport Classic": 2010,
    "Carrera T": 2018,
}

MODEL_MIN_YEARS = {
    "911": 1964,
    "718 Boxster": 1997,
    "718 Cayman": 2006,
    "718 Spyder": 2010,
    "Cayenne": 2003,
    "Macan": 2015,
    "Panamera": 2010,
    "Taycan": 2020,
}

MIN_YEAR = 1948
MAX_MILEAGE = 500_000
MILES_PER_YEAR = 30_000
MILEAGE_GRACE = 5_000

PTS_RE = re.compile(r"\bPTS\b|paint[\s-]*to[\s-]*sample", re.I)
_PTS_STRIP_RE = re.compile(
    r"\s*[-–(]?\s*(?:\bPTS\b|paint[\s-]*to[\s-]*sample)\s*\)?\s*[-–]?\s*", re.I
)
_BRACKET_RE = re.compile(r"\[[^\]]*\]")
_WRAP_RE = re.compile(r"\bwrap(?:ped)?\b|\bvinyl\b|\bgraphics\b", re.I)

PTS_COLORS = (
    "Granite Green",
    "Dark Sea Blue",
    "Oslo Blue",
    "Mexico Blue",
    "Voodoo Blue",
    "Nardo Grey",
    "Fashion Grey",
    "Slate Grey",
    "Signal Yellow",
    "Signal Green",
    "Acid Green",
    "Lizard Green",
    "Ruby Star",
    "Python Green",
)

CANONICAL_COLORS = PTS_COLORS + (
    "Black",
    "White",
    "Guards Red",
    "Carmine Red",
    "Racing Yellow",
    "Miami Blue",
    "Shark Blue",
    "Gentian Blue Metallic",
    "Night Blue Metallic",
    "Sapphire Blue Metallic",
    "GT Silver Metallic",
    "Arctic Silver Metallic",
    "Rhodium Silver Metallic",
    "Agate Grey Metallic",
    "Chalk",
    "Crayon",
    "Carrara White Metallic",
    "Jet Black Metallic",
    "Basalt Black Metallic",
    "Lava Orange",
    "Aventurine Green Metallic",
    "Gulf Blue",
    "Ice Grey Metallic",
)

COLOR_ALIASES = {
    "gt silver": "GT Silver Metallic",
    "arctic silver": "Arctic Silver Metallic",
    "rhodium silver": "Rhodium Silver Metallic",
    "agate grey": "Agate Grey Metallic",
    "agate gray": "Agate Grey Metallic",
    "carrara white": "Carrara White Metallic",
    "jet black": "Jet Black Metallic",
    "basalt black": "Basalt Black Metallic",
    "gentian blue": "Gentian Blue Metallic",
    "night blue": "Night Blue Metallic",
    "sapphire blue": "Sapphire Blue Metallic",
    "aventurine green": "Aventurine Green Metallic",
    "ice grey": "Ice Grey Metallic",
    "nardo gray": "Nardo Grey",
    "fashion gray": "Fashion Grey",
    "slate gray": "Slate Grey",
    "chalk grey": "Chalk",
    "chalk gray": "Chalk",
    "crayon grey": "Crayon",
    "grey": "Grey",
    "gray": "Grey",
    "silver": "Silver",
    "red": "Red",
    "blue": "Blue",
    "green": "Green",
    "yellow": "Yellow",
    "orange": "Orange",
}
_COLOR_LOOKUP = {c.lower(): c for c in CANONICAL_COLORS}
_COLOR_LOOKUP.update(COLOR_ALIASES)
_PTS_LOOKUP = {c.lower() for c in PTS_COLORS}


@dataclass
class NormalizationResult:
    listing: Optional[Listing]
    problems: List[str] = field(default_factory=list)
    dropped: bool = False


def canonical_model(text: Optional[str]) -> Optional[str]:
    """Map free text (a model field or a whole title) to a model in ``MODELS``."""
    if not text:
        return None
    for model in MODELS:
        if text.strip().lower() == model.lower():
            return model
    if other_model(text):
        return None
    for pattern, model in _MODEL_PATTERNS:
        if pattern.search(text):
            return model
    return None


def other_model(text: Optional[str]) -> Optional[str]:
    """The untracked model number a title names ("944", "928", ...), if any."""
    match = _OTHER_MODEL_RE.search(text or "")
    return match.group(0) if match else None


def canonical_trim(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    stripped = " ".join(text.split())
    for trim in TRIMS:
        if stripped.lower() == trim.lower():
            return trim
    for pattern, trim in _TRIM_PATTERNS:
        if pattern.search(stripped):
            return trim
    return None


def parse_model_trim(text: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Return ``(model, trim)`` from a listing title."""
    if not text or other_model(text):
        return None, None
    model = canonical_model(text)
    trim = None
    for pattern, label in _TRIM_PATTERNS:
        if pattern.search(text):
            trim = label
            break
    if model == "Carrera GT":
        trim = None
    return model, trim


def generation_for(model: Optional[str], year: Optional[int]) -> Optional[str]:
    if not model or not year:
        return None
    for gen_model, code, start, end in GENERATIONS:
        if gen_model == model and start <= year and (end is None or year <= end):
            return code
    return None


def major_generation(code: Optional[str]) -> Optional[str]:
    """``"991.2"`` -> ``"991"``."""
    if not code:
        return None
    return code.split(".", 1)[0]


def generations_for_model(model: str) -> List[str]:
    return [code for gen_model, code, _, _ in GENERATIONS if gen_model == model]


def clean_color(text: Optional[str]) -> Tuple[Optional[str], bool]:
    """Return ``(colour name, is Paint-to-Sample)`` for free-form colour text.

    Wraps and vinyl are not paint, so they yield no colour.
    """
    value = squash(text)
    if not value:
        return None, False
    is_pts = bool(PTS_RE.search(value))
    value = _BRACKET_RE.sub(" ", value)
    value = _PTS_STRIP_RE.sub(" ", value)
    value = squash(value.strip(" -–,()"))
    if not value:
        return None, is_pts
    if _WRAP_RE.search(value):
        return None, is_pts
    name = _COLOR_LOOKUP.get(value.lower())
    if name is None:
        name = value if value != value.lower() and value != value.upper() else value.title()
    if name.lower() in _PTS_LOOKUP:
        is_pts = True
    return name, is_pts


def canonical_transmission(text: Optional[str]) -> Optional[str]:
    value = squash(text)
    if not value:
        return None
    lowered = value.lower()
    if "pdk" in lowered or "dual-clutch" in lowered or "doppelkupplung" in lowered:
        return "PDK"
    if "manual" in lowered or "stick" in lowered:
        return "Manual"
    if "tiptronic" in lowered or "automatic" in lowered or lowered == "auto":
        return "Automatic"
    if re.search(r"\b[456]-speed\b", lowered):
        return "Manual"
    return value


def price_problem(price: Optional[int], trim: Optional[str] = None) -> Optional[str]:
    if price is None:
        return None
    if price < PRICE_FLOOR:
        return f"price {price} below global floor {PRICE_FLOOR}"
    if price > PRICE_CEILING:
        return f"price {price} above global ceiling {PRICE_CEILING}"
    floor = TRIM_PRICE_FLOORS.get(trim or "")
    if floor and price < floor:
        return f"price {price} below {trim} floor {floor}"
    return None


def mileage_problem(
    mileage: Optional[int], year: Optional[int], reference_year: Optional[int] = None
) -> Optional[str]:
    if mileage is None:
        return None
    if mileage < 0:
        return "negative mileage"
    if mileage > MAX_MILEAGE:
        return f"mileage {mileage} above {MAX_MILEAGE}"
    if year:
        ref = reference_year or date.today().year
        age = max(1, ref - year + 1)
        limit = age * MILES_PER_YEAR + MILEAGE_GRACE
        if mileage > limit:
            return f"mileage {mileage} implausible for a {year} car"
    return None


def year_problem(
    year: Optional[int],
    model: Optional[str] = None,
    trim: Optional[str] = None,
    reference_year: Optional[int] = None,
) -> Optional[str]:
    if year is None:
        return None
    ref = reference_year or date.today().year
    if year < MIN_YEAR or year > ref + 1:
        return f"year {year} out of range"
    model_min = MODEL_MIN_YEARS.get(model or "")
    if model_min and year < model_min:
        return f"{model} did not exist in {year}"
    trim_min = TRIM_MIN_YEARS.get(trim or "")
    if trim_min and year < trim_min:
        return f"{trim} did not exist in {year}"
    return None


def normalize_listing(
    partial: PartialListing,
    reference_year: Optional[int] = None,
    scraped_at: Optional[datetime] = None,
) -> NormalizationResult:
    """Turn adapter output into a canonical ``Listing``.

    Implausible fields are nulled and reported in ``problems``. The record is
    dropped when model or year cannot be recovered, or the model is not one
    of ``config.TRACKED_MODELS``.
    """
    # imported here; vin_decoder imports this module for the generation table
    from vin_decoder import decode, trim_hint

    ref = reference_year or date.today().year
    problems: List[str] = []
    title = squash(partial.title)

    vin = squash(partial.vin)
    decoded = None
    if vin:
        vin = vin.upper()
        decoded = decode(vin, reference_year=ref)
        if not decoded.valid:
            problems.append(f"invalid vin {vin}")
            vin = None
            decoded = None

    title_model, title_trim = parse_model_trim(title)
    model = canonical_model(partial.model) or title_model
    if model is None and decoded is not None:
        model = decoded.model

    trim = canonical_trim(partial.trim) or title_trim
    if trim is None and vin:
        trim = trim_hint(vin)

    year = partial.year or extract_year(title)
    if decoded is not None and decoded.model_year and decoded.confidence == "high":
        if year and year != decoded.model_year:
            problems.append(f"year {year} disagrees with vin year {decoded.model_year}")
        year = decoded.model_year
    elif year is None and decoded is not None:
        year = decoded.model_year

    problem = year_problem(year, model, None, ref)
    if problem:
        problems.append(problem)
        year = None
    problem = year_problem(year, model, trim, ref)
    if problem:
        problems.append(problem)
        trim = None

    if model is None or year is None:
        problems.append("model/year unrecoverable")
        return NormalizationResult(None, problems, dropped=True)
    if model not in config.TRACKED_MODELS:
        problems.append(f"untracked model {model}")
        return NormalizationResult(None, problems, dropped=True)

    price = partial.price
    problem = price_problem(price, trim)
    if problem:
        problems.append(problem)
        price = None

    mileage = partial.mileage
    problem = mileage_problem(mileage, year, ref)
    if problem:
        problems.append(problem)
        mileage = None

    exterior, is_pts = clean_color(partial.exterior_color)
    interior, _ = clean_color(partial.interior_color)

    listing = Listing(
        source=partial.source,
        source_url=partial.source_url,
        vin=vin,
        title=title,
        year=year,
        model=model,
        trim=trim,
        generation=generation_for(model, year),
        price=price,
        mileage=mileage,
        exterior_color=exterior,
        is_paint_to_sample=is_pts,
        interior_color=interior,
        transmission=canonical_transmission(partial.transmission),
        location=squash(partial.location),
        list_date=partial.list_date,
        sold_date=partial.sold_date,
        scraped_at=scraped_at or datetime.now(timezone.utc).replace(tzinfo=None),
        options_text=squash(partial.options_text),
    )
    for message in problems:
        log.debug("%s %s: %s", partial.source, partial.source_url, message)
    return NormalizationResult(listing, problems)


def renormalize(listing: Listing, reference_year: Optional[int] = None) -> Listing:
    """Re-apply the canonical rules to a stored row. Returns a new ``Listing``."""
    title_model, title_trim = parse_model_trim(listing.title)
    model = canonical_model(listing.model) or title_model
    trim = canonical_trim(listing.trim) or title_trim
    if trim and year_problem(listing.year, model, trim, reference_year):
        trim = None
    exterior, is_pts = clean_color(listing.exterior_color)
    interior, _ = clean_color(listing.interior_color)
    price = listing.price if not price_problem(listing.price, trim) else None
    mileage = listing.mileage
    if mileage_problem(mileage, listing.year, reference_year):
        mileage = None
    return replace(
        listing,
        model=model,
        trim=trim,
        generation=generation_for(model, listing.year),
        exterior_color=exterior,
        is_paint_to_sample=listing.is_paint_to_sample or is_pts,
        interior_color=interior,
        transmission=canonical_transmission(listing.transmission),
        price=price,
        mileage=mileage,
        title=squash(listing.title),
        options_text=squash(listing.options_text),
    )
