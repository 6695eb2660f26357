"""Positional decoding of 17-character VINs, tuned for Porsche.

Porsche VIN layout::

    WP0 A C 2 A9 9 J S 176782
    |   | | | |  | | | +- serial
    |   | | | |  | | +--- plant
    |   | | | |  | +----- model year
    |   | | | |  +------- check digit
    |   | | | +---------- type code (model line)
    |   | | +------------ restraint system
    |   | +-------------- engine variant
    |   +---------------- body style
    +-------------------- world manufacturer identifier

``decode`` never raises. Anything that is not a well-formed VIN comes back
with ``valid=False`` and no derived fields.
"""

from datetime import date
from typing import Optional

from normalize import generation_for
from records import VinDecodeResult

VIN_LENGTH = 17
VALID_CHARS = frozenset("ABCDEFGHJKLMNPRSTUVWXYZ0123456789")

WMI = {
    "WP0": "Porsche",
    "WP1": "Porsche",
    "WAU": "Audi",
    "WBA": "BMW",
    "WBS": "BMW M",
    "WDD": "Mercedes-Benz",
    "WVW": "Volkswagen",
    "WVG": "Volkswagen",
    "ZFF": "Ferrari",
    "ZHW": "Lamborghini",
    "SCF": "Aston Martin",
    "SBM": "McLaren",
}
PORSCHE_WMIS = ("WP0", "WP1")

# Position 10. Letters cover 1980-2000 and 2010-2030, digits 2001-2009.
_YEAR_CODES = "ABCDEFGHJKLMNPRSTVWXY123456789"
YEAR_CODES = {code: 1980 + offset for offset, code in enumerate(_YEAR_CODES)}
YEAR_CYCLE = 30

PLANTS = {
    "S": "Stuttgart-Zuffenhausen",
    "U": "Uusikaupunki",
    "L": "Leipzig",
    "K": "Osnabrueck",
    "O": "Osnabrueck",
    "N": "Neckarsulm",
}

# Positions 7-8.
TYPE_CODES = {
    "96": "911",
    "99": "911",
    "A9": "911",
    "98": "Boxster/Cayman",
    "A8": "Boxster/Cayman",
    "9P": "Cayenne",
    "92": "Cayenne",
    "9Y": "Cayenne",
    "A5": "Macan",
    "A7": "Panamera",
    "Y1": "Taycan",
    "Y2": "Taycan",
}

BODY_STYLES = {
    "911": {"A": "Coupe", "B": "Targa", "C": "Cabriolet"},
    "Boxster/Cayman": {"A": "Coupe", "C": "Roadster"},
}

ENGINE_VARIANTS = {
    "A": "Base",
    "B": "S",
    "C": "GT",
    "D": "Turbo",
    "E": "GT RS",
    "F": "GT RS",
}

# (type code, position 5) -> trim. Only combinations seen on real cars.
TRIM_HINTS = {
    ("99", "A"): "Carrera",
    ("99", "B"): "Carrera S",
    ("99", "C"): "GT3",
    ("99", "D"): "Turbo",
    ("A9", "A"): "Carrera",
    ("A9", "B"): "Carrera S",
    ("A9", "C"): "GT3",
    ("A9", "D"): "Turbo",
    ("A9", "E"): "GT2 RS",
    ("A9", "F"): "GT3 RS",
    ("A8", "C"): "GT4",
    ("A8", "E"): "GT4 RS",
}

_TRANSLITERATION = {
    **{str(d): d for d in range(10)},
    "A": 1, "B": 2, "C": 3, "D": 4, "E": 5, "F": 6, "G": 7, "H": 8,
    "J": 1, "K": 2, "L": 3, "M": 4, "N": 5, "P": 7, "R": 9,
    "S": 2, "T": 3, "U": 4, "V": 5, "W": 6, "X": 7, "Y": 8, "Z": 9,
}
_WEIGHTS = (8, 7, 6, 5, 4, 3, 2, 10, 0, 9, 8, 7, 6, 5, 4, 3, 2)


def clean_vin(vin) -> Optional[str]:
    """Upper-cased VIN when well-formed, else ``None``."""
    if not isinstance(vin, str):
        return None
    value = vin.strip().upper()
    if len(value) != VIN_LENGTH or not set(value) <= VALID_CHARS:
        return None
    return value


def check_digit(vin: str) -> str:
    total = sum(_TRANSLITERATION[ch] * weight for ch, weight in zip(vin, _WEIGHTS))
    remainder = total % 11
    return "X" if remainder == 10 else str(remainder)


def model_year(vin: str, reference_year: Optional[int] = None) -> Optional[int]:
    """Resolve position 10 against a reference year.

    A digit in position 7 puts the car in the 1980-2009 cycle and a letter in
    the 2010-2039 cycle. The result is never later than ``reference_year + 1``.
    """
    base = YEAR_CODES.get(vin[9])
    if base is None:
        return None
    ref = reference_year or date.today().year
    latest = ref + 1
    candidate = base if vin[6].isdigit() else base + YEAR_CYCLE
    if candidate <= latest:
        return candidate
    while candidate > latest:
        candidate -= YEAR_CYCLE
    return candidate


def _model(vin: str, family: Optional[str]) -> Optional[str]:
    if family == "Boxster/Cayman":
        return "718 Cayman" if vin[3] == "A" else "718 Boxster"
    return family


def decode(vin, reference_year: Optional[int] = None) -> VinDecodeResult:
    """Decode ``vin`` by character position. Never raises."""
    value = clean_vin(vin)
    if value is None or value[9] not in YEAR_CODES:
        return VinDecodeResult(vin=vin if isinstance(vin, str) else "")

    wmi = value[:3]
    is_porsche = wmi in PORSCHE_WMIS
    family = TYPE_CODES.get(value[6:8]) if is_porsche else None
    model = _model(value, family)
    year = model_year(value, reference_year)
    check_ok = check_digit(value) == value[8]

    ref = reference_year or date.today().year
    if is_porsche and model and check_ok:
        confidence = "high"
    elif model:
        confidence = "medium"
    else:
        confidence = "low"
    if year is None or year > ref + 1:
        confidence = "low"

    return VinDecodeResult(
        vin=value,
        valid=True,
        wmi=wmi,
        manufacturer=WMI.get(wmi),
        plant_code=value[10],
        plant=PLANTS.get(value[10]) if is_porsche else None,
        model_year=year,
        body_style=BODY_STYLES.get(family or "", {}).get(value[3]),
        engine_type=ENGINE_VARIANTS.get(value[4]) if family else None,
        model=model,
        generation=generation_for(model, year),
        check_digit_ok=check_ok,
        confidence=confidence,
    )


def trim_hint(vin) -> Optional[str]:
    """Trim implied by type code + engine variant, or ``None`` when unknown."""
    value = clean_vin(vin)
    if value is None or value[:3] not in PORSCHE_WMIS:
        return None
    return TRIM_HINTS.get((value[6:8], value[4]))
