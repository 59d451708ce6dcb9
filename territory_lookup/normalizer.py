"""Street address parsing and canonicalization.

All functions here are pure string processing and never raise; unparseable
input yields a best-effort partial NormalizedAddress so ZIP-level strategies
can still run.
"""

import re
from typing import Optional

from .models import NormalizedAddress, RawAddress

_STREET_RE = re.compile(r"^(\d+[\w/]*)\s+(.+)$")
_STREET_TYPE_RE = re.compile(
    r"\b(Ave|Avenue|St|Street|Dr|Drive|Rd|Road|Ln|Lane|Blvd|Boulevard|Ct|Court|"
    r"Cir|Circle|Way|Pl|Place|Pkwy|Parkway)\b\.?$",
    re.IGNORECASE,
)
_UNIT_RE = re.compile(r"^(Apt|Apartment|Suite|Ste|Unit|#)\s*(.+)$", re.IGNORECASE)
# Unit designator trailing the street line, e.g. "100 Main St Apt 4"
_TRAILING_UNIT_RE = re.compile(r"\s+(Apt|Apartment|Suite|Ste|Unit|#)\s*(\d[\w-]*|[A-Za-z]\d*)$", re.IGNORECASE)

# One-line "street, city, ST zip[-zip4]"
_STATE_ZIP_RE = re.compile(r"^\s*([A-Za-z]{2}|Texas)\s+(\w{5})(?:-(\w{4}))?\s*$", re.IGNORECASE)

STREET_TYPES = {
    "ave": "Avenue", "avenue": "Avenue",
    "st": "Street", "street": "Street",
    "dr": "Drive", "drive": "Drive",
    "rd": "Road", "road": "Road",
    "ln": "Lane", "lane": "Lane",
    "blvd": "Boulevard", "boulevard": "Boulevard",
    "ct": "Court", "court": "Court",
    "cir": "Circle", "circle": "Circle",
    "way": "Way",
    "pl": "Place", "place": "Place",
    "pkwy": "Parkway", "parkway": "Parkway",
}

UNIT_TYPES = {
    "apt": "Apt", "apartment": "Apt",
    "suite": "Suite", "ste": "Suite",
    "unit": "Unit",
    "#": "#",
}


def normalize_street_type(street_type: str) -> str:
    return STREET_TYPES.get(street_type.lower().rstrip("."), street_type)


def normalize_city(city: str) -> str:
    return " ".join(w[:1].upper() + w[1:].lower() for w in (city or "").split())


def _normalize_state(state: str) -> str:
    state = (state or "").strip()
    if state.lower() == "texas":
        return "TX"
    return state.upper()[:2] if state else "TX"


def _split_unit(unit: str):
    m = _UNIT_RE.match(unit.strip())
    if m:
        return UNIT_TYPES[m.group(1).lower()], m.group(2).strip()
    return None, unit.strip()


def normalize(address: RawAddress) -> NormalizedAddress:
    """Parse a RawAddress into its canonical NormalizedAddress."""
    street = re.sub(r"\s+", " ", (address.street or "").strip())
    unit_type: Optional[str] = None
    unit_number: Optional[str] = None

    if address.unit:
        unit_type, unit_number = _split_unit(address.unit)
    else:
        m = _TRAILING_UNIT_RE.search(street)
        if m:
            unit_type = UNIT_TYPES[m.group(1).lower()]
            unit_number = m.group(2)
            street = street[:m.start()].strip()

    street_number = ""
    rest = street
    m = _STREET_RE.match(street)
    if m:
        street_number, rest = m.group(1), m.group(2)

    street_type = ""
    street_name = rest
    m = _STREET_TYPE_RE.search(rest)
    if m:
        street_type = normalize_street_type(m.group(1))
        street_name = rest[:m.start()].strip()

    addr = NormalizedAddress(
        street_number=street_number,
        street_name=street_name.strip(),
        street_type=street_type,
        city=normalize_city(address.city),
        state=_normalize_state(address.state),
        zip_code=(address.zip_code or "").strip(),
        zip4=address.zip4 or None,
        unit_type=unit_type,
        unit_number=unit_number or None,
    )
    return NormalizedAddress(**{**addr.to_dict(), "full_address": format_address(addr)})


def format_address(address: NormalizedAddress, include_unit: bool = True) -> str:
    """Render "num name type [unit], City, ST zip[-zip4]"."""
    formatted = " ".join(p for p in (address.street_number, address.street_name, address.street_type) if p)
    if include_unit and address.unit_number:
        formatted += f" {address.unit_type} {address.unit_number}" if address.unit_type else f" {address.unit_number}"
    formatted += f", {address.city}, {address.state}"
    formatted += f" {address.zip_code}-{address.zip4}" if address.zip4 else f" {address.zip_code}"
    return formatted


def compare_addresses(a: NormalizedAddress, b: NormalizedAddress) -> float:
    """Weighted similarity between two addresses (0.0 - 1.0)."""
    score = 0
    if a.street_number == b.street_number:
        score += 3
    if a.street_name.lower() == b.street_name.lower():
        score += 3
    if a.street_type == b.street_type:
        score += 2
    if a.zip_code == b.zip_code:
        score += 3
    if a.city.lower() == b.city.lower():
        score += 2
    return score / 13


def parse_address_line(line: str) -> RawAddress:
    """
    Split a one-line address ("1234 Belt Line Road, Addison, TX 75001") into
    a RawAddress. Missing pieces come back empty for the validator to reject.
    """
    parts = [p.strip() for p in (line or "").split(",")]
    street = parts[0] if parts else ""
    city = ""
    state = ""
    zip_code = ""
    zip4 = None

    if len(parts) >= 2:
        m = _STATE_ZIP_RE.match(parts[-1])
        if m:
            state, zip_code, zip4 = m.group(1), m.group(2), m.group(3)
            city = parts[-2] if len(parts) >= 3 else ""
        else:
            city = parts[1]
            if len(parts) >= 3:
                state = parts[2]

    if not zip_code:
        m = re.search(r"\b([0-9]{5})(?:-([0-9]{4}))?\s*$", line or "")
        if m:
            zip_code, zip4 = m.group(1), m.group(2)

    return RawAddress(street=street, city=city, state=state or "TX", zip_code=zip_code, zip4=zip4)
