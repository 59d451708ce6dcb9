"""Postal code format and service-region validation.

Pure functions: no I/O, no logging side effects. Every failure is reported as
a PostalValidation / ResolutionError carrying an ErrorCode, never raised from
validate_postal_code itself.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .errors import ErrorCode, ResolutionError
from .models import RawAddress

# Published postal ranges for the supported region (Texas)
SUPPORTED_RANGES: List[Tuple[int, int]] = [
    (75001, 79999),
    (88510, 88589),  # El Paso area
]

# National envelope of assigned 5-digit codes
NATIONAL_MIN = 501
NATIONAL_MAX = 99950

POPULAR_POSTAL_CODES = ["75201", "75701", "77001", "77002", "78701", "78201", "76101", "79401"]

_ZIP4_RE = re.compile(r"^[0-9]{4}$")
_COMBINED_RE = re.compile(r"^([0-9]{5})(?:-([0-9]{4}))?$")


@dataclass
class PostalValidation:
    is_valid: bool
    zip_code: str = ""
    error_code: Optional[ErrorCode] = None
    message: str = ""
    suggestions: List[str] = field(default_factory=list)
    region_name: str = ""

    def to_error(self) -> ResolutionError:
        return ResolutionError(self.error_code, self.message, self.suggestions)


def is_supported_postal_code(code: str) -> bool:
    if not code or len(code) != 5 or not (code.isascii() and code.isdigit()):
        return False
    value = int(code)
    return any(lo <= value <= hi for lo, hi in SUPPORTED_RANGES)


def validate_postal_code(raw: Optional[str]) -> PostalValidation:
    """Validate a 5-digit postal code against format and region ranges."""
    raw = (raw or "").strip()
    # ASCII only: str.isdigit and \d also accept full-width and other script digits
    digits = re.sub(r"[^0-9]", "", raw)

    if len(digits) != 5:
        # Right length but not digits is a character problem, not a length one
        if len(raw) == 5:
            return PostalValidation(
                is_valid=False,
                error_code=ErrorCode.INVALID_CHARACTERS,
                message="ZIP code must contain only numbers",
            )
        return PostalValidation(
            is_valid=False,
            error_code=ErrorCode.INVALID_LENGTH,
            message="ZIP code must be exactly 5 digits",
        )

    value = int(digits)
    if not NATIONAL_MIN <= value <= NATIONAL_MAX:
        return PostalValidation(
            is_valid=False,
            zip_code=digits,
            error_code=ErrorCode.NOT_NATIONAL_FORMAT,
            message="Not a valid US ZIP code",
        )

    if not is_supported_postal_code(digits):
        return PostalValidation(
            is_valid=False,
            zip_code=digits,
            error_code=ErrorCode.NOT_SUPPORTED_REGION,
            message="This ZIP code is not in Texas",
            suggestions=list(POPULAR_POSTAL_CODES),
        )

    return PostalValidation(is_valid=True, zip_code=digits, region_name="Texas")


def split_postal_code(raw: str) -> Tuple[str, Optional[str]]:
    """Split "75201-1234" into ("75201", "1234"). Non-matching input is returned as-is."""
    raw = (raw or "").strip()
    m = _COMBINED_RE.match(raw)
    if not m:
        return raw, None
    return m.group(1), m.group(2)


def validate_address(address: RawAddress) -> RawAddress:
    """
    Validate a RawAddress and return it with the postal code split/cleaned.

    Raises ResolutionError for any format or region failure.
    """
    zip_code, zip4 = split_postal_code(address.zip_code)
    zip4 = address.zip4 or zip4

    result = validate_postal_code(zip_code)
    if not result.is_valid:
        raise result.to_error()

    if not (address.street or "").strip():
        raise ResolutionError(ErrorCode.INVALID_ADDRESS, "Street address is required")
    if not (address.city or "").strip():
        raise ResolutionError(ErrorCode.INVALID_ADDRESS, "City is required")

    state = (address.state or "").strip().upper()
    if state not in ("TX", "TEXAS"):
        raise ResolutionError(
            ErrorCode.NOT_SUPPORTED_REGION,
            "Only Texas addresses are supported",
            list(POPULAR_POSTAL_CODES),
        )

    if zip4 is not None:
        zip4 = zip4.strip()
        if not zip4:
            zip4 = None
        elif not _ZIP4_RE.match(zip4):
            raise ResolutionError(ErrorCode.INVALID_LENGTH, "ZIP+4 extension must be exactly 4 digits")

    return RawAddress(
        street=address.street.strip(),
        city=address.city.strip(),
        state="TX",
        zip_code=result.zip_code,
        zip4=zip4,
        unit=(address.unit or "").strip() or None,
    )
