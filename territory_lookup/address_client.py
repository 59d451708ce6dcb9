"""Address verification client: standardizes a street address and adds ZIP+4.

Speaks the US street-address verification JSON format:

    GET <ADDRESS_API_URL>?auth-id=<ADDRESS_API_KEY>&candidates=1
        &street=...&city=...&state=TX&zipcode=75001-1234

    [{"components": {"primary_number": "1234", "street_name": "Belt Line",
                     "street_suffix": "Rd", "city_name": "Addison",
                     "state_abbreviation": "TX", "zipcode": "75001",
                     "plus4_code": "1234"},
      "metadata": {"precision": "Zip9"}}]

An empty list means the service does not know the address.
Optional: when ADDRESS_API_URL is unset the engine never constructs a client.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

import requests

from .breaker import CircuitBreaker
from .errors import ErrorCode, ExternalServiceError
from .models import RawAddress

logger = logging.getLogger(__name__)

_USER_AGENT = "territory-lookup/1.0"

_CIRCUIT_BREAKER_THRESHOLD = 3
_CIRCUIT_BREAKER_RESET_S = 300

# metadata.precision -> confidence label
_PRECISION_CONFIDENCE = {
    "Zip9": "high",
    "Zip7": "high",
    "Zip5": "medium",
}


@dataclass
class AddressMatch:
    address: RawAddress
    precision: str
    confidence: str
    response_time_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "street": self.address.street,
            "city": self.address.city,
            "state": self.address.state,
            "zip_code": self.address.zip_code,
            "zip4": self.address.zip4,
            "unit": self.address.unit,
            "precision": self.precision,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AddressMatch":
        return cls(
            address=RawAddress(
                street=data["street"],
                city=data["city"],
                state=data["state"],
                zip_code=data["zip_code"],
                zip4=data.get("zip4"),
                unit=data.get("unit"),
            ),
            precision=data.get("precision", ""),
            confidence=data.get("confidence", "low"),
        )


class AddressVerificationClient:
    """Standardize addresses against an external verification service."""

    def __init__(self, url: str, api_key: str = "", timeout: float = 5.0,
                 session: Optional[requests.Session] = None):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self._session = session or requests.Session()
        self.breaker = CircuitBreaker("Address API", _CIRCUIT_BREAKER_THRESHOLD, _CIRCUIT_BREAKER_RESET_S)

    @property
    def available(self) -> bool:
        return self.breaker.available

    def verify(self, address: RawAddress, timeout: Optional[float] = None) -> Optional[AddressMatch]:
        """
        Standardize one address.

        Returns None when the service has no candidate for the address.
        Raises ExternalServiceError on timeout, transport error, non-200 or a
        malformed body.
        """
        zipcode = address.zip_code
        if address.zip4:
            zipcode = f"{address.zip_code}-{address.zip4}"
        street = address.street
        if address.unit:
            street = f"{street} {address.unit}"
        params = {
            "candidates": 1,
            "street": street,
            "city": address.city,
            "state": address.state,
            "zipcode": zipcode,
        }
        if self.api_key:
            params["auth-id"] = self.api_key

        headers = {"Accept": "application/json", "User-Agent": _USER_AGENT}
        timeout = self.timeout if timeout is None else min(self.timeout, timeout)
        t0 = time.time()
        try:
            resp = self._session.get(self.url, params=params, headers=headers, timeout=timeout)
        except requests.Timeout:
            self.breaker.record_failure()
            raise ExternalServiceError(ErrorCode.EXTERNAL_SERVICE_TIMEOUT,
                                       f"Address API timeout after {timeout:.1f}s")
        except requests.RequestException as e:
            self.breaker.record_failure()
            raise ExternalServiceError(ErrorCode.EXTERNAL_SERVICE_ERROR, f"Address API error: {e}")

        elapsed_ms = int((time.time() - t0) * 1000)
        if resp.status_code != 200:
            self.breaker.record_failure()
            raise ExternalServiceError(ErrorCode.EXTERNAL_SERVICE_ERROR,
                                       f"Address API error: HTTP {resp.status_code}")

        try:
            data = resp.json()
            match = self._parse(data, elapsed_ms) if data else None
        except (ValueError, KeyError, TypeError, AttributeError, IndexError) as e:
            self.breaker.record_failure()
            raise ExternalServiceError(ErrorCode.EXTERNAL_SERVICE_ERROR,
                                       f"Address API returned malformed body: {e}")

        self.breaker.record_success()
        if match is None:
            logger.debug(f"Address API: no candidate for '{address.street}, {address.zip_code}'")
        else:
            logger.debug(f"Address API: {match.address.street} {match.address.zip_code}-{match.address.zip4} "
                         f"({match.precision}, {elapsed_ms}ms)")
        return match

    @staticmethod
    def _parse(data: list, elapsed_ms: int) -> AddressMatch:
        candidate = data[0]
        c = candidate["components"]
        street = " ".join(
            c[k] for k in ("primary_number", "street_predirection", "street_name",
                           "street_suffix", "street_postdirection")
            if c.get(k)
        )
        unit = " ".join(c[k] for k in ("secondary_designator", "secondary_number") if c.get(k)) or None
        precision = (candidate.get("metadata") or {}).get("precision", "")
        return AddressMatch(
            address=RawAddress(
                street=street,
                city=c["city_name"],
                state=c["state_abbreviation"],
                zip_code=c["zipcode"],
                zip4=c.get("plus4_code") or None,
                unit=unit,
            ),
            precision=precision,
            confidence=_PRECISION_CONFIDENCE.get(precision, "low"),
            response_time_ms=elapsed_ms,
        )

    def close(self):
        self._session.close()
