"""ESID registry client: authoritative address -> operator lookup over HTTP.

The registry is keyed by full service address and answers with the
Electric Service Identifier (ESID), the delivery operator's registry (DUNS)
number, and its own match confidence (0.0 - 1.0):

    GET <ESID_API_URL>?street=...&city=...&state=TX&zip=75001&zip4=1234
    Authorization: Bearer <ESID_API_KEY>

    {"esid": "10443720001234567", "tdsp_duns": "1039940674000", "confidence": 0.96}

Optional: when ESID_API_URL is unset the engine never constructs a client.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

import requests

from .breaker import CircuitBreaker
from .errors import ErrorCode, ExternalServiceError
from .models import NormalizedAddress

logger = logging.getLogger(__name__)

_USER_AGENT = "territory-lookup/1.0"

# Circuit breaker: disable after N consecutive failures, re-enable after 5 minutes
_CIRCUIT_BREAKER_THRESHOLD = 3
_CIRCUIT_BREAKER_RESET_S = 300


@dataclass
class EsidMatch:
    esid: str
    registry_number: str
    confidence: float
    response_time_ms: int = 0


class EsidClient:
    """Query the external ESID registry, with a circuit breaker."""

    def __init__(self, url: str, api_key: str = "", timeout: float = 5.0,
                 session: Optional[requests.Session] = None):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self._session = session or requests.Session()
        self.breaker = CircuitBreaker("ESID API", _CIRCUIT_BREAKER_THRESHOLD, _CIRCUIT_BREAKER_RESET_S)

    @property
    def available(self) -> bool:
        """Check if the API is available (not circuit-broken)."""
        return self.breaker.available

    def lookup(self, address: NormalizedAddress, timeout: Optional[float] = None) -> EsidMatch:
        """
        Look up the ESID record for an address.

        Raises ExternalServiceError on timeout, transport error, non-200 or a
        malformed body. The caller decides whether to fall through.
        """
        street = " ".join(p for p in (address.street_number, address.street_name, address.street_type) if p)
        params = {
            "street": street,
            "city": address.city,
            "state": address.state,
            "zip": address.zip_code,
        }
        if address.zip4:
            params["zip4"] = address.zip4

        headers = {"Accept": "application/json", "User-Agent": _USER_AGENT}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        timeout = self.timeout if timeout is None else min(self.timeout, timeout)
        t0 = time.time()
        try:
            resp = self._session.get(self.url, params=params, headers=headers, timeout=timeout)
        except requests.Timeout:
            self.breaker.record_failure()
            raise ExternalServiceError(ErrorCode.EXTERNAL_SERVICE_TIMEOUT, f"ESID API timeout after {timeout:.1f}s")
        except requests.RequestException as e:
            self.breaker.record_failure()
            raise ExternalServiceError(ErrorCode.EXTERNAL_SERVICE_ERROR, f"ESID API error: {e}")

        elapsed_ms = int((time.time() - t0) * 1000)
        if resp.status_code != 200:
            self.breaker.record_failure()
            raise ExternalServiceError(ErrorCode.EXTERNAL_SERVICE_ERROR, f"ESID API error: HTTP {resp.status_code}")

        try:
            data = resp.json()
            match = EsidMatch(
                esid=str(data.get("esid", "")),
                registry_number=str(data["tdsp_duns"]),
                confidence=float(data.get("confidence", 0.0)),
                response_time_ms=elapsed_ms,
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            self.breaker.record_failure()
            raise ExternalServiceError(ErrorCode.EXTERNAL_SERVICE_ERROR, f"ESID API returned malformed body: {e}")

        self.breaker.record_success()
        logger.debug(f"ESID API: {match.esid} -> {match.registry_number} ({elapsed_ms}ms)")
        return match

    def close(self):
        self._session.close()
