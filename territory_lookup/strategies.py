"""Territory boundary strategies.

Each strategy maps a NormalizedAddress to a territory operator or declines
by returning None. Strategies never raise for "not applicable"; only a
network-bound strategy raises ExternalServiceError, which the engine treats
as a declined strategy and records as a warning.

Default priority order:
    esid-lookup -> zip4-boundary -> street-boundary -> multi-operator-config -> zip-fallback
"""

import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import asdict
from typing import Dict, List, Optional

from .cache import TieredCache, address_key
from .config import Config
from .errors import ErrorCode, ExternalServiceError
from .esid_client import EsidClient, EsidMatch
from .models import (
    BoundaryLookupResult,
    Confidence,
    ConfigMetadata,
    EsidMetadata,
    FallbackMetadata,
    NormalizedAddress,
    StreetMetadata,
    Zip4Metadata,
)
from .registry import OperatorRegistry

logger = logging.getLogger(__name__)

_ESID_PREFIX = "esid"


class BoundaryStrategy(ABC):
    """One independent algorithm for mapping an address to an operator."""

    name: str = ""

    def __init__(self, registry: OperatorRegistry):
        self.registry = registry

    @abstractmethod
    def attempt(self, address: NormalizedAddress,
                deadline: Optional[float] = None) -> Optional[BoundaryLookupResult]:
        """
        Try to resolve the address.

        Args:
            address: normalized address
            deadline: absolute time.monotonic() value after which network
                work must not continue; None for no deadline

        Returns:
            BoundaryLookupResult, or None when the strategy does not apply.
        """


class EsidStrategy(BoundaryStrategy):
    """
    Strategy 1: authoritative registry lookup by full address.

    Registry answers are cached under esid_lookup (30 days) when a cache is
    given; a cached answer is served even while the client is circuit-broken.
    """

    name = "esid-lookup"

    def __init__(self, registry: OperatorRegistry, client: Optional[EsidClient],
                 high_threshold: float = 0.9, medium_threshold: float = 0.7,
                 cache: Optional[TieredCache] = None):
        super().__init__(registry)
        self.client = client
        self.high_threshold = high_threshold
        self.medium_threshold = medium_threshold
        self.cache = cache

    def attempt(self, address, deadline=None):
        if self.client is None or not address.street_name:
            return None

        key = address_key(_ESID_PREFIX, address)
        match = self._cached_match(key)
        if match is None:
            if not self.client.available:
                return None

            timeout = None
            if deadline is not None:
                timeout = deadline - time.monotonic()
                if timeout <= 0:
                    raise ExternalServiceError(ErrorCode.EXTERNAL_SERVICE_TIMEOUT, "Deadline passed before ESID lookup")

            match = self.client.lookup(address, timeout=timeout)
            if self.cache is not None:
                self.cache.set(key, asdict(match), "esid_lookup")

        operator = self.registry.by_registry_number(match.registry_number)
        if operator is None:
            raise ExternalServiceError(
                ErrorCode.EXTERNAL_SERVICE_ERROR,
                f"Unknown operator registry number: {match.registry_number}",
            )

        if match.confidence > self.high_threshold:
            confidence = Confidence.HIGH
        elif match.confidence > self.medium_threshold:
            confidence = Confidence.MEDIUM
        else:
            confidence = Confidence.LOW

        return BoundaryLookupResult(
            strategy=self.name,
            operator=operator,
            confidence=confidence,
            metadata=EsidMetadata(
                response_time_ms=match.response_time_ms,
                esid=match.esid,
                external_confidence=match.confidence,
            ),
        )

    def _cached_match(self, key: str) -> Optional[EsidMatch]:
        if self.cache is None:
            return None
        cached = self.cache.get(key, "esid_lookup")
        if not cached:
            return None
        logger.debug(f"ESID cache hit: {cached['esid']}")
        # Served from cache: no registry round trip
        return EsidMatch(
            esid=cached["esid"],
            registry_number=cached["registry_number"],
            confidence=cached["confidence"],
        )


class Zip4BoundaryStrategy(BoundaryStrategy):
    """
    Strategy 2: ZIP+4 granularity.

    No real ZIP+4 boundary dataset is wired in; the last digit of the
    extension stands in for one (> 5 selects the first alternate).
    """

    name = "zip4-boundary"

    def attempt(self, address, deadline=None):
        if not address.zip4:
            return None
        cfg = self.registry.multi_operator_config(address.zip_code)
        if cfg is None or cfg.boundary_type != "zip4-level":
            return None

        last_digit = int(address.zip4[-1]) if address.zip4[-1:].isdigit() else 0
        if last_digit > 5 and cfg.alternates:
            return BoundaryLookupResult(
                strategy=self.name,
                operator=cfg.alternates[0],
                confidence=Confidence.MEDIUM,
                alternates=[cfg.primary],
                warnings=["Using alternative operator based on ZIP+4 boundary"],
                metadata=Zip4Metadata(zip4=address.zip4),
            )
        return BoundaryLookupResult(
            strategy=self.name,
            operator=cfg.primary,
            confidence=Confidence.MEDIUM,
            alternates=list(cfg.alternates),
            metadata=Zip4Metadata(zip4=address.zip4),
        )


class StreetBoundaryStrategy(BoundaryStrategy):
    """Strategy 3: street name pattern + house-number range rules."""

    name = "street-boundary"

    def attempt(self, address, deadline=None):
        cfg = self.registry.multi_operator_config(address.zip_code)
        if cfg is None or cfg.boundary_type != "street-level":
            return None

        street = f"{address.street_name} {address.street_type}".strip().lower()
        m = re.match(r"\d+", address.street_number or "")
        house_number = int(m.group(0)) if m else None

        for rule in self.registry.street_rules(address.zip_code):
            if not rule.matches(street, house_number):
                continue
            if rule.operator.registry_number == cfg.primary.registry_number:
                alternates = list(cfg.alternates)
            else:
                alternates = [cfg.primary]
            return BoundaryLookupResult(
                strategy=self.name,
                operator=rule.operator,
                confidence=Confidence.MEDIUM,
                alternates=alternates,
                warnings=["Using street-level boundary data"],
                metadata=StreetMetadata(pattern=rule.pattern.pattern, house_number=house_number),
            )
        return None


class MultiOperatorConfigStrategy(BoundaryStrategy):
    """Strategy 4: configured primary operator for a boundary ZIP."""

    name = "multi-operator-config"

    def attempt(self, address, deadline=None):
        cfg = self.registry.multi_operator_config(address.zip_code)
        if cfg is None:
            return None

        if cfg.requires_address_validation:
            confidence = Confidence.LOW
            warning = "Address validation required for accurate operator determination"
        else:
            confidence = Confidence.MEDIUM
            warning = "Using configured primary operator for ZIP code"

        return BoundaryLookupResult(
            strategy=self.name,
            operator=cfg.primary,
            confidence=confidence,
            alternates=list(cfg.alternates),
            warnings=[warning],
            metadata=ConfigMetadata(
                boundary_type=cfg.boundary_type,
                requires_address_validation=cfg.requires_address_validation,
                notes=cfg.notes,
            ),
        )


class ZipFallbackStrategy(BoundaryStrategy):
    """Strategy 5: ZIP -> city -> historically associated operator."""

    name = "zip-fallback"

    def attempt(self, address, deadline=None):
        match = self.registry.fallback_operator(address.zip_code)
        if match is None:
            logger.warning(f"No fallback operator configured for ZIP {address.zip_code}")
            return None
        return BoundaryLookupResult(
            strategy=self.name,
            operator=match.operator,
            confidence=Confidence.LOW,
            warnings=["Using fallback ZIP-to-operator mapping"],
            metadata=FallbackMetadata(inferred_city=match.inferred_city, source=match.source),
        )


def build_strategies(config: Config, registry: OperatorRegistry,
                     esid_client: Optional[EsidClient] = None,
                     cache: Optional[TieredCache] = None) -> List[BoundaryStrategy]:
    """Instantiate the strategy chain in the configured order."""
    available: Dict[str, BoundaryStrategy] = {
        EsidStrategy.name: EsidStrategy(
            registry, esid_client, config.esid_high_threshold, config.esid_medium_threshold, cache
        ),
        Zip4BoundaryStrategy.name: Zip4BoundaryStrategy(registry),
        StreetBoundaryStrategy.name: StreetBoundaryStrategy(registry),
        MultiOperatorConfigStrategy.name: MultiOperatorConfigStrategy(registry),
        ZipFallbackStrategy.name: ZipFallbackStrategy(registry),
    }
    chain = []
    for name in config.strategy_order:
        if name not in available:
            raise ValueError(f"Unknown strategy '{name}' in strategy_order")
        chain.append(available[name])
    return chain
