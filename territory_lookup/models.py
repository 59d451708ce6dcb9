"""Data models for the territory lookup engine."""

import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def weight(self) -> int:
        return _CONFIDENCE_WEIGHTS[self]

    @property
    def score(self) -> float:
        """Suggestion score shown to users choosing between operators."""
        return _CONFIDENCE_SCORES[self]


_CONFIDENCE_WEIGHTS = {Confidence.HIGH: 3, Confidence.MEDIUM: 2, Confidence.LOW: 1}
_CONFIDENCE_SCORES = {Confidence.HIGH: 0.9, Confidence.MEDIUM: 0.7, Confidence.LOW: 0.4}


@dataclass(frozen=True)
class RawAddress:
    street: str
    city: str
    state: str
    zip_code: str
    zip4: Optional[str] = None
    unit: Optional[str] = None


@dataclass(frozen=True)
class NormalizedAddress:
    street_number: str
    street_name: str
    street_type: str
    city: str
    state: str
    zip_code: str
    zip4: Optional[str] = None
    unit_type: Optional[str] = None
    unit_number: Optional[str] = None
    full_address: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "NormalizedAddress":
        return cls(
            street_number=data.get("street_number", ""),
            street_name=data.get("street_name", ""),
            street_type=data.get("street_type", ""),
            city=data.get("city", ""),
            state=data.get("state", "TX"),
            zip_code=data.get("zip_code", ""),
            zip4=data.get("zip4"),
            unit_type=data.get("unit_type"),
            unit_number=data.get("unit_number"),
            full_address=data.get("full_address", ""),
        )


@dataclass(frozen=True)
class TerritoryOperator:
    key: str
    registry_number: str
    name: str
    zone: str
    tier: int = 3
    priority: float = 0.5

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "TerritoryOperator":
        return cls(
            key=data.get("key", ""),
            registry_number=str(data.get("registry_number", "")),
            name=data.get("name", ""),
            zone=data.get("zone", ""),
            tier=int(data.get("tier", 3)),
            priority=float(data.get("priority", 0.5)),
        )


# ---------------------------------------------------------------------------
# Strategy metadata, one shape per strategy
# ---------------------------------------------------------------------------
@dataclass
class StrategyMetadata:
    response_time_ms: int = 0


@dataclass
class EsidMetadata(StrategyMetadata):
    esid: str = ""
    external_confidence: float = 0.0


@dataclass
class Zip4Metadata(StrategyMetadata):
    zip4: str = ""
    boundary_source: str = "zip4-parity"


@dataclass
class StreetMetadata(StrategyMetadata):
    pattern: str = ""
    house_number: Optional[int] = None
    boundary_source: str = "street-rules"


@dataclass
class ConfigMetadata(StrategyMetadata):
    boundary_type: str = ""
    requires_address_validation: bool = False
    notes: str = ""


@dataclass
class FallbackMetadata(StrategyMetadata):
    inferred_city: Optional[str] = None
    source: str = "default"


METADATA_TYPES = {
    "esid-lookup": EsidMetadata,
    "zip4-boundary": Zip4Metadata,
    "street-boundary": StreetMetadata,
    "multi-operator-config": ConfigMetadata,
    "zip-fallback": FallbackMetadata,
}


def metadata_from_dict(strategy: str, data: Optional[dict]) -> StrategyMetadata:
    cls = METADATA_TYPES.get(strategy, StrategyMetadata)
    if not data:
        return cls()
    known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
    return cls(**known)


@dataclass
class BoundaryLookupResult:
    strategy: str
    operator: TerritoryOperator
    confidence: Confidence
    alternates: List[TerritoryOperator] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    metadata: StrategyMetadata = field(default_factory=StrategyMetadata)
    observed_at: float = field(default_factory=time.time)


@dataclass
class ResolutionResult:
    address: NormalizedAddress
    operator: TerritoryOperator
    confidence: Confidence
    strategy: str
    alternates: List[TerritoryOperator] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    metadata: StrategyMetadata = field(default_factory=StrategyMetadata)
    processing_time_ms: int = 0
    cache_hit: bool = False
    trace: List[str] = field(default_factory=list)
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())

    @classmethod
    def from_boundary(cls, address: NormalizedAddress, result: BoundaryLookupResult,
                      warnings: Optional[List[str]] = None) -> "ResolutionResult":
        return cls(
            address=address,
            operator=result.operator,
            confidence=result.confidence,
            strategy=result.strategy,
            alternates=list(result.alternates),
            warnings=list(warnings or []) + list(result.warnings),
            metadata=result.metadata,
        )

    def to_dict(self) -> dict:
        """Serialize to dict for JSON output and caching."""
        return {
            "address": self.address.to_dict(),
            "operator": self.operator.to_dict(),
            "confidence": self.confidence.value,
            "strategy": self.strategy,
            "alternates": [op.to_dict() for op in self.alternates],
            "warnings": list(self.warnings),
            "metadata": asdict(self.metadata),
            "processing_time_ms": self.processing_time_ms,
            "cache_hit": self.cache_hit,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResolutionResult":
        """Reconstruct a ResolutionResult from a cached dict."""
        strategy = data.get("strategy", "")
        return cls(
            address=NormalizedAddress.from_dict(data.get("address") or {}),
            operator=TerritoryOperator.from_dict(data.get("operator") or {}),
            confidence=Confidence(data.get("confidence", "low")),
            strategy=strategy,
            alternates=[TerritoryOperator.from_dict(d) for d in data.get("alternates", [])],
            warnings=list(data.get("warnings", [])),
            metadata=metadata_from_dict(strategy, data.get("metadata")),
            processing_time_ms=data.get("processing_time_ms", 0),
            cache_hit=data.get("cache_hit", False),
            timestamp=data.get("timestamp", ""),
        )


@dataclass
class CacheEntry:
    value: Any
    category: str
    ttl: float
    created_at: float = field(default_factory=time.time)
    access_count: int = 0
    last_accessed: float = 0.0

    def is_expired(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return now - self.created_at > self.ttl

    def touch(self, now: Optional[float] = None):
        self.access_count += 1
        self.last_accessed = time.time() if now is None else now


@dataclass
class ValidationLog:
    zip_code: str
    validation_type: str
    data_source: str
    is_valid: bool
    confidence: int = 0
    operator_id: Optional[str] = None
    operator_name: Optional[str] = None
    processing_time_ms: int = 0
    cache_hit: bool = False
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    validated_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())
