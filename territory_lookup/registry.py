"""Operator registry and static boundary configuration.

Loads, once at startup, the JSON files under data/:
    operators.json           -> operator key -> registry number, name, zone, tier, priority
    multi_operator_zips.json -> ZIP -> primary/alternates, boundary granularity
    street_rules.json        -> ZIP -> street pattern + house-number range rules
    zip_fallback.json        -> numeric ZIP ranges -> city -> operator

Read-only after construction.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .config import Config
from .models import TerritoryOperator

logger = logging.getLogger(__name__)

BOUNDARY_TYPES = ("street-level", "block-level", "zip4-level")


@dataclass(frozen=True)
class MultiOperatorConfig:
    zip_code: str
    primary: TerritoryOperator
    alternates: Tuple[TerritoryOperator, ...]
    requires_address_validation: bool
    boundary_type: str
    notes: str = ""


@dataclass(frozen=True)
class StreetRule:
    operator: TerritoryOperator
    pattern: "re.Pattern"
    min_number: int = 1
    max_number: int = 99999
    parity: Optional[str] = None  # "odd", "even" or None

    def matches(self, street: str, house_number: Optional[int]) -> bool:
        if not self.pattern.search(street):
            return False
        if house_number is None:
            return False
        if not self.min_number <= house_number <= self.max_number:
            return False
        if self.parity == "odd" and house_number % 2 == 0:
            return False
        if self.parity == "even" and house_number % 2 == 1:
            return False
        return True


@dataclass
class FallbackMatch:
    operator: TerritoryOperator
    inferred_city: Optional[str] = None
    source: str = "default"


@dataclass
class ConfigValidation:
    is_valid: bool
    issues: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"is_valid": self.is_valid, "issues": self.issues, "recommendations": self.recommendations}


def _load_json(path: Path, default):
    if not path.exists():
        logger.warning(f"Registry: {path.name} not found, using empty config")
        return default
    with open(path) as f:
        return json.load(f)


class OperatorRegistry:
    """In-memory view of the static territory configuration."""

    def __init__(self, config: Optional[Config] = None):
        config = config or Config()
        self._operators: Dict[str, TerritoryOperator] = {}
        self._multi: Dict[str, MultiOperatorConfig] = {}
        self._street_rules: Dict[str, List[StreetRule]] = {}
        self._city_ranges: List[Tuple[int, int, str]] = []
        self._city_operators: Dict[str, str] = {}
        self._range_operators: List[Tuple[int, int, str]] = []
        self._default_operator: Optional[str] = None
        # Problems found while loading, reported by validate_configuration()
        self._load_issues: List[str] = []

        self._load_operators(_load_json(config.operators_file, {}))
        self._load_multi(_load_json(config.multi_operator_file, {}))
        self._load_street_rules(_load_json(config.street_rules_file, {}))
        self._load_fallback(_load_json(config.zip_fallback_file, {}))

        logger.info(
            f"Registry: {len(self._operators)} operators, "
            f"{len(self._multi)} multi-operator ZIPs, "
            f"{len(self._street_rules)} ZIPs with street rules"
        )

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    def _load_operators(self, data: dict):
        for key, d in data.items():
            self._operators[key] = TerritoryOperator.from_dict({**d, "key": key})

    def _resolve_keys(self, zip_code: str, keys) -> List[TerritoryOperator]:
        ops = []
        for key in keys:
            op = self._operators.get(key)
            if op is None:
                self._load_issues.append(f"ZIP {zip_code}: unknown operator '{key}'")
                continue
            ops.append(op)
        return ops

    def _load_multi(self, data: dict):
        for zip_code, d in data.items():
            primary = self._operators.get(d.get("primary", ""))
            if primary is None:
                self._load_issues.append(f"ZIP {zip_code}: unknown primary operator '{d.get('primary')}'")
                continue
            boundary_type = d.get("boundary_type", "")
            if boundary_type not in BOUNDARY_TYPES:
                self._load_issues.append(f"ZIP {zip_code}: unknown boundary type '{boundary_type}'")
            self._multi[zip_code] = MultiOperatorConfig(
                zip_code=zip_code,
                primary=primary,
                alternates=tuple(self._resolve_keys(zip_code, d.get("alternates", []))),
                requires_address_validation=bool(d.get("requires_address_validation", False)),
                boundary_type=boundary_type,
                notes=d.get("notes", ""),
            )

    def _load_street_rules(self, data: dict):
        for zip_code, rules in data.items():
            parsed = []
            for r in rules:
                op = self._operators.get(r.get("operator", ""))
                if op is None:
                    self._load_issues.append(f"ZIP {zip_code}: street rule for unknown operator '{r.get('operator')}'")
                    continue
                try:
                    pattern = re.compile(r["pattern"], re.IGNORECASE)
                except (KeyError, re.error) as e:
                    self._load_issues.append(f"ZIP {zip_code}: bad street pattern ({e})")
                    continue
                parsed.append(StreetRule(
                    operator=op,
                    pattern=pattern,
                    min_number=int(r.get("min", 1)),
                    max_number=int(r.get("max", 99999)),
                    parity=r.get("parity"),
                ))
            if parsed:
                self._street_rules[zip_code] = parsed

    def _load_fallback(self, data: dict):
        self._city_ranges = [(r["start"], r["end"], r["city"]) for r in data.get("city_ranges", [])]
        self._city_operators = dict(data.get("city_operators", {}))
        self._range_operators = [(r["start"], r["end"], r["operator"]) for r in data.get("range_operators", [])]
        self._default_operator = data.get("default_operator")

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def operator(self, key: str) -> Optional[TerritoryOperator]:
        return self._operators.get(key)

    def by_registry_number(self, registry_number: str) -> Optional[TerritoryOperator]:
        for op in self._operators.values():
            if op.registry_number == registry_number:
                return op
        return None

    @property
    def operators(self) -> List[TerritoryOperator]:
        return list(self._operators.values())

    def multi_operator_config(self, zip_code: str) -> Optional[MultiOperatorConfig]:
        return self._multi.get(zip_code)

    def multi_operator_zips(self) -> List[str]:
        return sorted(self._multi)

    def street_rules(self, zip_code: str) -> List[StreetRule]:
        return self._street_rules.get(zip_code, [])

    def infer_city(self, zip_code: str) -> Optional[str]:
        value = _zip_int(zip_code)
        if value is None:
            return None
        for lo, hi, city in self._city_ranges:
            if lo <= value <= hi:
                return city
        return None

    def fallback_operator(self, zip_code: str) -> Optional[FallbackMatch]:
        """City inference first, then the ZIP range table, then the configured default."""
        city = self.infer_city(zip_code)
        if city and city in self._city_operators:
            op = self._operators.get(self._city_operators[city])
            if op:
                return FallbackMatch(operator=op, inferred_city=city, source="city")

        value = _zip_int(zip_code)
        if value is not None:
            for lo, hi, key in self._range_operators:
                if lo <= value <= hi and key in self._operators:
                    return FallbackMatch(operator=self._operators[key], inferred_city=city, source="range")

        if self._default_operator and self._default_operator in self._operators:
            return FallbackMatch(operator=self._operators[self._default_operator], inferred_city=city)
        return None

    def stats(self) -> dict:
        configs = list(self._multi.values())
        by_type = {bt: sum(1 for c in configs if c.boundary_type == bt) for bt in BOUNDARY_TYPES}
        zips = list(self._multi)
        return {
            "total_zip_codes": len(configs),
            "by_boundary_type": by_type,
            "by_metro_area": {
                "dallas_fort_worth": sum(1 for z in zips if z.startswith(("75", "76"))),
                "houston": sum(1 for z in zips if z.startswith("77")),
                "austin": sum(1 for z in zips if z.startswith(("786", "787"))),
                "san_antonio": sum(1 for z in zips if z.startswith("782")),
            },
            "requires_validation": sum(1 for c in configs if c.requires_address_validation),
            "operators": len(self._operators),
        }

    def validate_configuration(self) -> ConfigValidation:
        issues = list(self._load_issues)
        recommendations = []

        if not self._operators:
            issues.append("Operator registry is empty")
        if not self._multi:
            recommendations.append("No multi-operator ZIP codes configured")

        for zip_code, cfg in self._multi.items():
            alt_ids = [a.registry_number for a in cfg.alternates]
            if cfg.primary.registry_number in alt_ids:
                issues.append(f"ZIP {zip_code}: primary operator listed as alternate")
            if not cfg.alternates:
                issues.append(f"ZIP {zip_code}: multi-operator ZIP has no alternates")
            if cfg.boundary_type == "street-level" and zip_code not in self._street_rules:
                recommendations.append(f"ZIP {zip_code}: street-level boundary without street rules")

        if self._default_operator is None and not self._range_operators:
            issues.append("No postal-code fallback data configured")

        if len(self._multi) > 50:
            recommendations.append("Consider implementing a caching strategy for multi-operator ZIP lookups")

        return ConfigValidation(is_valid=not issues, issues=issues, recommendations=recommendations)


def _zip_int(zip_code: str) -> Optional[int]:
    zip_code = (zip_code or "").strip()[:5]
    if len(zip_code) != 5 or not (zip_code.isascii() and zip_code.isdigit()):
        return None
    return int(zip_code)
