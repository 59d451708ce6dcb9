"""Configuration for the territory lookup engine."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


_ROOT = Path(__file__).parent.parent

HOUR = 3600
DAY = 24 * HOUR

# Category -> TTL (seconds)
DEFAULT_TTLS = {
    "zip_analysis": DAY,
    "address_validation": 7 * DAY,
    "territory_resolution": HOUR,
    "boundary_data": 30 * DAY,
    "esid_lookup": 30 * DAY,
    "multi_operator_config": DAY,
}

# Only these categories are written to / read from the static file tier
FILE_CACHE_CATEGORIES = ("boundary_data", "multi_operator_config")

STRATEGY_ORDER = [
    "esid-lookup",
    "zip4-boundary",
    "street-boundary",
    "multi-operator-config",
    "zip-fallback",
]


@dataclass
class Config:
    # Static configuration data
    operators_file: Path = _ROOT / "data" / "operators.json"
    multi_operator_file: Path = _ROOT / "data" / "multi_operator_zips.json"
    street_rules_file: Path = _ROOT / "data" / "street_rules.json"
    zip_fallback_file: Path = _ROOT / "data" / "zip_fallback.json"

    # Cache tiers
    cache_db: Path = _ROOT / "data" / "territory_cache.db"
    file_cache_dir: Path = _ROOT / "data" / "static_cache"
    redis_url: str = ""
    memory_max_size: int = 1000
    sweep_interval_s: float = 300.0
    ttls: dict = field(default_factory=lambda: dict(DEFAULT_TTLS))

    # Audit log
    validation_log_db: Path = _ROOT / "data" / "validation_log.db"

    # External registry (ESID) lookup, skipped when url is empty
    esid_api_url: str = ""
    esid_api_key: str = ""
    esid_high_threshold: float = 0.9
    esid_medium_threshold: float = 0.7

    # Address verification (standardization + ZIP+4), skipped when url is empty
    address_api_url: str = ""
    address_api_key: str = ""

    # Strategy chain
    strategy_order: list = field(default_factory=lambda: list(STRATEGY_ORDER))
    strategy_timeout_s: float = 5.0
    conflict_policy: str = "highest_confidence"

    # Bulk resolution
    batch_size: int = 10
    batch_delay_ms: int = 100

    def ttl_for(self, category: str) -> int:
        return self.ttls.get(category, self.ttls.get("territory_resolution", HOUR))

    @classmethod
    def from_env(cls, env: Optional[dict] = None) -> "Config":
        """Build a Config with environment overrides applied."""
        env = os.environ if env is None else env
        config = cls()
        config.esid_api_url = env.get("ESID_API_URL", config.esid_api_url)
        config.esid_api_key = env.get("ESID_API_KEY", config.esid_api_key)
        config.address_api_url = env.get("ADDRESS_API_URL", config.address_api_url)
        config.address_api_key = env.get("ADDRESS_API_KEY", config.address_api_key)
        config.redis_url = env.get("REDIS_URL", config.redis_url)
        if env.get("TERRITORY_CACHE_DB"):
            config.cache_db = Path(env["TERRITORY_CACHE_DB"])
        if env.get("TERRITORY_MEMORY_MAX"):
            config.memory_max_size = int(env["TERRITORY_MEMORY_MAX"])
        if env.get("TERRITORY_STRATEGY_TIMEOUT"):
            config.strategy_timeout_s = float(env["TERRITORY_STRATEGY_TIMEOUT"])
        if env.get("TERRITORY_BATCH_SIZE"):
            config.batch_size = int(env["TERRITORY_BATCH_SIZE"])
        return config
