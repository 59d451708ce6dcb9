"""Shared fixtures: engine/config wired to temporary cache and log files."""

import pytest

from territory_lookup.audit import ValidationLogStore
from territory_lookup.cache import FileTier, MemoryTier, SqliteTier, TieredCache
from territory_lookup.config import Config
from territory_lookup.engine import TerritoryEngine
from territory_lookup.models import RawAddress
from territory_lookup.registry import OperatorRegistry


@pytest.fixture
def config(tmp_path):
    return Config(
        cache_db=tmp_path / "cache.db",
        file_cache_dir=tmp_path / "static_cache",
        validation_log_db=tmp_path / "validation_log.db",
        batch_delay_ms=0,
    )


@pytest.fixture
def registry(config):
    return OperatorRegistry(config)


@pytest.fixture
def cache(config):
    c = TieredCache(config, tiers=[
        MemoryTier(config.memory_max_size),
        SqliteTier(config.cache_db),
        FileTier(config.file_cache_dir),
    ])
    yield c
    c.close()


@pytest.fixture
def engine(config, cache, registry):
    eng = TerritoryEngine(
        config,
        cache=cache,
        log_store=ValidationLogStore(config.validation_log_db),
        registry=registry,
    )
    yield eng
    eng.close()


@pytest.fixture
def addison():
    return RawAddress(street="1234 Belt Line Road", city="Addison", state="TX", zip_code="75001")


@pytest.fixture
def austin():
    return RawAddress(street="100 Congress Avenue", city="Austin", state="TX", zip_code="78701")
