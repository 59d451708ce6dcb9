import time
from unittest.mock import MagicMock

import pytest

from territory_lookup.config import Config
from territory_lookup.errors import ErrorCode, ExternalServiceError
from territory_lookup.esid_client import EsidMatch
from territory_lookup.models import Confidence, RawAddress
from territory_lookup.normalizer import normalize
from territory_lookup.strategies import (
    EsidStrategy,
    MultiOperatorConfigStrategy,
    StreetBoundaryStrategy,
    Zip4BoundaryStrategy,
    ZipFallbackStrategy,
    build_strategies,
)


def _addr(street, city, zip_code, zip4=None):
    return normalize(RawAddress(street=street, city=city, state="TX", zip_code=zip_code, zip4=zip4))


def _client(registry_number="1039940674000", confidence=0.95):
    client = MagicMock()
    client.available = True
    client.lookup.return_value = EsidMatch(
        esid="10443720001234567", registry_number=registry_number,
        confidence=confidence, response_time_ms=12,
    )
    return client


# ----------------------------------------------------------------------
# esid-lookup
# ----------------------------------------------------------------------
@pytest.mark.parametrize("score, expected", [
    (0.95, Confidence.HIGH),
    (0.8, Confidence.MEDIUM),
    (0.7, Confidence.LOW),
])
def test_esid_confidence_thresholds(registry, score, expected):
    strategy = EsidStrategy(registry, _client(confidence=score))
    result = strategy.attempt(_addr("1 Main St", "Dallas", "75201"))
    assert result.operator.key == "ONCOR"
    assert result.confidence == expected
    assert result.metadata.esid == "10443720001234567"
    assert result.metadata.response_time_ms == 12


def test_esid_declines_without_client(registry):
    assert EsidStrategy(registry, None).attempt(_addr("1 Main St", "Dallas", "75201")) is None


def test_esid_declines_when_circuit_open(registry):
    client = _client()
    client.available = False
    assert EsidStrategy(registry, client).attempt(_addr("1 Main St", "Dallas", "75201")) is None
    client.lookup.assert_not_called()


def test_esid_declines_without_street(registry):
    client = _client()
    assert EsidStrategy(registry, client).attempt(_addr("", "Dallas", "75201")) is None
    client.lookup.assert_not_called()


def test_esid_unknown_registry_number_raises(registry):
    strategy = EsidStrategy(registry, _client(registry_number="999"))
    with pytest.raises(ExternalServiceError) as exc:
        strategy.attempt(_addr("1 Main St", "Dallas", "75201"))
    assert exc.value.code == ErrorCode.EXTERNAL_SERVICE_ERROR


def test_esid_expired_deadline_raises_timeout(registry):
    client = _client()
    strategy = EsidStrategy(registry, client)
    with pytest.raises(ExternalServiceError) as exc:
        strategy.attempt(_addr("1 Main St", "Dallas", "75201"), deadline=time.monotonic() - 1)
    assert exc.value.code == ErrorCode.EXTERNAL_SERVICE_TIMEOUT
    client.lookup.assert_not_called()


def test_esid_passes_remaining_time(registry):
    client = _client()
    EsidStrategy(registry, client).attempt(_addr("1 Main St", "Dallas", "75201"),
                                           deadline=time.monotonic() + 2)
    timeout = client.lookup.call_args.kwargs["timeout"]
    assert 0 < timeout <= 2


# ----------------------------------------------------------------------
# zip4-boundary
# ----------------------------------------------------------------------
def test_zip4_high_digit_selects_alternate(registry):
    result = Zip4BoundaryStrategy(registry).attempt(_addr("1 Main St", "Irving", "75062", zip4="1237"))
    assert result.operator.key == "TNMP"
    assert [a.key for a in result.alternates] == ["ONCOR"]
    assert result.confidence == Confidence.MEDIUM
    assert "Using alternative operator based on ZIP+4 boundary" in result.warnings


def test_zip4_low_digit_selects_primary(registry):
    result = Zip4BoundaryStrategy(registry).attempt(_addr("1 Main St", "Houston", "77002", zip4="1235"))
    assert result.operator.key == "CENTERPOINT"
    assert [a.key for a in result.alternates] == ["TNMP"]
    assert result.warnings == []
    assert result.metadata.zip4 == "1235"


def test_zip4_declines_without_extension_or_zip4_boundary(registry):
    strategy = Zip4BoundaryStrategy(registry)
    assert strategy.attempt(_addr("1 Main St", "Irving", "75062")) is None
    # 75001 is a street-level boundary
    assert strategy.attempt(_addr("1 Main St", "Addison", "75001", zip4="9999")) is None


# ----------------------------------------------------------------------
# street-boundary
# ----------------------------------------------------------------------
def test_street_rule_match(registry):
    result = StreetBoundaryStrategy(registry).attempt(_addr("1234 Belt Line Road", "Addison", "75001"))
    assert result.operator.key == "TNMP"
    assert [a.key for a in result.alternates] == ["ONCOR"]
    assert result.confidence == Confidence.MEDIUM
    assert result.warnings == ["Using street-level boundary data"]
    assert result.metadata.house_number == 1234


def test_street_rule_no_match(registry):
    strategy = StreetBoundaryStrategy(registry)
    assert strategy.attempt(_addr("4500 Arapaho Road", "Addison", "75001")) is None
    # Configured street-level ZIP with no rules
    assert strategy.attempt(_addr("1234 Belt Line Road", "Coppell", "75019")) is None
    # Not a boundary ZIP at all
    assert strategy.attempt(_addr("1234 Belt Line Road", "Dallas", "75201")) is None


# ----------------------------------------------------------------------
# multi-operator-config
# ----------------------------------------------------------------------
def test_config_requires_validation_is_low(registry):
    result = MultiOperatorConfigStrategy(registry).attempt(_addr("4500 Arapaho Road", "Addison", "75001"))
    assert result.operator.key == "ONCOR"
    assert result.confidence == Confidence.LOW
    assert [a.key for a in result.alternates] == ["TNMP"]
    assert result.warnings == ["Address validation required for accurate operator determination"]
    assert result.metadata.boundary_type == "street-level"


def test_config_without_validation_is_medium(registry):
    result = MultiOperatorConfigStrategy(registry).attempt(_addr("1 Main St", "Houston", "77002"))
    assert result.operator.key == "CENTERPOINT"
    assert result.confidence == Confidence.MEDIUM
    assert result.warnings == ["Using configured primary operator for ZIP code"]


def test_config_declines_single_operator_zip(registry):
    assert MultiOperatorConfigStrategy(registry).attempt(_addr("1 Main St", "Dallas", "75201")) is None


# ----------------------------------------------------------------------
# zip-fallback
# ----------------------------------------------------------------------
def test_fallback_uses_inferred_city(registry):
    result = ZipFallbackStrategy(registry).attempt(_addr("100 Congress Avenue", "Austin", "78701"))
    assert result.operator.key == "AEP_CENTRAL"
    assert result.confidence == Confidence.LOW
    assert result.alternates == []
    assert result.warnings == ["Using fallback ZIP-to-operator mapping"]
    assert result.metadata.inferred_city == "austin"


# ----------------------------------------------------------------------
# chain construction
# ----------------------------------------------------------------------
def test_build_strategies_default_order(registry):
    chain = build_strategies(Config(), registry)
    assert [s.name for s in chain] == [
        "esid-lookup", "zip4-boundary", "street-boundary", "multi-operator-config", "zip-fallback",
    ]


def test_build_strategies_custom_order(registry):
    chain = build_strategies(Config(strategy_order=["zip-fallback"]), registry)
    assert [s.name for s in chain] == ["zip-fallback"]


def test_build_strategies_unknown_name(registry):
    with pytest.raises(ValueError):
        build_strategies(Config(strategy_order=["geocode"]), registry)
