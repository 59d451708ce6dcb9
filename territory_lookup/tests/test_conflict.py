import pytest

from territory_lookup.conflict import ConflictPolicy, SourceOutcome, resolve
from territory_lookup.errors import ErrorCode
from territory_lookup.models import BoundaryLookupResult, Confidence, TerritoryOperator

ONCOR = TerritoryOperator("ONCOR", "1039940674000", "Oncor Electric Delivery", "North", 1, 1.0)
TNMP = TerritoryOperator("TNMP", "007929441", "Texas-New Mexico Power Company", "South", 2, 0.7)
AEP = TerritoryOperator("AEP_NORTH", "007923311", "AEP Texas North Company", "North", 2, 0.8)


def _result(strategy, operator, confidence, alternates=(), observed_at=0.0):
    return BoundaryLookupResult(
        strategy=strategy,
        operator=operator,
        confidence=confidence,
        alternates=list(alternates),
        observed_at=observed_at,
    )


def test_highest_confidence_wins():
    outcome = resolve([
        _result("zip-fallback", ONCOR, Confidence.LOW),
        _result("street-boundary", TNMP, Confidence.MEDIUM),
    ])
    assert outcome.winner.operator == TNMP
    assert outcome.alternates == [ONCOR]
    assert outcome.agreeing_sources == ["street-boundary"]
    assert outcome.disagreeing_sources == ["zip-fallback"]
    assert not outcome.sources_agreed


def test_highest_confidence_tie_keeps_first():
    outcome = resolve([
        _result("street-boundary", TNMP, Confidence.MEDIUM),
        _result("zip4-boundary", ONCOR, Confidence.MEDIUM),
    ])
    assert outcome.winner.strategy == "street-boundary"


def test_alternates_deduplicated_and_exclude_winner():
    outcome = resolve([
        _result("multi-operator-config", ONCOR, Confidence.LOW, alternates=[TNMP, ONCOR]),
        _result("zip-fallback", ONCOR, Confidence.LOW),
        _result("street-boundary", TNMP, Confidence.LOW),
    ])
    assert outcome.winner.operator == ONCOR
    assert outcome.alternates == [TNMP]
    assert outcome.agreeing_sources == ["multi-operator-config", "zip-fallback"]


def test_agreement():
    outcome = resolve([
        _result("esid-lookup", ONCOR, Confidence.HIGH),
        _result("zip-fallback", ONCOR, Confidence.LOW),
    ])
    assert outcome.sources_agreed
    assert outcome.alternates == []
    assert outcome.error_code is None


def test_latest_data():
    outcome = resolve([
        _result("esid-lookup", ONCOR, Confidence.HIGH, observed_at=100.0),
        _result("zip-fallback", AEP, Confidence.LOW, observed_at=200.0),
    ], ConflictPolicy.LATEST_DATA)
    assert outcome.winner.operator == AEP
    assert outcome.policy == ConflictPolicy.LATEST_DATA


def test_majority_unresolved_yields_no_winner():
    outcome = resolve([
        SourceOutcome("esid-lookup", error="timeout"),
        SourceOutcome("zip4-boundary"),
        _result("zip-fallback", ONCOR, Confidence.LOW),
    ], "majority_vote")
    assert outcome.winner is None
    assert outcome.error_code == ErrorCode.NO_SOURCES_AVAILABLE


def test_majority_resolved_picks_highest_confidence():
    outcome = resolve([
        SourceOutcome("esid-lookup"),
        _result("street-boundary", TNMP, Confidence.MEDIUM),
        _result("zip-fallback", ONCOR, Confidence.LOW),
    ], "majority_vote")
    assert outcome.winner.operator == TNMP


def test_majority_even_split_falls_back_to_confidence():
    outcome = resolve([
        SourceOutcome("esid-lookup"),
        _result("zip-fallback", ONCOR, Confidence.LOW),
    ], "majority_vote")
    assert outcome.winner.operator == ONCOR


@pytest.mark.parametrize("policy", list(ConflictPolicy))
def test_no_candidates(policy):
    outcome = resolve([], policy)
    assert outcome.winner is None
    assert outcome.error_code == ErrorCode.NO_SOURCES_AVAILABLE


def test_unknown_policy():
    with pytest.raises(ValueError):
        resolve([_result("zip-fallback", ONCOR, Confidence.LOW)], "coin_flip")


def test_to_dict():
    d = resolve([_result("zip-fallback", ONCOR, Confidence.LOW)]).to_dict()
    assert d["policy"] == "highest_confidence"
    assert d["winner"] == "zip-fallback"
    assert d["operator"]["name"] == "Oncor Electric Delivery"
    assert d["sources_agreed"] is True
    assert d["error_code"] is None
