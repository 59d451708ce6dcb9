"""Combine candidate results from several strategies into one answer.

Policies:
    highest_confidence  highest confidence weight (high=3, medium=2, low=1),
                        ties go to the first-seen candidate
    majority_vote       strict majority of sources decides "resolved" vs
                        "not resolved"; among the majority side pick by
                        highest_confidence
    latest_data         most recently observed result wins

Used by the engine's diagnostic resolve_all() and get_operator_options(),
never on the first-match-wins hot path.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Union

from .errors import ErrorCode
from .models import BoundaryLookupResult, TerritoryOperator

logger = logging.getLogger(__name__)


class ConflictPolicy(str, Enum):
    HIGHEST_CONFIDENCE = "highest_confidence"
    MAJORITY_VOTE = "majority_vote"
    LATEST_DATA = "latest_data"


@dataclass
class SourceOutcome:
    """What one strategy/source said: a result, or nothing (with a reason)."""
    source: str
    result: Optional[BoundaryLookupResult] = None
    error: Optional[str] = None
    observed_at: float = field(default_factory=time.time)

    @property
    def resolved(self) -> bool:
        return self.result is not None


@dataclass
class ConflictOutcome:
    policy: ConflictPolicy
    winner: Optional[BoundaryLookupResult] = None
    alternates: List[TerritoryOperator] = field(default_factory=list)
    agreeing_sources: List[str] = field(default_factory=list)
    disagreeing_sources: List[str] = field(default_factory=list)
    error_code: Optional[ErrorCode] = None

    @property
    def sources_agreed(self) -> bool:
        return not self.disagreeing_sources

    def to_dict(self) -> dict:
        return {
            "policy": self.policy.value,
            "winner": self.winner.strategy if self.winner else None,
            "operator": self.winner.operator.to_dict() if self.winner else None,
            "alternates": [op.to_dict() for op in self.alternates],
            "sources_agreed": self.sources_agreed,
            "agreeing_sources": self.agreeing_sources,
            "disagreeing_sources": self.disagreeing_sources,
            "error_code": self.error_code.value if self.error_code else None,
        }


def _as_outcome(item: Union[SourceOutcome, BoundaryLookupResult]) -> SourceOutcome:
    if isinstance(item, SourceOutcome):
        return item
    return SourceOutcome(source=item.strategy, result=item, observed_at=item.observed_at)


def _highest_confidence(outcomes: List[SourceOutcome]) -> Optional[SourceOutcome]:
    best = None
    for o in outcomes:
        if not o.resolved:
            continue
        # Strictly greater keeps the first-seen candidate on ties
        if best is None or o.result.confidence.weight > best.result.confidence.weight:
            best = o
    return best


def _latest(outcomes: List[SourceOutcome]) -> Optional[SourceOutcome]:
    best = None
    for o in outcomes:
        if not o.resolved:
            continue
        if best is None or o.observed_at > best.observed_at:
            best = o
    return best


def _majority(outcomes: List[SourceOutcome]) -> Optional[SourceOutcome]:
    resolved = [o for o in outcomes if o.resolved]
    unresolved = len(outcomes) - len(resolved)
    if unresolved * 2 > len(outcomes):
        logger.debug(f"Majority vote: {unresolved}/{len(outcomes)} sources unresolved")
        return None
    if len(resolved) * 2 > len(outcomes):
        return _highest_confidence(resolved)
    # No strict majority either way
    return _highest_confidence(outcomes)


def resolve(candidates: Sequence[Union[SourceOutcome, BoundaryLookupResult]],
            policy: Union[ConflictPolicy, str] = ConflictPolicy.HIGHEST_CONFIDENCE) -> ConflictOutcome:
    """
    Pick one winner from the candidates under the given policy.

    Returns a ConflictOutcome; when nothing can be chosen the outcome has no
    winner and error_code NO_SOURCES_AVAILABLE.
    """
    policy = ConflictPolicy(policy)
    outcomes = [_as_outcome(c) for c in candidates]

    if policy == ConflictPolicy.MAJORITY_VOTE:
        chosen = _majority(outcomes)
    elif policy == ConflictPolicy.LATEST_DATA:
        chosen = _latest(outcomes)
    else:
        chosen = _highest_confidence(outcomes)

    if chosen is None:
        return ConflictOutcome(policy=policy, error_code=ErrorCode.NO_SOURCES_AVAILABLE)

    winner = chosen.result
    winner_id = winner.operator.registry_number

    alternates: List[TerritoryOperator] = []
    seen = {winner_id}
    others = [o.result.operator for o in outcomes if o.resolved]
    for op in list(winner.alternates) + others:
        if op.registry_number in seen:
            continue
        seen.add(op.registry_number)
        alternates.append(op)

    agreeing = [o.source for o in outcomes if o.resolved and o.result.operator.registry_number == winner_id]
    disagreeing = [o.source for o in outcomes if o.resolved and o.result.operator.registry_number != winner_id]

    return ConflictOutcome(
        policy=policy,
        winner=winner,
        alternates=alternates,
        agreeing_sources=agreeing,
        disagreeing_sources=disagreeing,
    )
