"""TerritoryEngine: orchestrates validation, normalization, caching and the strategy chain."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

from . import conflict
from .address_client import AddressMatch, AddressVerificationClient
from .audit import ValidationLogStore
from .cache import TieredCache, address_key, postal_key
from .config import Config
from .errors import ErrorCode, ExternalServiceError, ResolutionError
from .esid_client import EsidClient
from .models import (
    Confidence,
    NormalizedAddress,
    RawAddress,
    ResolutionResult,
    TerritoryOperator,
    ValidationLog,
)
from .normalizer import normalize, parse_address_line
from .registry import OperatorRegistry
from .strategies import BoundaryStrategy, build_strategies
from .validator import POPULAR_POSTAL_CODES, validate_address, validate_postal_code

logger = logging.getLogger(__name__)

AddressInput = Union[RawAddress, str]

_RESULT_PREFIX = "territory"
_ANALYSIS_PREFIX = "zip_analysis"
_BOUNDARY_PREFIX = "boundary_data"
_ADDRESS_PREFIX = "address"

_HELP_MANUAL = ("Your address is in a boundary area between utility service territories. "
                "Please select your utility provider:")
_HELP_RECOMMENDED = "Based on your address, we recommend the following utility provider:"


@dataclass
class PostalAnalysis:
    zip_code: str
    is_multi_operator: bool
    requires_address_validation: bool
    operator_candidates: List[TerritoryOperator] = field(default_factory=list)
    boundary_type: Optional[str] = None
    recommended_action: str = "collect-address"
    explanation: str = ""
    inferred_city: Optional[str] = None

    @property
    def primary(self) -> Optional[TerritoryOperator]:
        return self.operator_candidates[0] if self.operator_candidates else None

    def to_dict(self) -> dict:
        return {
            "zip_code": self.zip_code,
            "is_multi_operator": self.is_multi_operator,
            "requires_address_validation": self.requires_address_validation,
            "operator_candidates": [op.to_dict() for op in self.operator_candidates],
            "boundary_type": self.boundary_type,
            "recommended_action": self.recommended_action,
            "explanation": self.explanation,
            "inferred_city": self.inferred_city,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PostalAnalysis":
        return cls(
            zip_code=data["zip_code"],
            is_multi_operator=data["is_multi_operator"],
            requires_address_validation=data["requires_address_validation"],
            operator_candidates=[TerritoryOperator.from_dict(d) for d in data.get("operator_candidates", [])],
            boundary_type=data.get("boundary_type"),
            recommended_action=data.get("recommended_action", "collect-address"),
            explanation=data.get("explanation", ""),
            inferred_city=data.get("inferred_city"),
        )


@dataclass
class OperatorOption:
    operator: TerritoryOperator
    confidence: float
    reason: str
    recommended: bool = False

    def to_dict(self) -> dict:
        return {
            "operator": self.operator.to_dict(),
            "confidence": self.confidence,
            "reason": self.reason,
            "recommended": self.recommended,
        }


@dataclass
class OperatorOptions:
    options: List[OperatorOption]
    help_text: str
    requires_manual_selection: bool

    def to_dict(self) -> dict:
        return {
            "options": [o.to_dict() for o in self.options],
            "help_text": self.help_text,
            "requires_manual_selection": self.requires_manual_selection,
        }


@dataclass
class CandidateReport:
    """Every strategy's answer plus the conflict-resolved winner."""
    result: ResolutionResult
    outcomes: List[conflict.SourceOutcome]
    conflict: conflict.ConflictOutcome

    def to_dict(self) -> dict:
        return {
            "result": self.result.to_dict(),
            "candidates": [
                {
                    "source": o.source,
                    "operator": o.result.operator.to_dict() if o.result else None,
                    "confidence": o.result.confidence.value if o.result else None,
                    "error": o.error,
                }
                for o in self.outcomes
            ],
            "conflict": self.conflict.to_dict(),
        }


class TerritoryEngine:
    """
    Address -> territory operator resolution engine.

    Flow per request:
        validating -> normalizing -> cache-check -> strategy-chain
        -> conflict-resolution -> cache-populate -> done
    Any terminal failure raises ResolutionError with a code and suggestions.
    """

    def __init__(self, config: Optional[Config] = None,
                 cache: Optional[TieredCache] = None,
                 log_store: Optional[ValidationLogStore] = None,
                 registry: Optional[OperatorRegistry] = None,
                 esid_client: Optional[EsidClient] = None,
                 address_client: Optional[AddressVerificationClient] = None):
        self.config = config or Config()

        logger.info("Initializing TerritoryEngine...")
        t0 = time.time()

        self.registry = registry or OperatorRegistry(self.config)
        self.cache = cache or TieredCache(self.config)

        # Priority 1 needs a configured registry endpoint
        if esid_client is None and self.config.esid_api_url:
            esid_client = EsidClient(
                self.config.esid_api_url,
                self.config.esid_api_key,
                timeout=self.config.strategy_timeout_s,
            )
        self.esid_client = esid_client
        if address_client is None and self.config.address_api_url:
            address_client = AddressVerificationClient(
                self.config.address_api_url,
                self.config.address_api_key,
                timeout=self.config.strategy_timeout_s,
            )
        self.address_client = address_client
        self.strategies: List[BoundaryStrategy] = build_strategies(
            self.config, self.registry, esid_client, self.cache
        )

        self.log_store = log_store or ValidationLogStore(self.config.validation_log_db)
        self._pool = ThreadPoolExecutor(max_workers=max(self.config.batch_size, len(self.strategies)),
                                        thread_name_prefix="resolve")

        elapsed = time.time() - t0
        logger.info(
            f"TerritoryEngine ready in {elapsed:.2f}s, "
            f"strategies={[s.name for s in self.strategies]}, "
            f"esid={'on' if esid_client else 'off'}, "
            f"address_verification={'on' if address_client else 'off'}"
        )

    # ------------------------------------------------------------------
    # Single resolution
    # ------------------------------------------------------------------
    def resolve(self, address: AddressInput, use_cache: bool = True,
                deadline: Optional[float] = None) -> ResolutionResult:
        """
        Resolve the territory operator for one address.

        Args:
            address: RawAddress or a one-line "street, city, TX zip" string
            use_cache: read from the cache before running strategies
            deadline: absolute time.monotonic() bound for network strategies

        Raises:
            ResolutionError for format/region failures and ALL_STRATEGIES_FAILED.
        """
        t0 = time.time()
        trace = ["validating"]
        raw = parse_address_line(address) if isinstance(address, str) else address

        try:
            raw = validate_address(raw)
        except ResolutionError as e:
            trace.append("error")
            logger.debug(f"Validation failed for '{address}': {e.code.value}")
            self._log(raw.zip_code, "address", "validator", t0, error=e)
            raise

        trace.append("normalizing")
        normalized, notes = self._standardize(raw, deadline)

        trace.append("cache-check")
        key = address_key(_RESULT_PREFIX, normalized)
        if use_cache:
            found = self.cache.lookup(key, "territory_resolution")
            if found:
                value, tier = found
                result = ResolutionResult.from_dict(value)
                result.cache_hit = True
                result.processing_time_ms = int((time.time() - t0) * 1000)
                result.trace = trace + ["done"]
                logger.debug(f"Cache hit ({tier}) for '{normalized.full_address}' ({result.processing_time_ms}ms)")
                self._log(normalized.zip_code, "address", result.strategy, t0, result=result)
                return result

        trace.append("strategy-chain")
        boundary, warnings = self._run_chain(normalized, deadline)
        if boundary is None:
            trace.append("error")
            err = ResolutionError(
                ErrorCode.ALL_STRATEGIES_FAILED,
                f"Unable to determine the utility provider for ZIP {normalized.zip_code}",
                list(POPULAR_POSTAL_CODES),
            )
            logger.error(f"All strategies failed for '{normalized.full_address}'")
            self._log(normalized.zip_code, "address", "none", t0, error=err)
            raise err

        # First-match mode: a single candidate passes straight through
        trace.append("conflict-resolution")
        result = ResolutionResult.from_boundary(normalized, boundary, notes + warnings)

        trace.append("cache-populate")
        result.processing_time_ms = int((time.time() - t0) * 1000)
        self.cache.set(key, result.to_dict(), "territory_resolution")

        trace.append("done")
        result.trace = trace
        logger.info(
            f"Resolve '{normalized.full_address}' -> {result.operator.name} "
            f"({result.confidence.value}, {result.strategy}, {result.processing_time_ms}ms)"
        )
        self._log(normalized.zip_code, "address", result.strategy, t0, result=result)
        return result

    def _standardize(self, raw: RawAddress, deadline: Optional[float]) -> Tuple[NormalizedAddress, List[str]]:
        """
        Normalize, through the address verification service when configured.

        Verified addresses (with ZIP+4) are cached under address_validation.
        Any verification failure falls back to local normalization with a
        warning; it never fails the request.
        """
        normalized = normalize(raw)
        if self.address_client is None:
            return normalized, []

        key = address_key(_ADDRESS_PREFIX, normalized)
        cached = self.cache.get(key, "address_validation")
        if cached:
            match = AddressMatch.from_dict(cached)
        else:
            if not self.address_client.available:
                return normalized, ["Address verification unavailable, using local normalization"]
            timeout = None
            if deadline is not None:
                timeout = deadline - time.monotonic()
                if timeout <= 0:
                    return normalized, ["Address verification skipped: deadline passed"]
            try:
                match = self.address_client.verify(raw, timeout=timeout)
            except ExternalServiceError as e:
                logger.warning(f"Address verification failed for ZIP {normalized.zip_code}: {e}")
                return normalized, [f"Address verification failed: {e}"]
            if match is None:
                return normalized, ["Address not found by verification service"]
            self.cache.set(key, match.to_dict(), "address_validation")

        try:
            verified = validate_address(match.address)
        except ResolutionError as e:
            logger.warning(f"Verified address rejected for ZIP {normalized.zip_code}: {e.code.value}")
            return normalized, [f"Verified address rejected: {e.message}"]
        return normalize(verified), []

    def _run_chain(self, address: NormalizedAddress, deadline: Optional[float]):
        """First strategy to return a result wins. Failed strategies add a warning."""
        warnings: List[str] = []
        for strategy in self.strategies:
            t0 = time.time()
            try:
                result = strategy.attempt(address, deadline)
            except ExternalServiceError as e:
                logger.warning(f"Strategy {strategy.name} failed for ZIP {address.zip_code}: {e}")
                warnings.append(f"Resolution strategy failed: {e}")
                continue
            if result is not None:
                if not result.metadata.response_time_ms:
                    result.metadata.response_time_ms = int((time.time() - t0) * 1000)
                return result, warnings
        return None, warnings

    def _resolve_safe(self, address: AddressInput, use_cache: bool):
        try:
            return self.resolve(address, use_cache=use_cache)
        except ResolutionError as e:
            return e

    # ------------------------------------------------------------------
    # Bulk resolution
    # ------------------------------------------------------------------
    def resolve_bulk(self, addresses: List[AddressInput], batch_size: Optional[int] = None,
                     use_cache: bool = True) -> List[Union[ResolutionResult, ResolutionError]]:
        """
        Resolve many addresses, one output per input in input order.

        Addresses run concurrently within a batch; batches are separated by a
        short delay to respect external rate limits. A failed address yields
        its ResolutionError in place of a result.
        """
        batch_size = batch_size or self.config.batch_size
        delay = self.config.batch_delay_ms / 1000
        results: List[Union[ResolutionResult, ResolutionError]] = []
        total = len(addresses)

        for start in range(0, total, batch_size):
            batch = addresses[start:start + batch_size]
            futures = [self._pool.submit(self._resolve_safe, a, use_cache) for a in batch]
            results.extend(f.result() for f in futures)
            logger.info(f"Bulk progress: {len(results)}/{total}")
            if delay > 0 and start + batch_size < total:
                time.sleep(delay)

        return results

    # ------------------------------------------------------------------
    # Diagnostic: every strategy, then the conflict resolver
    # ------------------------------------------------------------------
    def resolve_all(self, address: AddressInput,
                    policy: Optional[Union[conflict.ConflictPolicy, str]] = None,
                    deadline: Optional[float] = None) -> CandidateReport:
        """Run all strategies concurrently (no short-circuit) and resolve conflicts."""
        t0 = time.time()
        raw = parse_address_line(address) if isinstance(address, str) else address
        try:
            raw = validate_address(raw)
        except ResolutionError as e:
            self._log(raw.zip_code, "address", "validator", t0, error=e)
            raise
        normalized, notes = self._standardize(raw, deadline)
        policy = policy or self.config.conflict_policy

        futures = [(s, self._pool.submit(s.attempt, normalized, deadline)) for s in self.strategies]
        outcomes: List[conflict.SourceOutcome] = []
        for strategy, future in futures:
            try:
                result = future.result()
            except ExternalServiceError as e:
                logger.warning(f"Strategy {strategy.name} failed for ZIP {normalized.zip_code}: {e}")
                outcomes.append(conflict.SourceOutcome(source=strategy.name, error=str(e)))
                continue
            outcomes.append(conflict.SourceOutcome(
                source=strategy.name,
                result=result,
                observed_at=result.observed_at if result else time.time(),
            ))

        outcome = conflict.resolve(outcomes, policy)
        if outcome.winner is None:
            err = ResolutionError(
                outcome.error_code,
                f"No source could resolve an operator for ZIP {normalized.zip_code}",
                list(POPULAR_POSTAL_CODES),
            )
            self._log(normalized.zip_code, "address", "none", t0, error=err)
            raise err

        result = ResolutionResult.from_boundary(normalized, outcome.winner, notes)
        result.alternates = list(outcome.alternates)
        result.processing_time_ms = int((time.time() - t0) * 1000)
        if not outcome.sources_agreed:
            result.warnings.append(
                f"Sources disagree: {', '.join(outcome.disagreeing_sources)} "
                f"differ from {outcome.winner.strategy}"
            )
        logger.debug(
            f"resolve_all '{normalized.full_address}' -> {result.operator.name} "
            f"(policy={outcome.policy.value}, agreed={outcome.sources_agreed})"
        )
        self._log(normalized.zip_code, "address", result.strategy, t0, result=result)
        return CandidateReport(result=result, outcomes=outcomes, conflict=outcome)

    # ------------------------------------------------------------------
    # Postal-code-only pre-check
    # ------------------------------------------------------------------
    def analyze_postal_code(self, zip_code: str, use_cache: bool = True) -> PostalAnalysis:
        """Decide from the ZIP alone whether a full street address is needed."""
        t0 = time.time()
        validation = validate_postal_code(zip_code)
        if not validation.is_valid:
            err = validation.to_error()
            self._log(validation.zip_code or (zip_code or ""), "zip", "validator", t0, error=err)
            raise err
        zip_code = validation.zip_code

        key = postal_key(_ANALYSIS_PREFIX, zip_code)
        if use_cache:
            cached = self.cache.get(key)
            if cached:
                return PostalAnalysis.from_dict(cached)

        cfg = self.registry.multi_operator_config(zip_code)
        if cfg is not None:
            analysis = PostalAnalysis(
                zip_code=zip_code,
                is_multi_operator=True,
                requires_address_validation=cfg.requires_address_validation,
                operator_candidates=[cfg.primary] + list(cfg.alternates),
                boundary_type=cfg.boundary_type,
                recommended_action="collect-address" if cfg.requires_address_validation else "show-options",
                explanation=cfg.notes or f"ZIP code {zip_code} spans multiple utility service areas",
                inferred_city=self.registry.infer_city(zip_code),
            )
            category = "multi_operator_config"
        else:
            match = self.registry.fallback_operator(zip_code)
            analysis = PostalAnalysis(
                zip_code=zip_code,
                is_multi_operator=False,
                requires_address_validation=False,
                operator_candidates=[match.operator] if match else [],
                recommended_action="proceed-with-primary" if match else "collect-address",
                explanation=(
                    f"ZIP code {zip_code} is served by {match.operator.name}" if match
                    else f"ZIP code {zip_code} requires address validation for service area determination"
                ),
                inferred_city=match.inferred_city if match else None,
            )
            category = "zip_analysis"

        self.cache.set(key, analysis.to_dict(), category)
        self._log(zip_code, "zip", "multi-operator-config" if cfg else "zip-fallback", t0,
                  operator=analysis.primary, is_valid=True)
        return analysis

    def boundary_data(self, zip_code: str, use_cache: bool = True) -> dict:
        """
        Boundary definition for one ZIP: candidate operators, boundary type and
        the street rules that split it. Cached under boundary_data (30 days,
        file-tier eligible).
        """
        validation = validate_postal_code(zip_code)
        if not validation.is_valid:
            raise validation.to_error()
        zip_code = validation.zip_code

        key = postal_key(_BOUNDARY_PREFIX, zip_code)
        if use_cache:
            cached = self.cache.get(key, "boundary_data")
            if cached:
                return cached

        cfg = self.registry.multi_operator_config(zip_code)
        if cfg is not None:
            data = {
                "zip_code": zip_code,
                "is_multi_operator": True,
                "boundary_type": cfg.boundary_type,
                "primary": cfg.primary.to_dict(),
                "alternates": [op.to_dict() for op in cfg.alternates],
                "street_rules": [
                    {
                        "operator": rule.operator.key,
                        "pattern": rule.pattern.pattern,
                        "min_number": rule.min_number,
                        "max_number": rule.max_number,
                        "parity": rule.parity,
                    }
                    for rule in self.registry.street_rules(zip_code)
                ],
            }
        else:
            match = self.registry.fallback_operator(zip_code)
            data = {
                "zip_code": zip_code,
                "is_multi_operator": False,
                "boundary_type": None,
                "primary": match.operator.to_dict() if match else None,
                "alternates": [],
                "street_rules": [],
            }

        self.cache.set(key, data, "boundary_data")
        return data

    # ------------------------------------------------------------------
    # Human disambiguation
    # ------------------------------------------------------------------
    def get_operator_options(self, address: AddressInput) -> OperatorOptions:
        """Ranked operator choices for an ambiguous address; the first is recommended."""
        result = self.resolve(address)

        options = [OperatorOption(
            operator=result.operator,
            confidence=result.confidence.score,
            reason=f"Primary operator determined by {result.strategy}",
        )]
        options.extend(
            OperatorOption(operator=op, confidence=0.3, reason="Alternative operator for boundary area")
            for op in result.alternates
        )
        options.sort(key=lambda o: o.confidence, reverse=True)
        if options:
            options[0].recommended = True

        manual = result.confidence == Confidence.LOW and bool(result.alternates)
        return OperatorOptions(
            options=options,
            help_text=_HELP_MANUAL if manual else _HELP_RECOMMENDED,
            requires_manual_selection=manual,
        )

    def progressive_steps(self, zip_code: Optional[str] = None,
                          address: Optional[AddressInput] = None) -> List[dict]:
        """UI steps for the ZIP -> address -> operator flow."""
        steps = [{
            "step": "zip-input",
            "title": "Enter ZIP Code",
            "description": "Provide your ZIP code to begin service area determination",
            "required": True,
            "completed": bool(zip_code),
        }]
        if zip_code:
            cfg = self.registry.multi_operator_config(zip_code)
            needs_address = bool(cfg and cfg.requires_address_validation)
            steps.append({
                "step": "address-collection",
                "title": "Complete Address Required" if needs_address else "Address Details (Optional)",
                "description": (
                    "Your ZIP code spans multiple utility areas. Full address required for "
                    "accurate service determination." if needs_address
                    else "Providing your full address ensures the most accurate rate comparison."
                ),
                "required": needs_address,
                "completed": address is not None,
            })
        if address is not None:
            try:
                result = self.resolve(address)
            except ResolutionError as e:
                steps.append({
                    "step": "operator-determination",
                    "title": "Service Area Determination Failed",
                    "description": "Unable to determine utility service provider",
                    "required": True,
                    "completed": False,
                    "error": e.to_dict(),
                })
            else:
                steps.append({
                    "step": "operator-determination",
                    "title": "Utility Service Provider Identified",
                    "description": f"Your electricity is delivered by {result.operator.name}",
                    "required": True,
                    "completed": True,
                    "operator": result.operator.to_dict(),
                    "confidence": result.confidence.value,
                })
        return steps

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------
    def validate_configuration(self) -> dict:
        report = self.registry.validate_configuration()
        if self.esid_client is None:
            report.recommendations.append(
                "ESID lookup not configured - boundary ZIPs resolve with reduced confidence"
            )
        if self.strategies and self.strategies[-1].name != "zip-fallback":
            report.recommendations.append("zip-fallback should be the last strategy so resolution always terminates")
        return report.to_dict()

    def stats(self) -> dict:
        return {
            "cache": self.cache.stats(),
            "cache_recommendations": self.cache.optimize(),
            "registry": self.registry.stats(),
            "validation_log": self.log_store.summary(),
            "configured_methods": [
                s.name for s in self.strategies
                if s.name != "esid-lookup" or self.esid_client is not None
            ],
        }

    def clear_cache(self):
        self.cache.clear()

    def warmup(self, postal_codes: Optional[List[str]] = None) -> int:
        """Pre-compute postal analyses and boundary data (defaults to every multi-operator ZIP)."""
        postal_codes = postal_codes or self.registry.multi_operator_zips()
        warmed = 0
        for zip_code in postal_codes:
            try:
                self.analyze_postal_code(zip_code, use_cache=False)
                self.boundary_data(zip_code, use_cache=False)
                warmed += 1
            except ResolutionError as e:
                logger.warning(f"Warmup skipped ZIP {zip_code}: {e.code.value}")
        logger.info(f"Warmup: {warmed}/{len(postal_codes)} postal codes cached")
        return warmed

    def close(self):
        self._pool.shutdown(wait=True)
        self.cache.close()
        self.log_store.close()
        if self.esid_client is not None:
            self.esid_client.close()
        if self.address_client is not None:
            self.address_client.close()

    # ------------------------------------------------------------------
    def _log(self, zip_code: str, validation_type: str, source: str, t0: float,
             result: Optional[ResolutionResult] = None, error: Optional[ResolutionError] = None,
             operator: Optional[TerritoryOperator] = None, is_valid: Optional[bool] = None):
        operator = operator or (result.operator if result else None)
        self.log_store.append(ValidationLog(
            zip_code=zip_code or "",
            validation_type=validation_type,
            data_source=source,
            is_valid=error is None if is_valid is None else is_valid,
            confidence=round(result.confidence.score * 100) if result else 0,
            operator_id=operator.registry_number if operator else None,
            operator_name=operator.name if operator else None,
            processing_time_ms=int((time.time() - t0) * 1000),
            cache_hit=result.cache_hit if result else False,
            error_code=error.code.value if error else None,
            error_message=error.message if error else None,
        ))
