"""Result normalizer.

Converts the outcome of any stage (or of no stage at all) into the one
StandardizedMatchResult shape that downstream storage understands, and
grades it: quality flags, consistency warnings and a quality score.
"""
import hashlib
import json
import re
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import structlog

from crosswalk.models.products import CompetitorProduct
from crosswalk.models.results import (
    MatchDetails,
    MatchFlag,
    MatchingMethod,
    MatchingStage,
    ProcessingInfo,
    ResultMetadata,
    StandardizedMatchResult,
    ValidationInfo,
)
from crosswalk.services.matching.base import MatchCandidate

logger = structlog.get_logger(__name__)

REQUEST_ID_PATTERN = re.compile(r"^match_[0-9a-f]{12,32}$")
FAILED_REASON = "No match found after all stages"

PRICE_MISMATCH_RATIO = 0.3
TONNAGE_MISMATCH_RATIO = 0.1
SEER_MISMATCH_RATIO = 0.15

_STORAGE_METHODS = {
    MatchingMethod.EXACT_SKU: "exact",
    MatchingMethod.EXACT_MODEL: "model",
    MatchingMethod.FUZZY_MODEL: "model",
    MatchingMethod.FUZZY_COMBINED: "model",
    MatchingMethod.SPEC_MATCH: "specs",
    MatchingMethod.AI_ENHANCED: "ai",
    MatchingMethod.WEB_MANUFACTURER: "web",
    MatchingMethod.WEB_DISTRIBUTOR: "web",
    MatchingMethod.WEB_AHRI: "web",
    MatchingMethod.MANUAL: "manual",
}


def generate_request_id() -> str:
    return f"match_{uuid.uuid4().hex[:16]}"


def map_method_to_storage(method: MatchingMethod) -> str:
    """Collapse a matching method into the stored match-type category."""
    return _STORAGE_METHODS.get(MatchingMethod(method), "manual")


def competitor_key(sku: str, company: str) -> str:
    """Stable md5 key identifying a competitor across imports."""
    raw = f"{(sku or '').upper()}_{(company or '').upper()}"
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


@dataclass
class NormalizationContext:
    """Per-resolution bookkeeping owned by the orchestrator."""
    request_id: str = field(default_factory=generate_request_id)
    started_at: float = field(default_factory=time.perf_counter)
    steps: List[str] = field(default_factory=list)
    from_cache: bool = False
    ai_tokens_used: Optional[int] = None
    web_sources_searched: Optional[int] = None
    source: str = "single"
    user_id: Optional[str] = None
    session_id: Optional[str] = None

    @property
    def elapsed_ms(self) -> int:
        return max(0, int((time.perf_counter() - self.started_at) * 1000))


def _relative_gap(theirs: Optional[float], ours: Optional[float]) -> Optional[float]:
    if not theirs or not ours:
        return None
    return abs(theirs - ours) / ours


class ResultNormalizer:
    """Builds, grades and validates StandardizedMatchResult instances."""

    def __init__(self):
        self._log = logger.bind(component="ResultNormalizer")

    # =========================================================================
    # Building results
    # =========================================================================

    def normalize(
        self,
        competitor: CompetitorProduct,
        candidate: MatchCandidate,
        stage: MatchingStage,
        reasoning: List[str],
        context: NormalizationContext,
    ) -> StandardizedMatchResult:
        """Standardize an accepted candidate from ``stage``."""
        product = candidate.product
        match = MatchDetails(
            our_sku=candidate.our_sku,
            our_model=product.model if product else "",
            our_brand=product.brand if product else "",
            our_type=product.product_type if product else "",
            our_price=product.price if product else None,
            specifications=product.specifications() if product else {},
            confidence=candidate.confidence,
            method=candidate.method,
            reasoning=list(candidate.reasoning),
        )
        return self._build(
            competitor=competitor,
            match=match,
            stage=stage,
            method=candidate.method,
            confidence=candidate.confidence,
            reasoning=reasoning,
            context=context,
        )

    def normalize_failed(
        self,
        competitor: CompetitorProduct,
        reasoning: List[str],
        context: NormalizationContext,
    ) -> StandardizedMatchResult:
        """Standardize a resolution that no stage could accept."""
        return self._build(
            competitor=competitor,
            match=None,
            stage=MatchingStage.FAILED,
            method=MatchingMethod.MANUAL,
            confidence=0.0,
            reasoning=[*reasoning, FAILED_REASON],
            context=context,
        )

    def from_cache(
        self,
        cached: StandardizedMatchResult,
        competitor: CompetitorProduct,
        context: NormalizationContext,
    ) -> StandardizedMatchResult:
        """Re-issue a cached resolution under a new request id.

        The original stage trace is kept so the precedence markers of the
        first resolution still read in order.
        """
        context.from_cache = True
        context.steps = [
            *context.steps,
            *cached.processing.steps,
            f"✓ Served from cache ({cached.processing.stage.value} match)",
        ]
        return self._build(
            competitor=competitor,
            match=cached.match,
            stage=cached.processing.stage,
            method=cached.processing.method,
            confidence=cached.processing.confidence,
            reasoning=list(cached.processing.reasoning),
            context=context,
            ai_tokens_used=cached.processing.ai_tokens_used,
        )

    def _build(
        self,
        competitor: CompetitorProduct,
        match: Optional[MatchDetails],
        stage: MatchingStage,
        method: MatchingMethod,
        confidence: float,
        reasoning: List[str],
        context: NormalizationContext,
        ai_tokens_used: Optional[int] = None,
    ) -> StandardizedMatchResult:
        flags = self.generate_flags(confidence, stage, match, competitor, context.from_cache)
        result = StandardizedMatchResult(
            request_id=context.request_id,
            timestamp=datetime.now(timezone.utc).isoformat(),
            processing_time_ms=context.elapsed_ms,
            competitor=competitor,
            match=match,
            processing=ProcessingInfo(
                stage=stage,
                method=method,
                confidence=confidence,
                reasoning=list(reasoning),
                steps=list(context.steps),
                from_cache=context.from_cache,
                ai_tokens_used=context.ai_tokens_used if ai_tokens_used is None else ai_tokens_used,
                web_sources_searched=context.web_sources_searched,
            ),
            validation=ValidationInfo(
                is_valid=True,
                warnings=self.generate_warnings(competitor, match),
                quality_score=self.quality_score(confidence, flags, match),
            ),
            metadata=ResultMetadata(
                source=context.source,
                flags=flags,
                user_id=context.user_id,
                session_id=context.session_id,
            ),
        )

        is_valid, errors = self.validate_result(result)
        if is_valid:
            return result
        self._log.warning("result_validation_failed", request_id=result.request_id, errors=errors)
        return result.model_copy(update={
            "validation": ValidationInfo(
                is_valid=False,
                warnings=[*result.validation.warnings, *errors],
                quality_score=result.validation.quality_score,
            ),
        })

    # =========================================================================
    # Grading
    # =========================================================================

    @staticmethod
    def generate_flags(
        confidence: float,
        stage: MatchingStage,
        match: Optional[MatchDetails],
        competitor: CompetitorProduct,
        from_cache: bool = False,
    ) -> List[MatchFlag]:
        flags: List[MatchFlag] = []

        if confidence >= 0.9:
            flags.append(MatchFlag.HIGH_CONFIDENCE)
        elif confidence >= 0.7:
            flags.append(MatchFlag.MEDIUM_CONFIDENCE)
        elif confidence >= 0.5:
            flags.append(MatchFlag.LOW_CONFIDENCE)
        else:
            flags.append(MatchFlag.NEEDS_REVIEW)

        if stage == MatchingStage.AI_ENHANCED:
            flags.append(MatchFlag.AI_GENERATED)
        if stage == MatchingStage.WEB_RESEARCH:
            flags.append(MatchFlag.WEB_VERIFIED)
        if from_cache:
            flags.append(MatchFlag.CACHE_HIT)

        if confidence < 0.7:
            flags.append(MatchFlag.REQUIRES_APPROVAL)
        if match is None and MatchFlag.NEEDS_REVIEW not in flags:
            flags.append(MatchFlag.NEEDS_REVIEW)

        if match is not None:
            if match.our_price and competitor.price:
                if abs(match.our_price - competitor.price) / competitor.price > PRICE_MISMATCH_RATIO:
                    flags.append(MatchFlag.PRICE_MISMATCH)
            specs = competitor.specifications
            if specs is not None:
                tonnage_gap = _relative_gap(specs.tonnage, match.specifications.get("tonnage"))
                seer_gap = _relative_gap(specs.seer, match.specifications.get("seer"))
                if (tonnage_gap or 0) > TONNAGE_MISMATCH_RATIO or (seer_gap or 0) > SEER_MISMATCH_RATIO:
                    flags.append(MatchFlag.SPEC_MISMATCH)

        return flags

    @staticmethod
    def quality_score(
        confidence: float,
        flags: List[MatchFlag],
        match: Optional[MatchDetails],
    ) -> float:
        """Confidence adjusted by flags and match completeness, in [0, 1]."""
        score = confidence
        if MatchFlag.HIGH_CONFIDENCE in flags:
            score += 0.05
        if MatchFlag.NEEDS_REVIEW in flags:
            score -= 0.2
        if MatchFlag.PRICE_MISMATCH in flags:
            score -= 0.1
        if MatchFlag.WEB_VERIFIED in flags:
            score += 0.05

        if match is not None:
            specs = match.specifications
            if specs.get("tonnage"):
                score += 0.02
            if specs.get("seer"):
                score += 0.02
            if specs.get("refrigerant"):
                score += 0.01

        return round(max(0.0, min(1.0, score)), 4)

    @staticmethod
    def generate_warnings(
        competitor: CompetitorProduct,
        match: Optional[MatchDetails],
    ) -> List[str]:
        warnings: List[str] = []
        if not competitor.company:
            warnings.append("Competitor company is missing")
        if match is None:
            warnings.append("No match found - requires manual review")
            return warnings

        specs = competitor.specifications
        if specs is not None:
            ours = match.specifications
            tonnage_gap = _relative_gap(specs.tonnage, ours.get("tonnage"))
            if tonnage_gap is not None and tonnage_gap > TONNAGE_MISMATCH_RATIO:
                warnings.append(f"Tonnage mismatch: {specs.tonnage:g} vs {ours['tonnage']:g}")
            seer_gap = _relative_gap(specs.seer, ours.get("seer"))
            if seer_gap is not None and seer_gap > SEER_MISMATCH_RATIO:
                warnings.append(f"SEER rating difference: {specs.seer:g} vs {ours['seer']:g}")
        return warnings

    # =========================================================================
    # Validation and storage
    # =========================================================================

    @staticmethod
    def validate_result(result: StandardizedMatchResult) -> Tuple[bool, List[str]]:
        """Re-check structural invariants of a built result."""
        errors: List[str] = []
        processing = result.processing

        if not 0.0 <= processing.confidence <= 1.0:
            errors.append(f"processing.confidence out of range: {processing.confidence}")
        failed = processing.stage == MatchingStage.FAILED
        if failed != (result.match is None):
            errors.append("match must be null exactly when stage is failed")
        if failed and processing.confidence != 0.0:
            errors.append("failed results must have zero confidence")
        if result.match is not None and result.match.confidence != processing.confidence:
            errors.append("match.confidence differs from processing.confidence")
        if not REQUEST_ID_PATTERN.match(result.request_id):
            errors.append(f"requestId has unexpected format: {result.request_id}")
        if not processing.steps:
            errors.append("processing.steps is empty")

        return not errors, errors

    @staticmethod
    def to_database_record(result: StandardizedMatchResult) -> Dict[str, Any]:
        """Flatten a result into the storage row layout."""
        match = result.match
        competitor = result.competitor
        specs = competitor.specifications.model_dump(by_alias=True, exclude_none=True) if competitor.specifications else {}
        return {
            "request_id": result.request_id,
            "competitor_sku": competitor.sku,
            "competitor_company": competitor.company,
            "competitor_key": competitor_key(competitor.sku, competitor.company),
            "our_sku": match.our_sku if match else None,
            "our_model": match.our_model or None if match else None,
            "our_brand": match.our_brand or None if match else None,
            "our_type": match.our_type or None if match else None,
            "matching_stage": result.processing.stage.value,
            "matching_method": result.processing.method.value,
            "match_type": map_method_to_storage(result.processing.method),
            "confidence": result.processing.confidence,
            "reasoning": json.dumps(result.processing.reasoning),
            "processing_steps": json.dumps(result.processing.steps),
            "from_cache": result.processing.from_cache,
            "competitor_specs": json.dumps(specs),
            "our_specs": json.dumps(match.specifications if match else {}),
            "processing_time_ms": result.processing_time_ms,
            "ai_tokens_used": result.processing.ai_tokens_used,
            "web_sources_searched": result.processing.web_sources_searched,
            "quality_score": result.validation.quality_score,
            "flags": json.dumps([flag.value for flag in result.metadata.flags]),
            "warnings": json.dumps(result.validation.warnings),
            "source": result.metadata.source,
            "user_id": result.metadata.user_id,
            "session_id": result.metadata.session_id,
            "competitor_price": competitor.price,
            "our_price": match.our_price if match else None,
            "created_at": result.timestamp,
            "processing_date": result.timestamp.split("T")[0],
        }
