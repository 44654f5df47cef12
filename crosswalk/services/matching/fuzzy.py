"""Stage 2: string-similarity matching on model, SKU and brand.

Uses RapidFuzz's normalized Indel ratio on canonicalized strings. The
combined score is a weighted sum of the model and SKU similarities
(each only counted once it reaches ``field_floor``) plus a fixed bonus
when the competitor's company matches the catalog brand.
"""
from typing import List, Sequence

import structlog
from rapidfuzz import fuzz

from crosswalk.models.products import CatalogProduct, CompetitorProduct
from crosswalk.models.results import MatchingMethod, MatchingStage
from crosswalk.services.matching.base import DeterministicStage, MatchCandidate, rank_candidates
from crosswalk.services.matching.normalizer import normalize

logger = structlog.get_logger(__name__)

MODEL_WEIGHT = 0.6
SKU_WEIGHT = 0.3
BRAND_SIMILARITY_FLOOR = 0.8


def similarity(a: str, b: str) -> float:
    """Similarity of two already-normalized strings in [0, 1]."""
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    return fuzz.ratio(a, b) / 100.0


class FuzzyMatcher(DeterministicStage):
    """Fuzzy model/SKU matcher with a brand bonus.

    Attributes:
        threshold: Combined score needed to accept the best candidate
        field_floor: Per-field similarity below which a field adds nothing
        brand_bonus: Added when brands match after normalization
        confidence_cap: Fuzzy confidence never exceeds this
    """

    stage = MatchingStage.FUZZY
    description = "fuzzy matching"

    def __init__(
        self,
        threshold: float = 0.6,
        field_floor: float = 0.7,
        brand_bonus: float = 0.15,
        confidence_cap: float = 0.85,
        max_candidates: int = 5,
    ):
        self.threshold = threshold
        self.field_floor = field_floor
        self.brand_bonus = brand_bonus
        self.confidence_cap = confidence_cap
        self.max_candidates = max_candidates
        self._log = logger.bind(matcher="FuzzyMatcher")

    def find_matches(
        self,
        competitor: CompetitorProduct,
        catalog: Sequence[CatalogProduct],
    ) -> List[MatchCandidate]:
        comp_model = normalize(competitor.model)
        comp_sku = normalize(competitor.sku)
        comp_brand = normalize(competitor.company)
        if not comp_model and not comp_sku:
            return []

        candidates: List[MatchCandidate] = []
        for product in catalog:
            candidate = self._score(product, comp_model, comp_sku, comp_brand)
            if candidate is not None:
                candidates.append(candidate)

        ranked = rank_candidates(candidates, self.max_candidates)
        self._log.debug(
            "fuzzy_match_completed",
            competitor_sku=competitor.sku,
            candidates_count=len(candidates),
            best_score=round(ranked[0].confidence, 3) if ranked else None,
        )
        return ranked

    def _score(
        self,
        product: CatalogProduct,
        comp_model: str,
        comp_sku: str,
        comp_brand: str,
    ):
        reasoning: List[str] = []
        signals: List[str] = []
        score = 0.0

        model_sim = similarity(comp_model, normalize(product.model))
        if model_sim >= self.field_floor:
            score += model_sim * MODEL_WEIGHT
            signals.append("model")
            reasoning.append(f"Model {model_sim * 100:.1f}% similar")

        sku_sim = similarity(comp_sku, normalize(product.sku))
        if sku_sim >= self.field_floor:
            score += sku_sim * SKU_WEIGHT
            signals.append("sku")
            reasoning.append(f"SKU {sku_sim * 100:.1f}% similar")

        # Brand agreement alone never makes a candidate
        if not signals:
            return None

        if similarity(comp_brand, normalize(product.brand)) >= BRAND_SIMILARITY_FLOOR:
            score += self.brand_bonus
            signals.append("brand")
            reasoning.append("Brand match")

        method = (
            MatchingMethod.FUZZY_MODEL
            if signals == ["model"]
            else MatchingMethod.FUZZY_COMBINED
        )
        return MatchCandidate(
            our_sku=product.sku,
            confidence=min(score, self.confidence_cap),
            method=method,
            reasoning=reasoning,
            product=product,
        )
