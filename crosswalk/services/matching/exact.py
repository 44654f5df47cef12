"""Stage 1: literal SKU/model equality after normalization."""
from typing import List, Sequence

import structlog

from crosswalk.models.products import CatalogProduct, CompetitorProduct
from crosswalk.models.results import MatchingMethod, MatchingStage
from crosswalk.services.matching.base import DeterministicStage, MatchCandidate, rank_candidates
from crosswalk.services.matching.normalizer import normalize

logger = structlog.get_logger(__name__)

EXACT_SKU_CONFIDENCE = 0.95
EXACT_MODEL_CONFIDENCE = 0.85


class ExactMatcher(DeterministicStage):
    """Exact SKU or model number matcher.

    A SKU hit scores 0.95 and always outranks a model hit (0.85); among
    hits of equal confidence the first in catalog order wins. Absent or
    empty fields never match.
    """

    stage = MatchingStage.EXACT
    description = "exact SKU/Model match"

    def __init__(self, threshold: float = 0.6, max_candidates: int = 5):
        self.threshold = threshold
        self.max_candidates = max_candidates
        self._log = logger.bind(matcher="ExactMatcher")

    def find_matches(
        self,
        competitor: CompetitorProduct,
        catalog: Sequence[CatalogProduct],
    ) -> List[MatchCandidate]:
        sku = normalize(competitor.sku)
        model = normalize(competitor.model)
        if not sku and not model:
            return []

        candidates: List[MatchCandidate] = []
        for product in catalog:
            if sku and sku == normalize(product.sku):
                candidates.append(MatchCandidate(
                    our_sku=product.sku,
                    confidence=EXACT_SKU_CONFIDENCE,
                    method=MatchingMethod.EXACT_SKU,
                    reasoning=["Exact SKU match"],
                    product=product,
                ))
            elif model and model == normalize(product.model):
                candidates.append(MatchCandidate(
                    our_sku=product.sku,
                    confidence=EXACT_MODEL_CONFIDENCE,
                    method=MatchingMethod.EXACT_MODEL,
                    reasoning=["Exact model number match"],
                    product=product,
                ))

        ranked = rank_candidates(candidates, self.max_candidates)
        self._log.debug(
            "exact_match_completed",
            competitor_sku=competitor.sku,
            hits=len(candidates),
        )
        return ranked
