"""Stage 3: tolerance-banded specification matching.

Only catalog entries of the competitor's equipment type are compared
(when the competitor states one). Each comparable field is either within
its tolerance band or not; the aggregate score is the weight of agreeing
fields over the weight of all compared fields, so capacity and
efficiency ratings dominate the outcome.
"""
from dataclasses import dataclass
from typing import List, Optional, Sequence

import structlog

from crosswalk.models.products import CatalogProduct, CompetitorProduct, CompetitorSpecs
from crosswalk.models.results import MatchingMethod, MatchingStage
from crosswalk.services.matching.base import DeterministicStage, MatchCandidate, rank_candidates
from crosswalk.services.matching.normalizer import normalize, normalize_product_type

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SpecRule:
    """Comparison rule for one numeric spec field."""
    field: str
    label: str
    tolerance: float
    weight: float
    unit: str = ""

    def catalog_value(self, product: CatalogProduct) -> Optional[float]:
        value = getattr(product, self.field)
        # Newer catalogs only rate SEER2
        if value is None and self.field == "seer":
            value = product.seer2
        return value


SPEC_RULES = (
    SpecRule("tonnage", "Tonnage", tolerance=0.5, weight=3.0, unit=" ton"),
    SpecRule("seer", "SEER", tolerance=2.0, weight=2.0),
    SpecRule("afue", "AFUE", tolerance=3.0, weight=2.0, unit="%"),
    SpecRule("hspf", "HSPF", tolerance=1.0, weight=1.5),
    SpecRule("eer", "EER", tolerance=1.0, weight=1.0),
)
REFRIGERANT_WEIGHT = 1.0
PRODUCT_TYPE_WEIGHT = 0.5


def _fmt(value: float) -> str:
    return f"{value:g}"


class SpecificationMatcher(DeterministicStage):
    """Numeric/categorical spec comparison with fixed tolerance bands.

    May report several qualifying candidates, ranked by score; the
    orchestrator keeps the top one.
    """

    stage = MatchingStage.SPECIFICATION
    description = "specification-based matching"

    def __init__(
        self,
        threshold: float = 0.6,
        min_fields: int = 2,
        max_candidates: int = 5,
        rules: Sequence[SpecRule] = SPEC_RULES,
    ):
        self.threshold = threshold
        self.min_fields = min_fields
        self.max_candidates = max_candidates
        self.rules = tuple(rules)
        self._log = logger.bind(matcher="SpecificationMatcher")

    def find_matches(
        self,
        competitor: CompetitorProduct,
        catalog: Sequence[CatalogProduct],
    ) -> List[MatchCandidate]:
        specs = competitor.specifications
        if specs is None or not specs.has_any():
            return []

        wanted_type = normalize_product_type(specs.product_type)
        candidates: List[MatchCandidate] = []
        for product in catalog:
            product_type = normalize_product_type(product.product_type)
            if wanted_type and product_type and wanted_type != product_type:
                continue
            candidate = self._score(specs, product, type_matched=bool(wanted_type and product_type))
            if candidate is not None and candidate.confidence >= self.threshold:
                candidates.append(candidate)

        ranked = rank_candidates(candidates, self.max_candidates)
        self._log.debug(
            "spec_match_completed",
            competitor_sku=competitor.sku,
            product_type=wanted_type or None,
            qualifying=len(candidates),
        )
        return ranked

    def _score(
        self,
        specs: CompetitorSpecs,
        product: CatalogProduct,
        type_matched: bool,
    ) -> Optional[MatchCandidate]:
        reasoning: List[str] = []
        compared = 0
        total_weight = 0.0
        matched_weight = 0.0

        for rule in self.rules:
            ours = rule.catalog_value(product)
            theirs = getattr(specs, rule.field)
            if ours is None or theirs is None:
                continue
            compared += 1
            total_weight += rule.weight
            pair = f"{_fmt(theirs)}{rule.unit} vs {_fmt(ours)}{rule.unit}"
            if abs(theirs - ours) <= rule.tolerance:
                matched_weight += rule.weight
                reasoning.append(f"{rule.label} matches ({pair})")
            else:
                reasoning.append(f"{rule.label} differs ({pair})")

        if specs.refrigerant and product.refrigerant:
            compared += 1
            total_weight += REFRIGERANT_WEIGHT
            if normalize(specs.refrigerant) == normalize(product.refrigerant):
                matched_weight += REFRIGERANT_WEIGHT
                reasoning.append(f"Refrigerant matches ({product.refrigerant})")
            else:
                reasoning.append(
                    f"Refrigerant differs ({specs.refrigerant} vs {product.refrigerant})"
                )

        # Agreeing equipment type counts as one compared field
        if type_matched:
            compared += 1
            total_weight += PRODUCT_TYPE_WEIGHT
            matched_weight += PRODUCT_TYPE_WEIGHT
            reasoning.insert(0, f"Product type match ({product.product_type})")

        if compared < self.min_fields or total_weight == 0:
            return None

        return MatchCandidate(
            our_sku=product.sku,
            confidence=matched_weight / total_weight,
            method=MatchingMethod.SPEC_MATCH,
            reasoning=reasoning,
            product=product,
        )
