"""Stage 5: pluggable research fallback.

The lookup itself (manufacturer sites, distributor listings, the AHRI
directory) is an external collaborator behind ``ResearchFallback``. This
module only turns whatever it finds into a stage outcome:

    - a finding naming a catalog SKU is accepted at its own confidence
    - a finding carrying enriched specifications is re-run through the
      specification matcher
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import structlog

from crosswalk.models.products import CatalogProduct, CompetitorProduct, CompetitorSpecs
from crosswalk.models.results import MatchingMethod, MatchingStage
from crosswalk.services.matching.base import Accepted, Continue, MatchCandidate, MatchStage, StageOutcome
from crosswalk.services.matching.specification import SpecificationMatcher

logger = structlog.get_logger(__name__)

_SOURCE_METHODS = {
    "manufacturer": MatchingMethod.WEB_MANUFACTURER,
    "distributor": MatchingMethod.WEB_DISTRIBUTOR,
    "ahri": MatchingMethod.WEB_AHRI,
}


@dataclass
class ResearchFinding:
    """What an external lookup learned about a competitor.

    Attributes:
        sku: Catalog SKU the research points at, if any
        confidence: Certainty of ``sku`` in [0, 1]
        source: manufacturer, distributor or ahri
        reasoning: Human-readable evidence
        enriched_specifications: Specs discovered for the competitor
        sources_searched: URLs or directories consulted
    """
    sku: Optional[str] = None
    confidence: float = 0.0
    source: str = "manufacturer"
    reasoning: List[str] = field(default_factory=list)
    enriched_specifications: Dict[str, Any] = field(default_factory=dict)
    sources_searched: List[str] = field(default_factory=list)

    @property
    def method(self) -> MatchingMethod:
        return _SOURCE_METHODS.get(self.source.lower(), MatchingMethod.WEB_MANUFACTURER)


class ResearchFallback(ABC):
    """Interface for last-resort external research."""

    @abstractmethod
    async def research(
        self,
        competitor: CompetitorProduct,
        catalog: Sequence[CatalogProduct],
    ) -> Optional[ResearchFinding]:
        """Look the competitor up externally; None when nothing was found."""


class NullResearchFallback(ResearchFallback):
    """Fallback that never finds anything."""

    async def research(self, competitor, catalog) -> Optional[ResearchFinding]:
        return None


def enrich_competitor(competitor: CompetitorProduct, specs: Dict[str, Any]) -> CompetitorProduct:
    """Copy of ``competitor`` with researched specs layered over its own."""
    merged: Dict[str, Any] = {}
    if competitor.specifications is not None:
        merged.update(competitor.specifications.model_dump(exclude_none=True))
    merged.update({k: v for k, v in specs.items() if v is not None})
    return competitor.model_copy(update={"specifications": CompetitorSpecs.model_validate(merged)})


class ResearchStage(MatchStage):
    """Wraps a ResearchFallback as the last stage of the chain."""

    stage = MatchingStage.WEB_RESEARCH
    description = "web research fallback"

    def __init__(
        self,
        fallback: ResearchFallback,
        threshold: float = 0.6,
        spec_matcher: Optional[SpecificationMatcher] = None,
    ):
        self.fallback = fallback
        self.threshold = threshold
        self.spec_matcher = spec_matcher or SpecificationMatcher()
        self._log = logger.bind(component="ResearchStage", fallback=type(fallback).__name__)

    async def attempt(
        self,
        competitor: CompetitorProduct,
        catalog: Sequence[CatalogProduct],
    ) -> StageOutcome:
        try:
            finding = await self.fallback.research(competitor, catalog)
        except Exception as e:
            self._log.warning("research_failed", competitor_sku=competitor.sku, error=str(e))
            return Continue(note=f"Research failed: {e}")

        if finding is None:
            return Continue()

        by_sku = {p.sku: p for p in catalog}
        if finding.sku and finding.sku in by_sku:
            candidate = MatchCandidate(
                our_sku=finding.sku,
                confidence=finding.confidence,
                method=finding.method,
                reasoning=list(finding.reasoning) or [f"Found via {finding.source} research"],
                product=by_sku[finding.sku],
            )
            if candidate.confidence >= self.threshold:
                return Accepted(candidate=candidate, candidates=[candidate])
            return Continue(candidates=[candidate])

        if finding.enriched_specifications:
            enriched = enrich_competitor(competitor, finding.enriched_specifications)
            matches = self.spec_matcher.find_matches(enriched, catalog)
            if matches and matches[0].confidence >= self.threshold:
                best = matches[0]
                candidate = MatchCandidate(
                    our_sku=best.our_sku,
                    confidence=best.confidence,
                    method=finding.method,
                    reasoning=list(finding.reasoning) + best.reasoning,
                    product=best.product,
                )
                self._log.info(
                    "research_spec_match",
                    competitor_sku=competitor.sku,
                    matched_sku=best.our_sku,
                    source=finding.source,
                )
                return Accepted(candidate=candidate, candidates=matches)
            return Continue(note="Research specifications matched nothing", candidates=matches)

        return Continue(note=f"Research SKU {finding.sku} not in catalog" if finding.sku else None)
