"""Unit tests for the research fallback stage."""
import pytest

from crosswalk.models.products import CompetitorProduct
from crosswalk.models.results import MatchingMethod
from crosswalk.services.matching.base import Accepted, Continue
from crosswalk.services.matching.research import (
    NullResearchFallback,
    ResearchFallback,
    ResearchFinding,
    ResearchStage,
    enrich_competitor,
)


class StaticFallback(ResearchFallback):
    """Returns a fixed finding and remembers who asked."""

    def __init__(self, finding=None, error=None):
        self.finding = finding
        self.error = error
        self.asked = []

    async def research(self, competitor, catalog):
        self.asked.append(competitor.sku)
        if self.error:
            raise self.error
        return self.finding


@pytest.fixture
def competitor():
    return CompetitorProduct(sku="TRANE-4TTR6036", company="Trane", model="4TTR6036")


class TestResearchStage:
    """Tests for ResearchStage outcomes."""

    @pytest.mark.asyncio
    async def test_null_fallback_continues(self, competitor, hvac_catalog):
        outcome = await ResearchStage(NullResearchFallback()).attempt(competitor, hvac_catalog)
        assert isinstance(outcome, Continue)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("source,method", [
        ("manufacturer", MatchingMethod.WEB_MANUFACTURER),
        ("distributor", MatchingMethod.WEB_DISTRIBUTOR),
        ("AHRI", MatchingMethod.WEB_AHRI),
    ])
    async def test_catalog_sku_finding_accepted(self, competitor, hvac_catalog, source, method):
        finding = ResearchFinding(
            sku="LEN-AC-3T-16S",
            confidence=0.75,
            source=source,
            reasoning=["Directory lists a 3 ton 16 SEER equivalent"],
        )

        outcome = await ResearchStage(StaticFallback(finding)).attempt(competitor, hvac_catalog)

        assert isinstance(outcome, Accepted)
        assert outcome.candidate.our_sku == "LEN-AC-3T-16S"
        assert outcome.candidate.method == method
        assert outcome.candidate.product.model == "XC16-036-230"

    @pytest.mark.asyncio
    async def test_low_confidence_finding_continues(self, competitor, hvac_catalog):
        finding = ResearchFinding(sku="LEN-AC-3T-16S", confidence=0.3)
        outcome = await ResearchStage(StaticFallback(finding)).attempt(competitor, hvac_catalog)
        assert isinstance(outcome, Continue)

    @pytest.mark.asyncio
    async def test_enriched_specs_rerun_spec_matcher(self, competitor, hvac_catalog):
        finding = ResearchFinding(
            source="ahri",
            reasoning=["AHRI certificate lists 3 tons, 16 SEER"],
            enriched_specifications={"tonnage": 3, "seer": 16, "productType": "AC"},
        )

        outcome = await ResearchStage(StaticFallback(finding)).attempt(competitor, hvac_catalog)

        assert isinstance(outcome, Accepted)
        assert outcome.candidate.our_sku == "LEN-AC-3T-16S"
        assert outcome.candidate.method == MatchingMethod.WEB_AHRI
        assert outcome.candidate.reasoning[0] == "AHRI certificate lists 3 tons, 16 SEER"

    @pytest.mark.asyncio
    async def test_fallback_errors_are_recovered(self, competitor, hvac_catalog):
        fallback = StaticFallback(error=RuntimeError("directory offline"))

        outcome = await ResearchStage(fallback).attempt(competitor, hvac_catalog)

        assert isinstance(outcome, Continue)
        assert "directory offline" in outcome.note


class TestEnrichCompetitor:
    """Tests for enrich_competitor."""

    def test_original_is_untouched(self, competitor):
        enriched = enrich_competitor(competitor, {"tonnage": "3 Ton"})

        assert enriched.specifications.tonnage == 3.0
        assert competitor.specifications is None
        assert enriched.sku == competitor.sku

    def test_research_overrides_existing_specs(self):
        competitor = CompetitorProduct(sku="X", specifications={"tonnage": 2, "seer": 14})
        enriched = enrich_competitor(competitor, {"tonnage": 2.5})

        assert enriched.specifications.tonnage == 2.5
        assert enriched.specifications.seer == 14
