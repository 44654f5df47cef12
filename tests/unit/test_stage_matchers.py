"""Unit tests for the deterministic matching stages.

Tests cover:
    - ExactMatcher: SKU vs model confidence, ordering, absent fields
    - FuzzyMatcher: field floor, brand bonus, cap, method selection
    - SpecificationMatcher: tolerance bands, type filter, ranking
    - Stage outcome selection against thresholds
"""
import pytest

from crosswalk.models.products import CatalogProduct, CompetitorProduct
from crosswalk.models.results import MatchingMethod
from crosswalk.services.matching.base import Accepted, Continue, MatchCandidate
from crosswalk.services.matching.exact import ExactMatcher
from crosswalk.services.matching.fuzzy import FuzzyMatcher, similarity
from crosswalk.services.matching.specification import SpecificationMatcher


class TestMatchCandidate:
    """Tests for MatchCandidate dataclass."""

    @pytest.mark.parametrize("raw,expected", [(1.4, 1.0), (-0.2, 0.0), (0.5, 0.5)])
    def test_confidence_clamped(self, raw, expected):
        candidate = MatchCandidate(our_sku="X", confidence=raw, method=MatchingMethod.MANUAL)
        assert candidate.confidence == expected


class TestExactMatcher:
    """Tests for stage 1."""

    @pytest.fixture
    def matcher(self):
        return ExactMatcher()

    def test_sku_hit_scores_095(self, matcher, hvac_catalog):
        """Normalized SKU equality yields 0.95 exact_sku."""
        competitor = CompetitorProduct(sku="len-ac-3t-16s")

        matches = matcher.find_matches(competitor, hvac_catalog)

        assert matches[0].our_sku == "LEN-AC-3T-16S"
        assert matches[0].confidence == 0.95
        assert matches[0].method == MatchingMethod.EXACT_SKU
        assert matches[0].reasoning == ["Exact SKU match"]

    def test_model_hit_scores_085(self, matcher, hvac_catalog):
        """Model equality without SKU equality yields 0.85 exact_model."""
        competitor = CompetitorProduct(sku="GOODMAN-123", model="xp20-024")

        matches = matcher.find_matches(competitor, hvac_catalog)

        assert len(matches) == 1
        assert matches[0].our_sku == "LEN-HP-2T-20S"
        assert matches[0].confidence == 0.85
        assert matches[0].method == MatchingMethod.EXACT_MODEL

    def test_sku_hit_outranks_earlier_model_hit(self, matcher):
        """A SKU hit wins even when a model hit comes first in the catalog."""
        catalog = [
            CatalogProduct(sku="A-1", model="SHARED-MODEL"),
            CatalogProduct(sku="B-2", model="OTHER"),
        ]
        competitor = CompetitorProduct(sku="B-2", model="SHARED-MODEL")

        matches = matcher.find_matches(competitor, catalog)

        assert [m.our_sku for m in matches] == ["B-2", "A-1"]

    def test_first_in_catalog_order_wins_ties(self, matcher):
        catalog = [
            CatalogProduct(sku="A-1", model="SAME"),
            CatalogProduct(sku="B-2", model="SAME"),
        ]
        matches = matcher.find_matches(CompetitorProduct(model="same"), catalog)
        assert matches[0].our_sku == "A-1"

    def test_empty_fields_never_match(self, matcher):
        """An empty model on both sides is not a match."""
        catalog = [CatalogProduct(sku="A-1", model="")]
        competitor = CompetitorProduct(sku="ZZZ", model="")
        assert matcher.find_matches(competitor, catalog) == []

    @pytest.mark.asyncio
    async def test_attempt_accepts_above_threshold(self, matcher, hvac_catalog):
        outcome = await matcher.attempt(CompetitorProduct(sku="LEN-AC-3T-16S"), hvac_catalog)
        assert isinstance(outcome, Accepted)
        assert outcome.candidate.our_sku == "LEN-AC-3T-16S"

    @pytest.mark.asyncio
    async def test_attempt_continues_without_hit(self, matcher, hvac_catalog):
        outcome = await matcher.attempt(CompetitorProduct(sku="NOPE"), hvac_catalog)
        assert isinstance(outcome, Continue)
        assert outcome.candidates == []


class TestFuzzyMatcher:
    """Tests for stage 2."""

    @pytest.fixture
    def matcher(self):
        return FuzzyMatcher()

    def test_similarity_bounds(self):
        assert similarity("", "ABC") == 0.0
        assert similarity("ABC", "ABC") == 1.0
        assert 0.0 < similarity("XC16036", "XC16036230") < 1.0

    def test_near_model_with_brand_bonus(self, matcher, hvac_catalog):
        """A one-character model typo plus matching brand clears 0.6."""
        competitor = CompetitorProduct(sku="", company="LENNOX", model="XC16-036-203")

        matches = matcher.find_matches(competitor, hvac_catalog)

        best = matches[0]
        assert best.our_sku == "LEN-AC-3T-16S"
        assert best.confidence >= 0.6
        assert "Brand match" in best.reasoning
        assert best.method == MatchingMethod.FUZZY_COMBINED

    def test_model_only_signal_uses_fuzzy_model(self, matcher, hvac_catalog):
        competitor = CompetitorProduct(company="Unrelated Co", model="XC16-036-203")

        best = matcher.find_matches(competitor, hvac_catalog)[0]

        assert best.method == MatchingMethod.FUZZY_MODEL
        assert "Brand match" not in best.reasoning

    def test_brand_alone_is_not_a_candidate(self, matcher, hvac_catalog):
        """Matching brand with unrelated model and SKU yields nothing."""
        competitor = CompetitorProduct(sku="QQQQQQQ", company="Lennox", model="ZZZZZZZZ")
        assert matcher.find_matches(competitor, hvac_catalog) == []

    def test_confidence_never_exceeds_cap(self, hvac_catalog):
        """Identical model and SKU plus brand still caps at 0.85."""
        matcher = FuzzyMatcher(confidence_cap=0.85)
        competitor = CompetitorProduct(sku="LEN-AC-3T-16S", company="Lennox", model="XC16-036-230")

        best = matcher.find_matches(competitor, hvac_catalog)[0]

        assert best.confidence == pytest.approx(0.85)

    @pytest.mark.asyncio
    async def test_below_threshold_continues(self, hvac_catalog):
        matcher = FuzzyMatcher(threshold=0.99)
        competitor = CompetitorProduct(company="Lennox", model="XC16-036-203")

        outcome = await matcher.attempt(competitor, hvac_catalog)

        assert isinstance(outcome, Continue)
        assert outcome.candidates


class TestSpecificationMatcher:
    """Tests for stage 3."""

    @pytest.fixture
    def matcher(self):
        return SpecificationMatcher()

    def test_full_agreement_scores_one(self, matcher, hvac_catalog):
        competitor = CompetitorProduct(specifications={"tonnage": 3, "seer": 16, "productType": "AC"})

        matches = matcher.find_matches(competitor, hvac_catalog)

        assert matches[0].our_sku == "LEN-AC-3T-16S"
        assert matches[0].confidence == pytest.approx(1.0)
        assert matches[0].method == MatchingMethod.SPEC_MATCH
        assert matches[0].reasoning[0] == "Product type match (AC)"

    def test_string_specs_are_coerced(self, matcher, hvac_catalog):
        competitor = CompetitorProduct(specifications={"tonnage": "3 Ton", "seer": "16 SEER", "productType": "Air Conditioner"})
        assert matcher.find_matches(competitor, hvac_catalog)[0].our_sku == "LEN-AC-3T-16S"

    def test_tolerance_band_edges(self, matcher):
        """Tonnage within 0.5 and SEER within 2 count as agreement."""
        catalog = [CatalogProduct(sku="A", type="AC", tonnage=3.5, seer=18)]
        competitor = CompetitorProduct(specifications={"tonnage": 3.0, "seer": 16, "productType": "AC"})
        assert matcher.find_matches(competitor, catalog)[0].confidence == pytest.approx(1.0)

    def test_capacity_weighs_more_than_efficiency(self, matcher):
        """Agreeing tonnage alone outscores agreeing SEER alone."""
        catalog = [
            CatalogProduct(sku="TONS", type="AC", tonnage=3, seer=10),
            CatalogProduct(sku="SEER", type="AC", tonnage=5, seer=16),
        ]
        matcher = SpecificationMatcher(threshold=0.0)
        competitor = CompetitorProduct(specifications={"tonnage": 3, "seer": 16})

        matches = matcher.find_matches(competitor, catalog)

        assert [m.our_sku for m in matches] == ["TONS", "SEER"]
        assert matches[0].confidence == pytest.approx(0.6)
        assert matches[1].confidence == pytest.approx(0.4)

    def test_refrigerant_exact_only(self, matcher):
        catalog = [CatalogProduct(sku="A", tonnage=3, refrigerant="R-410A")]
        same = CompetitorProduct(specifications={"tonnage": 3, "refrigerant": "r410a"})
        other = CompetitorProduct(specifications={"tonnage": 3, "refrigerant": "R-454B"})

        assert matcher.find_matches(same, catalog)[0].confidence == pytest.approx(1.0)
        assert matcher.find_matches(other, catalog)[0].confidence == pytest.approx(0.75)

    def test_other_types_are_skipped(self, matcher, hvac_catalog):
        """A heat pump spec never matches an AC with the same numbers."""
        competitor = CompetitorProduct(specifications={"tonnage": 3, "seer": 16, "productType": "Heat Pump"})
        assert matcher.find_matches(competitor, hvac_catalog) == []

    def test_needs_minimum_compared_fields(self, matcher, hvac_catalog):
        assert matcher.find_matches(CompetitorProduct(specifications={"tonnage": 3}), hvac_catalog) == []
        assert matcher.find_matches(CompetitorProduct(specifications={"productType": "AC"}), hvac_catalog) == []

    def test_type_agreement_counts_as_compared_field(self, matcher):
        """Tonnage plus a matching equipment type is enough to compare."""
        catalog = [CatalogProduct(sku="OUR-AC-3T", type="AC", tonnage=3)]
        competitor = CompetitorProduct(specifications={"tonnage": 3, "productType": "AC"})

        matches = matcher.find_matches(competitor, catalog)

        assert [m.our_sku for m in matches] == ["OUR-AC-3T"]
        assert matches[0].confidence == pytest.approx(1.0)
        assert matches[0].reasoning == ["Product type match (AC)", "Tonnage matches (3 ton vs 3 ton)"]

    def test_type_agreement_alone_cannot_carry_a_mismatch(self, matcher):
        catalog = [CatalogProduct(sku="OUR-AC-5T", type="AC", tonnage=5)]
        competitor = CompetitorProduct(specifications={"tonnage": 3, "productType": "AC"})
        assert matcher.find_matches(competitor, catalog) == []

    def test_seer2_used_when_seer_missing(self, matcher):
        catalog = [CatalogProduct(sku="NEW", type="AC", tonnage=3, seer2=15.2)]
        competitor = CompetitorProduct(specifications={"tonnage": 3, "seer": 16, "productType": "AC"})
        assert matcher.find_matches(competitor, catalog)[0].confidence == pytest.approx(1.0)

    def test_no_specs_no_matches(self, matcher, hvac_catalog):
        assert matcher.find_matches(CompetitorProduct(sku="X"), hvac_catalog) == []
