"""Unit tests for ResultNormalizer.

Tests cover:
    - Building accepted and failed results
    - Quality flags, warnings and quality score
    - Structural validation
    - Storage record flattening and method categories
"""
import hashlib
import json

import pytest

from crosswalk.models.products import CatalogProduct, CompetitorProduct
from crosswalk.models.results import MatchFlag, MatchingMethod, MatchingStage
from crosswalk.services.matching.base import MatchCandidate
from crosswalk.services.matching.result_normalizer import (
    FAILED_REASON,
    NormalizationContext,
    ResultNormalizer,
    generate_request_id,
    map_method_to_storage,
)


@pytest.fixture
def normalizer():
    return ResultNormalizer()


@pytest.fixture
def product():
    return CatalogProduct(
        sku="LEN-AC-3T-16S",
        model="XC16-036-230",
        brand="Lennox",
        type="AC",
        tonnage=3,
        seer=16,
        refrigerant="R-410A",
        price=3200,
    )


@pytest.fixture
def competitor():
    return CompetitorProduct(
        sku="LEN-AC-3T-16S",
        company="Lennox",
        price=3100,
        specifications={"tonnage": 3, "seer": 16},
    )


def candidate_for(product, confidence=0.95, method=MatchingMethod.EXACT_SKU):
    return MatchCandidate(
        our_sku=product.sku,
        confidence=confidence,
        method=method,
        reasoning=["Exact SKU match"],
        product=product,
    )


def context(**kwargs):
    ctx = NormalizationContext(**kwargs)
    ctx.steps.append("Stage 1: Attempting exact SKU/Model match")
    return ctx


class TestNormalize:
    """Tests for accepted results."""

    def test_accepted_result_shape(self, normalizer, competitor, product):
        result = normalizer.normalize(
            competitor, candidate_for(product), MatchingStage.EXACT, ["Exact SKU match"], context()
        )

        assert result.stage == MatchingStage.EXACT
        assert result.confidence == 0.95
        assert result.match.our_sku == "LEN-AC-3T-16S"
        assert result.match.our_model == "XC16-036-230"
        assert result.match.our_type == "AC"
        assert result.match.specifications["tonnage"] == 3.0
        assert result.validation.is_valid is True
        assert result.processing.from_cache is False

    def test_wire_form_uses_camel_case(self, normalizer, competitor, product):
        result = normalizer.normalize(
            competitor, candidate_for(product), MatchingStage.EXACT, [], context()
        )

        data = result.to_dict()

        assert {"requestId", "timestamp", "processingTimeMs", "competitor", "match",
                "processing", "validation", "metadata"} <= set(data)
        assert data["match"]["ourSku"] == "LEN-AC-3T-16S"
        assert data["processing"]["steps"]
        assert "fromCache" in data["processing"]
        assert "isValid" in data["validation"]
        assert "qualityScore" in data["validation"]
        assert data["processing"]["stage"] == "exact"

    def test_failed_result(self, normalizer, competitor):
        result = normalizer.normalize_failed(competitor, ["AI enhancement skipped"], context())

        assert result.stage == MatchingStage.FAILED
        assert result.match is None
        assert result.confidence == 0.0
        assert result.processing.reasoning[-1] == FAILED_REASON
        assert result.processing.method == MatchingMethod.MANUAL
        assert MatchFlag.NEEDS_REVIEW in result.metadata.flags
        assert "No match found - requires manual review" in result.validation.warnings


class TestFlagsAndScore:
    """Tests for grading."""

    @pytest.mark.parametrize("confidence,expected", [
        (0.95, MatchFlag.HIGH_CONFIDENCE),
        (0.75, MatchFlag.MEDIUM_CONFIDENCE),
        (0.55, MatchFlag.LOW_CONFIDENCE),
        (0.30, MatchFlag.NEEDS_REVIEW),
    ])
    def test_confidence_bands(self, normalizer, competitor, product, confidence, expected):
        result = normalizer.normalize(
            competitor,
            candidate_for(product, confidence, MatchingMethod.FUZZY_COMBINED),
            MatchingStage.FUZZY,
            [],
            context(),
        )
        assert result.metadata.flags[0] == expected
        assert (MatchFlag.REQUIRES_APPROVAL in result.metadata.flags) == (confidence < 0.7)

    def test_ai_stage_flag(self, normalizer, competitor, product):
        result = normalizer.normalize(
            competitor,
            candidate_for(product, 0.8, MatchingMethod.AI_ENHANCED),
            MatchingStage.AI_ENHANCED,
            [],
            context(ai_tokens_used=420),
        )
        assert MatchFlag.AI_GENERATED in result.metadata.flags
        assert result.processing.ai_tokens_used == 420

    def test_price_and_spec_mismatch(self, normalizer, product):
        competitor = CompetitorProduct(sku="X", company="Y", price=1000, specifications={"tonnage": 5, "seer": 16})

        result = normalizer.normalize(
            competitor, candidate_for(product, 0.7, MatchingMethod.SPEC_MATCH),
            MatchingStage.SPECIFICATION, [], context(),
        )

        assert MatchFlag.PRICE_MISMATCH in result.metadata.flags
        assert MatchFlag.SPEC_MISMATCH in result.metadata.flags
        assert "Tonnage mismatch: 5 vs 3" in result.validation.warnings

    def test_quality_score_bonus_for_complete_match(self, normalizer, competitor, product):
        result = normalizer.normalize(
            competitor, candidate_for(product, 0.9), MatchingStage.EXACT, [], context()
        )
        # 0.9 + 0.05 high confidence + 0.05 for tonnage, SEER and refrigerant
        assert result.validation.quality_score == pytest.approx(1.0)

    def test_quality_score_is_clamped(self, normalizer, competitor):
        result = normalizer.normalize_failed(competitor, [], context())
        assert result.validation.quality_score == 0.0

    def test_missing_company_warning(self, normalizer, product):
        result = normalizer.normalize(
            CompetitorProduct(sku="LEN-AC-3T-16S"), candidate_for(product),
            MatchingStage.EXACT, [], context(),
        )
        assert "Competitor company is missing" in result.validation.warnings


class TestValidation:
    """Tests for validate_result."""

    def test_generated_request_ids_are_valid(self, normalizer, competitor, product):
        result = normalizer.normalize(
            competitor, candidate_for(product), MatchingStage.EXACT, [], context()
        )
        assert ResultNormalizer.validate_result(result) == (True, [])
        assert generate_request_id().startswith("match_")

    def test_bad_request_id_is_folded_into_warnings(self, normalizer, competitor, product):
        result = normalizer.normalize(
            competitor, candidate_for(product), MatchingStage.EXACT, [],
            context(request_id="request-1"),
        )
        assert result.validation.is_valid is False
        assert any("requestId" in w for w in result.validation.warnings)

    def test_empty_trace_is_invalid(self, normalizer, competitor, product):
        result = normalizer.normalize(
            competitor, candidate_for(product), MatchingStage.EXACT, [], NormalizationContext()
        )
        assert result.validation.is_valid is False


class TestStorage:
    """Tests for database record flattening."""

    def test_database_record(self, normalizer, competitor, product):
        result = normalizer.normalize(
            competitor, candidate_for(product), MatchingStage.EXACT, ["Exact SKU match"], context()
        )

        record = ResultNormalizer.to_database_record(result)

        expected_key = hashlib.md5("LEN-AC-3T-16S_LENNOX".encode()).hexdigest()
        assert record["competitor_key"] == expected_key
        assert record["our_sku"] == "LEN-AC-3T-16S"
        assert record["matching_stage"] == "exact"
        assert record["match_type"] == "exact"
        assert json.loads(record["reasoning"]) == ["Exact SKU match"]
        assert json.loads(record["competitor_specs"]) == {"tonnage": 3.0, "seer": 16.0}
        assert record["processing_date"] == result.timestamp[:10]

    def test_failed_record_has_null_match_columns(self, normalizer, competitor):
        record = ResultNormalizer.to_database_record(normalizer.normalize_failed(competitor, [], context()))
        assert record["our_sku"] is None
        assert record["our_model"] is None
        assert record["match_type"] == "manual"

    @pytest.mark.parametrize("method,category", [
        (MatchingMethod.EXACT_SKU, "exact"),
        (MatchingMethod.EXACT_MODEL, "model"),
        (MatchingMethod.FUZZY_COMBINED, "model"),
        (MatchingMethod.SPEC_MATCH, "specs"),
        (MatchingMethod.AI_ENHANCED, "ai"),
        (MatchingMethod.WEB_AHRI, "web"),
        (MatchingMethod.MANUAL, "manual"),
    ])
    def test_method_categories(self, method, category):
        assert map_method_to_storage(method) == category
