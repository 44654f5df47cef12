"""Standardized match result models.

Every resolution, whichever stage produced it (or none), leaves the
engine as exactly one StandardizedMatchResult. The JSON form uses the
camelCase field names that stored records already carry; Python code
works with the snake_case attributes.

Dump for storage or export with ``result.to_dict()`` (by_alias=True).
"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from crosswalk.models.products import CompetitorProduct


class MatchingStage(str, Enum):
    """Stage that resolved (or failed to resolve) a competitor.

    Ordered by precedence: a later stage only runs when every earlier
    stage ran and did not clear its threshold.
    """
    EXACT = "exact"
    FUZZY = "fuzzy"
    SPECIFICATION = "specification"
    AI_ENHANCED = "ai_enhanced"
    WEB_RESEARCH = "web_research"
    FAILED = "failed"

    @property
    def precedence(self) -> int:
        return STAGE_ORDER.index(self)

    @property
    def number(self) -> int:
        """1-based stage number used in processing steps."""
        return self.precedence + 1


STAGE_ORDER = (
    MatchingStage.EXACT,
    MatchingStage.FUZZY,
    MatchingStage.SPECIFICATION,
    MatchingStage.AI_ENHANCED,
    MatchingStage.WEB_RESEARCH,
    MatchingStage.FAILED,
)


class MatchingMethod(str, Enum):
    """Specific method within a stage that produced the candidate."""
    EXACT_SKU = "exact_sku"
    EXACT_MODEL = "exact_model"
    FUZZY_MODEL = "fuzzy_model"
    FUZZY_COMBINED = "fuzzy_combined"
    SPEC_MATCH = "spec_match"
    AI_ENHANCED = "ai_enhanced"
    WEB_MANUFACTURER = "web_manufacturer"
    WEB_DISTRIBUTOR = "web_distributor"
    WEB_AHRI = "web_ahri"
    MANUAL = "manual"


class MatchFlag(str, Enum):
    """Quality flags attached to every result."""
    HIGH_CONFIDENCE = "high_confidence"
    MEDIUM_CONFIDENCE = "medium_confidence"
    LOW_CONFIDENCE = "low_confidence"
    NEEDS_REVIEW = "needs_review"
    PRICE_MISMATCH = "price_mismatch"
    SPEC_MISMATCH = "spec_mismatch"
    AI_GENERATED = "ai_generated"
    WEB_VERIFIED = "web_verified"
    CACHE_HIT = "cache_hit"
    REQUIRES_APPROVAL = "requires_approval"


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class MatchDetails(_CamelModel):
    """The catalog product a competitor resolved to."""

    our_sku: str = Field(..., min_length=1, max_length=100)
    our_model: str = ""
    our_brand: str = ""
    our_type: str = ""
    our_price: Optional[float] = None
    specifications: dict = Field(default_factory=dict)
    confidence: float = Field(..., ge=0, le=1)
    method: MatchingMethod
    reasoning: List[str] = Field(default_factory=list)


class ProcessingInfo(_CamelModel):
    """How the result was produced."""

    stage: MatchingStage
    method: MatchingMethod
    confidence: float = Field(..., ge=0, le=1)
    reasoning: List[str] = Field(default_factory=list)
    steps: List[str] = Field(default_factory=list)
    from_cache: bool = False
    ai_tokens_used: Optional[int] = Field(default=None, ge=0)
    web_sources_searched: Optional[int] = Field(default=None, ge=0)


class ValidationInfo(_CamelModel):
    """Quality assurance outcome."""

    is_valid: bool = True
    warnings: List[str] = Field(default_factory=list)
    quality_score: float = Field(default=0.0, ge=0, le=1)


class ResultMetadata(_CamelModel):
    """Audit trail."""

    source: str = "single"
    flags: List[MatchFlag] = Field(default_factory=list)
    user_id: Optional[str] = None
    session_id: Optional[str] = None


class StandardizedMatchResult(_CamelModel):
    """The only artifact a resolution may produce."""

    request_id: str
    timestamp: str
    processing_time_ms: int = Field(..., ge=0)
    competitor: CompetitorProduct
    match: Optional[MatchDetails] = None
    processing: ProcessingInfo
    validation: ValidationInfo
    metadata: ResultMetadata

    @model_validator(mode="after")
    def match_present_unless_failed(self):
        """match is non-null iff the stage is not failed."""
        failed = self.processing.stage == MatchingStage.FAILED
        if failed and self.match is not None:
            raise ValueError("failed results must not carry a match")
        if not failed and self.match is None:
            raise ValueError(f"stage {self.processing.stage.value} requires a match")
        return self

    @property
    def stage(self) -> MatchingStage:
        return self.processing.stage

    @property
    def confidence(self) -> float:
        return self.processing.confidence

    @property
    def matched_sku(self) -> Optional[str]:
        return self.match.our_sku if self.match else None

    def to_dict(self) -> dict:
        """Convert to the storage/export dictionary (camelCase keys)."""
        return self.model_dump(by_alias=True, mode="json")
