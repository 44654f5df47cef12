"""Pydantic validation models."""

# Product records
from crosswalk.models.products import (
    CatalogProduct,
    CompetitorProduct,
    CompetitorSpecs,
    parse_numeric,
    validate_competitor,
)

# Standardized results
from crosswalk.models.results import (
    STAGE_ORDER,
    MatchDetails,
    MatchFlag,
    MatchingMethod,
    MatchingStage,
    ProcessingInfo,
    ResultMetadata,
    StandardizedMatchResult,
    ValidationInfo,
)

# Batch jobs
from crosswalk.models.batch import (
    BatchEvent,
    BatchEventType,
    BatchItem,
    BatchItemError,
    BatchItemResult,
    BatchJob,
    BatchOptions,
    BatchProgress,
    BatchStats,
    BatchStatus,
    can_transition,
)

__all__ = [
    "CatalogProduct",
    "CompetitorProduct",
    "CompetitorSpecs",
    "parse_numeric",
    "validate_competitor",
    "STAGE_ORDER",
    "MatchDetails",
    "MatchFlag",
    "MatchingMethod",
    "MatchingStage",
    "ProcessingInfo",
    "ResultMetadata",
    "StandardizedMatchResult",
    "ValidationInfo",
    "BatchEvent",
    "BatchEventType",
    "BatchItem",
    "BatchItemError",
    "BatchItemResult",
    "BatchJob",
    "BatchOptions",
    "BatchProgress",
    "BatchStats",
    "BatchStatus",
    "can_transition",
]
