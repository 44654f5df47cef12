"""Sequential matching stages and result handling."""

from crosswalk.services.matching.base import (
    Accepted,
    Continue,
    DeterministicStage,
    MatchCandidate,
    MatchStage,
    StageOutcome,
    rank_candidates,
)
from crosswalk.services.matching.cache import MatchCache, cache_key, catalog_fingerprint
from crosswalk.services.matching.exact import ExactMatcher
from crosswalk.services.matching.fuzzy import FuzzyMatcher
from crosswalk.services.matching.normalizer import normalize, normalize_product_type
from crosswalk.services.matching.research import (
    NullResearchFallback,
    ResearchFallback,
    ResearchFinding,
    ResearchStage,
)
from crosswalk.services.matching.result_normalizer import (
    NormalizationContext,
    ResultNormalizer,
    map_method_to_storage,
)
from crosswalk.services.matching.specification import SpecificationMatcher

__all__ = [
    "Accepted",
    "Continue",
    "DeterministicStage",
    "MatchCandidate",
    "MatchStage",
    "StageOutcome",
    "rank_candidates",
    "MatchCache",
    "cache_key",
    "catalog_fingerprint",
    "ExactMatcher",
    "FuzzyMatcher",
    "normalize",
    "normalize_product_type",
    "NullResearchFallback",
    "ResearchFallback",
    "ResearchFinding",
    "ResearchStage",
    "NormalizationContext",
    "ResultNormalizer",
    "map_method_to_storage",
    "SpecificationMatcher",
]
