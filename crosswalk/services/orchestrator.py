"""Sequential matching orchestrator.

Runs the stage chain for one competitor:

    exact -> fuzzy -> specification -> ai_enhanced -> web_research
          -> accepted | failed

The first stage whose candidate clears its threshold ends the chain;
later, more expensive stages are never invoked. The orchestrator is the
only writer of the processing-step trace and the aggregated reasoning;
stages report back solely through their outcome.
"""
from typing import List, Optional, Sequence

import structlog

from crosswalk.config import LLMSettings, MatchingSettings
from crosswalk.config import llm_settings as default_llm_settings
from crosswalk.config import matching_settings as default_matching_settings
from crosswalk.errors.exceptions import CatalogError, ConfigurationError
from crosswalk.models.products import CatalogProduct, CompetitorProduct, validate_competitor
from crosswalk.models.results import MatchingStage, StandardizedMatchResult
from crosswalk.services.llm.client import InferenceClient, create_inference_client
from crosswalk.services.llm.enhancer import AIEnhancer
from crosswalk.services.llm.rate_limiter import RateLimiter
from crosswalk.services.matching.base import Accepted, MatchStage
from crosswalk.services.matching.cache import MatchCache, cache_key, catalog_fingerprint
from crosswalk.services.matching.exact import ExactMatcher
from crosswalk.services.matching.fuzzy import FuzzyMatcher
from crosswalk.services.matching.research import NullResearchFallback, ResearchFallback, ResearchStage
from crosswalk.services.matching.result_normalizer import NormalizationContext, ResultNormalizer
from crosswalk.services.matching.specification import SpecificationMatcher

logger = structlog.get_logger(__name__)

STAGE_LABELS = {
    MatchingStage.EXACT: "exact",
    MatchingStage.FUZZY: "fuzzy",
    MatchingStage.SPECIFICATION: "specification",
    MatchingStage.AI_ENHANCED: "AI-enhanced",
    MatchingStage.WEB_RESEARCH: "web research",
}
NO_MATCH_STEP = "✗ No matches found after all stages"


def attempt_step(stage: MatchStage) -> str:
    return f"Stage {stage.stage.number}: Attempting {stage.description}"


def success_step(stage: MatchingStage, confidence: float) -> str:
    label = STAGE_LABELS[stage]
    return f"✓ {label[0].upper()}{label[1:]} match found with {confidence * 100:.1f}% confidence"


def failure_step(stage: MatchingStage) -> str:
    return f"✗ No high-confidence {STAGE_LABELS[stage]} match found"


class SequentialOrchestrator:
    """Composes the matching stages into one resolution.

    Attributes:
        stages: Stages in strictly ascending precedence order
        normalizer: Turns outcomes into StandardizedMatchResult
        cache: Optional cache of accepted resolutions
    """

    def __init__(
        self,
        stages: Sequence[MatchStage],
        normalizer: Optional[ResultNormalizer] = None,
        cache: Optional[MatchCache] = None,
        inference_client: Optional[InferenceClient] = None,
    ):
        precedences = [stage.stage.precedence for stage in stages]
        if not stages or any(s.stage == MatchingStage.FAILED for s in stages):
            raise ConfigurationError("Orchestrator needs at least one real matching stage")
        if precedences != sorted(set(precedences)):
            raise ConfigurationError(
                "Stages must be unique and in precedence order",
                details={"stages": [s.stage.value for s in stages]},
            )
        self.stages = list(stages)
        self.normalizer = normalizer or ResultNormalizer()
        self.cache = cache
        self.inference_client = inference_client
        self._log = logger.bind(component="SequentialOrchestrator")

    async def match(
        self,
        competitor: CompetitorProduct,
        catalog: Sequence[CatalogProduct],
        source: str = "single",
        request_id: Optional[str] = None,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> StandardizedMatchResult:
        """Resolve ``competitor`` against ``catalog``.

        "No match" is a normal outcome and comes back as a result with
        stage ``failed``.

        Raises:
            CatalogError: If no catalog was provided
            ValidationFailed: If the competitor carries no usable signal
            AuthenticationError: If the inference service rejects our key
        """
        if catalog is None:
            raise CatalogError("No catalog provided for matching")
        validate_competitor(competitor)

        context = NormalizationContext(source=source, user_id=user_id, session_id=session_id)
        if request_id:
            context.request_id = request_id
        log = self._log.bind(request_id=context.request_id, competitor_sku=competitor.sku)

        key = None
        if self.cache is not None:
            key = cache_key(competitor, catalog_fingerprint(catalog))
            cached = self.cache.get(key)
            if cached is not None:
                log.debug("match_cache_hit", stage=cached.processing.stage.value)
                return self.normalizer.from_cache(cached, competitor, context)

        reasoning: List[str] = []
        tokens_used = 0

        for stage in self.stages:
            if not stage.available:
                context.steps.append(f"⚠️ {stage.skip_reason}")
                reasoning.append(stage.skip_reason)
                continue

            context.steps.append(attempt_step(stage))
            outcome = await stage.attempt(competitor, catalog)
            tokens_used += outcome.tokens_used

            if isinstance(outcome, Accepted):
                candidate = outcome.candidate
                context.steps.append(success_step(stage.stage, candidate.confidence))
                context.ai_tokens_used = tokens_used or None
                result = self.normalizer.normalize(
                    competitor,
                    candidate,
                    stage.stage,
                    [*reasoning, *candidate.reasoning],
                    context,
                )
                if key is not None:
                    self.cache.put(key, result)
                log.info(
                    "stage_accepted",
                    stage=stage.stage.value,
                    method=candidate.method.value,
                    matched_sku=candidate.our_sku,
                    confidence=round(candidate.confidence, 4),
                    processing_time_ms=result.processing_time_ms,
                )
                return result

            context.steps.append(failure_step(stage.stage))
            if outcome.note:
                reasoning.append(outcome.note)

        context.steps.append(NO_MATCH_STEP)
        context.ai_tokens_used = tokens_used or None
        result = self.normalizer.normalize_failed(competitor, reasoning, context)
        log.info("match_failed", processing_time_ms=result.processing_time_ms)
        return result

    async def close(self) -> None:
        if self.inference_client is not None:
            await self.inference_client.close()


def create_orchestrator(
    matching: Optional[MatchingSettings] = None,
    llm: Optional[LLMSettings] = None,
    inference_client: Optional[InferenceClient] = None,
    research_fallback: Optional[ResearchFallback] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> SequentialOrchestrator:
    """Composition root: wire the five stages from settings.

    Args:
        matching: Thresholds and tuning (defaults to MATCH_* env)
        llm: Inference settings (defaults to LLM_* env)
        inference_client: Use this client instead of building one
        research_fallback: Stage 5 collaborator (defaults to none)
        rate_limiter: Shared limiter for a client built here

    Returns:
        Ready-to-use orchestrator
    """
    matching = matching or default_matching_settings
    llm = llm or default_llm_settings

    if inference_client is None:
        inference_client = create_inference_client(llm, rate_limiter)

    spec_matcher = SpecificationMatcher(
        threshold=matching.specification_threshold,
        min_fields=matching.spec_min_fields,
        max_candidates=matching.max_candidates,
    )
    stages: List[MatchStage] = [
        ExactMatcher(
            threshold=matching.exact_threshold,
            max_candidates=matching.max_candidates,
        ),
        FuzzyMatcher(
            threshold=matching.fuzzy_threshold,
            field_floor=matching.fuzzy_field_floor,
            brand_bonus=matching.brand_bonus,
            confidence_cap=matching.fuzzy_confidence_cap,
            max_candidates=matching.max_candidates,
        ),
        spec_matcher,
        AIEnhancer(
            inference_client,
            threshold=matching.ai_threshold,
            shortlist_size=matching.ai_shortlist_size,
        ),
        ResearchStage(
            research_fallback or NullResearchFallback(),
            threshold=matching.research_threshold,
            spec_matcher=spec_matcher,
        ),
    ]

    cache = None
    if matching.cache_enabled:
        cache = MatchCache(
            ttl_seconds=matching.cache_ttl_seconds,
            max_entries=matching.cache_max_entries,
        )

    logger.info(
        "orchestrator_created",
        ai_enabled=inference_client is not None,
        cache_enabled=cache is not None,
        research_fallback=type(research_fallback).__name__ if research_fallback else None,
    )
    return SequentialOrchestrator(
        stages,
        normalizer=ResultNormalizer(),
        cache=cache,
        inference_client=inference_client,
    )
