"""Stage 4: AI-assisted matching through the inference service.

The service's answer is untrusted: it is parsed and validated against a
strict schema at the boundary and any deviation degrades to "no match"
instead of raising. Only authentication failures escape this stage.
"""
import json
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, ValidationError
from rapidfuzz import fuzz, process, utils

from crosswalk.errors.exceptions import AIError, AuthenticationError
from crosswalk.models.products import CatalogProduct, CompetitorProduct
from crosswalk.models.results import MatchingMethod, MatchingStage
from crosswalk.services.llm.client import InferenceClient
from crosswalk.services.llm.prompts import build_match_messages
from crosswalk.services.matching.base import Accepted, Continue, MatchCandidate, MatchStage, StageOutcome
from crosswalk.services.matching.normalizer import normalize, normalize_product_type

logger = structlog.get_logger(__name__)

NOT_CONFIGURED_REASON = "AI enhancement skipped — not configured"


class AIMatchResponse(BaseModel):
    """Expected JSON body from the inference service.

    Every field is required (``matched_sku`` may be null). Extra keys the
    model volunteers are ignored.
    """

    match_found: StrictBool
    matched_sku: Optional[StrictStr]
    confidence: float = Field(..., ge=0, le=1, strict=True)
    reasoning: List[StrictStr]

    model_config = ConfigDict(extra="ignore", frozen=True)


@dataclass
class ValidResponse:
    value: AIMatchResponse


@dataclass
class InvalidResponse:
    errors: List[str] = field(default_factory=list)


ParsedResponse = Union[ValidResponse, InvalidResponse]


def parse_ai_response(content: str) -> ParsedResponse:
    """Parse and schema-validate a raw response body. Never raises."""
    try:
        data = json.loads(content)
    except (json.JSONDecodeError, TypeError) as e:
        return InvalidResponse(errors=[f"Response is not JSON: {e}"])
    if not isinstance(data, dict):
        return InvalidResponse(errors=["Response is not a JSON object"])
    try:
        return ValidResponse(value=AIMatchResponse.model_validate(data))
    except ValidationError as e:
        return InvalidResponse(errors=[
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ])


def _product_text(product: CatalogProduct) -> str:
    parts = [product.sku, product.model, product.brand, product.product_type]
    return " ".join(p for p in parts if p)


def build_shortlist(
    competitor: CompetitorProduct,
    catalog: Sequence[CatalogProduct],
    size: int,
) -> List[CatalogProduct]:
    """Pick the catalog entries worth sending to the inference service.

    Small catalogs go out whole. Larger ones are narrowed to the
    competitor's equipment type (when known) and ranked by RapidFuzz
    WRatio against the competitor's identifying text.
    """
    if len(catalog) <= size:
        return list(catalog)

    pool = list(catalog)
    specs = competitor.specifications
    wanted_type = normalize_product_type(specs.product_type) if specs else ""
    if wanted_type:
        same_type = [p for p in pool if normalize_product_type(p.product_type) == wanted_type]
        if same_type:
            pool = same_type

    query = " ".join(p for p in (competitor.sku, competitor.model, competitor.company, competitor.description) if p)
    if not query or len(pool) <= size:
        return pool[:size]

    ranked = process.extract(
        query,
        [_product_text(p) for p in pool],
        scorer=fuzz.WRatio,
        processor=utils.default_process,
        limit=size,
    )
    return [pool[index] for _, _, index in ranked]


class AIEnhancer(MatchStage):
    """Rate-limited inference call with strict response validation.

    Attributes:
        client: Inference client, or None when AI matching is not configured
        threshold: Minimum returned confidence to accept the match
        shortlist_size: Catalog entries sent per request
    """

    stage = MatchingStage.AI_ENHANCED
    description = "AI-enhanced matching using HVAC knowledge"

    def __init__(
        self,
        client: Optional[InferenceClient],
        threshold: float = 0.6,
        shortlist_size: int = 20,
    ):
        self.client = client
        self.threshold = threshold
        self.shortlist_size = shortlist_size
        self._log = logger.bind(component="AIEnhancer")

    @property
    def available(self) -> bool:
        return self.client is not None

    @property
    def skip_reason(self) -> str:
        return NOT_CONFIGURED_REASON

    async def attempt(
        self,
        competitor: CompetitorProduct,
        catalog: Sequence[CatalogProduct],
    ) -> StageOutcome:
        if self.client is None:
            return Continue(note=NOT_CONFIGURED_REASON)

        shortlist = build_shortlist(competitor, catalog, self.shortlist_size)
        messages = build_match_messages(competitor, shortlist)

        try:
            response = await self.client.complete_json(messages)
        except AuthenticationError:
            raise
        except AIError as e:
            self._log.warning(
                "ai_request_failed",
                competitor_sku=competitor.sku,
                error_code=e.code,
                status_code=e.status_code,
                error=e.message,
            )
            return Continue(note=f"AI enhancement failed: {e.message}")

        tokens = response.tokens_used
        parsed = parse_ai_response(response.content)
        if isinstance(parsed, InvalidResponse):
            self._log.warning(
                "ai_response_invalid",
                competitor_sku=competitor.sku,
                errors=parsed.errors,
            )
            return Continue(note="AI response failed validation", tokens_used=tokens)

        answer = parsed.value
        if not answer.match_found or not answer.matched_sku:
            self._log.info("ai_no_match", competitor_sku=competitor.sku, tokens_used=tokens)
            return Continue(tokens_used=tokens)

        product = self._lookup(answer.matched_sku, catalog)
        if product is None:
            self._log.warning(
                "ai_unknown_sku",
                competitor_sku=competitor.sku,
                matched_sku=answer.matched_sku,
            )
            return Continue(
                note=f"AI suggested unknown SKU {answer.matched_sku}",
                tokens_used=tokens,
            )

        candidate = MatchCandidate(
            our_sku=product.sku,
            confidence=answer.confidence,
            method=MatchingMethod.AI_ENHANCED,
            reasoning=list(answer.reasoning),
            product=product,
        )
        if candidate.confidence < self.threshold:
            return Continue(candidates=[candidate], tokens_used=tokens)
        return Accepted(candidate=candidate, candidates=[candidate], tokens_used=tokens)

    @staticmethod
    def _lookup(sku: str, catalog: Sequence[CatalogProduct]) -> Optional[CatalogProduct]:
        for product in catalog:
            if product.sku == sku:
                return product
        wanted = normalize(sku)
        for product in catalog:
            if normalize(product.sku) == wanted:
                return product
        return None
