"""Stage contract for the sequential matching chain.

Every stage implements ``attempt(competitor, catalog)`` and answers with
exactly one of two outcomes:

    - Accepted: a candidate cleared this stage's threshold; the chain stops
    - Continue: nothing cleared the bar; the chain moves to the next stage

Stages never touch orchestrator state. Whatever they learned travels
back inside the outcome (candidates, a reasoning note, tokens spent).
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Union

from crosswalk.models.products import CatalogProduct, CompetitorProduct
from crosswalk.models.results import MatchingMethod, MatchingStage


@dataclass
class MatchCandidate:
    """A catalog product proposed by one stage attempt.

    Created fresh per attempt and never shared across competitors.

    Attributes:
        our_sku: SKU of the proposed catalog product
        confidence: Certainty in [0, 1] (clamped on creation)
        method: How the stage arrived at the candidate
        reasoning: Ordered, human-readable justification
        product: The catalog record itself, when the stage has it
    """
    our_sku: str
    confidence: float
    method: MatchingMethod
    reasoning: List[str] = field(default_factory=list)
    product: Optional[CatalogProduct] = None

    def __post_init__(self):
        self.confidence = max(0.0, min(1.0, float(self.confidence)))


@dataclass
class Accepted:
    """The stage resolved the competitor."""
    candidate: MatchCandidate
    candidates: List[MatchCandidate] = field(default_factory=list)
    tokens_used: int = 0


@dataclass
class Continue:
    """The stage did not resolve the competitor; try the next one."""
    note: Optional[str] = None
    candidates: List[MatchCandidate] = field(default_factory=list)
    tokens_used: int = 0


StageOutcome = Union[Accepted, Continue]


def rank_candidates(candidates: List[MatchCandidate], limit: int) -> List[MatchCandidate]:
    """Sort by confidence descending; ties keep catalog order (stable sort)."""
    ranked = sorted(candidates, key=lambda c: c.confidence, reverse=True)
    return ranked[:limit]


def select(candidates: List[MatchCandidate], threshold: float) -> StageOutcome:
    """Accept the top-ranked candidate if it reaches ``threshold``."""
    if candidates and candidates[0].confidence >= threshold:
        return Accepted(candidate=candidates[0], candidates=candidates)
    return Continue(candidates=candidates)


class MatchStage(ABC):
    """Abstract base class for one stage of the matching chain.

    Subclasses set ``stage`` (their fixed position in the precedence
    order) and ``description`` (used in the processing-step trace).
    """

    stage: MatchingStage
    description: str = ""

    @property
    def available(self) -> bool:
        """Whether the stage can run at all (e.g. a client is configured)."""
        return True

    @property
    def skip_reason(self) -> str:
        return f"{self.description} skipped"

    @abstractmethod
    async def attempt(
        self,
        competitor: CompetitorProduct,
        catalog: Sequence[CatalogProduct],
    ) -> StageOutcome:
        """Try to resolve ``competitor`` against ``catalog``."""


class DeterministicStage(MatchStage):
    """A pure stage: ranked candidates from ``find_matches`` plus a threshold."""

    threshold: float = 0.6

    @abstractmethod
    def find_matches(
        self,
        competitor: CompetitorProduct,
        catalog: Sequence[CatalogProduct],
    ) -> List[MatchCandidate]:
        """Return candidates sorted by confidence descending."""

    async def attempt(
        self,
        competitor: CompetitorProduct,
        catalog: Sequence[CatalogProduct],
    ) -> StageOutcome:
        return select(self.find_matches(competitor, catalog), self.threshold)
