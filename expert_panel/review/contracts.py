"""Pydantic contracts for the expert review engine."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

import pydantic as pd

MAX_CRITIQUE_RECOMMENDATIONS = 3
MAX_CRITIQUE_CONCERNS = 2
MAX_SECTION_RECOMMENDATIONS = 5
MAX_SECTION_CONCERNS = 3
MIN_SCORE = 0
MAX_SCORE = 100


class ExpertPanelError(Exception):
    """Base class for errors raised by expert_panel."""


class ReviewContractError(ExpertPanelError):
    """A caller or internal invariant was violated.

    Raised for unknown section/expert/template ids, empty critique lists
    reaching the aggregator, and duplicate or missing critiques. These are
    programming errors, not runtime conditions to recover from.
    """


def clamp_score(value: float) -> int:
    """Clamp a score into [0, 100] and coerce it to int."""
    return int(min(MAX_SCORE, max(MIN_SCORE, value)))


class SectionDefinition(pd.BaseModel):
    id: str
    name: str
    description: str = ""
    guiding_questions: Tuple[str, ...] = ()
    expert_categories: FrozenSet[str] = frozenset()

    model_config = pd.ConfigDict(frozen=True, extra="forbid")


class ExpertPersona(pd.BaseModel):
    id: str
    name: str
    specialty: str
    category: str
    persona_instructions: str
    avatar: str = ""

    model_config = pd.ConfigDict(frozen=True, extra="forbid")


class BusinessTemplate(pd.BaseModel):
    """Business-type template: per-section weights, guidance and key metrics."""

    id: str
    name: str
    description: str = ""
    section_weights: Dict[str, float] = pd.Field(default_factory=dict)
    guidance: Dict[str, str] = pd.Field(default_factory=dict)
    key_metrics: Tuple[str, ...] = ()
    preferred_experts: Tuple[str, ...] = ()

    model_config = pd.ConfigDict(frozen=True, extra="forbid")

    @pd.field_validator("section_weights")
    @classmethod
    def _weights_positive(cls, weights: Dict[str, float]) -> Dict[str, float]:
        for section_id, weight in weights.items():
            if weight <= 0:
                raise ValueError(f"Weight for section '{section_id}' must be positive, got {weight}")
        return weights

    def weight_for(self, section_id: str) -> float:
        return self.section_weights.get(section_id, 1.0)

    def guidance_for(self, section_id: str) -> str:
        return self.guidance.get(section_id, "")


class Critique(pd.BaseModel):
    """One expert's scored evaluation of one section.

    Scores outside [0, 100] are clamped and the recommendation/concern
    lists are truncated on construction, so every instance satisfies the
    critique invariants regardless of what the reasoning service returned.
    """

    expert_id: str
    expert_name: str
    expert_avatar: str = ""
    section_id: str
    insight: str
    score: int
    recommendations: List[str] = pd.Field(default_factory=list)
    concerns: List[str] = pd.Field(default_factory=list)
    timestamp: datetime = pd.Field(default_factory=datetime.now)
    is_fallback: bool = False

    model_config = pd.ConfigDict(frozen=True, extra="forbid")

    @pd.field_validator("score", mode="before")
    @classmethod
    def _clamp(cls, value: float) -> int:
        return clamp_score(value)

    @pd.field_validator("recommendations")
    @classmethod
    def _cap_recommendations(cls, value: List[str]) -> List[str]:
        return value[:MAX_CRITIQUE_RECOMMENDATIONS]

    @pd.field_validator("concerns")
    @classmethod
    def _cap_concerns(cls, value: List[str]) -> List[str]:
        return value[:MAX_CRITIQUE_CONCERNS]


class SectionStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class SectionReview(pd.BaseModel):
    """Per-section consensus, filled as critiques arrive.

    The aggregate score and the deduplicated lists are only ever written
    by ``complete``, which runs the section aggregator over the critiques.
    """

    section_id: str
    section_name: str
    status: SectionStatus = SectionStatus.PENDING
    critiques: List[Critique] = pd.Field(default_factory=list)
    score: Optional[int] = None
    recommendations: List[str] = pd.Field(default_factory=list)
    concerns: List[str] = pd.Field(default_factory=list)

    model_config = pd.ConfigDict(extra="forbid")

    @classmethod
    def for_section(cls, section: SectionDefinition) -> "SectionReview":
        return cls(section_id=section.id, section_name=section.name)

    def start(self) -> None:
        if self.status != SectionStatus.PENDING:
            raise ReviewContractError(
                f"Section '{self.section_id}' cannot start from status '{self.status.value}'"
            )
        self.status = SectionStatus.IN_PROGRESS

    def complete(self, critiques: List[Critique], expected_expert_ids: List[str]) -> None:
        """Attach critiques, aggregate them and mark the section completed.

        Args:
            critiques: One critique per assigned expert, in any order
            expected_expert_ids: Ids of every expert assigned to this section

        Raises:
            ReviewContractError: If a critique is missing, duplicated or foreign
        """
        from expert_panel.review.aggregator import aggregate_section

        if self.status != SectionStatus.IN_PROGRESS:
            raise ReviewContractError(
                f"Section '{self.section_id}' cannot complete from status '{self.status.value}'"
            )

        received = [c.expert_id for c in critiques]
        if sorted(received) != sorted(expected_expert_ids) or len(set(received)) != len(received):
            raise ReviewContractError(
                f"Section '{self.section_id}' expected one critique per expert "
                f"{sorted(expected_expert_ids)}, got {sorted(received)}"
            )

        score, recommendations, concerns = aggregate_section(self.section_id, critiques)
        self.critiques = list(critiques)
        self.score = score
        self.recommendations = recommendations
        self.concerns = concerns
        self.status = SectionStatus.COMPLETED


class ConsolidatedReport(pd.BaseModel):
    overall_score: int
    sections: List[SectionReview] = pd.Field(default_factory=list)
    top_recommendations: List[str] = pd.Field(default_factory=list)
    key_concerns: List[str] = pd.Field(default_factory=list)
    section_scores: Dict[str, int] = pd.Field(default_factory=dict)
    template_id: Optional[str] = None
    weighted_score: Optional[int] = None
    generated_at: datetime = pd.Field(default_factory=datetime.now)

    model_config = pd.ConfigDict(frozen=True, extra="forbid")


class TeamMember(pd.BaseModel):
    expert_id: str = pd.Field(alias="expertId")
    role: str
    rationale: str

    model_config = pd.ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class TeamSelection(pd.BaseModel):
    selected_experts: List[str]
    reasoning: str
    team_composition: List[TeamMember] = pd.Field(default_factory=list)
    used_fallback: bool = False

    model_config = pd.ConfigDict(frozen=True, extra="forbid")


class CritiquePayload(pd.BaseModel):
    """Structured output requested from the reasoning service for one critique."""

    insight: str = pd.Field(description="Detailed analysis of the section")
    score: int = pd.Field(description="Score from 0-100")
    recommendations: List[str] = pd.Field(description="List of recommendations")
    concerns: List[str] = pd.Field(description="List of concerns")

    model_config = pd.ConfigDict(extra="ignore")


class TeamSelectionPayload(pd.BaseModel):
    """Structured output requested from the reasoning service for panel selection."""

    selected_experts: List[str] = pd.Field(
        alias="selectedExperts",
        description="List of expert IDs to include in the review team",
    )
    reasoning: str = pd.Field(description="Explanation of the team composition decision")
    team_composition: List[TeamMember] = pd.Field(
        alias="teamComposition",
        description="Detailed breakdown of each expert role",
    )

    model_config = pd.ConfigDict(extra="ignore", populate_by_name=True)


class ReviewState(str, Enum):
    """Lifecycle of one review run."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TokenMetrics(pd.BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    call_count: int = 0
    fallback_count: int = 0

    model_config = pd.ConfigDict(extra="forbid")


class TokenReport(pd.BaseModel):
    by_expert: Dict[str, TokenMetrics] = pd.Field(default_factory=dict)
    by_section: Dict[str, TokenMetrics] = pd.Field(default_factory=dict)
    total: TokenMetrics = pd.Field(default_factory=TokenMetrics)
    efficiency_flags: List[str] = pd.Field(default_factory=list)
    generated_at: str = ""

    model_config = pd.ConfigDict(extra="forbid")
