"""Team selector: choose the expert panel for a document.

One reasoning call proposes a panel; the proposal is then validated
against the candidate set and forced into the [MIN_PANEL, MAX_PANEL]
size range. Any failure returns the default balanced team.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import pydantic as pd

from expert_panel.review.catalog import REVIEW_EXPERTS, ExpertRegistry
from expert_panel.review.config import ReviewSettings
from expert_panel.review.contracts import (
    BusinessTemplate,
    ExpertPersona,
    TeamMember,
    TeamSelection,
    TeamSelectionPayload,
)
from expert_panel.review.llm_audit_logger import LLMAuditLogger, SpanContext
from expert_panel.review.reasoning import ReasoningClient, ReasoningError, ReasoningRequest

logger = logging.getLogger(__name__)

MIN_PANEL = 4
MAX_PANEL = 8

TEAM_SCHEMA_NAME = "expert_team_selection"
SELECTOR_ID = "chief-of-staff"

DEFAULT_PADDING = ("inv-001", "str-001", "mkt-001", "tech-001")

DEFAULT_TEAM_REASONING = (
    "Default balanced team selected to cover all major business plan areas including "
    "finance, strategy, marketing, sales, technology, and operations."
)

DEFAULT_TEAM = (
    TeamMember(
        expert_id="inv-001",
        role="Lead Financial Reviewer",
        rationale="Essential for evaluating financial projections and funding requirements",
    ),
    TeamMember(
        expert_id="str-001",
        role="Strategy Lead",
        rationale="Critical for assessing competitive positioning and strategic direction",
    ),
    TeamMember(
        expert_id="mkt-001",
        role="Marketing Specialist",
        rationale="Key for evaluating go-to-market strategy and customer acquisition",
    ),
    TeamMember(
        expert_id="sal-001",
        role="Revenue Analyst",
        rationale="Important for pricing strategy and sales scalability assessment",
    ),
    TeamMember(
        expert_id="tech-001",
        role="Technology Reviewer",
        rationale="Necessary for product and technology feasibility analysis",
    ),
    TeamMember(
        expert_id="ops-001",
        role="Operations Analyst",
        rationale="Required for operational plan and execution capability review",
    ),
)

EMPTY_DOCUMENT_MESSAGE = (
    "No specific content provided. Please select a balanced team covering all major "
    "business plan areas."
)

_SYSTEM_PROMPT = """You are the Chief of Staff, responsible for assembling the optimal expert team to review a business plan.

Available experts:
{experts}

Your task is to analyze the business plan content and select the most relevant experts for a comprehensive review. Consider:
1. The industry/sector of the business
2. The stage of the business (startup, growth, mature)
3. Key challenges and opportunities identified
4. Areas that need the most scrutiny

Respond in JSON format:
{{
  "selectedExperts": ["expert-id-1", "expert-id-2", ...],
  "reasoning": "Brief explanation of why this team composition was chosen",
  "teamComposition": [
    {{
      "expertId": "expert-id",
      "role": "Lead Reviewer / Supporting Analyst / Specialist",
      "rationale": "Why this expert is essential for this review"
    }}
  ]
}}

Select at least {min_panel} experts but no more than {max_panel}. Prioritize experts whose specialties align with the business plan's key areas."""


def build_system_prompt(
    candidates: Sequence[ExpertPersona],
    template: Optional[BusinessTemplate] = None,
) -> str:
    experts = "\n".join(f"- {e.id}: {e.name} ({e.category}) - {e.specialty}" for e in candidates)
    prompt = _SYSTEM_PROMPT.format(experts=experts, min_panel=MIN_PANEL, max_panel=MAX_PANEL)
    if template is None:
        return prompt

    candidate_ids = {e.id for e in candidates}
    preferred = [i for i in template.preferred_experts if i in candidate_ids]
    hint = f'This plan follows the "{template.name}" template.'
    if preferred:
        hint += f" Experts usually most relevant for this business type: {', '.join(preferred)}."
    return f"{prompt}\n\n{hint}"


def build_user_message(document_text: str) -> str:
    content = document_text.strip() or EMPTY_DOCUMENT_MESSAGE
    return (
        "Please analyze this business plan and select the optimal expert team for review:\n\n"
        f"{content}"
    )


class TeamSelector:
    """Selects a review panel of MIN_PANEL to MAX_PANEL experts.

    Args:
        client: Reasoning client used for the selection call
        registry: Full expert registry; padding ids are drawn from it
            first. A registry smaller than MIN_PANEL is padded with the
            fixed default ids. Defaults to the built-in registry.
        settings: Review settings (audit logging)
    """

    def __init__(
        self,
        client: ReasoningClient,
        registry: Optional[ExpertRegistry] = None,
        settings: Optional[ReviewSettings] = None,
    ) -> None:
        self.client = client
        self.registry = registry if registry is not None else ExpertRegistry(REVIEW_EXPERTS)
        self.settings = settings or ReviewSettings()
        self._audit = LLMAuditLogger.get(enabled=self.settings.audit_log)
        self._schema = TeamSelectionPayload.model_json_schema(by_alias=True)

    async def select_team(
        self,
        document_text: str = "",
        available_experts: Optional[Sequence[ExpertPersona]] = None,
        template: Optional[BusinessTemplate] = None,
    ) -> TeamSelection:
        """Select the expert panel for a document.

        Args:
            document_text: Raw document text, may be empty
            available_experts: Candidates offered to the model; defaults
                to the whole registry
            template: Optional business template; its preferred experts
                are offered to the model as a hint

        Returns:
            TeamSelection with 4 to 8 expert ids. ``used_fallback`` is
            True when the default team was returned after a failure.
        """
        candidates = list(available_experts) if available_experts is not None else list(self.registry)
        request = ReasoningRequest(
            system=build_system_prompt(candidates, template),
            user=build_user_message(document_text),
            schema_name=TEAM_SCHEMA_NAME,
            schema=self._schema,
            label=SELECTOR_ID,
        )

        with SpanContext(SELECTOR_ID):
            self._audit.log_request(
                SELECTOR_ID, "team-selection", request.system, request.user, model=self.client.model_id
            )
            try:
                response = await self.client.complete(request)
                payload = TeamSelectionPayload.model_validate(response.payload)
            except (ReasoningError, pd.ValidationError) as e:
                self._audit.log_error(SELECTOR_ID, "team-selection", e)
                logger.warning(f"[{SELECTOR_ID}] Team selection failed, using default team: {e}")
                return self.default_team()

            self._audit.log_response(
                SELECTOR_ID,
                "team-selection",
                response.raw_text,
                duration_ms=response.duration_ms,
                prompt_tokens=response.input_tokens,
                completion_tokens=response.output_tokens,
            )

        return self._validate(payload, candidates)

    def _validate(
        self, payload: TeamSelectionPayload, candidates: Sequence[ExpertPersona]
    ) -> TeamSelection:
        candidate_ids = {e.id for e in candidates}

        selected: List[str] = []
        for expert_id in payload.selected_experts:
            if expert_id not in candidate_ids or expert_id not in self.registry:
                logger.debug(f"[{SELECTOR_ID}] Dropping unknown expert '{expert_id}'")
                continue
            if expert_id in selected:
                continue
            selected.append(expert_id)

        if len(selected) > MAX_PANEL:
            logger.debug(f"[{SELECTOR_ID}] Truncating panel of {len(selected)} to {MAX_PANEL}")
            selected = selected[:MAX_PANEL]

        if len(selected) < MIN_PANEL:
            proposed = len(selected)
            selected = self._pad(selected)
            logger.info(
                f"[{SELECTOR_ID}] Padded panel from {proposed} to {len(selected)} experts: {selected}"
            )

        composition: List[TeamMember] = []
        seen = set()
        for member in payload.team_composition:
            if member.expert_id in selected and member.expert_id not in seen:
                seen.add(member.expert_id)
                composition.append(member)

        return TeamSelection(
            selected_experts=selected,
            reasoning=payload.reasoning,
            team_composition=composition,
        )

    def _pad(self, selected: List[str]) -> List[str]:
        padded = list(selected)
        # registry ids first; the fixed defaults only when the registry runs out
        padding_order = (
            [i for i in DEFAULT_PADDING if i in self.registry]
            + [i for i in self.registry.ids() if i not in DEFAULT_PADDING]
            + [i for i in DEFAULT_PADDING if i not in self.registry]
        )
        for expert_id in padding_order:
            if len(padded) >= MIN_PANEL:
                break
            if expert_id not in padded:
                padded.append(expert_id)
        return padded

    def default_team(self) -> TeamSelection:
        """The fixed balanced team, restricted to registry ids and padded to MIN_PANEL."""
        members = [m for m in DEFAULT_TEAM if m.expert_id in self.registry]
        selected = self._pad([m.expert_id for m in members])
        return TeamSelection(
            selected_experts=selected,
            reasoning=DEFAULT_TEAM_REASONING,
            team_composition=members,
            used_fallback=True,
        )
