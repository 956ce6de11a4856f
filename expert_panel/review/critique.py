"""Critique invoker: one expert, one section, one scored critique."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import pydantic as pd

from expert_panel.review.config import ReviewSettings
from expert_panel.review.contracts import (
    BusinessTemplate,
    Critique,
    CritiquePayload,
    ExpertPersona,
    SectionDefinition,
)
from expert_panel.review.llm_audit_logger import LLMAuditLogger, SpanContext
from expert_panel.review.reasoning import (
    ReasoningClient,
    ReasoningError,
    ReasoningRequest,
)
from expert_panel.review.result import Err, Ok, Result
from expert_panel.review.utils.metrics import MetricsAggregator

logger = logging.getLogger(__name__)

CRITIQUE_SCHEMA_NAME = "expert_analysis"

FALLBACK_RECOMMENDATIONS = (
    "Provide more detailed content for thorough analysis",
    "Ensure all key questions are addressed",
)
FALLBACK_CONCERNS = (
    "Limited content available for analysis",
    "Key questions for this section may be unaddressed",
)

_JSON_FORMAT = """Provide your analysis in the following JSON format:
{
  "insight": "Your detailed analysis of this section (2-3 paragraphs)",
  "score": <number 0-100>,
  "recommendations": ["recommendation 1", "recommendation 2", "recommendation 3"],
  "concerns": ["concern 1", "concern 2"]
}"""

_TONE_RULE = (
    "Be professional, objective, and avoid dramatic vocabulary. "
    "Focus on practical recommendations."
)


def build_system_prompt(
    section: SectionDefinition,
    expert: ExpertPersona,
    template: Optional[BusinessTemplate] = None,
) -> str:
    """Build the system prompt for one (section, expert) critique.

    Args:
        section: Section under review
        expert: Persona giving the critique
        template: Optional business template adding section guidance and key metrics

    Returns:
        System prompt string
    """
    questions = "\n".join(f"{i}. {q}" for i, q in enumerate(section.guiding_questions, 1))
    parts = [
        expert.persona_instructions,
        f'You are reviewing the "{section.name}" section of a business plan.',
        f"Key questions to address:\n{questions}",
        _JSON_FORMAT,
        _TONE_RULE,
    ]

    if template is not None:
        guidance = template.guidance_for(section.id)
        context = [f'This plan follows the "{template.name}" template.']
        if guidance:
            context.append(f"Template guidance for this section: {guidance}")
        if template.key_metrics:
            context.append(f"Key metrics for this business type: {', '.join(template.key_metrics)}")
        parts.append("\n".join(context))

    return "\n\n".join(parts)


def build_user_message(section: SectionDefinition, excerpt: str) -> str:
    content = excerpt.strip() or (
        f"[Section content for {section.name} - analyzing based on standard business plan expectations]"
    )
    return (
        f'Please analyze this "{section.name}" section:\n\n'
        f"{content}\n\n"
        "Provide your expert assessment."
    )


def build_fallback_critique(
    section: SectionDefinition,
    expert: ExpertPersona,
    score: int = 70,
) -> Critique:
    """Deterministic critique used when the reasoning call fails.

    The content depends only on the section and expert, so identical
    inputs always produce identical fallbacks (timestamps aside).
    """
    questions = "; ".join(section.guiding_questions)
    return Critique(
        expert_id=expert.id,
        expert_name=expert.name,
        expert_avatar=expert.avatar,
        section_id=section.id,
        insight=(
            f"As {expert.name}, I would need more detailed content to provide a comprehensive "
            f"analysis of the {section.name} section. Based on standard business plan "
            f"expectations, this section should clearly address: {questions}."
        ),
        score=score,
        recommendations=list(FALLBACK_RECOMMENDATIONS),
        concerns=list(FALLBACK_CONCERNS),
        is_fallback=True,
    )


class CritiqueInvoker:
    """Turns one (section, excerpt, expert) triple into a Critique.

    ``try_critique`` surfaces failures as ``Err`` so callers can branch on
    them; ``critique`` never fails and substitutes the fallback critique.
    Retries are the reasoning client's concern, not this layer's.
    """

    def __init__(
        self,
        client: ReasoningClient,
        settings: Optional[ReviewSettings] = None,
    ) -> None:
        self.client = client
        self.settings = settings or ReviewSettings()
        self._audit = LLMAuditLogger.get(enabled=self.settings.audit_log)
        self._schema = CritiquePayload.model_json_schema()

    def build_request(
        self,
        section: SectionDefinition,
        excerpt: str,
        expert: ExpertPersona,
        template: Optional[BusinessTemplate] = None,
    ) -> ReasoningRequest:
        return ReasoningRequest(
            system=build_system_prompt(section, expert, template),
            user=build_user_message(section, excerpt),
            schema_name=CRITIQUE_SCHEMA_NAME,
            schema=self._schema,
            label=f"{section.id}:{expert.id}",
        )

    async def try_critique(
        self,
        section: SectionDefinition,
        excerpt: str,
        expert: ExpertPersona,
        template: Optional[BusinessTemplate] = None,
        metrics: Optional[MetricsAggregator] = None,
    ) -> Result[Critique]:
        """Make one reasoning call and validate the payload.

        Args:
            section: Section under review
            excerpt: Section text, may be empty
            expert: Persona giving the critique
            template: Optional business template
            metrics: Per-run aggregator to record token usage into

        Returns:
            Ok(Critique) on success, Err with the reasoning error code
            ("timeout", "transport", "malformed", ...) on failure
        """
        request = self.build_request(section, excerpt, expert, template)
        prompt_hash = LLMAuditLogger.compute_prompt_hash(request.system, request.user)

        with SpanContext(request.label):
            self._audit.log_request(
                expert.id, section.id, request.system, request.user, model=self.client.model_id
            )
            try:
                response = await self.client.complete(request)
                payload = CritiquePayload.model_validate(response.payload)
            except ReasoningError as e:
                return self._failed(expert, section, e, str(e), e.code, metrics, prompt_hash)
            except pd.ValidationError as e:
                return self._failed(
                    expert, section, e, f"Invalid critique payload: {e}", "malformed", metrics, prompt_hash
                )
            except asyncio.TimeoutError as e:
                return self._failed(
                    expert, section, e, "Reasoning call timed out", "timeout", metrics, prompt_hash
                )
            except Exception as e:
                logger.error(f"[{section.id}] Unexpected error from reasoning client for {expert.id}: {e}")
                return self._failed(
                    expert, section, e, f"{type(e).__name__}: {e}", "transport", metrics, prompt_hash
                )

            self._audit.log_response(
                expert.id,
                section.id,
                response.raw_text,
                duration_ms=response.duration_ms,
                prompt_tokens=response.input_tokens,
                completion_tokens=response.output_tokens,
            )
            self._record(
                metrics,
                expert,
                section,
                response.input_tokens,
                response.output_tokens,
                False,
                prompt_hash,
            )

        return Ok(
            Critique(
                expert_id=expert.id,
                expert_name=expert.name,
                expert_avatar=expert.avatar,
                section_id=section.id,
                insight=payload.insight,
                score=payload.score,
                recommendations=payload.recommendations,
                concerns=payload.concerns,
            )
        )

    async def critique(
        self,
        section: SectionDefinition,
        excerpt: str,
        expert: ExpertPersona,
        template: Optional[BusinessTemplate] = None,
        metrics: Optional[MetricsAggregator] = None,
    ) -> Critique:
        """Like ``try_critique`` but always returns a Critique."""
        result = await self.try_critique(section, excerpt, expert, template, metrics)
        if result.is_ok():
            return result.unwrap()

        logger.warning(
            f"[{section.id}] Expert {expert.id} failed ({result.code}): {result.error}; "
            "using fallback critique"
        )
        return build_fallback_critique(section, expert, score=self.settings.fallback_score)

    def _failed(
        self,
        expert: ExpertPersona,
        section: SectionDefinition,
        error: Exception,
        message: str,
        code: str,
        metrics: Optional[MetricsAggregator],
        prompt_hash: str,
    ) -> Err:
        self._audit.log_error(expert.id, section.id, error)
        self._record(metrics, expert, section, 0, 0, True, prompt_hash)
        return Err(message, code=code)

    @staticmethod
    def _record(
        metrics: Optional[MetricsAggregator],
        expert: ExpertPersona,
        section: SectionDefinition,
        prompt_tokens: int,
        completion_tokens: int,
        fallback: bool,
        prompt_hash: str,
    ) -> None:
        if metrics is None:
            return
        metrics.record_call(
            expert_id=expert.id,
            section_id=section.id,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            fallback=fallback,
            prompt_hash=prompt_hash,
        )
