"""Review orchestrator: section-by-section fan-out over the expert panel.

Sections are processed one at a time in catalogue order. Within a section
every assigned expert is critiqued concurrently and the section completes
only when all of them have produced a critique (real or fallback).
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from datetime import datetime
from typing import Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Set, Union

from expert_panel.review.catalog import ReviewCatalog
from expert_panel.review.config import ReviewSettings
from expert_panel.review.contracts import (
    BusinessTemplate,
    ConsolidatedReport,
    Critique,
    ExpertPersona,
    ReviewContractError,
    ReviewState,
    SectionDefinition,
    SectionReview,
    TokenReport,
)
from expert_panel.review.critique import CritiqueInvoker
from expert_panel.review.llm_audit_logger import TraceContext
from expert_panel.review.logging_utils import ReviewLogger
from expert_panel.review.progress_logger import SectionProgressLogger
from expert_panel.review.reasoning import ReasoningClient
from expert_panel.review.report import compile_report
from expert_panel.review.result import Err, Ok, Result
from expert_panel.review.utils.metrics import MetricsAggregator

logger = logging.getLogger(__name__)

SectionCallback = Callable[[SectionReview], Union[None, Awaitable[None]]]

REVIEW_TRANSITIONS: Dict[ReviewState, Set[ReviewState]] = {
    ReviewState.NOT_STARTED: {ReviewState.RUNNING},
    ReviewState.RUNNING: {ReviewState.COMPLETED, ReviewState.CANCELLED},
    ReviewState.COMPLETED: set(),  # Terminal state
    ReviewState.CANCELLED: set(),  # Terminal state
}


class ReviewRun:
    """One review of one document.

    Holds the lifecycle state and the SectionReviews completed so far.
    A cancelled run keeps every section that finished before the
    cancellation was observed.
    """

    def __init__(self, template: Optional[BusinessTemplate] = None, run_id: Optional[str] = None):
        self.run_id = run_id or uuid.uuid4().hex[:16]
        self.template = template
        self.reviews: List[SectionReview] = []
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None
        self.token_report: Optional[TokenReport] = None
        self._state = ReviewState.NOT_STARTED

    @property
    def state(self) -> ReviewState:
        return self._state

    @property
    def template_id(self) -> Optional[str]:
        return self.template.id if self.template else None

    @property
    def is_terminal(self) -> bool:
        return not REVIEW_TRANSITIONS[self._state]

    def can_transition_to(self, next_state: ReviewState) -> bool:
        return next_state in REVIEW_TRANSITIONS.get(self._state, set())

    def transition_to(self, next_state: ReviewState) -> Result[ReviewState]:
        """Attempt to move the run to ``next_state``.

        Returns:
            Ok(next_state) if the transition is valid, otherwise
            Err with code "INVALID_TRANSITION" and the state unchanged
        """
        if self.can_transition_to(next_state):
            logger.debug(f"[run {self.run_id}] {self._state.value} -> {next_state.value}")
            self._state = next_state
            if next_state == ReviewState.RUNNING:
                self.started_at = datetime.now()
            elif self.is_terminal:
                self.finished_at = datetime.now()
            return Ok(next_state)

        error_msg = (
            f"Invalid transition: {self._state.value} -> {next_state.value}. "
            f"Valid transitions from {self._state.value}: "
            f"{[s.value for s in REVIEW_TRANSITIONS.get(self._state, set())]}"
        )
        return Err(error=error_msg, code="INVALID_TRANSITION")

    def report(self) -> ConsolidatedReport:
        """Compile the completed sections into a ConsolidatedReport."""
        return compile_report(self.reviews, template=self.template)


class ReviewOrchestrator:
    """Drives a review run over a catalogue of sections and experts.

    Example:
        orchestrator = ReviewOrchestrator(default_catalog(), AnthropicReasoningClient())
        run = await orchestrator.run_review({"executive-summary": "..."})
        print(render_report(run.report()))
    """

    def __init__(
        self,
        catalog: ReviewCatalog,
        client: ReasoningClient,
        settings: Optional[ReviewSettings] = None,
        invoker: Optional[CritiqueInvoker] = None,
        progress_logger: Optional[SectionProgressLogger] = None,
    ):
        self.catalog = catalog
        self.client = client
        self.settings = settings or ReviewSettings()
        self.invoker = invoker or CritiqueInvoker(client, self.settings)
        self.progress_logger = progress_logger

    def experts_for_section(self, section_id: str) -> List[ExpertPersona]:
        """Experts eligible for a section, in registry order.

        Raises:
            ReviewContractError: If the section id is unknown
        """
        return self.catalog.experts_for_section(section_id)

    def _resolve_template(self, template_id: Optional[str]) -> Optional[BusinessTemplate]:
        if template_id is None:
            return None
        return self.catalog.templates.get(template_id)

    def _resolve_panel(self, expert_ids: Optional[Iterable[str]]) -> Optional[Set[str]]:
        if expert_ids is None:
            return None
        return set(self.catalog.experts.subset(expert_ids).ids())

    def _assigned_experts(
        self, section: SectionDefinition, panel: Optional[Set[str]]
    ) -> List[ExpertPersona]:
        eligible = self.catalog.experts.for_categories(section.expert_categories)
        if not eligible:
            raise ReviewContractError(
                f"Section '{section.id}' has no eligible experts for categories "
                f"{sorted(section.expert_categories)}"
            )
        if panel is None:
            return eligible

        selected = [expert for expert in eligible if expert.id in panel]
        if not selected:
            logger.info(
                f"[{section.id}] No panel expert is eligible, using all "
                f"{len(eligible)} eligible experts"
            )
            return eligible
        return selected

    async def review_section(
        self,
        section_id: str,
        excerpt: str = "",
        template_id: Optional[str] = None,
        expert_ids: Optional[Iterable[str]] = None,
    ) -> SectionReview:
        """Review one section with all of its eligible experts.

        Args:
            section_id: Section to review
            excerpt: Section text, may be empty
            template_id: Optional business template id
            expert_ids: Optional panel restricting which experts take part

        Returns:
            Completed SectionReview

        Raises:
            ReviewContractError: If the section, template or any panel id is unknown
        """
        section = self.catalog.sections.get(section_id)
        template = self._resolve_template(template_id)
        experts = self._assigned_experts(section, self._resolve_panel(expert_ids))
        return await self._review_section(section, excerpt, experts, template, metrics=None)

    async def _review_section(
        self,
        section: SectionDefinition,
        excerpt: str,
        experts: List[ExpertPersona],
        template: Optional[BusinessTemplate],
        metrics: Optional[MetricsAggregator],
    ) -> SectionReview:
        review = SectionReview.for_section(section)
        review.start()

        logger.info(f"[{section.id}] Reviewing with {len(experts)} experts: {[e.id for e in experts]}")

        semaphore = (
            asyncio.Semaphore(self.settings.max_concurrency)
            if self.settings.max_concurrency > 0
            else None
        )

        async def critique_one(expert: ExpertPersona) -> Critique:
            if semaphore is None:
                return await self.invoker.critique(section, excerpt, expert, template, metrics)
            async with semaphore:
                return await self.invoker.critique(section, excerpt, expert, template, metrics)

        # gather preserves input order, so critiques stay in registry order
        critiques = await asyncio.gather(*(critique_one(expert) for expert in experts))

        review.complete(list(critiques), [expert.id for expert in experts])

        fallbacks = sum(1 for c in critiques if c.is_fallback)
        logger.info(
            f"[{section.id}] Completed: score={review.score}, "
            f"{len(critiques)} critiques ({fallbacks} fallback)"
        )
        return review

    async def run_review(
        self,
        document: Mapping[str, str],
        on_section_complete: Optional[SectionCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
        template_id: Optional[str] = None,
        section_ids: Optional[Iterable[str]] = None,
        expert_ids: Optional[Iterable[str]] = None,
    ) -> ReviewRun:
        """Review a document section by section.

        Args:
            document: Section id -> excerpt. Missing sections are reviewed
                with an empty excerpt; keys that are not catalogue sections
                are ignored.
            on_section_complete: Optional sync or async callback invoked
                with each SectionReview as it completes
            cancel_event: Optional event; when set, no further section is
                started. Calls already in flight finish normally.
            template_id: Optional business template id
            section_ids: Optional subset of sections to review (catalogue
                order is kept)
            expert_ids: Optional panel, e.g. from TeamSelector. A section
                with no eligible panel expert uses all eligible experts.

        Returns:
            ReviewRun in state COMPLETED or CANCELLED

        Raises:
            ReviewContractError: On unknown section, template or expert ids
        """
        template = self._resolve_template(template_id)
        panel = self._resolve_panel(expert_ids)
        sections = self._select_sections(section_ids)

        unknown_keys = [key for key in document if key not in self.catalog.sections]
        if unknown_keys:
            logger.debug(f"Ignoring document keys with no matching section: {unknown_keys}")

        metrics = MetricsAggregator() if self.settings.enable_metrics else None
        run = ReviewRun(template=template)
        self._transition(run, ReviewState.RUNNING)

        review_logger = ReviewLogger.current()
        if review_logger is not None:
            review_logger.set_context(run)

        with TraceContext(trace_id=run.run_id):
            logger.info(
                f"[run {run.run_id}] Starting review of {len(sections)} sections"
                + (f" with template '{template.id}'" if template else "")
            )

            for section in sections:
                if cancel_event is not None and cancel_event.is_set():
                    logger.info(
                        f"[run {run.run_id}] Cancelled before section '{section.id}' "
                        f"({len(run.reviews)}/{len(sections)} completed)"
                    )
                    self._transition(run, ReviewState.CANCELLED)
                    break

                experts = self._assigned_experts(section, panel)
                excerpt = document.get(section.id, "") or ""
                review = await self._review_section(section, excerpt, experts, template, metrics)
                run.reviews.append(review)

                if on_section_complete is not None:
                    callback_result = on_section_complete(review)
                    if inspect.isawaitable(callback_result):
                        await callback_result
            else:
                self._transition(run, ReviewState.COMPLETED)

        if metrics is not None:
            run.token_report = metrics.generate_report()
            for flag in run.token_report.efficiency_flags:
                logger.warning(f"[run {run.run_id}] {flag}")

        summary = f"[run {run.run_id}] Review {run.state.value}: {len(run.reviews)} sections reviewed"
        if review_logger is not None:
            review_logger.log_with_context(logging.INFO, summary)
            review_logger.set_context(None)
        else:
            logger.info(summary)
        return run

    def _select_sections(self, section_ids: Optional[Iterable[str]]) -> List[SectionDefinition]:
        if section_ids is None:
            return list(self.catalog.sections)
        wanted = set(section_ids)
        for section_id in wanted:
            self.catalog.sections.get(section_id)
        return [section for section in self.catalog.sections if section.id in wanted]

    def _transition(self, run: ReviewRun, next_state: ReviewState) -> None:
        previous = run.state
        result = run.transition_to(next_state)
        if result.is_err():
            raise ReviewContractError(result.error)
        if self.progress_logger is not None:
            self.progress_logger.log_transition(previous.name, next_state.name)
