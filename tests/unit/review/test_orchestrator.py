"""Tests for ReviewOrchestrator and the ReviewRun state machine."""

import asyncio
import logging
from unittest.mock import AsyncMock, Mock, patch

import pytest

from expert_panel.review.catalog import ExpertRegistry, ReviewCatalog, SectionCatalog, default_catalog
from expert_panel.review.config import ReviewSettings
from expert_panel.review.contracts import ReviewContractError, ReviewState, SectionStatus
from expert_panel.review.logging_utils import ReviewLogger
from expert_panel.review.orchestrator import ReviewOrchestrator, ReviewRun
from expert_panel.review.progress_logger import SectionProgressLogger
from expert_panel.review.reasoning import ReasoningError

from conftest import FakeReasoningClient, critique_payload, make_expert, make_section

SCENARIO_SCORES = {
    "alpha:fin-1": critique_payload(score=80, recommendations=["Tighten budget"]),
    "alpha:fin-2": critique_payload(score=90, recommendations=["Tighten budget", "Add KPIs"]),
    "beta:mkt-1": critique_payload(score=60, concerns=["No channel data"]),
    "beta:mkt-2": critique_payload(score=70, concerns=["No channel data", "Weak brand"]),
}


class TestReviewRun:
    def test_starts_not_started(self):
        run = ReviewRun()
        assert run.state == ReviewState.NOT_STARTED
        assert run.reviews == []
        assert run.started_at is None

    def test_valid_transitions(self):
        run = ReviewRun()
        assert run.transition_to(ReviewState.RUNNING).is_ok()
        assert run.started_at is not None
        assert run.transition_to(ReviewState.COMPLETED).is_ok()
        assert run.finished_at is not None
        assert run.is_terminal

    def test_running_to_cancelled(self):
        run = ReviewRun()
        run.transition_to(ReviewState.RUNNING)
        result = run.transition_to(ReviewState.CANCELLED)
        assert result.unwrap() == ReviewState.CANCELLED

    def test_invalid_transition_returns_err(self):
        run = ReviewRun()
        result = run.transition_to(ReviewState.COMPLETED)
        assert result.is_err()
        assert result.code == "INVALID_TRANSITION"
        assert run.state == ReviewState.NOT_STARTED

    def test_terminal_state_has_no_exits(self):
        run = ReviewRun()
        run.transition_to(ReviewState.RUNNING)
        run.transition_to(ReviewState.COMPLETED)
        assert not run.can_transition_to(ReviewState.RUNNING)
        assert run.transition_to(ReviewState.CANCELLED).is_err()

    def test_empty_run_report(self):
        assert ReviewRun().report().overall_score == 0


class TestExpertsForSection:
    def test_registry_order(self, small_catalog, fake_client, settings):
        orchestrator = ReviewOrchestrator(small_catalog, fake_client, settings)
        assert [e.id for e in orchestrator.experts_for_section("alpha")] == ["fin-1", "fin-2"]

    def test_unknown_section_raises(self, small_catalog, fake_client, settings):
        orchestrator = ReviewOrchestrator(small_catalog, fake_client, settings)
        with pytest.raises(ReviewContractError):
            orchestrator.experts_for_section("appendix")


class TestReviewSection:
    @pytest.mark.asyncio
    async def test_review_section(self, small_catalog, settings):
        client = FakeReasoningClient(replies=SCENARIO_SCORES)
        orchestrator = ReviewOrchestrator(small_catalog, client, settings)

        review = await orchestrator.review_section("alpha", "Budget text")

        assert review.status == SectionStatus.COMPLETED
        assert review.score == 85
        assert [c.expert_id for c in review.critiques] == ["fin-1", "fin-2"]
        assert review.recommendations == ["Tighten budget", "Add KPIs"]

    @pytest.mark.asyncio
    async def test_unknown_section_raises(self, small_catalog, fake_client, settings):
        orchestrator = ReviewOrchestrator(small_catalog, fake_client, settings)
        with pytest.raises(ReviewContractError):
            await orchestrator.review_section("appendix")
        assert fake_client.requests == []

    @pytest.mark.asyncio
    async def test_one_timeout_of_four_still_completes(self, settings, timeout_error):
        catalog = ReviewCatalog(
            sections=SectionCatalog([make_section("alpha", ["finance"])]),
            experts=ExpertRegistry([make_expert(f"fin-{i}", "finance") for i in range(1, 5)]),
        )
        client = FakeReasoningClient(
            replies={"alpha:fin-3": timeout_error}, default=critique_payload(score=90)
        )
        orchestrator = ReviewOrchestrator(catalog, client, settings)

        review = await orchestrator.review_section("alpha")

        assert review.status == SectionStatus.COMPLETED
        assert len(review.critiques) == 4
        assert [c.is_fallback for c in review.critiques] == [False, False, True, False]
        # (90 * 3 + 70) / 4
        assert review.score == 85

    @pytest.mark.asyncio
    async def test_experts_run_concurrently(self, settings):
        catalog = ReviewCatalog(
            sections=SectionCatalog([make_section("alpha", ["finance"])]),
            experts=ExpertRegistry([make_expert(f"fin-{i}", "finance") for i in range(1, 5)]),
        )
        client = FakeReasoningClient(delay=0.01)
        await ReviewOrchestrator(catalog, client, settings).review_section("alpha")
        assert client.max_in_flight == 4

    @pytest.mark.asyncio
    async def test_max_concurrency_bounds_fan_out(self):
        catalog = ReviewCatalog(
            sections=SectionCatalog([make_section("alpha", ["finance"])]),
            experts=ExpertRegistry([make_expert(f"fin-{i}", "finance") for i in range(1, 5)]),
        )
        settings = ReviewSettings(audit_log=False, max_concurrency=2)
        client = FakeReasoningClient(delay=0.01)

        review = await ReviewOrchestrator(catalog, client, settings).review_section("alpha")

        assert len(review.critiques) == 4
        assert client.max_in_flight == 2


class TestRunReview:
    @pytest.mark.asyncio
    async def test_scenario_scores(self, small_catalog, settings):
        client = FakeReasoningClient(replies=SCENARIO_SCORES)
        orchestrator = ReviewOrchestrator(small_catalog, client, settings)

        run = await orchestrator.run_review({"alpha": "A text", "beta": "B text"})

        assert run.state == ReviewState.COMPLETED
        assert [r.section_id for r in run.reviews] == ["alpha", "beta"]
        assert [r.score for r in run.reviews] == [85, 65]
        assert run.reviews[1].concerns == ["No channel data", "Weak brand"]
        assert run.report().overall_score == 75

    @pytest.mark.asyncio
    async def test_empty_document(self, small_catalog, fake_client, settings):
        run = await ReviewOrchestrator(small_catalog, fake_client, settings).run_review({})

        assert run.state == ReviewState.COMPLETED
        assert len(run.reviews) == 2
        assert len(fake_client.requests) == 4
        assert all("standard business plan expectations" in r.user for r in fake_client.requests)

    @pytest.mark.asyncio
    async def test_unknown_document_keys_ignored(self, small_catalog, fake_client, settings):
        run = await ReviewOrchestrator(small_catalog, fake_client, settings).run_review(
            {"alpha": "A", "appendix": "ignored"}
        )
        assert [r.section_id for r in run.reviews] == ["alpha", "beta"]
        assert not any("ignored" in r.user for r in fake_client.requests)

    @pytest.mark.asyncio
    async def test_always_failing_client(self, small_catalog, settings):
        client = FakeReasoningClient(default=ReasoningError("down", code="transport"))
        run = await ReviewOrchestrator(small_catalog, client, settings).run_review({})

        assert run.state == ReviewState.COMPLETED
        assert all(c.is_fallback for r in run.reviews for c in r.critiques)
        assert [r.score for r in run.reviews] == [70, 70]
        assert run.report().overall_score == 70

    @pytest.mark.asyncio
    async def test_sync_callback_called_per_section(self, small_catalog, fake_client, settings):
        callback = Mock()
        run = await ReviewOrchestrator(small_catalog, fake_client, settings).run_review(
            {}, on_section_complete=callback
        )
        assert callback.call_count == 2
        assert callback.call_args_list[0].args[0] is run.reviews[0]
        assert callback.call_args_list[0].args[0].status == SectionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_async_callback_awaited(self, small_catalog, fake_client, settings):
        callback = AsyncMock()
        await ReviewOrchestrator(small_catalog, fake_client, settings).run_review(
            {}, on_section_complete=callback
        )
        assert callback.await_count == 2

    @pytest.mark.asyncio
    async def test_sections_run_sequentially(self, small_catalog, settings):
        client = FakeReasoningClient(delay=0.01)
        await ReviewOrchestrator(small_catalog, client, settings).run_review({})
        assert client.max_in_flight == 2
        assert client.labels()[:2] == ["alpha:fin-1", "alpha:fin-2"]
        assert client.labels()[2:] == ["beta:mkt-1", "beta:mkt-2"]

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, small_catalog, fake_client, settings):
        cancel_event = asyncio.Event()
        cancel_event.set()

        run = await ReviewOrchestrator(small_catalog, fake_client, settings).run_review(
            {}, cancel_event=cancel_event
        )

        assert run.state == ReviewState.CANCELLED
        assert run.reviews == []
        assert fake_client.requests == []

    @pytest.mark.asyncio
    async def test_cancel_between_sections(self, small_catalog, fake_client, settings):
        cancel_event = asyncio.Event()

        def cancel_after_first(review):
            cancel_event.set()

        run = await ReviewOrchestrator(small_catalog, fake_client, settings).run_review(
            {}, on_section_complete=cancel_after_first, cancel_event=cancel_event
        )

        assert run.state == ReviewState.CANCELLED
        assert [r.section_id for r in run.reviews] == ["alpha"]
        assert run.reviews[0].status == SectionStatus.COMPLETED
        assert run.finished_at is not None

    @pytest.mark.asyncio
    async def test_cancel_mid_section_lets_calls_finish(self, small_catalog, settings):
        cancel_event = asyncio.Event()

        def responder(request):
            cancel_event.set()
            return critique_payload()

        client = FakeReasoningClient(responder=responder)
        run = await ReviewOrchestrator(small_catalog, client, settings).run_review(
            {}, cancel_event=cancel_event
        )

        assert run.state == ReviewState.CANCELLED
        assert len(run.reviews) == 1
        assert len(run.reviews[0].critiques) == 2

    @pytest.mark.asyncio
    async def test_section_subset(self, small_catalog, fake_client, settings):
        run = await ReviewOrchestrator(small_catalog, fake_client, settings).run_review(
            {}, section_ids=["beta"]
        )
        assert [r.section_id for r in run.reviews] == ["beta"]

    @pytest.mark.asyncio
    async def test_unknown_section_subset_raises(self, small_catalog, fake_client, settings):
        with pytest.raises(ReviewContractError):
            await ReviewOrchestrator(small_catalog, fake_client, settings).run_review(
                {}, section_ids=["appendix"]
            )

    @pytest.mark.asyncio
    async def test_expert_panel_restricts_experts(self, small_catalog, fake_client, settings):
        run = await ReviewOrchestrator(small_catalog, fake_client, settings).run_review(
            {}, expert_ids=["fin-2", "mkt-1"]
        )
        assert [c.expert_id for c in run.reviews[0].critiques] == ["fin-2"]
        assert [c.expert_id for c in run.reviews[1].critiques] == ["mkt-1"]

    @pytest.mark.asyncio
    async def test_panel_without_eligible_expert_uses_all(self, small_catalog, fake_client, settings):
        run = await ReviewOrchestrator(small_catalog, fake_client, settings).run_review(
            {}, expert_ids=["fin-1"]
        )
        assert [c.expert_id for c in run.reviews[1].critiques] == ["mkt-1", "mkt-2"]

    @pytest.mark.asyncio
    async def test_unknown_panel_expert_raises(self, small_catalog, fake_client, settings):
        with pytest.raises(ReviewContractError):
            await ReviewOrchestrator(small_catalog, fake_client, settings).run_review(
                {}, expert_ids=["nobody"]
            )

    @pytest.mark.asyncio
    async def test_template_weighted_report(self, small_catalog, settings):
        client = FakeReasoningClient(replies=SCENARIO_SCORES)
        run = await ReviewOrchestrator(small_catalog, client, settings).run_review(
            {}, template_id="weighted"
        )

        report = run.report()
        assert run.template_id == "weighted"
        assert report.overall_score == 75
        # (85 * 3 + 65 * 1) / 4
        assert report.weighted_score == 80
        assert "Stress unit economics." in client.requests[0].system

    @pytest.mark.asyncio
    async def test_unknown_template_raises(self, small_catalog, fake_client, settings):
        with pytest.raises(ReviewContractError):
            await ReviewOrchestrator(small_catalog, fake_client, settings).run_review(
                {}, template_id="space-mining"
            )

    @pytest.mark.asyncio
    async def test_token_report(self, small_catalog, fake_client, settings):
        run = await ReviewOrchestrator(small_catalog, fake_client, settings).run_review({})
        assert run.token_report is not None
        assert run.token_report.total.call_count == 4
        assert run.token_report.by_section["alpha"].total_tokens == 300

    @pytest.mark.asyncio
    async def test_metrics_disabled(self, small_catalog, fake_client):
        settings = ReviewSettings(audit_log=False, enable_metrics=False)
        run = await ReviewOrchestrator(small_catalog, fake_client, settings).run_review({})
        assert run.token_report is None

    @pytest.mark.asyncio
    async def test_progress_logger_sees_transitions(self, small_catalog, fake_client, settings):
        progress = Mock(spec=SectionProgressLogger)
        await ReviewOrchestrator(
            small_catalog, fake_client, settings, progress_logger=progress
        ).run_review({})

        transitions = [c.args for c in progress.log_transition.call_args_list]
        assert transitions == [("NOT_STARTED", "RUNNING"), ("RUNNING", "COMPLETED")]

    @pytest.mark.asyncio
    async def test_configured_review_logger_gets_run_context(self, small_catalog, fake_client, settings):
        review_logger = ReviewLogger.get()
        orchestrator = ReviewOrchestrator(small_catalog, fake_client, settings)

        with patch.object(review_logger.logger, "log") as log:
            run = await orchestrator.run_review({})

        level, message = log.call_args.args
        assert level == logging.INFO
        assert f"Review {ReviewState.COMPLETED.value}" in message
        assert log.call_args.kwargs["extra"]["context"]["run_id"] == run.run_id
        assert review_logger._context is None

    @pytest.mark.asyncio
    async def test_unconfigured_review_logger_left_alone(self, small_catalog, fake_client, settings):
        await ReviewOrchestrator(small_catalog, fake_client, settings).run_review({})
        assert ReviewLogger.current() is None

    @pytest.mark.asyncio
    async def test_default_catalog_full_run(self, fake_client, settings):
        catalog = default_catalog()
        run = await ReviewOrchestrator(catalog, fake_client, settings).run_review({})

        assert len(run.reviews) == 10
        expected_calls = sum(len(catalog.experts_for_section(s.id)) for s in catalog.sections)
        assert len(fake_client.requests) == expected_calls
