"""Shared pytest fixtures for expert-panel tests."""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from expert_panel.review.catalog import ExpertRegistry, ReviewCatalog, SectionCatalog, TemplateCatalog
from expert_panel.review.config import ReviewSettings
from expert_panel.review.contracts import BusinessTemplate, ExpertPersona, SectionDefinition
from expert_panel.review.llm_audit_logger import LLMAuditLogger
from expert_panel.review.logging_utils import ReviewLogger
from expert_panel.review.reasoning import (
    ReasoningClient,
    ReasoningError,
    ReasoningRequest,
    ReasoningResponse,
)

Reply = Union[Dict[str, Any], Exception]


def critique_payload(
    score: int = 75,
    insight: str = "Solid section.",
    recommendations: Optional[List[str]] = None,
    concerns: Optional[List[str]] = None,
) -> Dict[str, Any]:
    return {
        "insight": insight,
        "score": score,
        "recommendations": recommendations if recommendations is not None else ["Add detail"],
        "concerns": concerns if concerns is not None else ["Thin evidence"],
    }


class FakeReasoningClient(ReasoningClient):
    """Scripted reasoning client.

    ``replies`` maps a request label ("<section_id>:<expert_id>") to a
    payload dict or an exception to raise. ``responder`` takes precedence
    and is called with the request. Unscripted labels get ``default``.
    """

    def __init__(
        self,
        replies: Optional[Dict[str, Reply]] = None,
        responder: Optional[Callable[[ReasoningRequest], Reply]] = None,
        default: Optional[Reply] = None,
        delay: float = 0.0,
    ) -> None:
        self.replies = replies or {}
        self.responder = responder
        self.default = default if default is not None else critique_payload()
        self.delay = delay
        self.requests: List[ReasoningRequest] = []
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def model_id(self) -> str:
        return "fake-model"

    async def complete(self, request: ReasoningRequest) -> ReasoningResponse:
        self.requests.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.responder is not None:
                reply = self.responder(request)
            else:
                reply = self.replies.get(request.label, self.default)
            if isinstance(reply, Exception):
                raise reply
            return ReasoningResponse(
                payload=dict(reply),
                raw_text=str(reply),
                model=self.model_id,
                input_tokens=100,
                output_tokens=50,
                duration_ms=5,
            )
        finally:
            self.in_flight -= 1

    def labels(self) -> List[str]:
        return [r.label for r in self.requests]


def make_expert(expert_id: str, category: str, name: Optional[str] = None) -> ExpertPersona:
    return ExpertPersona(
        id=expert_id,
        name=name or f"Expert {expert_id}",
        specialty=f"{category} specialist",
        category=category,
        persona_instructions=f"You are Expert {expert_id}, focused on {category}.",
        avatar="",
    )


def make_section(section_id: str, categories: List[str], name: Optional[str] = None) -> SectionDefinition:
    return SectionDefinition(
        id=section_id,
        name=name or section_id.title(),
        description=f"The {section_id} section",
        guiding_questions=(f"Is {section_id} clear?", f"Is {section_id} credible?", "What is missing?"),
        expert_categories=frozenset(categories),
    )


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo ReviewLogger and LLMAuditLogger handler/propagate changes between tests."""
    yield
    ReviewLogger._instance = None
    LLMAuditLogger._instance = None
    audit_logger = logging.getLogger("expert_panel.llm_audit")
    audit_logger.handlers.clear()
    audit_logger.propagate = True
    package_logger = logging.getLogger("expert_panel")
    package_logger.handlers.clear()
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def settings():
    return ReviewSettings(audit_log=False)


@pytest.fixture
def small_catalog():
    """Two sections with two eligible experts each, plus one template."""
    sections = SectionCatalog(
        [
            make_section("alpha", ["finance"], name="Alpha Plan"),
            make_section("beta", ["marketing"], name="Beta Plan"),
        ]
    )
    experts = ExpertRegistry(
        [
            make_expert("fin-1", "finance"),
            make_expert("mkt-1", "marketing"),
            make_expert("fin-2", "finance"),
            make_expert("mkt-2", "marketing"),
        ]
    )
    templates = TemplateCatalog(
        [
            BusinessTemplate(
                id="weighted",
                name="Weighted",
                section_weights={"alpha": 3.0, "beta": 1.0},
                guidance={"alpha": "Stress unit economics."},
                key_metrics=("CAC", "LTV"),
            )
        ]
    )
    return ReviewCatalog(sections=sections, experts=experts, templates=templates)


@pytest.fixture
def fake_client():
    return FakeReasoningClient()


@pytest.fixture
def timeout_error():
    return ReasoningError("Reasoning call timed out after 60s", code="timeout")
