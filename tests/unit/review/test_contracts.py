"""Tests for review contracts: clamping, truncation and section lifecycle."""

import pydantic as pd
import pytest

from expert_panel.review.contracts import (
    BusinessTemplate,
    Critique,
    CritiquePayload,
    ReviewContractError,
    SectionReview,
    SectionStatus,
    TeamMember,
    TeamSelectionPayload,
    clamp_score,
)

from conftest import make_section


def make_critique(expert_id: str, score: int, section_id: str = "alpha", **kwargs) -> Critique:
    return Critique(
        expert_id=expert_id,
        expert_name=f"Expert {expert_id}",
        section_id=section_id,
        insight="Insight",
        score=score,
        **kwargs,
    )


class TestCritique:
    @pytest.mark.parametrize("raw, expected", [(-5, 0), (0, 0), (55, 55), (100, 100), (140, 100)])
    def test_score_is_clamped(self, raw, expected):
        assert make_critique("e1", raw).score == expected

    def test_lists_are_truncated(self):
        critique = make_critique(
            "e1",
            80,
            recommendations=["r1", "r2", "r3", "r4"],
            concerns=["c1", "c2", "c3"],
        )
        assert critique.recommendations == ["r1", "r2", "r3"]
        assert critique.concerns == ["c1", "c2"]

    def test_critique_is_frozen(self):
        critique = make_critique("e1", 80)
        with pytest.raises(pd.ValidationError):
            critique.score = 10

    def test_fallback_flag_defaults_false(self):
        assert make_critique("e1", 80).is_fallback is False

    def test_clamp_score_coerces_to_int(self):
        assert clamp_score(72.9) == 72
        assert isinstance(clamp_score(50.0), int)


class TestSectionReview:
    def test_for_section_starts_pending(self):
        review = SectionReview.for_section(make_section("alpha", ["finance"]))
        assert review.status == SectionStatus.PENDING
        assert review.score is None
        assert review.critiques == []

    def test_complete_aggregates_critiques(self):
        review = SectionReview.for_section(make_section("alpha", ["finance"]))
        review.start()
        review.complete(
            [
                make_critique("e1", 80, recommendations=["a", "b"], concerns=["x"]),
                make_critique("e2", 91, recommendations=["b", "c"], concerns=["x", "y"]),
            ],
            ["e1", "e2"],
        )

        assert review.status == SectionStatus.COMPLETED
        assert review.score == 86
        assert review.recommendations == ["a", "b", "c"]
        assert review.concerns == ["x", "y"]

    def test_complete_requires_in_progress(self):
        review = SectionReview.for_section(make_section("alpha", ["finance"]))
        with pytest.raises(ReviewContractError):
            review.complete([make_critique("e1", 80)], ["e1"])

    def test_start_twice_is_rejected(self):
        review = SectionReview.for_section(make_section("alpha", ["finance"]))
        review.start()
        with pytest.raises(ReviewContractError):
            review.start()

    def test_missing_critique_is_rejected(self):
        review = SectionReview.for_section(make_section("alpha", ["finance"]))
        review.start()
        with pytest.raises(ReviewContractError):
            review.complete([make_critique("e1", 80)], ["e1", "e2"])
        assert review.status == SectionStatus.IN_PROGRESS

    def test_duplicate_critique_is_rejected(self):
        review = SectionReview.for_section(make_section("alpha", ["finance"]))
        review.start()
        with pytest.raises(ReviewContractError):
            review.complete([make_critique("e1", 80), make_critique("e1", 70)], ["e1", "e1"])

    def test_foreign_critique_is_rejected(self):
        review = SectionReview.for_section(make_section("alpha", ["finance"]))
        review.start()
        with pytest.raises(ReviewContractError):
            review.complete([make_critique("e1", 80), make_critique("e3", 70)], ["e1", "e2"])


class TestBusinessTemplate:
    def test_weight_defaults_to_one(self):
        template = BusinessTemplate(id="t", name="T", section_weights={"alpha": 1.5})
        assert template.weight_for("alpha") == 1.5
        assert template.weight_for("beta") == 1.0

    def test_guidance_defaults_to_empty(self):
        template = BusinessTemplate(id="t", name="T", guidance={"alpha": "Focus"})
        assert template.guidance_for("alpha") == "Focus"
        assert template.guidance_for("beta") == ""

    def test_non_positive_weight_rejected(self):
        with pytest.raises(pd.ValidationError):
            BusinessTemplate(id="t", name="T", section_weights={"alpha": 0})


class TestPayloads:
    def test_critique_payload_ignores_extra_fields(self):
        payload = CritiquePayload.model_validate(
            {"insight": "i", "score": 50, "recommendations": [], "concerns": [], "extra": 1}
        )
        assert payload.score == 50

    def test_critique_payload_requires_score(self):
        with pytest.raises(pd.ValidationError):
            CritiquePayload.model_validate({"insight": "i", "recommendations": [], "concerns": []})

    def test_team_payload_reads_camel_case(self):
        payload = TeamSelectionPayload.model_validate(
            {
                "selectedExperts": ["inv-001"],
                "reasoning": "r",
                "teamComposition": [{"expertId": "inv-001", "role": "Lead", "rationale": "why"}],
            }
        )
        assert payload.selected_experts == ["inv-001"]
        assert payload.team_composition == [
            TeamMember(expert_id="inv-001", role="Lead", rationale="why")
        ]

    def test_team_payload_schema_uses_aliases(self):
        schema = TeamSelectionPayload.model_json_schema(by_alias=True)
        assert "selectedExperts" in schema["properties"]
        assert "teamComposition" in schema["properties"]
