"""Report compiler: consolidate completed section reviews into one report.

Pure functions, no network calls. ``compile_report`` builds the structured
``ConsolidatedReport`` and ``render_report`` turns it into markdown.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from expert_panel.review.aggregator import dedupe_preserving_order, round_half_up
from expert_panel.review.contracts import (
    BusinessTemplate,
    ConsolidatedReport,
    ReviewContractError,
    SectionReview,
    SectionStatus,
)

logger = logging.getLogger(__name__)

MAX_TOP_RECOMMENDATIONS = 10
MAX_KEY_CONCERNS = 5

REPORT_TITLE = "# Business Plan Review Report"
REPORT_FOOTER = "*Report generated by Chief of Staff SME Expert Team*"


def _weighted_score(reviews: Sequence[SectionReview], template: BusinessTemplate) -> int:
    total_weight = 0.0
    weighted_sum = 0.0
    for review in reviews:
        weight = template.weight_for(review.section_id)
        weighted_sum += weight * review.score
        total_weight += weight
    return round_half_up(weighted_sum / total_weight)


def compile_report(
    reviews: Sequence[SectionReview],
    template: Optional[BusinessTemplate] = None,
) -> ConsolidatedReport:
    """Compile completed section reviews into a ConsolidatedReport.

    Args:
        reviews: Completed SectionReviews in section order
        template: Optional business template; when given, a weighted
            score is reported alongside the unweighted overall score

    Returns:
        ConsolidatedReport. An empty review list yields overall score 0.

    Raises:
        ReviewContractError: If any review has not been completed
    """
    incomplete = [r.section_id for r in reviews if r.status != SectionStatus.COMPLETED]
    if incomplete:
        raise ReviewContractError(f"Cannot compile report with incomplete sections: {incomplete}")

    if not reviews:
        logger.debug("Compiling report with no section reviews")
        return ConsolidatedReport(
            overall_score=0,
            template_id=template.id if template else None,
        )

    overall_score = round_half_up(sum(r.score for r in reviews) / len(reviews))
    top_recommendations = dedupe_preserving_order(
        (rec for r in reviews for rec in r.recommendations), MAX_TOP_RECOMMENDATIONS
    )
    key_concerns = dedupe_preserving_order(
        (concern for r in reviews for concern in r.concerns), MAX_KEY_CONCERNS
    )

    report = ConsolidatedReport(
        overall_score=overall_score,
        sections=list(reviews),
        top_recommendations=top_recommendations,
        key_concerns=key_concerns,
        section_scores={r.section_id: r.score for r in reviews},
        template_id=template.id if template else None,
        weighted_score=_weighted_score(reviews, template) if template else None,
    )
    logger.debug(
        f"Compiled report: {len(reviews)} sections, overall={overall_score}, "
        f"weighted={report.weighted_score}"
    )
    return report


def _bullets(items: Sequence[str]) -> str:
    return "\n".join(f"- {item}" for item in items)


def render_report(report: ConsolidatedReport, expert_count: Optional[int] = None) -> str:
    """Render a ConsolidatedReport as markdown.

    Args:
        report: Report to render
        expert_count: Number of distinct reviewers; derived from the
            critiques when omitted

    Returns:
        Markdown document
    """
    if expert_count is None:
        expert_count = len({c.expert_id for s in report.sections for c in s.critiques})

    lines: List[str] = [
        REPORT_TITLE,
        "",
        "## Overall Assessment",
        "",
        f"**Overall Score: {report.overall_score}%**",
        "",
    ]
    if report.weighted_score is not None:
        lines += [f"**Template-Weighted Score: {report.weighted_score}%** ({report.template_id})", ""]
    lines += [
        f"Based on comprehensive analysis by {expert_count} expert reviewers "
        f"across {len(report.sections)} sections.",
        "",
        "---",
        "",
        "## Section-by-Section Analysis",
        "",
    ]

    for review in report.sections:
        lines += [
            f"### {review.section_name}",
            "",
            f"**Score: {review.score}%**",
            "",
            "#### Expert Insights",
            "",
        ]
        for critique in review.critiques:
            lines += [f"**{critique.expert_name}** ({critique.score}%)", critique.insight, ""]

        if review.recommendations:
            lines += ["#### Recommendations", _bullets(review.recommendations), ""]
        if review.concerns:
            lines += ["#### Concerns", _bullets(review.concerns), ""]

        lines += ["---", ""]

    lines += [
        "## Summary",
        "",
        "### Top Recommendations",
        _bullets(report.top_recommendations),
        "",
        "### Key Concerns to Address",
        _bullets(report.key_concerns),
        "",
        "---",
        "",
        REPORT_FOOTER,
        "",
    ]
    return "\n".join(lines)


def generate_consolidated_report(
    reviews: Sequence[SectionReview],
    template: Optional[BusinessTemplate] = None,
    expert_count: Optional[int] = None,
) -> str:
    """Compile and render in one call."""
    return render_report(compile_report(reviews, template), expert_count=expert_count)
