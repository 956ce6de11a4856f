"""Section aggregation: consensus score and deduplicated advice."""

from __future__ import annotations

import logging
import math
from typing import Iterable, List, Sequence, Tuple

from expert_panel.review.contracts import (
    MAX_SECTION_CONCERNS,
    MAX_SECTION_RECOMMENDATIONS,
    Critique,
    ReviewContractError,
)

logger = logging.getLogger(__name__)


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (85.5 -> 86)."""
    return int(math.floor(value + 0.5))


def mean_score(scores: Sequence[int]) -> int:
    """Rounded arithmetic mean of integer scores.

    Summing integers is exact, so the result does not depend on the order
    in which the scores arrived.

    Raises:
        ReviewContractError: If scores is empty
    """
    if not scores:
        raise ReviewContractError("Cannot compute a mean score of zero critiques")
    return round_half_up(sum(scores) / len(scores))


def dedupe_preserving_order(items: Iterable[str], limit: int) -> List[str]:
    """Drop exact-duplicate strings, keep first-seen order, cap at ``limit``."""
    seen = set()
    deduped: List[str] = []

    for item in items:
        if item in seen:
            continue
        seen.add(item)
        deduped.append(item)
        if len(deduped) >= limit:
            break

    return deduped


def aggregate_section(
    section_id: str, critiques: Sequence[Critique]
) -> Tuple[int, List[str], List[str]]:
    """Aggregate all critiques for one section.

    Args:
        section_id: Section the critiques belong to
        critiques: Every critique produced for the section (at least one)

    Returns:
        Tuple of (score, recommendations, concerns) where score is the
        rounded mean, recommendations are capped at 5 and concerns at 3

    Raises:
        ReviewContractError: If critiques is empty or contains a critique
            for another section
    """
    if not critiques:
        raise ReviewContractError(f"Section '{section_id}' has no critiques to aggregate")

    foreign = [c.expert_id for c in critiques if c.section_id != section_id]
    if foreign:
        raise ReviewContractError(
            f"Critiques from {foreign} do not belong to section '{section_id}'"
        )

    score = mean_score([c.score for c in critiques])
    recommendations = dedupe_preserving_order(
        (r for c in critiques for r in c.recommendations), MAX_SECTION_RECOMMENDATIONS
    )
    concerns = dedupe_preserving_order(
        (item for c in critiques for item in c.concerns), MAX_SECTION_CONCERNS
    )

    logger.debug(
        f"[{section_id}] Aggregated {len(critiques)} critiques: score={score}, "
        f"{len(recommendations)} recommendations, {len(concerns)} concerns"
    )
    return score, recommendations, concerns
