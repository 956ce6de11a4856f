"""Metrics aggregator for tracking reasoning-call token usage."""

import time
from datetime import datetime
from typing import Dict, List

from expert_panel.review.contracts import TokenMetrics, TokenReport


class MetricsAggregator:
    """Aggregates token usage across experts and sections for one review run.

    Tracks token consumption, call counts and fallbacks to produce an
    efficiency report and detect redundant prompts.

    Example:
        aggregator = MetricsAggregator()
        aggregator.record_call(
            expert_id="inv-001",
            section_id="market-analysis",
            prompt_tokens=500,
            completion_tokens=200,
            prompt_hash="abc123",
        )
        report = aggregator.generate_report()
    """

    def __init__(self):
        self._by_expert: Dict[str, TokenMetrics] = {}
        self._by_section: Dict[str, TokenMetrics] = {}
        self._call_hashes: Dict[str, float] = {}  # hash -> timestamp
        self._redundant_calls: List[str] = []

    def record_call(
        self,
        expert_id: str,
        section_id: str,
        prompt_tokens: int,
        completion_tokens: int,
        fallback: bool = False,
        prompt_hash: str = "",
    ) -> None:
        """Record a single reasoning call.

        Args:
            expert_id: Expert the call was made for
            section_id: Section under review
            prompt_tokens: Number of tokens in the prompt
            completion_tokens: Number of tokens in the completion
            fallback: True when the call failed and a fallback critique was used
            prompt_hash: Hash of the prompt for redundant call detection
        """
        # Same prompt within 60s counts as redundant
        if prompt_hash:
            now = time.monotonic()
            if prompt_hash in self._call_hashes:
                if now - self._call_hashes[prompt_hash] < 60:
                    self._redundant_calls.append(f"{expert_id}:{section_id}")
            self._call_hashes[prompt_hash] = now

        for key, bucket in ((expert_id, self._by_expert), (section_id, self._by_section)):
            if key not in bucket:
                bucket[key] = TokenMetrics()
            metrics = bucket[key]
            metrics.prompt_tokens += prompt_tokens
            metrics.completion_tokens += completion_tokens
            metrics.total_tokens += prompt_tokens + completion_tokens
            metrics.call_count += 1
            if fallback:
                metrics.fallback_count += 1

    def generate_report(self) -> TokenReport:
        """Generate a token usage report with efficiency flags.

        Returns:
            TokenReport with metrics by expert, by section, totals and
            any efficiency warnings.
        """
        total = TokenMetrics()
        for metrics in self._by_expert.values():
            total.prompt_tokens += metrics.prompt_tokens
            total.completion_tokens += metrics.completion_tokens
            total.total_tokens += metrics.total_tokens
            total.call_count += metrics.call_count
            total.fallback_count += metrics.fallback_count

        efficiency_flags: List[str] = []

        # Flag experts that fell back on at least half of their calls
        for expert_id, metrics in self._by_expert.items():
            if metrics.call_count and metrics.fallback_count * 2 >= metrics.call_count:
                efficiency_flags.append(
                    f"HIGH_FALLBACK: {expert_id} ({metrics.fallback_count}/{metrics.call_count} calls)"
                )

        if self._redundant_calls:
            efficiency_flags.append(
                f"REDUNDANT_CALLS: {len(self._redundant_calls)} duplicate prompts"
            )

        return TokenReport(
            by_expert={k: v.model_copy() for k, v in self._by_expert.items()},
            by_section={k: v.model_copy() for k, v in self._by_section.items()},
            total=total,
            efficiency_flags=efficiency_flags,
            generated_at=datetime.now().isoformat(),
        )
