"""Console progress output for review runs.

Prints run state transitions, completed sections and the selected panel
with rich colors, or through the standard logger when color is disabled.
An instance can be passed directly as ``on_section_complete``.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

from rich.console import Console
from rich.text import Text

from expert_panel.review.contracts import SectionReview, TeamSelection
from expert_panel.review.llm_audit_logger import get_span_id, get_trace_id


class ProgressFormatter(logging.Formatter):
    """Formatter that includes the trace ID of the current run."""

    def format(self, record: logging.LogRecord) -> str:
        trace_id = get_trace_id()
        span_id = get_span_id()

        if trace_id and span_id:
            record.trace_info = f"[trace={trace_id} span={span_id}] "
        elif trace_id:
            record.trace_info = f"[trace={trace_id}] "
        else:
            record.trace_info = ""

        return super().format(record)


class SectionProgressLogger:
    """Colored progress output for sections and run state transitions."""

    STATE_COLORS: dict[str, str] = {
        "NOT_STARTED": "bold bright_black",
        "RUNNING": "bold yellow",
        "COMPLETED": "bold green",
        "CANCELLED": "bold orange3",
        "TRANSITION": "bold bright_black",
        "SECTION": "bold cyan",
        "TEAM": "bold magenta",
    }

    def __init__(self, enable_color: bool = True, console: Optional[Console] = None) -> None:
        self._enable_color = enable_color
        self._console = console or Console(force_terminal=enable_color)
        self._logger = logging.getLogger("expert_panel.progress")
        self._logger.setLevel(logging.DEBUG)

        if not self._logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setLevel(logging.DEBUG)
            handler.setFormatter(
                ProgressFormatter(
                    fmt="%(asctime)s %(levelname)s %(trace_info)s%(message)s",
                    datefmt="%H:%M:%S",
                )
            )
            self._logger.addHandler(handler)
            self._logger.propagate = False

    @staticmethod
    def score_style(score: Optional[int]) -> str:
        if score is None:
            return "dim"
        if score >= 80:
            return "bold green"
        if score >= 60:
            return "bold yellow"
        return "bold red"

    def get_state_color(self, state: str) -> str:
        return self.STATE_COLORS.get(state.upper(), "white")

    def log_transition(self, from_state: str, to_state: str) -> None:
        if self._enable_color:
            arrow = Text(" → ", style="bold dim")
            from_text = Text(from_state, style="dim")
            to_text = Text(to_state, style=self.get_state_color(to_state))
            label = Text("[TRANSITION] ", style=self.STATE_COLORS["TRANSITION"])

            self._console.print(label + from_text + arrow + to_text)
        else:
            self._logger.info("[TRANSITION] %s → %s", from_state, to_state)

    def log_section(self, review: SectionReview) -> None:
        fallbacks = sum(1 for c in review.critiques if c.is_fallback)

        if self._enable_color:
            label = Text(f"[{review.section_id}] ", style=self.STATE_COLORS["SECTION"])
            name = Text(f"{review.section_name} ", style="bold")
            score = Text(f"{review.score}%", style=self.score_style(review.score))
            detail = Text(f" ({len(review.critiques)} experts", style="dim")
            if fallbacks:
                detail += Text(f", {fallbacks} fallback", style="red")
            detail += Text(")", style="dim")

            self._console.print(label + name + score + detail)
            for critique in review.critiques:
                line = Text(f"  • {critique.expert_name}: ", style="dim")
                line += Text(f"{critique.score}%", style=self.score_style(critique.score))
                self._console.print(line)
        else:
            self._logger.info(
                "[%s] %s: score=%s, experts=%d, fallbacks=%d",
                review.section_id,
                review.section_name,
                review.score,
                len(review.critiques),
                fallbacks,
            )

    def log_team(self, selection: TeamSelection) -> None:
        if self._enable_color:
            label = Text("[TEAM] ", style=self.STATE_COLORS["TEAM"])
            source = " (default team)" if selection.used_fallback else ""
            self._console.print(label + Text(", ".join(selection.selected_experts) + source))
            for member in selection.team_composition:
                self._console.print(Text(f"  • {member.expert_id}: {member.role}", style="dim"))
        else:
            self._logger.info(
                "[TEAM] %s%s",
                ", ".join(selection.selected_experts),
                " (default team)" if selection.used_fallback else "",
            )

    def __call__(self, review: SectionReview) -> None:
        self.log_section(review)
