"""Runtime settings for review runs.

Settings can be built programmatically or read from environment variables:

    EXPERT_PANEL_MODEL (default: claude-sonnet-4-5)
    EXPERT_PANEL_TIMEOUT_SECONDS (default: 60)
    EXPERT_PANEL_MAX_RETRIES (default: 2)
        Retries on rate-limit errors inside the reasoning client.
    EXPERT_PANEL_MAX_TOKENS (default: 2000)
    EXPERT_PANEL_MAX_CONCURRENCY (default: 0)
        Cap on concurrent reasoning calls within one section; 0 means one
        call per assigned expert.
    EXPERT_PANEL_FALLBACK_SCORE (default: 70)
    EXPERT_PANEL_ENABLE_METRICS (default: true)
    EXPERT_PANEL_AUDIT_LOG (default: false)
        Prints every reasoning request and response to stdout.

The Anthropic API key is read by the SDK from ANTHROPIC_API_KEY.
"""

from __future__ import annotations

import os
from typing import Mapping, Optional

import pydantic as pd

DEFAULT_MODEL = "claude-sonnet-4-5"

_TRUE_VALUES = ("true", "1", "yes")


def _env_flag(env: Mapping[str, str], name: str, default: str) -> bool:
    return env.get(name, default).lower() in _TRUE_VALUES


class ReviewSettings(pd.BaseModel):
    model: str = DEFAULT_MODEL
    timeout_seconds: float = pd.Field(default=60.0, gt=0)
    max_retries: int = pd.Field(default=2, ge=0)
    max_tokens: int = pd.Field(default=2000, gt=0)
    max_concurrency: int = pd.Field(default=0, ge=0)
    fallback_score: int = pd.Field(default=70, ge=0, le=100)
    enable_metrics: bool = True
    audit_log: bool = False

    model_config = pd.ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ReviewSettings":
        """Build settings from environment variables.

        Args:
            env: Mapping to read from; defaults to os.environ

        Returns:
            ReviewSettings with unset variables left at their defaults
        """
        env = os.environ if env is None else env
        return cls(
            model=env.get("EXPERT_PANEL_MODEL", DEFAULT_MODEL),
            timeout_seconds=float(env.get("EXPERT_PANEL_TIMEOUT_SECONDS", "60")),
            max_retries=int(env.get("EXPERT_PANEL_MAX_RETRIES", "2")),
            max_tokens=int(env.get("EXPERT_PANEL_MAX_TOKENS", "2000")),
            max_concurrency=int(env.get("EXPERT_PANEL_MAX_CONCURRENCY", "0")),
            fallback_score=int(env.get("EXPERT_PANEL_FALLBACK_SCORE", "70")),
            enable_metrics=_env_flag(env, "EXPERT_PANEL_ENABLE_METRICS", "true"),
            audit_log=_env_flag(env, "EXPERT_PANEL_AUDIT_LOG", "false"),
        )
