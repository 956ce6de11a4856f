"""Reasoning-call audit logger with trace/span IDs.

Every request to the reasoning service, its response and any error are
logged on the dedicated 'expert_panel.llm_audit' logger, tagged with the
trace id of the review run and the span id of the individual call so the
lines for one (section, expert) pair can be correlated with grep.
"""

from __future__ import annotations

import contextvars
import hashlib
import logging
import sys
import uuid
from typing import Optional


trace_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("trace_id", default="")
span_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("span_id", default="")
parent_span_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "parent_span_id", default=""
)


def generate_trace_id() -> str:
    """Generate a new trace ID."""
    return uuid.uuid4().hex[:16]


def generate_span_id() -> str:
    """Generate a new span ID."""
    return uuid.uuid4().hex[:8]


def get_trace_id() -> str:
    """Get current trace ID from context."""
    return trace_id_var.get()


def get_span_id() -> str:
    """Get current span ID from context."""
    return span_id_var.get()


class TraceContext:
    """Context manager that sets the trace ID for one review run."""

    def __init__(self, trace_id: Optional[str] = None, span_id: Optional[str] = None):
        self.trace_id = trace_id or generate_trace_id()
        self.span_id = span_id or generate_span_id()
        self._trace_token: Optional[contextvars.Token] = None
        self._span_token: Optional[contextvars.Token] = None

    def __enter__(self) -> "TraceContext":
        self._trace_token = trace_id_var.set(self.trace_id)
        self._span_token = span_id_var.set(self.span_id)
        return self

    def __exit__(self, *args) -> None:
        if self._span_token:
            span_id_var.reset(self._span_token)
        if self._trace_token:
            trace_id_var.reset(self._trace_token)


class SpanContext:
    """Context manager for a child span, one per reasoning call.

    asyncio tasks copy the context when created, so spans opened inside
    concurrently gathered critiques do not leak into each other.
    """

    def __init__(self, span_name: str = ""):
        self.span_name = span_name
        self.span_id = generate_span_id()
        self.parent_span_id = get_span_id()
        self._span_token: Optional[contextvars.Token] = None
        self._parent_token: Optional[contextvars.Token] = None

    def __enter__(self) -> "SpanContext":
        self._parent_token = parent_span_id_var.set(self.parent_span_id)
        self._span_token = span_id_var.set(self.span_id)
        return self

    def __exit__(self, *args) -> None:
        if self._span_token:
            span_id_var.reset(self._span_token)
        if self._parent_token:
            parent_span_id_var.reset(self._parent_token)


class LLMAuditFormatter(logging.Formatter):
    """Formatter that adds trace/span IDs to each record."""

    def format(self, record: logging.LogRecord) -> str:
        trace_id = get_trace_id()
        span_id = get_span_id()

        record.trace_id = trace_id if trace_id else "-"
        record.span_id = span_id if span_id else "-"

        return super().format(record)


class LLMAuditLogger:
    """Dedicated logger for reasoning-service I/O.

    Example:
        >>> audit = LLMAuditLogger.get(enabled=True)
        >>> with TraceContext():
        ...     audit.log_request("inv-001", "market-analysis", system, user)
        ...     audit.log_response("inv-001", "market-analysis", text, duration_ms=1234)
    """

    _instance: Optional["LLMAuditLogger"] = None

    def __init__(self, enabled: bool = False) -> None:
        self._enabled = enabled
        self._logger = logging.getLogger("expert_panel.llm_audit")
        self._logger.handlers.clear()
        if not enabled:
            self._logger.propagate = True
            return

        self._logger.setLevel(logging.DEBUG)
        self._logger.propagate = False

        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(logging.DEBUG)

        formatter = LLMAuditFormatter(
            fmt="%(asctime)s %(levelname)s [trace_id=%(trace_id)s span_id=%(span_id)s] %(message)s",
            datefmt="%H:%M:%S",
        )
        handler.setFormatter(formatter)
        self._logger.addHandler(handler)

    @classmethod
    def get(cls, enabled: bool = False) -> "LLMAuditLogger":
        """Get or create the singleton LLMAuditLogger instance."""
        if cls._instance is None or cls._instance._enabled != enabled:
            cls._instance = LLMAuditLogger(enabled)
        return cls._instance

    @staticmethod
    def compute_prompt_hash(system_prompt: str, user_message: str) -> str:
        """Compute a hash of the prompt for redundant call detection."""
        content = system_prompt + "\n" + user_message
        return hashlib.sha256(content.encode()).hexdigest()[:16]

    def log_request(
        self,
        expert_id: str,
        section_id: str,
        system_prompt: str,
        user_message: str,
        model: str = "",
    ) -> None:
        """Log a reasoning request with prompt sizes and a preview."""
        if not self._enabled:
            return

        prompt_preview = user_message[:200] + "..." if len(user_message) > 200 else user_message

        self._logger.debug(
            "[LLM_REQUEST] expert=%s section=%s model=%s",
            expert_id,
            section_id,
            model or "unknown",
        )
        self._logger.debug(
            "[LLM_PROMPT] system_prompt=%d chars | user_message=%d chars",
            len(system_prompt),
            len(user_message),
        )
        self._logger.debug(
            "[LLM_PROMPT_PREVIEW] %s",
            prompt_preview.replace("\n", "\\n"),
        )

    def log_response(
        self,
        expert_id: str,
        section_id: str,
        response: str,
        duration_ms: int = 0,
        prompt_tokens: int = 0,
        completion_tokens: int = 0,
    ) -> None:
        """Log a reasoning response."""
        if not self._enabled:
            return

        response_preview = response[:300] + "..." if len(response) > 300 else response

        self._logger.debug(
            "[LLM_RESPONSE] expert=%s section=%s duration=%dms tokens=%d",
            expert_id,
            section_id,
            duration_ms,
            prompt_tokens + completion_tokens,
        )
        self._logger.debug(
            "[LLM_RESPONSE_PREVIEW] %s",
            response_preview.replace("\n", "\\n"),
        )

    def log_error(
        self,
        expert_id: str,
        section_id: str,
        error: Exception,
    ) -> None:
        """Log a failed reasoning call."""
        if not self._enabled:
            return

        self._logger.error(
            "[LLM_ERROR] expert=%s section=%s error=%s: %s",
            expert_id,
            section_id,
            type(error).__name__,
            str(error),
        )

    def is_enabled(self) -> bool:
        """Check if audit logging is enabled."""
        return self._enabled
