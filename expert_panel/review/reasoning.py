"""Reasoning client: one structured prompt in, one JSON payload out.

The review engine treats the reasoning service as opaque. Anything that
implements ``ReasoningClient.complete`` can be plugged into the critique
invoker and team selector; ``AnthropicReasoningClient`` is the provided
implementation and uses forced tool use so the model's answer arrives as
schema-shaped JSON.

Retry policy lives here and only here: rate-limit errors are retried with
exponential backoff and jitter, every other failure is raised as a
``ReasoningError`` for the caller's fallback path to absorb.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import anthropic
import httpx

from expert_panel.review.config import ReviewSettings
from expert_panel.review.contracts import ExpertPanelError

logger = logging.getLogger(__name__)


class ReasoningError(ExpertPanelError):
    """A reasoning call failed.

    Attributes:
        code: One of "timeout", "rate_limit", "transport", "malformed", "unavailable"
    """

    def __init__(self, message: str, code: str = "transport") -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class ReasoningRequest:
    system: str
    user: str
    schema_name: str = "structured_output"
    schema: Optional[Dict[str, Any]] = None
    label: str = ""


@dataclass(frozen=True)
class ReasoningResponse:
    payload: Dict[str, Any]
    raw_text: str = ""
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    duration_ms: int = 0


class ReasoningClient(ABC):
    """Interface for the external reasoning service."""

    @property
    def model_id(self) -> str:
        return ""

    @abstractmethod
    async def complete(self, request: ReasoningRequest) -> ReasoningResponse:
        """Send one prompt and return the parsed structured payload.

        Raises:
            ReasoningError: On timeout, transport failure or malformed output
        """


def extract_json_object(text: str) -> str:
    """Cut the first JSON object out of a model response.

    Handles markdown code fences and leading or trailing prose.
    """
    text = text.strip()

    if text.startswith("```"):
        first_newline = text.find("\n")
        if first_newline != -1:
            text = text[first_newline + 1 :]
            if text.rstrip().endswith("```"):
                text = text.rstrip()[:-3]
        return text.strip()

    start = text.find("{")
    if start == -1:
        return text

    brace_count = 0
    end = start
    for i, char in enumerate(text[start:], start):
        if char == "{":
            brace_count += 1
        elif char == "}":
            brace_count -= 1
            if brace_count == 0:
                end = i + 1
                break

    return text[start:end] if end > start else text


def parse_json_response(text: str) -> Dict[str, Any]:
    """Parse a JSON object from raw model text.

    Raises:
        ReasoningError: With code "malformed" if no JSON object can be parsed
    """
    candidate = extract_json_object(text)
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ReasoningError(f"Response is not valid JSON: {e}", code="malformed") from e

    if not isinstance(parsed, dict):
        raise ReasoningError(
            f"Expected a JSON object, got {type(parsed).__name__}", code="malformed"
        )
    return parsed


def is_rate_limit_error(error_msg: str) -> bool:
    """Check if an error message describes a rate limit or overload."""
    rate_limit_indicators = [
        "429",
        "529",
        "rate limit",
        "rate_limit",
        "ratelimit",
        "too many requests",
        "overloaded",
    ]
    error_lower = error_msg.lower()
    return any(indicator in error_lower for indicator in rate_limit_indicators)


def calculate_backoff(attempt: int, base_delay: float = 2.0, max_delay: float = 60.0) -> float:
    """Exponential backoff with jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        base_delay: Delay for the first retry in seconds
        max_delay: Upper bound in seconds

    Returns:
        Backoff time in seconds
    """
    jitter = random.uniform(0, 0.5)
    return min(base_delay * (2**attempt) + jitter, max_delay)


@dataclass
class AnthropicReasoningClient(ReasoningClient):
    """Reasoning client backed by the Anthropic Messages API.

    The structured-output schema is sent as the input schema of a single
    tool the model is forced to call, so the tool input is the payload.
    If the model answers with text instead, the first JSON object in the
    text is parsed.
    """

    settings: ReviewSettings = field(default_factory=ReviewSettings.from_env)
    client: Optional[anthropic.AsyncAnthropic] = None
    base_backoff_seconds: float = 2.0

    @property
    def model_id(self) -> str:
        return self.settings.model

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self.client is None:
            if not os.environ.get("ANTHROPIC_API_KEY"):
                raise ReasoningError(
                    "Reasoning service unavailable. Set ANTHROPIC_API_KEY environment variable.",
                    code="unavailable",
                )
            self.client = anthropic.AsyncAnthropic(
                timeout=httpx.Timeout(self.settings.timeout_seconds, connect=10.0),
                max_retries=0,
            )
        return self.client

    def _build_kwargs(self, request: ReasoningRequest) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": self.settings.model,
            "max_tokens": self.settings.max_tokens,
            "system": request.system,
            "messages": [{"role": "user", "content": request.user}],
        }
        if request.schema is not None:
            kwargs["tools"] = [
                {
                    "name": request.schema_name,
                    "description": f"Return the {request.schema_name} result.",
                    "input_schema": request.schema,
                }
            ]
            kwargs["tool_choice"] = {"type": "tool", "name": request.schema_name}
        return kwargs

    async def complete(self, request: ReasoningRequest) -> ReasoningResponse:
        """Send one request, retrying only on rate limits.

        Raises:
            ReasoningError: On any unrecoverable failure
        """
        client = self._get_client()
        kwargs = self._build_kwargs(request)
        label = request.label or request.schema_name

        for attempt in range(self.settings.max_retries + 1):
            try:
                return await self._complete_once(client, kwargs, label)
            except ReasoningError as e:
                if e.code == "rate_limit" and attempt < self.settings.max_retries:
                    backoff = calculate_backoff(attempt, base_delay=self.base_backoff_seconds)
                    logger.warning(
                        f"[{label}] Rate limit hit (attempt {attempt + 1}/"
                        f"{self.settings.max_retries + 1}), retrying in {backoff:.1f}s..."
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise

        raise ReasoningError("Max retries exceeded", code="rate_limit")

    async def _complete_once(
        self, client: anthropic.AsyncAnthropic, kwargs: Dict[str, Any], label: str
    ) -> ReasoningResponse:
        start_time = time.monotonic()
        try:
            response = await asyncio.wait_for(
                client.messages.create(**kwargs),
                timeout=self.settings.timeout_seconds,
            )
        except (asyncio.TimeoutError, anthropic.APITimeoutError) as e:
            raise ReasoningError(
                f"Reasoning call timed out after {self.settings.timeout_seconds}s", code="timeout"
            ) from e
        except anthropic.RateLimitError as e:
            raise ReasoningError(str(e), code="rate_limit") from e
        except anthropic.APIStatusError as e:
            code = "rate_limit" if is_rate_limit_error(f"{e.status_code} {e}") else "transport"
            raise ReasoningError(f"API error {e.status_code}: {e}", code=code) from e
        except anthropic.APIError as e:
            raise ReasoningError(f"Transport error: {e}", code="transport") from e

        duration_ms = int((time.monotonic() - start_time) * 1000)

        payload: Optional[Dict[str, Any]] = None
        raw_text = ""
        for block in response.content:
            block_type = getattr(block, "type", "")
            if block_type == "tool_use" and payload is None:
                payload = dict(block.input) if isinstance(block.input, dict) else None
                raw_text = json.dumps(block.input)
            elif block_type == "text":
                raw_text += block.text

        if payload is None:
            if not raw_text.strip():
                raise ReasoningError(f"[{label}] Empty response from {self.settings.model}", code="malformed")
            payload = parse_json_response(raw_text)

        logger.debug(
            f"[{label}] Reasoning call completed: {response.usage.input_tokens}+"
            f"{response.usage.output_tokens} tokens, {duration_ms}ms"
        )

        return ReasoningResponse(
            payload=payload,
            raw_text=raw_text,
            model=self.settings.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            duration_ms=duration_ms,
        )
