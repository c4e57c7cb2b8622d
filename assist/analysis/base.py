"""
AnalysisProvider: abstract interface for the hosted-model capabilities the core relies on.

Each method is one opaque request/response. Implementations raise
ExternalAnalysisFailure (timeout, transport, rate limit) or MalformedAnalysisResponse
(unparseable structured output); they never return half-parsed data.
"""
from __future__ import annotations

import asyncio
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, TypeVar

from assist.errors import ExternalAnalysisFailure, MalformedAnalysisResponse
from assist.models import Sentiment, Speaker

T = TypeVar("T")


@dataclass(frozen=True)
class SentimentResult:
    sentiment: Sentiment
    confidence: float
    reasoning: str = ""


@dataclass(frozen=True)
class EscalationResult:
    should_escalate: bool
    confidence: float
    reasoning: str = ""


# Substitutes used by the pipeline when a sub-call fails.
NEUTRAL_SENTIMENT = SentimentResult(Sentiment.NEUTRAL, 0.5, "analysis unavailable")
NO_ESCALATION = EscalationResult(False, 0.5, "analysis unavailable")


@dataclass(frozen=True)
class CoachingContext:
    """What the coaching prompt knows about the call besides the latest text."""

    call_reason: str
    sentiment: Sentiment


@dataclass(frozen=True)
class AgentQueryContext:
    """Call context for a free-form agent question. All fields optional (no active call)."""

    call_reason: str | None = None
    sentiment: Sentiment | None = None
    duration_seconds: int | None = None
    recent_transcript: list[str] = field(default_factory=list)


class AnalysisProvider(ABC):
    """External analysis capabilities. All methods are async."""

    @abstractmethod
    async def classify_sentiment(self, text: str) -> SentimentResult:
        ...

    @abstractmethod
    async def classify_call_reason(self, text: str) -> str:
        """Lower-case category, e.g. billing_inquiry, technical_support."""
        ...

    @abstractmethod
    async def check_escalation(self, text: str, recent_context: list[str]) -> EscalationResult:
        """recent_context: 'Speaker: text' lines, oldest first, ending with the latest fragment."""
        ...

    @abstractmethod
    async def generate_coaching_text(self, role: Speaker, text: str, context: CoachingContext) -> str:
        """Suggestions when role is Customer, coaching tips when role is Agent."""
        ...

    @abstractmethod
    async def summarize_call(self, transcript_text: str) -> str:
        ...

    @abstractmethod
    async def answer_agent_query(self, query: str, context: AgentQueryContext) -> str:
        ...


async def with_timeout(kind: str, awaitable: Awaitable[T], timeout: float) -> T:
    """Await a provider call; a timeout becomes ExternalAnalysisFailure."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise ExternalAnalysisFailure(kind, f"timed out after {timeout}s") from e


def _checked_confidence(kind: str, value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedAnalysisResponse(kind, f"confidence is not a number: {value!r}")
    if math.isnan(value) or not 0.0 <= value <= 1.0:
        raise MalformedAnalysisResponse(kind, f"confidence out of range: {value!r}")
    return float(value)


def validate_sentiment(result: object) -> SentimentResult:
    """Reject provider output that is not a well-formed SentimentResult."""
    if not isinstance(result, SentimentResult) or not isinstance(result.sentiment, Sentiment):
        raise MalformedAnalysisResponse("sentiment", f"unexpected result {result!r}")
    _checked_confidence("sentiment", result.confidence)
    return result


def validate_escalation(result: object) -> EscalationResult:
    if not isinstance(result, EscalationResult) or not isinstance(result.should_escalate, bool):
        raise MalformedAnalysisResponse("escalation", f"unexpected result {result!r}")
    _checked_confidence("escalation", result.confidence)
    return result


def validate_call_reason(result: object) -> str:
    if not isinstance(result, str) or not result.strip():
        raise MalformedAnalysisResponse("call_reason", f"unexpected result {result!r}")
    return result.strip()
