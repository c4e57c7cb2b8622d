"""
Schemas for what the core emits: per-fragment analytics updates, escalation alerts,
and the end-of-call summary. Wire format is camelCase.
"""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from assist.models import (
    EscalationLevel,
    Insight,
    Priority,
    Sentiment,
    Speaker,
    TranscriptFragment,
    unix_ms,
)


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FragmentOut(WireModel):
    """Attributed transcript fragment as sent to clients."""

    id: str
    session_id: str
    text: str
    speaker: Speaker
    timestamp: int = Field(..., description="unix_ms")
    confidence: float = Field(..., ge=0.0, le=1.0)
    manually_assigned: bool = False

    @classmethod
    def from_fragment(cls, fragment: TranscriptFragment) -> "FragmentOut":
        return cls(
            id=fragment.id,
            session_id=fragment.session_id,
            text=fragment.text,
            speaker=fragment.speaker or Speaker.AGENT,
            timestamp=fragment.timestamp,
            confidence=fragment.confidence,
            manually_assigned=fragment.manually_assigned,
        )


class InsightOut(WireModel):
    type: str
    message: str
    timestamp: int
    priority: Priority
    speaker: Speaker | None = None

    @classmethod
    def from_insight(cls, insight: Insight) -> "InsightOut":
        return cls(
            type=insight.type,
            message=insight.message,
            timestamp=insight.timestamp,
            priority=insight.priority,
            speaker=insight.speaker,
        )


class SentimentView(WireModel):
    score: float = Field(..., ge=-1.0, le=1.0, description="+confidence positive, -confidence negative, 0 neutral")
    category: Sentiment
    confidence: float = Field(..., ge=0.0, le=1.0)


class EscalationView(WireModel):
    score: int = Field(..., ge=0, le=100, description="round(confidence * 100) of the latest check")
    level: EscalationLevel = Field(..., description="Session risk; once high it stays high")
    confidence: float = Field(..., ge=0.0, le=1.0)


class EscalationAlert(WireModel):
    """Sent once per call, when the escalation risk first turns high."""

    session_id: str
    confidence: float
    reasoning: str = ""
    fragment_id: str | None = None
    timestamp: int = Field(default_factory=unix_ms)


class AnalyticsUpdate(WireModel):
    """One combined update per processed fragment. Always structurally valid, possibly degraded."""

    session_id: str
    fragment: FragmentOut
    sentiment: SentimentView
    call_reason: str
    escalation_risk: EscalationView
    insights: list[InsightOut] = Field(..., min_length=1)
    escalation_alert: EscalationAlert | None = Field(None, exclude=True)


class CallSummary(WireModel):
    session_id: str
    summary_text: str
    duration_seconds: int
    sentiment: Sentiment
    reason: str
    escalated: bool
    timestamp: int = Field(default_factory=unix_ms)
