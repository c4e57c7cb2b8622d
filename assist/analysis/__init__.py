"""Analysis capabilities: abstract provider, strict result types, LLM-backed implementation."""
from .base import (
    NEUTRAL_SENTIMENT,
    NO_ESCALATION,
    AgentQueryContext,
    AnalysisProvider,
    CoachingContext,
    EscalationResult,
    SentimentResult,
    validate_call_reason,
    validate_escalation,
    validate_sentiment,
    with_timeout,
)
from .llm_provider import LLMAnalysisProvider

__all__ = [
    "NEUTRAL_SENTIMENT",
    "NO_ESCALATION",
    "AgentQueryContext",
    "AnalysisProvider",
    "CoachingContext",
    "EscalationResult",
    "LLMAnalysisProvider",
    "SentimentResult",
    "validate_call_reason",
    "validate_escalation",
    "validate_sentiment",
    "with_timeout",
]
