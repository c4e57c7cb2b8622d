"""Pydantic schemas for API request/response and WebSocket events."""
from assist.schemas.analytics import (
    AnalyticsUpdate,
    CallSummary,
    EscalationAlert,
    EscalationView,
    FragmentOut,
    InsightOut,
    SentimentView,
)
from assist.schemas.requests import (
    ChatRequest,
    ChatResponse,
    FragmentRequest,
    SpeakerCorrectionRequest,
    SpeakerLearningRequest,
    StartCallRequest,
    StartCallResponse,
    VoiceActivityRequest,
)

__all__ = [
    "AnalyticsUpdate",
    "CallSummary",
    "ChatRequest",
    "ChatResponse",
    "EscalationAlert",
    "EscalationView",
    "FragmentOut",
    "FragmentRequest",
    "InsightOut",
    "SentimentView",
    "SpeakerCorrectionRequest",
    "SpeakerLearningRequest",
    "StartCallRequest",
    "StartCallResponse",
    "VoiceActivityRequest",
]
