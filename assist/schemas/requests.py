"""Request bodies for the call-assist HTTP API and WebSocket events."""
from __future__ import annotations

from typing import Literal

from pydantic import Field

from assist.models import Speaker
from assist.schemas.analytics import WireModel


class StartCallRequest(WireModel):
    agent_id: str = Field("agent", description="Agent identifier (WebSocket: connection id if absent)")
    caller_id: str = Field("Unknown", description="Caller identifier, e.g. phone number")


class StartCallResponse(WireModel):
    session_id: str
    status: str = "active"


class FragmentRequest(WireModel):
    text: str = Field(..., min_length=1, description="Transcribed text of one utterance")
    speaker: Speaker | None = Field(
        None,
        description="Manual speaker assignment from the UI; bypasses automatic attribution",
    )
    timestamp: int | None = Field(None, description="Client timestamp (unix_ms); server time if absent")
    confidence: float | None = Field(None, ge=0.0, le=1.0, description="STT confidence 0-1")


class SpeakerCorrectionRequest(WireModel):
    speaker: Speaker


class VoiceActivityRequest(WireModel):
    kind: Literal["speech_started", "speech_stopped"]


class ChatRequest(WireModel):
    message: str = Field(..., min_length=1, description="Agent question for the assistant")
    session_id: str | None = Field(None, description="Active call to use as context, if any")


class ChatResponse(WireModel):
    response: str
    timestamp: int


class SpeakerLearningRequest(WireModel):
    enabled: bool
