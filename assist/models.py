"""
Call state: transcript fragments, insights, and the per-call session aggregate.

A CallSession is owned by SessionRegistry for its lifetime and mutated only by the
analytics pipeline and the manual speaker-correction path. On call end a frozen
SessionSnapshot is captured before the session is removed, so the summary is built
from end-time state even if analysis is still in flight.
"""
from __future__ import annotations

import time
import uuid
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum


class Speaker(str, Enum):
    AGENT = "Agent"
    CUSTOMER = "Customer"

    @property
    def other(self) -> "Speaker":
        return Speaker.CUSTOMER if self is Speaker.AGENT else Speaker.AGENT


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class EscalationLevel(str, Enum):
    LOW = "low"
    HIGH = "high"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    NORMAL = "normal"


class CallStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


UNKNOWN_REASON = "unknown"


def unix_ms() -> int:
    return int(time.time() * 1000)


def new_fragment_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class TranscriptFragment:
    """
    One unit of transcribed speech.

    speaker is None only between acceptance and attribution (inside the pipeline).
    After attribution it changes at most once, via manual correction, which also
    sets manually_assigned.
    """

    id: str
    session_id: str
    text: str
    speaker: Speaker | None = None
    timestamp: int = field(default_factory=unix_ms)  # unix_ms
    confidence: float = 0.95
    manually_assigned: bool = False


@dataclass(frozen=True)
class Insight:
    """Advisory message for the agent. Never mutated once created."""

    type: str
    message: str
    priority: Priority
    timestamp: int = field(default_factory=unix_ms)
    speaker: Speaker | None = None


@dataclass(frozen=True)
class VoiceActivityEvent:
    kind: str  # "speech_started" | "speech_stopped"
    timestamp: int = field(default_factory=unix_ms)


@dataclass
class CallSession:
    id: str
    agent_id: str
    caller_id: str
    start_time: float = field(default_factory=time.time)
    end_time: float | None = None
    status: CallStatus = CallStatus.ACTIVE
    transcript: deque[TranscriptFragment] = field(default_factory=lambda: deque(maxlen=50))
    sentiment: Sentiment = Sentiment.NEUTRAL
    call_reason: str = UNKNOWN_REASON
    escalation_risk: EscalationLevel = EscalationLevel.LOW
    last_escalation_confidence: float = 0.0
    insights: deque[Insight] = field(default_factory=lambda: deque(maxlen=5))
    voice_activity: deque[VoiceActivityEvent] = field(default_factory=lambda: deque(maxlen=100))
    # Ordering guard: sequence numbers handed out at acceptance / last one fully processed.
    accepted_sequence: int = 0
    processed_sequence: int = 0

    def duration_seconds(self, now: float | None = None) -> int:
        end = self.end_time if self.end_time is not None else (now if now is not None else time.time())
        return max(0, int(end - self.start_time))

    def recent_fragments(self, n: int) -> list[TranscriptFragment]:
        if n <= 0:
            return []
        return list(self.transcript)[-n:]

    def find_fragment(self, fragment_id: str) -> TranscriptFragment | None:
        for fragment in self.transcript:
            if fragment.id == fragment_id:
                return fragment
        return None

    def snapshot(self) -> "SessionSnapshot":
        return SessionSnapshot(
            id=self.id,
            agent_id=self.agent_id,
            caller_id=self.caller_id,
            start_time=self.start_time,
            end_time=self.end_time,
            status=self.status,
            transcript=tuple(replace(f) for f in self.transcript),
            sentiment=self.sentiment,
            call_reason=self.call_reason,
            escalation_risk=self.escalation_risk,
            insights=tuple(self.insights),
        )


@dataclass(frozen=True)
class SessionSnapshot:
    """Immutable copy of a session, taken synchronously at call end."""

    id: str
    agent_id: str
    caller_id: str
    start_time: float
    end_time: float | None
    status: CallStatus
    transcript: tuple[TranscriptFragment, ...]
    sentiment: Sentiment
    call_reason: str
    escalation_risk: EscalationLevel
    insights: tuple[Insight, ...]

    @property
    def duration_seconds(self) -> int:
        end = self.end_time if self.end_time is not None else time.time()
        return max(0, int(end - self.start_time))

    @property
    def escalated(self) -> bool:
        return self.escalation_risk is EscalationLevel.HIGH

    def transcript_text(self) -> str:
        """'Speaker: text' per line, in arrival order."""
        return format_transcript(self.transcript)


def format_transcript(fragments) -> str:
    lines = []
    for f in fragments:
        speaker = f.speaker.value if f.speaker is not None else "Unknown"
        lines.append(f"{speaker}: {f.text}")
    return "\n".join(lines)
