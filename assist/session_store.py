"""
In-memory registry of live calls. session_id is generated on the backend at call start.

Exactly one CallSession per live session id. end() captures the terminal snapshot
synchronously and only then removes the session, so a summary can be built from
end-time state while in-flight analysis for that call is discarded (see is_live).
"""
from __future__ import annotations

import logging
import time
import uuid
from collections import deque

from assist.config import get_settings
from assist.errors import FragmentNotFound, SessionNotFound, SpeakerAlreadyCorrected
from assist.models import (
    CallSession,
    CallStatus,
    SessionSnapshot,
    Speaker,
    TranscriptFragment,
    VoiceActivityEvent,
)

logger = logging.getLogger(__name__)


def generate_session_id() -> str:
    """call_<unix_ms>_<random>. Unique in practice; not cryptographically guaranteed."""
    return f"call_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class SessionRegistry:
    """Owns session id -> CallSession for the lifetime of each call."""

    def __init__(
        self,
        transcript_max: int | None = None,
        insights_max: int | None = None,
        voice_activity_max: int | None = None,
    ) -> None:
        settings = get_settings()
        self._transcript_max = transcript_max or settings.TRANSCRIPT_MAX_FRAGMENTS
        self._insights_max = insights_max or settings.INSIGHTS_MAX
        self._voice_activity_max = voice_activity_max or settings.VOICE_ACTIVITY_MAX_EVENTS
        self._sessions: dict[str, CallSession] = {}

    def create(self, agent_id: str, caller_id: str) -> str:
        session_id = generate_session_id()
        while session_id in self._sessions:
            session_id = generate_session_id()
        self._sessions[session_id] = CallSession(
            id=session_id,
            agent_id=agent_id,
            caller_id=caller_id or "Unknown",
            transcript=deque(maxlen=self._transcript_max),
            insights=deque(maxlen=self._insights_max),
            voice_activity=deque(maxlen=self._voice_activity_max),
        )
        logger.info("Call started: %s (agent=%s, caller=%s)", session_id, agent_id, caller_id)
        return session_id

    def get(self, session_id: str) -> CallSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def is_live(self, session: CallSession) -> bool:
        """True only if this exact session object is still registered (not ended, not replaced)."""
        return self._sessions.get(session.id) is session

    def end(self, session_id: str) -> SessionSnapshot:
        """Mark completed, capture snapshot, then remove. Raises SessionNotFound."""
        session = self.get(session_id)
        session.end_time = time.time()
        session.status = CallStatus.COMPLETED
        snapshot = session.snapshot()
        del self._sessions[session_id]
        logger.info(
            "Call ended: %s after %ss (%s fragments)",
            session_id,
            snapshot.duration_seconds,
            len(snapshot.transcript),
        )
        return snapshot

    def update_fragment_speaker(
        self,
        session_id: str,
        fragment_id: str,
        new_speaker: Speaker,
    ) -> tuple[TranscriptFragment, Speaker]:
        """
        Apply a manual speaker correction. Returns (fragment, previous speaker).
        Raises SessionNotFound / FragmentNotFound, or SpeakerAlreadyCorrected on a second correction.
        """
        session = self.get(session_id)
        fragment = session.find_fragment(fragment_id)
        if fragment is None or fragment.speaker is None:
            raise FragmentNotFound(session_id, fragment_id)
        if fragment.manually_assigned:
            raise SpeakerAlreadyCorrected(
                f"Speaker for fragment {fragment_id} was already corrected to {fragment.speaker.value}"
            )
        previous = fragment.speaker
        fragment.speaker = new_speaker
        fragment.manually_assigned = True
        logger.info(
            "Updated speaker for fragment %s in %s: %s -> %s",
            fragment_id,
            session_id,
            previous.value,
            new_speaker.value,
        )
        return fragment, previous

    def record_voice_activity(self, session_id: str, kind: str) -> VoiceActivityEvent:
        session = self.get(session_id)
        event = VoiceActivityEvent(kind=kind)
        session.voice_activity.append(event)
        return event

    def list_sessions(self) -> list[CallSession]:
        return list(self._sessions.values())

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
