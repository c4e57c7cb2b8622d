"""
CallAssistService: entry points used by the transport (HTTP and WebSocket).

start_call / submit_fragment / correct_speaker / end_call, plus voice activity,
the agent's free-form assistant questions, and speaker statistics.

Session lookup errors propagate (SessionNotFound). Analysis errors never do: the
pipeline always yields an update, and end_call always yields a summary.
"""
from __future__ import annotations

import logging
from collections import Counter

from assist.analysis.base import AgentQueryContext, AnalysisProvider, with_timeout
from assist.analysis.llm_provider import LLMAnalysisProvider
from assist.config import get_settings
from assist.diarization.speaker_attributor import SpeakerAttributor
from assist.errors import ConcurrentFragmentOrderingViolation, ExternalAnalysisFailure
from assist.models import Speaker, TranscriptFragment, format_transcript, new_fragment_id, unix_ms
from assist.schemas.analytics import AnalyticsUpdate, CallSummary
from assist.services.analytics_pipeline import CallAnalyticsPipeline, FragmentCallback
from assist.session_store import SessionRegistry
from assist.transcript.writer import TranscriptArchiveBase, create_transcript_archive

logger = logging.getLogger(__name__)

EMPTY_CALL_SUMMARY = "No conversation was recorded for this call."
SUMMARY_UNAVAILABLE = "Summary unavailable: the summarization service did not respond."
ASSISTANT_UNAVAILABLE = "Sorry, I can't answer right now. Please try again in a moment."

DEFAULT_CONFIDENCE = 0.95


class CallAssistService:
    def __init__(
        self,
        provider: AnalysisProvider | None = None,
        registry: SessionRegistry | None = None,
        attributor: SpeakerAttributor | None = None,
        archive: TranscriptArchiveBase | None = None,
        pipeline: CallAnalyticsPipeline | None = None,
        timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self.provider = provider or LLMAnalysisProvider()
        self.registry = registry or SessionRegistry()
        self.attributor = attributor or SpeakerAttributor()
        self.archive = archive or create_transcript_archive()
        self._timeout = timeout if timeout is not None else settings.ANALYSIS_TIMEOUT_SECONDS
        self.pipeline = pipeline or CallAnalyticsPipeline(
            self.registry, self.attributor, self.provider, timeout=self._timeout
        )

    def start_call(self, agent_id: str, caller_id: str) -> str:
        return self.registry.create(agent_id, caller_id)

    async def submit_fragment(
        self,
        session_id: str,
        text: str,
        speaker_hint: Speaker | None = None,
        client_timestamp: int | None = None,
        confidence: float | None = None,
        on_accepted: FragmentCallback | None = None,
    ) -> AnalyticsUpdate | None:
        """
        Accept one transcript fragment and return its analytics update.
        Returns None only if the update was dropped as out of order.
        on_accepted is awaited with the attributed fragment before analysis starts.
        """
        text = (text or "").strip()
        if not text:
            raise ValueError("Transcript text must not be empty")
        fragment = TranscriptFragment(
            id=new_fragment_id(),
            session_id=session_id,
            text=text,
            speaker=speaker_hint,
            timestamp=client_timestamp if client_timestamp is not None else unix_ms(),
            confidence=confidence if confidence is not None else DEFAULT_CONFIDENCE,
            manually_assigned=speaker_hint is not None,
        )
        try:
            return await self.pipeline.process(session_id, fragment, on_accepted)
        except ConcurrentFragmentOrderingViolation as e:
            logger.error("Dropping analytics update: %s", e)
            return None

    def correct_speaker(self, session_id: str, fragment_id: str, speaker: Speaker) -> TranscriptFragment:
        """Overwrite a fragment's speaker once and feed the correction to the attributor."""
        fragment, previous = self.registry.update_fragment_speaker(session_id, fragment_id, speaker)
        self.attributor.record_correction(session_id, fragment, previous, speaker)
        return fragment

    async def end_call(self, session_id: str) -> CallSummary:
        """
        Snapshot and remove the session first (no waiting on in-flight analysis),
        then summarize from the snapshot.
        """
        snapshot = self.registry.end(session_id)
        self.pipeline.forget(session_id)

        if snapshot.transcript:
            try:
                summary_text = await with_timeout(
                    "summary",
                    self.provider.summarize_call(snapshot.transcript_text()),
                    self._timeout,
                )
                summary_text = (summary_text or "").strip() or SUMMARY_UNAVAILABLE
            except ExternalAnalysisFailure as e:
                logger.warning("Summary generation failed for %s: %s", session_id, e)
                summary_text = SUMMARY_UNAVAILABLE
            except Exception:
                logger.exception("Unexpected error summarizing %s", session_id)
                summary_text = SUMMARY_UNAVAILABLE
        else:
            summary_text = EMPTY_CALL_SUMMARY

        summary = CallSummary(
            session_id=snapshot.id,
            summary_text=summary_text,
            duration_seconds=snapshot.duration_seconds,
            sentiment=snapshot.sentiment,
            reason=snapshot.call_reason,
            escalated=snapshot.escalated,
        )
        await self.archive.save(snapshot, summary)
        return summary

    def record_voice_activity(self, session_id: str, kind: str) -> None:
        event = self.registry.record_voice_activity(session_id, kind)
        logger.debug("Session %s: %s at %s", session_id, event.kind, event.timestamp)

    async def ask_assistant(self, message: str, session_id: str | None = None) -> str:
        """Answer an agent's question using the live call (if any) as context."""
        context = AgentQueryContext()
        if session_id and session_id in self.registry:
            session = self.registry.get(session_id)
            recent = session.recent_fragments(get_settings().ESCALATION_CONTEXT_FRAGMENTS)
            context = AgentQueryContext(
                call_reason=session.call_reason,
                sentiment=session.sentiment,
                duration_seconds=session.duration_seconds(),
                recent_transcript=format_transcript(recent).splitlines(),
            )
        try:
            reply = await with_timeout(
                "agent_query", self.provider.answer_agent_query(message, context), self._timeout
            )
            return (reply or "").strip() or ASSISTANT_UNAVAILABLE
        except ExternalAnalysisFailure as e:
            logger.warning("Assistant query failed: %s", e)
            return ASSISTANT_UNAVAILABLE
        except Exception:
            logger.exception("Unexpected error answering assistant query")
            return ASSISTANT_UNAVAILABLE

    def speaker_stats(self, session_id: str | None = None) -> dict:
        stats = self.attributor.stats()
        if session_id:
            session = self.registry.get(session_id)
            by_speaker = Counter(f.speaker.value for f in session.transcript if f.speaker is not None)
            stats.update(
                {
                    "sessionId": session_id,
                    "totalTranscripts": len(session.transcript),
                    "bySpeaker": dict(by_speaker),
                    "correctedTranscripts": sum(1 for f in session.transcript if f.manually_assigned),
                    "voiceActivitySamples": len(session.voice_activity),
                }
            )
        return stats

    def set_speaker_learning(self, enabled: bool) -> bool:
        self.attributor.learning_enabled = enabled
        return self.attributor.learning_enabled

    def stats(self) -> dict:
        return {"activeCalls": len(self.registry)}
