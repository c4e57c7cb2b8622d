"""
CallAnalyticsPipeline: per-fragment orchestration of attribution and analysis.

Steps for one fragment, strictly sequential:
1. Attribute speaker (unless the UI assigned one), append to transcript (last 50 kept),
   then notify the caller (on_accepted) before any analysis runs.
2. Sentiment -> session.sentiment.
3. Call reason, only while transcript length <= CALL_REASON_FRAGMENT_LIMIT; frozen afterwards.
4. Escalation check on the last fragments including this one; risk goes low -> high only.
5. Insights (coaching + contextual rules).
6. One AnalyticsUpdate, with a filler insight if nothing else applies.

Serialization: one asyncio.Lock per session, held for the whole fragment. Locks are FIFO,
so updates for a session come out in acceptance order regardless of how long each
external call takes. Different sessions interleave freely.

Failures of any external call, including results that are out of range or of the wrong
shape, are logged and replaced by neutral substitutes; the session keeps its previous
value for that field. Nothing from analysis propagates to the caller.

If the call ends while a fragment is in flight, the remaining steps still run (the caller
gets its update) but they no longer touch session state.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

from assist.analysis.base import (
    NEUTRAL_SENTIMENT,
    NO_ESCALATION,
    AnalysisProvider,
    EscalationResult,
    SentimentResult,
    validate_call_reason,
    validate_escalation,
    validate_sentiment,
    with_timeout,
)
from assist.config import get_settings
from assist.diarization.speaker_attributor import SpeakerAttributor
from assist.errors import ConcurrentFragmentOrderingViolation, ExternalAnalysisFailure, SessionNotFound
from assist.models import (
    CallSession,
    EscalationLevel,
    Sentiment,
    TranscriptFragment,
    format_transcript,
)
from assist.schemas.analytics import (
    AnalyticsUpdate,
    EscalationAlert,
    EscalationView,
    FragmentOut,
    InsightOut,
    SentimentView,
)
from assist.services.insight_engine import InsightEngine, filler_insight
from assist.session_store import SessionRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")

FragmentCallback = Callable[[TranscriptFragment], Awaitable[None]]


def sentiment_score(result: SentimentResult) -> float:
    if result.sentiment is Sentiment.POSITIVE:
        return round(result.confidence, 2)
    if result.sentiment is Sentiment.NEGATIVE:
        return -round(result.confidence, 2)
    return 0.0


class CallAnalyticsPipeline:
    def __init__(
        self,
        registry: SessionRegistry,
        attributor: SpeakerAttributor,
        provider: AnalysisProvider,
        insight_engine: InsightEngine | None = None,
        *,
        timeout: float | None = None,
        call_reason_limit: int | None = None,
        escalation_context: int | None = None,
        escalation_threshold: float | None = None,
    ) -> None:
        settings = get_settings()
        self._registry = registry
        self._attributor = attributor
        self._provider = provider
        self._timeout = timeout if timeout is not None else settings.ANALYSIS_TIMEOUT_SECONDS
        self._insights = insight_engine or InsightEngine(provider, timeout=self._timeout)
        self._call_reason_limit = (
            call_reason_limit if call_reason_limit is not None else settings.CALL_REASON_FRAGMENT_LIMIT
        )
        self._escalation_context = (
            escalation_context if escalation_context is not None else settings.ESCALATION_CONTEXT_FRAGMENTS
        )
        self._escalation_threshold = (
            escalation_threshold if escalation_threshold is not None else settings.ESCALATION_CONFIDENCE_THRESHOLD
        )
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    def forget(self, session_id: str) -> None:
        """Drop the per-session lock after the call ends. In-flight holders keep their reference."""
        self._locks.pop(session_id, None)

    async def process(
        self,
        session_id: str,
        fragment: TranscriptFragment,
        on_accepted: FragmentCallback | None = None,
    ) -> AnalyticsUpdate:
        """
        Run all steps for one fragment. Raises SessionNotFound if the call is unknown or ended
        before the fragment got its turn; ConcurrentFragmentOrderingViolation if it is stale.

        on_accepted is awaited once the fragment is attributed and appended, before analysis.
        """
        session = self._registry.get(session_id)
        # Sequence is taken before waiting on the lock: acceptance order.
        session.accepted_sequence += 1
        sequence = session.accepted_sequence
        async with self._lock_for(session_id):
            if not self._registry.is_live(session):
                raise SessionNotFound(session_id)
            if sequence <= session.processed_sequence:
                raise ConcurrentFragmentOrderingViolation(session_id, session.processed_sequence + 1, sequence)
            if sequence != session.processed_sequence + 1:
                logger.warning(
                    "Session %s: sequence gap (expected %s, got %s); earlier fragment was abandoned",
                    session_id,
                    session.processed_sequence + 1,
                    sequence,
                )
            try:
                return await self._run(session, fragment, on_accepted)
            finally:
                session.processed_sequence = sequence

    async def _call(
        self,
        session_id: str,
        kind: str,
        awaitable: Awaitable[Any],
        validate: Callable[[Any], T],
    ) -> T | None:
        """Bounded, validated external call. None on any failure (logged)."""
        try:
            return validate(await with_timeout(kind, awaitable, self._timeout))
        except ExternalAnalysisFailure as e:
            logger.warning("Session %s: %s analysis failed, using default: %s", session_id, kind, e)
        except Exception:
            logger.exception("Session %s: unexpected error in %s analysis", session_id, kind)
        return None

    async def _run(
        self,
        session: CallSession,
        fragment: TranscriptFragment,
        on_accepted: FragmentCallback | None,
    ) -> AnalyticsUpdate:
        sid = session.id
        registry = self._registry

        # 1. Attribution + append
        if fragment.speaker is None:
            previous = session.recent_fragments(self._escalation_context)
            fragment.speaker = self._attributor.attribute(sid, fragment.text, previous)
        speaker = fragment.speaker
        session.transcript.append(fragment)
        context_lines = format_transcript(session.recent_fragments(self._escalation_context)).splitlines()
        logger.info("Session %s: [%s] %s", sid, speaker.value, fragment.text)
        if on_accepted is not None:
            await on_accepted(fragment)

        # 2. Sentiment
        sentiment: SentimentResult | None = await self._call(
            sid, "sentiment", self._provider.classify_sentiment(fragment.text), validate_sentiment
        )
        if sentiment is None:
            sentiment = NEUTRAL_SENTIMENT
        elif registry.is_live(session):
            session.sentiment = sentiment.sentiment

        # 3. Call reason (early fragments only)
        if len(session.transcript) <= self._call_reason_limit:
            reason = await self._call(
                sid, "call_reason", self._provider.classify_call_reason(fragment.text), validate_call_reason
            )
            if reason is not None and registry.is_live(session):
                session.call_reason = reason

        # 4. Escalation
        escalation: EscalationResult | None = await self._call(
            sid,
            "escalation",
            self._provider.check_escalation(fragment.text, context_lines),
            validate_escalation,
        )
        if escalation is None:
            escalation = NO_ESCALATION
        alert: EscalationAlert | None = None
        if registry.is_live(session):
            session.last_escalation_confidence = escalation.confidence
            if escalation.should_escalate and escalation.confidence > self._escalation_threshold:
                if session.escalation_risk is not EscalationLevel.HIGH:
                    session.escalation_risk = EscalationLevel.HIGH
                    alert = EscalationAlert(
                        session_id=sid,
                        confidence=escalation.confidence,
                        reasoning=escalation.reasoning,
                        fragment_id=fragment.id,
                    )
                    logger.warning(
                        "Session %s: escalation required (%.2f): %s",
                        sid,
                        escalation.confidence,
                        escalation.reasoning,
                    )

        # 5. Insights
        insights = await self._insights.derive(session, fragment, speaker)
        if not insights:
            insights = [filler_insight()]
        if registry.is_live(session):
            session.insights.extend(insights)
        else:
            logger.info("Session %s ended during analysis; update not applied to session state", sid)

        # 6. Combined update
        return AnalyticsUpdate(
            session_id=sid,
            fragment=FragmentOut.from_fragment(fragment),
            sentiment=SentimentView(
                score=sentiment_score(sentiment),
                category=sentiment.sentiment,
                confidence=sentiment.confidence,
            ),
            call_reason=session.call_reason,
            escalation_risk=EscalationView(
                score=round(escalation.confidence * 100),
                level=session.escalation_risk,
                confidence=escalation.confidence,
            ),
            insights=[InsightOut.from_insight(i) for i in insights],
            escalation_alert=alert,
        )
