"""
Insights for the agent: one model-generated coaching insight per fragment plus
contextual rules evaluated on the session snapshot.

Order of output: coaching (or the generic fallback when the model call fails),
then long-call, then negative-sentiment. The contextual rules do not depend on
coaching: after a coaching failure the fallback is emitted and the rules still run.
"""
from __future__ import annotations

import logging
import time

from assist.analysis.base import AnalysisProvider, CoachingContext, with_timeout
from assist.config import get_settings
from assist.errors import ExternalAnalysisFailure
from assist.models import (
    UNKNOWN_REASON,
    CallSession,
    EscalationLevel,
    Insight,
    Priority,
    Sentiment,
    Speaker,
    TranscriptFragment,
)

logger = logging.getLogger(__name__)

FALLBACK_MESSAGE = "Continue active listening and maintain professional tone."
FILLER_MESSAGE = "Continue conversation to get more insights"
LONG_CALL_MESSAGE = (
    "Call is running long without clear reason identification. Consider asking clarifying questions."
)
NEGATIVE_SENTIMENT_MESSAGE = "Customer sentiment is negative. Focus on empathy and active listening."

# Coaching text at or below this length is treated as no suggestion.
MIN_COACHING_CHARS = 10


def filler_insight() -> Insight:
    return Insight(type="tip", message=FILLER_MESSAGE, priority=Priority.LOW)


def fallback_insight() -> Insight:
    return Insight(type="system_message", message=FALLBACK_MESSAGE, priority=Priority.LOW)


class InsightEngine:
    def __init__(
        self,
        provider: AnalysisProvider,
        long_call_seconds: int | None = None,
        timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self._provider = provider
        self._long_call_seconds = long_call_seconds if long_call_seconds is not None else settings.LONG_CALL_SECONDS
        self._timeout = timeout if timeout is not None else settings.ANALYSIS_TIMEOUT_SECONDS

    def contextual_insights(self, session: CallSession, now: float | None = None) -> list[Insight]:
        """Rule-based insights. Pure function of the session state and the clock."""
        insights: list[Insight] = []
        if session.duration_seconds(now) > self._long_call_seconds and session.call_reason == UNKNOWN_REASON:
            insights.append(Insight(type="call_progress", message=LONG_CALL_MESSAGE, priority=Priority.MEDIUM))
        if session.sentiment is Sentiment.NEGATIVE and session.escalation_risk is not EscalationLevel.HIGH:
            insights.append(
                Insight(type="sentiment_alert", message=NEGATIVE_SENTIMENT_MESSAGE, priority=Priority.HIGH)
            )
        return insights

    async def coaching_insight(
        self,
        session: CallSession,
        fragment: TranscriptFragment,
        speaker: Speaker,
    ) -> Insight | None:
        """Model-generated suggestion. None when the model has nothing useful; raises on failure."""
        context = CoachingContext(call_reason=session.call_reason, sentiment=session.sentiment)
        text = await with_timeout(
            "coaching",
            self._provider.generate_coaching_text(speaker, fragment.text, context),
            self._timeout,
        )
        text = (text or "").strip()
        if len(text) <= MIN_COACHING_CHARS:
            return None
        return Insight(
            type="customer_insight" if speaker is Speaker.CUSTOMER else "agent_coaching",
            message=text,
            priority=Priority.HIGH if session.sentiment is Sentiment.NEGATIVE else Priority.NORMAL,
            speaker=speaker,
        )

    async def derive(
        self,
        session: CallSession,
        fragment: TranscriptFragment,
        speaker: Speaker,
    ) -> list[Insight]:
        """Coaching (or fallback) first, then every contextual rule regardless of coaching outcome."""
        insights: list[Insight] = []
        try:
            coaching = await self.coaching_insight(session, fragment, speaker)
        except ExternalAnalysisFailure as e:
            logger.warning("Coaching insight failed for %s: %s", session.id, e)
            insights.append(fallback_insight())
        except Exception:
            logger.exception("Unexpected error generating coaching insight for %s", session.id)
            insights.append(fallback_insight())
        else:
            if coaching is not None:
                insights.append(coaching)
        insights.extend(self.contextual_insights(session, time.time()))
        return insights
