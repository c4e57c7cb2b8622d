"""Shared fakes: a scriptable AnalysisProvider and a recording transcript archive."""

import asyncio
from collections import Counter

import pytest

from assist.analysis.base import (
    AgentQueryContext,
    AnalysisProvider,
    CoachingContext,
    EscalationResult,
    SentimentResult,
)
from assist.diarization.pattern_store import InMemorySpeakerPatternStore
from assist.diarization.speaker_attributor import SpeakerAttributor
from assist.models import Sentiment, Speaker
from assist.transcript.writer import TranscriptArchiveBase


class FakeProvider(AnalysisProvider):
    """
    Returns fixed results. Any attribute may be set to an exception instance to make
    that capability fail; `delays` maps a kind to seconds slept before answering.
    """

    def __init__(self):
        self.sentiment = SentimentResult(Sentiment.NEUTRAL, 0.6, "calm")
        self.call_reason = "billing_inquiry"
        self.escalation = EscalationResult(False, 0.2, "routine")
        self.coaching = "Confirm the account details before moving on."
        self.summary = "Customer asked about a billing charge; agent explained it."
        self.answer = "Offer to waive the late fee once."
        self.delays = {}
        self.calls = Counter()
        self.escalation_contexts = []
        self.query_contexts = []

    async def _respond(self, kind, value):
        self.calls[kind] += 1
        delay = self.delays.get(kind)
        if delay:
            await asyncio.sleep(delay)
        if isinstance(value, BaseException):
            raise value
        return value

    async def classify_sentiment(self, text: str) -> SentimentResult:
        return await self._respond("sentiment", self.sentiment)

    async def classify_call_reason(self, text: str) -> str:
        return await self._respond("call_reason", self.call_reason)

    async def check_escalation(self, text: str, recent_context: list[str]) -> EscalationResult:
        self.escalation_contexts.append(list(recent_context))
        return await self._respond("escalation", self.escalation)

    async def generate_coaching_text(self, role: Speaker, text: str, context: CoachingContext) -> str:
        return await self._respond("coaching", self.coaching)

    async def summarize_call(self, transcript_text: str) -> str:
        return await self._respond("summary", self.summary)

    async def answer_agent_query(self, query: str, context: AgentQueryContext) -> str:
        self.query_contexts.append(context)
        return await self._respond("agent_query", self.answer)


class RecordingArchive(TranscriptArchiveBase):
    def __init__(self):
        self.saved = []

    async def save(self, snapshot, summary) -> None:
        self.saved.append((snapshot, summary))


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def attributor():
    return SpeakerAttributor(InMemorySpeakerPatternStore(max_keys=0))


@pytest.fixture
def archive():
    return RecordingArchive()
