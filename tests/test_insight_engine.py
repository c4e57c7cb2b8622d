"""Tests for coaching and contextual insights."""

import time
from collections import deque

import pytest

from assist.errors import ExternalAnalysisFailure
from assist.models import (
    CallSession,
    EscalationLevel,
    Priority,
    Sentiment,
    Speaker,
    TranscriptFragment,
)
from assist.services.insight_engine import FALLBACK_MESSAGE, InsightEngine


def _session(**kwargs):
    return CallSession(id="call_1", agent_id="a", caller_id="c", insights=deque(maxlen=5), **kwargs)


def _fragment(text="Why was I charged twice this month?"):
    return TranscriptFragment(id="f1", session_id="call_1", text=text, speaker=Speaker.CUSTOMER)


# ── Contextual rules ──

def test_long_call_without_reason(provider):
    engine = InsightEngine(provider, long_call_seconds=300)
    now = time.time()
    session = _session(start_time=now - 301)
    insights = engine.contextual_insights(session, now)
    assert [i.type for i in insights] == ["call_progress"]
    assert insights[0].priority is Priority.MEDIUM


def test_long_call_with_known_reason_is_quiet(provider):
    engine = InsightEngine(provider, long_call_seconds=300)
    now = time.time()
    session = _session(start_time=now - 600, call_reason="billing_inquiry")
    assert engine.contextual_insights(session, now) == []


def test_negative_sentiment_alert_until_escalated(provider):
    engine = InsightEngine(provider)
    session = _session(sentiment=Sentiment.NEGATIVE)
    insights = engine.contextual_insights(session, time.time())
    assert [i.type for i in insights] == ["sentiment_alert"]
    assert insights[0].priority is Priority.HIGH

    session.escalation_risk = EscalationLevel.HIGH
    assert engine.contextual_insights(session, time.time()) == []


# ── Coaching ──

@pytest.mark.asyncio
async def test_customer_coaching_insight(provider):
    engine = InsightEngine(provider, timeout=1.0)
    session = _session(sentiment=Sentiment.NEGATIVE)
    insights = await engine.derive(session, _fragment(), Speaker.CUSTOMER)

    assert insights[0].type == "customer_insight"
    assert insights[0].priority is Priority.HIGH
    assert insights[0].speaker is Speaker.CUSTOMER
    assert insights[0].message == provider.coaching
    assert insights[1].type == "sentiment_alert"


@pytest.mark.asyncio
async def test_agent_coaching_insight_normal_priority(provider):
    engine = InsightEngine(provider, timeout=1.0)
    insights = await engine.derive(_session(), _fragment("Let me check that"), Speaker.AGENT)
    assert [(i.type, i.priority) for i in insights] == [("agent_coaching", Priority.NORMAL)]


@pytest.mark.asyncio
async def test_trivial_coaching_text_is_dropped(provider):
    provider.coaching = "Okay."
    engine = InsightEngine(provider, timeout=1.0)
    assert await engine.derive(_session(), _fragment(), Speaker.CUSTOMER) == []


@pytest.mark.asyncio
async def test_coaching_failure_yields_fallback_then_rules(provider):
    provider.coaching = ExternalAnalysisFailure("coaching", "HTTP 500")
    engine = InsightEngine(provider, timeout=1.0)
    session = _session(sentiment=Sentiment.NEGATIVE)
    insights = await engine.derive(session, _fragment(), Speaker.CUSTOMER)

    assert [i.type for i in insights] == ["system_message", "sentiment_alert"]
    assert insights[0].message == FALLBACK_MESSAGE
    assert insights[0].priority is Priority.LOW


@pytest.mark.asyncio
async def test_coaching_timeout_yields_fallback(provider):
    provider.delays["coaching"] = 0.5
    engine = InsightEngine(provider, timeout=0.05)
    insights = await engine.derive(_session(), _fragment(), Speaker.CUSTOMER)
    assert [i.type for i in insights] == ["system_message"]
