"""Tests for per-fragment orchestration: bounds, ordering, degraded analysis, end-of-call races."""

import asyncio

import pytest

from assist.analysis.base import EscalationResult, SentimentResult
from assist.errors import ConcurrentFragmentOrderingViolation, ExternalAnalysisFailure, SessionNotFound
from assist.models import EscalationLevel, Sentiment, Speaker, TranscriptFragment, new_fragment_id
from assist.services.analytics_pipeline import CallAnalyticsPipeline, sentiment_score
from assist.session_store import SessionRegistry


def _build(provider, attributor, timeout=1.0):
    registry = SessionRegistry(transcript_max=50, insights_max=5, voice_activity_max=100)
    pipeline = CallAnalyticsPipeline(registry, attributor, provider, timeout=timeout)
    return registry, pipeline


def _fragment(session_id, text, speaker=None):
    return TranscriptFragment(
        id=new_fragment_id(),
        session_id=session_id,
        text=text,
        speaker=speaker,
        manually_assigned=speaker is not None,
    )


# ── Scoring ──

def test_sentiment_score_sign():
    assert sentiment_score(SentimentResult(Sentiment.POSITIVE, 0.8)) == 0.8
    assert sentiment_score(SentimentResult(Sentiment.NEGATIVE, 0.75)) == -0.75
    assert sentiment_score(SentimentResult(Sentiment.NEUTRAL, 0.9)) == 0.0


# ── Happy path ──

@pytest.mark.asyncio
async def test_process_builds_combined_update(provider, attributor):
    registry, pipeline = _build(provider, attributor)
    sid = registry.create("a", "c")

    update = await pipeline.process(sid, _fragment(sid, "Thank you for calling, how can I help?"))

    assert update.session_id == sid
    assert update.fragment.speaker is Speaker.AGENT
    assert update.sentiment.category is Sentiment.NEUTRAL
    assert update.call_reason == "billing_inquiry"
    assert update.escalation_risk.level is EscalationLevel.LOW
    assert update.escalation_risk.score == 20
    assert update.insights[0].type == "agent_coaching"
    assert update.escalation_alert is None
    session = registry.get(sid)
    assert len(session.transcript) == 1
    assert session.processed_sequence == 1


@pytest.mark.asyncio
async def test_speaker_hint_bypasses_attribution(provider, attributor):
    registry, pipeline = _build(provider, attributor)
    sid = registry.create("a", "c")
    update = await pipeline.process(sid, _fragment(sid, "Thank you for calling", Speaker.CUSTOMER))
    assert update.fragment.speaker is Speaker.CUSTOMER
    assert update.fragment.manually_assigned is True
    assert attributor.stats()["attributionsByRule"] == {}


# ── Bounds ──

@pytest.mark.asyncio
async def test_transcript_and_insights_are_bounded(provider, attributor):
    registry, pipeline = _build(provider, attributor)
    sid = registry.create("a", "c")
    for i in range(55):
        await pipeline.process(sid, _fragment(sid, f"Fragment number {i}"))

    session = registry.get(sid)
    assert len(session.transcript) == 50
    assert session.transcript[0].text == "Fragment number 5"
    assert len(session.insights) == 5


@pytest.mark.asyncio
async def test_call_reason_frozen_after_three_fragments(provider, attributor):
    registry, pipeline = _build(provider, attributor)
    sid = registry.create("a", "c")
    for i in range(3):
        await pipeline.process(sid, _fragment(sid, f"Early fragment {i}"))
    provider.call_reason = "technical_support"
    for i in range(3):
        update = await pipeline.process(sid, _fragment(sid, f"Later fragment {i}"))

    assert provider.calls["call_reason"] == 3
    assert registry.get(sid).call_reason == "billing_inquiry"
    assert update.call_reason == "billing_inquiry"


@pytest.mark.asyncio
async def test_escalation_context_includes_current_fragment(provider, attributor):
    registry, pipeline = _build(provider, attributor)
    sid = registry.create("a", "c")
    for i in range(7):
        await pipeline.process(sid, _fragment(sid, f"Line {i}"))

    first = provider.escalation_contexts[0]
    assert len(first) == 1
    assert first[0].endswith("Line 0")
    last = provider.escalation_contexts[-1]
    assert len(last) == 5
    assert last[0].endswith("Line 2")
    assert last[-1].endswith("Line 6")


# ── Escalation ──

@pytest.mark.asyncio
async def test_escalation_is_monotonic_and_alerts_once(provider, attributor):
    registry, pipeline = _build(provider, attributor)
    sid = registry.create("a", "c")

    await pipeline.process(sid, _fragment(sid, "Hello"))
    provider.escalation = EscalationResult(True, 0.9, "demands supervisor")
    second = await pipeline.process(sid, _fragment(sid, "Get me your supervisor"))
    third = await pipeline.process(sid, _fragment(sid, "Even more upset now"))
    provider.escalation = EscalationResult(False, 0.1, "calm")
    fourth = await pipeline.process(sid, _fragment(sid, "Okay thanks"))

    assert second.escalation_risk.level is EscalationLevel.HIGH
    assert second.escalation_alert is not None
    assert second.escalation_alert.confidence == pytest.approx(0.9)
    assert third.escalation_alert is None
    assert fourth.escalation_risk.level is EscalationLevel.HIGH
    assert fourth.escalation_risk.score == 10
    assert registry.get(sid).escalation_risk is EscalationLevel.HIGH


@pytest.mark.asyncio
async def test_escalation_threshold_is_strict(provider, attributor):
    registry, pipeline = _build(provider, attributor)
    sid = registry.create("a", "c")
    provider.escalation = EscalationResult(True, 0.7, "borderline")
    update = await pipeline.process(sid, _fragment(sid, "This is unacceptable"))
    assert update.escalation_risk.level is EscalationLevel.LOW


@pytest.mark.asyncio
async def test_escalation_timeouts_leave_risk_unchanged(provider, attributor):
    registry, pipeline = _build(provider, attributor, timeout=0.05)
    sid = registry.create("a", "c")
    provider.delays["escalation"] = 0.5
    for i in range(3):
        update = await pipeline.process(sid, _fragment(sid, f"Timeout {i}"))
        assert update.escalation_risk.level is EscalationLevel.LOW
        assert update.escalation_risk.score == 50

    registry.get(sid).escalation_risk = EscalationLevel.HIGH
    update = await pipeline.process(sid, _fragment(sid, "Still timing out"))
    assert update.escalation_risk.level is EscalationLevel.HIGH
    assert provider.calls["escalation"] == 4


# ── Degraded analysis ──

@pytest.mark.asyncio
async def test_sentiment_failure_keeps_previous_session_value(provider, attributor):
    registry, pipeline = _build(provider, attributor)
    sid = registry.create("a", "c")
    provider.sentiment = SentimentResult(Sentiment.NEGATIVE, 0.8, "angry")
    await pipeline.process(sid, _fragment(sid, "This is awful"))

    provider.sentiment = ExternalAnalysisFailure("sentiment", "HTTP 503")
    update = await pipeline.process(sid, _fragment(sid, "Still waiting"))

    assert update.sentiment.category is Sentiment.NEUTRAL
    assert update.sentiment.confidence == 0.5
    assert update.sentiment.score == 0.0
    assert registry.get(sid).sentiment is Sentiment.NEGATIVE


@pytest.mark.asyncio
async def test_every_sub_call_failing_still_yields_valid_update(provider, attributor):
    registry, pipeline = _build(provider, attributor)
    sid = registry.create("a", "c")
    failure = ExternalAnalysisFailure("any", "down")
    provider.sentiment = failure
    provider.call_reason = failure
    provider.escalation = failure
    provider.coaching = RuntimeError("unexpected")

    update = await pipeline.process(sid, _fragment(sid, "Hello?"))

    assert update.call_reason == "unknown"
    assert update.escalation_risk.level is EscalationLevel.LOW
    assert [i.type for i in update.insights] == ["system_message"]


@pytest.mark.asyncio
async def test_out_of_range_sentiment_confidence_is_neutralized(provider, attributor):
    registry, pipeline = _build(provider, attributor)
    sid = registry.create("a", "c")
    provider.sentiment = SentimentResult(Sentiment.POSITIVE, 1.3, "delighted")

    update = await pipeline.process(sid, _fragment(sid, "That is wonderful"))

    assert update.sentiment.category is Sentiment.NEUTRAL
    assert update.sentiment.confidence == 0.5
    assert registry.get(sid).sentiment is Sentiment.NEUTRAL


@pytest.mark.asyncio
async def test_malformed_escalation_and_reason_are_neutralized(provider, attributor):
    registry, pipeline = _build(provider, attributor)
    sid = registry.create("a", "c")
    provider.escalation = EscalationResult(True, float("nan"), "unclear")
    provider.call_reason = 42

    update = await pipeline.process(sid, _fragment(sid, "I need help"))

    assert update.escalation_risk.level is EscalationLevel.LOW
    assert update.escalation_risk.score == 50
    assert update.escalation_alert is None
    assert update.call_reason == "unknown"


@pytest.mark.asyncio
async def test_accepted_callback_runs_before_analysis(provider, attributor):
    registry, pipeline = _build(provider, attributor)
    sid = registry.create("a", "c")
    seen = []

    async def on_accepted(fragment):
        seen.append((fragment.text, fragment.speaker, provider.calls["sentiment"]))

    await pipeline.process(sid, _fragment(sid, "Hello"), on_accepted)

    assert seen == [("Hello", Speaker.AGENT, 0)]
    assert provider.calls["sentiment"] == 1


@pytest.mark.asyncio
async def test_filler_insight_when_nothing_applies(provider, attributor):
    registry, pipeline = _build(provider, attributor)
    sid = registry.create("a", "c")
    provider.coaching = ""
    update = await pipeline.process(sid, _fragment(sid, "Hello"))
    assert [i.type for i in update.insights] == ["tip"]


# ── Ordering and sessions ──

@pytest.mark.asyncio
async def test_concurrent_fragments_processed_in_acceptance_order(provider, attributor):
    registry, pipeline = _build(provider, attributor)
    sid = registry.create("a", "c")
    provider.delays["sentiment"] = 0.05

    updates = await asyncio.gather(*(pipeline.process(sid, _fragment(sid, f"Turn {i}")) for i in range(5)))

    assert [u.fragment.text for u in updates] == [f"Turn {i}" for i in range(5)]
    assert [f.text for f in registry.get(sid).transcript] == [f"Turn {i}" for i in range(5)]
    assert [u.fragment.speaker for u in updates] == [
        Speaker.AGENT,
        Speaker.CUSTOMER,
        Speaker.AGENT,
        Speaker.CUSTOMER,
        Speaker.AGENT,
    ]


@pytest.mark.asyncio
async def test_stale_sequence_is_rejected(provider, attributor):
    registry, pipeline = _build(provider, attributor)
    sid = registry.create("a", "c")
    registry.get(sid).processed_sequence = 10
    with pytest.raises(ConcurrentFragmentOrderingViolation):
        await pipeline.process(sid, _fragment(sid, "Late arrival"))
    assert len(registry.get(sid).transcript) == 0


@pytest.mark.asyncio
async def test_sessions_do_not_share_attribution_context(provider, attributor):
    registry, pipeline = _build(provider, attributor)
    a = registry.create("agent-a", "c1")
    b = registry.create("agent-b", "c2")

    await pipeline.process(a, _fragment(a, "Thank you for calling"))
    await pipeline.process(b, _fragment(b, "I have a problem with my order"))
    a2 = await pipeline.process(a, _fragment(a, "Sure"))
    b2 = await pipeline.process(b, _fragment(b, "Sure"))

    assert a2.fragment.speaker is Speaker.CUSTOMER
    assert b2.fragment.speaker is Speaker.AGENT


@pytest.mark.asyncio
async def test_unknown_session(provider, attributor):
    _, pipeline = _build(provider, attributor)
    with pytest.raises(SessionNotFound):
        await pipeline.process("call_missing", _fragment("call_missing", "Hello"))


# ── Call end during analysis ──

@pytest.mark.asyncio
async def test_end_during_in_flight_analysis_discards_mutations(provider, attributor):
    registry, pipeline = _build(provider, attributor)
    sid = registry.create("a", "c")
    session = registry.get(sid)
    provider.sentiment = SentimentResult(Sentiment.NEGATIVE, 0.9, "angry")
    provider.delays["sentiment"] = 0.1

    task = asyncio.create_task(pipeline.process(sid, _fragment(sid, "This is ridiculous")))
    await asyncio.sleep(0.02)
    snapshot = registry.end(sid)
    update = await task

    assert [f.text for f in snapshot.transcript] == ["This is ridiculous"]
    assert snapshot.sentiment is Sentiment.NEUTRAL
    assert update.sentiment.category is Sentiment.NEGATIVE
    assert session.sentiment is Sentiment.NEUTRAL
    assert len(session.insights) == 0


@pytest.mark.asyncio
async def test_queued_fragment_after_end_raises(provider, attributor):
    registry, pipeline = _build(provider, attributor)
    sid = registry.create("a", "c")
    provider.delays["sentiment"] = 0.1

    first = asyncio.create_task(pipeline.process(sid, _fragment(sid, "First")))
    second = asyncio.create_task(pipeline.process(sid, _fragment(sid, "Second")))
    await asyncio.sleep(0.02)
    registry.end(sid)
    pipeline.forget(sid)

    results = await asyncio.gather(first, second, return_exceptions=True)
    assert results[0].fragment.text == "First"
    assert isinstance(results[1], SessionNotFound)
