"""Tests for the learned speaker pattern table (in-memory LRU and JSON-file backing)."""

import json

from assist.diarization.pattern_store import InMemorySpeakerPatternStore, JsonFileSpeakerPatternStore
from assist.models import Speaker


# ── In-memory ──

def test_increment_and_query():
    store = InMemorySpeakerPatternStore(max_keys=0)
    assert store.query("hello there") is None
    store.increment("hello there", Speaker.AGENT)
    tally = store.increment("hello there", Speaker.AGENT)
    assert tally == {Speaker.AGENT: 2, Speaker.CUSTOMER: 0}
    assert store.query("hello there") == {Speaker.AGENT: 2, Speaker.CUSTOMER: 0}
    assert len(store) == 1


def test_returned_tally_is_a_copy():
    store = InMemorySpeakerPatternStore(max_keys=0)
    tally = store.increment("k", Speaker.CUSTOMER)
    tally[Speaker.CUSTOMER] = 99
    assert store.query("k")[Speaker.CUSTOMER] == 1


def test_lru_eviction_respects_recent_queries():
    store = InMemorySpeakerPatternStore(max_keys=2)
    store.increment("a", Speaker.AGENT)
    store.increment("b", Speaker.AGENT)
    store.query("a")
    store.increment("c", Speaker.CUSTOMER)
    assert len(store) == 2
    assert store.query("b") is None
    assert store.query("a") is not None
    assert store.query("c") is not None


def test_zero_max_keys_is_unbounded():
    store = InMemorySpeakerPatternStore(max_keys=0)
    for i in range(50):
        store.increment(f"key {i}", Speaker.AGENT)
    assert len(store) == 50


# ── JSON file ──

def test_json_store_persists_across_instances(tmp_path):
    path = str(tmp_path / "patterns" / "speaker.json")
    store = JsonFileSpeakerPatternStore(path, max_keys=0)
    store.increment("yes the refund was processed", Speaker.CUSTOMER)
    store.increment("yes the refund was processed", Speaker.CUSTOMER)

    with open(path, encoding="utf-8") as f:
        assert json.load(f) == {"yes the refund was processed": {"Agent": 0, "Customer": 2}}

    reloaded = JsonFileSpeakerPatternStore(path, max_keys=0)
    assert reloaded.query("yes the refund was processed") == {Speaker.AGENT: 0, Speaker.CUSTOMER: 2}


def test_json_store_ignores_corrupt_file(tmp_path):
    path = tmp_path / "speaker.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonFileSpeakerPatternStore(str(path), max_keys=0)
    assert len(store) == 0
    store.increment("fresh", Speaker.AGENT)
    assert json.loads(path.read_text(encoding="utf-8")) == {"fresh": {"Agent": 1, "Customer": 0}}


def test_json_store_sanitizes_counts(tmp_path):
    path = tmp_path / "speaker.json"
    path.write_text(json.dumps({"k": {"Agent": "3", "Customer": -2}, "bad": [1, 2]}), encoding="utf-8")
    store = JsonFileSpeakerPatternStore(str(path), max_keys=0)
    assert store.query("k") == {Speaker.AGENT: 3, Speaker.CUSTOMER: 0}
    assert store.query("bad") is None
