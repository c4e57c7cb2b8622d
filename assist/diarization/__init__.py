"""
Speaker attribution (Agent / Customer) from transcript text and turn order.

- No audio separation; no voice features.
- Learned patterns come only from manual corrections and are shared across calls.
"""
from __future__ import annotations

from assist.diarization.models import AttributionRule, CorrectionRecord
from assist.diarization.pattern_store import (
    InMemorySpeakerPatternStore,
    JsonFileSpeakerPatternStore,
    SpeakerPatternStore,
    create_pattern_store,
)
from assist.diarization.speaker_attributor import SpeakerAttributor, pattern_key

__all__ = [
    "AttributionRule",
    "CorrectionRecord",
    "InMemorySpeakerPatternStore",
    "JsonFileSpeakerPatternStore",
    "SpeakerAttributor",
    "SpeakerPatternStore",
    "create_pattern_store",
    "pattern_key",
]
