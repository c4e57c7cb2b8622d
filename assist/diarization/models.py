"""
Speaker-attribution records.

Attribution is text-and-timing only: no audio separation, no voice features.
Labels are Agent / Customer; manual corrections feed the learned pattern table.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from assist.models import Speaker, unix_ms


class AttributionRule(str, Enum):
    """Which layer decided a fragment's speaker (first match wins, in this order)."""

    LEARNED = "learned"
    GREETING = "greeting"
    INQUIRY = "inquiry"
    ALTERNATION = "alternation"
    SHORT_TEXT = "short_text"
    DEFAULT = "default"


@dataclass(frozen=True)
class CorrectionRecord:
    """One manual speaker correction. Kept in a bounded FIFO log."""

    session_id: str
    fragment_id: str
    text: str
    predicted: Speaker
    actual: Speaker
    pattern_key: str
    timestamp: int = field(default_factory=unix_ms)
