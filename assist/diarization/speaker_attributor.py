"""
Speaker attribution for transcript fragments (Agent vs Customer).

Layers, first match wins:
1. Learned patterns: first N words (lower-cased) looked up in the pattern store;
   used when one label holds > SPEAKER_PATTERN_MIN_CONFIDENCE of the tally.
2. Agent greeting / service phrases.
3. Customer inquiry / complaint phrases.
4. Alternation: opposite of the most recent speaker in the session.
5. Short text (< SPEAKER_SHORT_TEXT_CHARS): alternate from the last speaker. Only
   reachable when alternation (4) is disabled.
6. Default: Agent.

The first fragment of a call has no prior speaker, so 4/5 never apply to it.

Limitations:
- No acoustic features; labels come from text and turn order only.
- Learned state is process-wide: corrections in one call affect later calls.
"""
from __future__ import annotations

import logging
import re
import threading
from collections import Counter, deque
from typing import Iterable

from assist.config import get_settings
from assist.diarization.models import AttributionRule, CorrectionRecord
from assist.diarization.pattern_store import SpeakerPatternStore, create_pattern_store
from assist.models import Speaker, TranscriptFragment

logger = logging.getLogger(__name__)

AGENT_PHRASES = (
    "thank you for calling",
    "how can i help",
    "my name is",
    "let me check",
    "i can help you",
    "let me look that up",
    "can you please provide",
    "i apologize for",
    "according to our records",
    "i understand your concern",
    "let me transfer you",
)

CUSTOMER_PHRASES = (
    "my account",
    "i have a problem",
    "i need help",
    "i want to cancel",
    "i'm calling about",
    "i can't",
    "it's not working",
    "i'm frustrated",
    "i want to speak to",
    "this is ridiculous",
    "i demand",
)

_WORD_RE = re.compile(r"[\w']+")


def _normalize(text: str) -> str:
    return (text or "").replace("’", "'").lower()


def pattern_key(text: str, words: int = 5) -> str:
    """First `words` words of text, lower-cased, punctuation stripped. '' if no words."""
    return " ".join(_WORD_RE.findall(_normalize(text))[:words])


def _contains_any(text: str, phrases: Iterable[str]) -> bool:
    return any(p in text for p in phrases)


def _last_speaker(recent_fragments: list[TranscriptFragment]) -> Speaker | None:
    for fragment in reversed(recent_fragments):
        if fragment.speaker is not None:
            return fragment.speaker
    return None


class SpeakerAttributor:
    """
    Layered Agent/Customer classifier with a manual-correction learning loop.
    One instance is shared by all sessions; per-session context comes in as recent_fragments.
    """

    def __init__(
        self,
        store: SpeakerPatternStore | None = None,
        *,
        pattern_words: int | None = None,
        min_confidence: float | None = None,
        short_text_chars: int | None = None,
        correction_log_max: int | None = None,
        learning_enabled: bool | None = None,
        alternation_enabled: bool | None = None,
    ) -> None:
        settings = get_settings()
        self._store = store if store is not None else create_pattern_store()
        self._pattern_words = pattern_words or settings.SPEAKER_PATTERN_WORDS
        self._min_confidence = min_confidence if min_confidence is not None else settings.SPEAKER_PATTERN_MIN_CONFIDENCE
        self._short_text_chars = short_text_chars or settings.SPEAKER_SHORT_TEXT_CHARS
        self._learning_enabled = learning_enabled if learning_enabled is not None else settings.SPEAKER_LEARNING_ENABLED
        self._alternation_enabled = (
            alternation_enabled if alternation_enabled is not None else settings.SPEAKER_ALTERNATION_ENABLED
        )
        self._corrections: deque[CorrectionRecord] = deque(
            maxlen=correction_log_max or settings.SPEAKER_CORRECTION_LOG_MAX
        )
        self._corrections_total = 0
        self._rule_counts: Counter[str] = Counter()
        self._lock = threading.Lock()

    @property
    def store(self) -> SpeakerPatternStore:
        return self._store

    @property
    def learning_enabled(self) -> bool:
        return self._learning_enabled

    @learning_enabled.setter
    def learning_enabled(self, enabled: bool) -> None:
        self._learning_enabled = bool(enabled)
        logger.info("Speaker learning %s", "enabled" if enabled else "disabled")

    @property
    def corrections(self) -> list[CorrectionRecord]:
        with self._lock:
            return list(self._corrections)

    def attribute(
        self,
        session_id: str,
        text: str,
        recent_fragments: list[TranscriptFragment],
    ) -> Speaker:
        speaker, _ = self.explain(session_id, text, recent_fragments)
        return speaker

    def explain(
        self,
        session_id: str,
        text: str,
        recent_fragments: list[TranscriptFragment],
    ) -> tuple[Speaker, AttributionRule]:
        """Attribute and also return which rule decided."""
        speaker, rule = self._resolve(text, recent_fragments)
        with self._lock:
            self._rule_counts[rule.value] += 1
        logger.debug("Session %s: attributed %s via %s: %r", session_id, speaker.value, rule.value, text[:80])
        return speaker, rule

    def _resolve(self, text: str, recent_fragments: list[TranscriptFragment]) -> tuple[Speaker, AttributionRule]:
        learned = self._learned_speaker(text)
        if learned is not None:
            return learned, AttributionRule.LEARNED

        lower = _normalize(text)
        if _contains_any(lower, AGENT_PHRASES):
            return Speaker.AGENT, AttributionRule.GREETING
        if _contains_any(lower, CUSTOMER_PHRASES):
            return Speaker.CUSTOMER, AttributionRule.INQUIRY

        last = _last_speaker(recent_fragments)
        if last is not None:
            if self._alternation_enabled:
                return last.other, AttributionRule.ALTERNATION
            if len(text.strip()) < self._short_text_chars:
                return last.other, AttributionRule.SHORT_TEXT
            # Long fragment with alternation off: agents speak first and more.
        return Speaker.AGENT, AttributionRule.DEFAULT

    def _learned_speaker(self, text: str) -> Speaker | None:
        if not self._learning_enabled:
            return None
        key = pattern_key(text, self._pattern_words)
        if not key:
            return None
        tally = self._store.query(key)
        if not tally:
            return None
        total = sum(tally.values())
        if total <= 0:
            return None
        speaker, count = max(tally.items(), key=lambda item: item[1])
        if count / total > self._min_confidence:
            return speaker
        return None

    def record_correction(
        self,
        session_id: str,
        fragment: TranscriptFragment,
        predicted_speaker: Speaker,
        actual_speaker: Speaker,
    ) -> CorrectionRecord:
        """Log the correction (bounded FIFO) and learn fragment prefix -> actual speaker."""
        key = pattern_key(fragment.text, self._pattern_words)
        record = CorrectionRecord(
            session_id=session_id,
            fragment_id=fragment.id,
            text=fragment.text,
            predicted=predicted_speaker,
            actual=actual_speaker,
            pattern_key=key,
        )
        with self._lock:
            self._corrections.append(record)
            self._corrections_total += 1
        if key:
            tally = self._store.increment(key, actual_speaker)
            logger.info(
                "Speaker correction in %s: %s -> %s for %r (tally %s)",
                session_id,
                predicted_speaker.value,
                actual_speaker.value,
                key,
                {k.value: v for k, v in tally.items()},
            )
        else:
            logger.info("Speaker correction in %s has no words to learn from; logged only", session_id)
        return record

    def stats(self) -> dict:
        with self._lock:
            return {
                "learningEnabled": self._learning_enabled,
                "alternationEnabled": self._alternation_enabled,
                "speakerPatterns": len(self._store),
                "manualAssignments": self._corrections_total,
                "correctionLogSize": len(self._corrections),
                "attributionsByRule": dict(self._rule_counts),
            }
