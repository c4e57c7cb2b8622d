"""
Learned speaker patterns: normalized fragment prefix -> {Agent: n, Customer: n}.

Process-wide state shared by all calls; a correction in one call influences attribution
in later calls. Each increment is a single step under a lock.

The table only grows through corrections and is never decremented when the correction
log ages out (old counts persist). Keys are bounded with least-recently-used eviction
when SPEAKER_PATTERN_MAX_KEYS > 0.
"""
from __future__ import annotations

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict

from assist.config import get_settings
from assist.models import Speaker

logger = logging.getLogger(__name__)

Tally = dict[Speaker, int]


def _empty_tally() -> dict[str, int]:
    return {Speaker.AGENT.value: 0, Speaker.CUSTOMER.value: 0}


class SpeakerPatternStore(ABC):
    """Injectable backing for the learned pattern table."""

    @abstractmethod
    def increment(self, key: str, label: Speaker) -> Tally:
        """Add one observation of label for key. Returns the updated tally."""
        ...

    @abstractmethod
    def query(self, key: str) -> Tally | None:
        """Tally for key, or None if key was never learned."""
        ...

    @abstractmethod
    def __len__(self) -> int:
        ...


class InMemorySpeakerPatternStore(SpeakerPatternStore):
    def __init__(self, max_keys: int | None = None) -> None:
        settings = get_settings()
        self._max_keys = max_keys if max_keys is not None else settings.SPEAKER_PATTERN_MAX_KEYS
        self._table: OrderedDict[str, dict[str, int]] = OrderedDict()
        self._lock = threading.Lock()

    def increment(self, key: str, label: Speaker) -> Tally:
        with self._lock:
            counts = self._table.get(key)
            if counts is None:
                counts = _empty_tally()
                self._table[key] = counts
            counts[label.value] = counts.get(label.value, 0) + 1
            self._table.move_to_end(key)
            self._evict_locked()
            tally = {Speaker(k): v for k, v in counts.items()}
            self._after_write_locked()
        return tally

    def query(self, key: str) -> Tally | None:
        with self._lock:
            counts = self._table.get(key)
            if counts is None:
                return None
            self._table.move_to_end(key)
            return {Speaker(k): v for k, v in counts.items()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._table)

    def _evict_locked(self) -> None:
        if self._max_keys <= 0:
            return
        while len(self._table) > self._max_keys:
            evicted, _ = self._table.popitem(last=False)
            logger.debug("Evicted speaker pattern %r (max_keys=%s)", evicted, self._max_keys)

    def _after_write_locked(self) -> None:
        """Hook for persistent subclasses; called with the lock held."""


class JsonFileSpeakerPatternStore(InMemorySpeakerPatternStore):
    """
    Pattern table persisted to one JSON file. Loaded once on construction; rewritten
    after every increment (write to temp file, then atomic replace).
    """

    def __init__(self, path: str, max_keys: int | None = None) -> None:
        super().__init__(max_keys=max_keys)
        self._path = path
        self._load()

    def _load(self) -> None:
        if not os.path.isfile(self._path):
            return
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not load speaker patterns from %s: %s", self._path, e)
            return
        if not isinstance(data, dict):
            logger.warning("Speaker pattern file %s is not a JSON object; ignoring", self._path)
            return
        for key, counts in data.items():
            if not isinstance(counts, dict):
                continue
            tally = _empty_tally()
            for label in tally:
                try:
                    tally[label] = max(0, int(counts.get(label, 0)))
                except (TypeError, ValueError):
                    tally[label] = 0
            self._table[str(key)] = tally
        self._evict_locked()
        logger.info("Loaded %s speaker patterns from %s", len(self._table), self._path)

    def _after_write_locked(self) -> None:
        tmp_path = f"{self._path}.tmp"
        try:
            os.makedirs(os.path.dirname(self._path) or ".", exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self._table, f, ensure_ascii=False)
            os.replace(tmp_path, self._path)
        except OSError as e:
            logger.warning("Could not persist speaker patterns to %s: %s", self._path, e)


def create_pattern_store() -> SpeakerPatternStore:
    """JSON-backed store when SPEAKER_PATTERN_STORE_PATH is set; else in-memory."""
    settings = get_settings()
    path = (getattr(settings, "SPEAKER_PATTERN_STORE_PATH", "") or "").strip()
    if path:
        return JsonFileSpeakerPatternStore(path)
    return InMemorySpeakerPatternStore()
