"""
TranscriptArchive: persistence of ended calls.

- One file per call: transcripts/{session_id}.txt, one speaker-tagged line per fragment,
  optional [MM:SS.ss] prefix (elapsed since call start).
- Summary alongside: transcripts/{session_id}.json.
- Written once, at call end, from the end-time snapshot. File I/O runs in the default
  executor so the event loop is never blocked.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Optional

from assist.config import get_settings
from assist.models import SessionSnapshot
from assist.schemas.analytics import CallSummary

logger = logging.getLogger(__name__)


def _format_speaker_line(
    text: str,
    timestamp_ms: Optional[int],
    session_start_ms: int,
    add_timestamps: bool,
    speaker: Optional[str] = None,
    manually_assigned: bool = False,
) -> str:
    """Format one line with optional [MM:SS.ss], [Agent] / [Customer], [corrected] prefix."""
    parts: list[str] = []
    if add_timestamps and timestamp_ms is not None:
        elapsed_sec = max(0.0, (timestamp_ms - session_start_ms) / 1000.0)
        mm = int(elapsed_sec // 60)
        ss = elapsed_sec % 60
        parts.append(f"[{mm:02d}:{ss:05.2f}]")
    if speaker:
        parts.append(f"[{speaker}]")
    if manually_assigned:
        parts.append("[corrected]")
    parts.append(text.strip())
    return " ".join(parts)


class TranscriptArchiveBase(ABC):
    """Base for ended-call persistence."""

    @abstractmethod
    async def save(self, snapshot: SessionSnapshot, summary: CallSummary) -> None:
        """Persist one ended call. Must not raise on I/O errors."""
        ...


class NoOpTranscriptArchive(TranscriptArchiveBase):
    """When transcript saving is disabled. No file I/O."""

    async def save(self, snapshot: SessionSnapshot, summary: CallSummary) -> None:
        pass


class TranscriptArchive(TranscriptArchiveBase):
    def __init__(
        self,
        transcript_dir: Optional[str] = None,
        add_timestamps: Optional[bool] = None,
    ) -> None:
        settings = get_settings()
        self._transcript_dir = transcript_dir or settings.TRANSCRIPT_DIR
        self._add_timestamps = add_timestamps if add_timestamps is not None else settings.TRANSCRIPT_ADD_TIMESTAMPS

    def transcript_path(self, session_id: str) -> str:
        return os.path.join(self._transcript_dir, f"{session_id}.txt")

    def summary_path(self, session_id: str) -> str:
        return os.path.join(self._transcript_dir, f"{session_id}.json")

    def _write(self, snapshot: SessionSnapshot, summary: CallSummary) -> None:
        start_ms = int(snapshot.start_time * 1000)
        lines = [
            _format_speaker_line(
                f.text,
                f.timestamp,
                start_ms,
                self._add_timestamps,
                f.speaker.value if f.speaker is not None else None,
                f.manually_assigned,
            )
            for f in snapshot.transcript
        ]
        txt_path = self.transcript_path(snapshot.id)
        json_path = self.summary_path(snapshot.id)
        try:
            os.makedirs(self._transcript_dir, exist_ok=True)
            with open(txt_path, "w", encoding="utf-8") as f:
                f.write("\n".join(lines) + ("\n" if lines else ""))
            payload = summary.model_dump(mode="json", by_alias=True)
            payload["agentId"] = snapshot.agent_id
            payload["callerId"] = snapshot.caller_id
            with open(json_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False, indent=2)
            logger.info("Call archived: %s", txt_path)
        except OSError as e:
            logger.warning("Failed to archive call %s: %s", snapshot.id, e)

    async def save(self, snapshot: SessionSnapshot, summary: CallSummary) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write, snapshot, summary)


def create_transcript_archive() -> TranscriptArchiveBase:
    """Archive when TRANSCRIPT_SAVE_ENABLED is true; else no-op."""
    settings = get_settings()
    if not getattr(settings, "TRANSCRIPT_SAVE_ENABLED", False):
        return NoOpTranscriptArchive()
    return TranscriptArchive()
