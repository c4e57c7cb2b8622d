"""Transcript persistence for ended calls."""
from .writer import NoOpTranscriptArchive, TranscriptArchive, TranscriptArchiveBase, create_transcript_archive

__all__ = ["NoOpTranscriptArchive", "TranscriptArchive", "TranscriptArchiveBase", "create_transcript_archive"]
