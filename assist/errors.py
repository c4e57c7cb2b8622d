"""
Error taxonomy for the call-assist core.

- SessionNotFound / FragmentNotFound: propagate to the caller (HTTP 404, WS error event).
- SpeakerAlreadyCorrected: a fragment's speaker can be corrected once (HTTP 409).
- ExternalAnalysisFailure / MalformedAnalysisResponse: recovered inside the pipeline with
  neutral defaults; never surfaced to the agent UI.
- ConcurrentFragmentOrderingViolation: should not happen under per-session serialization;
  when detected the update is logged and dropped.
"""
from __future__ import annotations


class AssistError(Exception):
    """Base for all call-assist errors."""


class SessionNotFound(AssistError, LookupError):
    """Operation referenced an unknown or already ended session id."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Call session not found: {session_id}")
        self.session_id = session_id


class FragmentNotFound(SessionNotFound):
    """Session exists but the fragment id is not (or no longer) in its transcript."""

    def __init__(self, session_id: str, fragment_id: str) -> None:
        AssistError.__init__(self, f"Transcript fragment {fragment_id} not found in session {session_id}")
        self.session_id = session_id
        self.fragment_id = fragment_id


class SpeakerAlreadyCorrected(AssistError, ValueError):
    """Manual speaker correction was already applied to this fragment."""


class ExternalAnalysisFailure(AssistError):
    """A collaborator call failed: timeout, transport error, rate limit, empty reply."""

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(f"{kind}: {message}")
        self.kind = kind


class MalformedAnalysisResponse(ExternalAnalysisFailure):
    """Collaborator replied but the structured output could not be parsed."""


class ConcurrentFragmentOrderingViolation(AssistError):
    """A fragment reached state mutation out of its acceptance order."""

    def __init__(self, session_id: str, expected: int, got: int) -> None:
        super().__init__(
            f"Out-of-order fragment in session {session_id}: expected sequence {expected}, got {got}"
        )
        self.session_id = session_id
        self.expected = expected
        self.got = got
