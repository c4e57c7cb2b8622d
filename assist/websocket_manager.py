"""
WebSocketManager: one agent connection, JSON events in and out.

Client sends {"type": "<event>", ...fields}; server answers with the same envelope.
Messages are accepted in arrival order. newTranscript runs as its own task: the fragment
is echoed as soon as it is attributed, and its analyticsUpdate follows when analysis is
done, without holding back later events (endCall in particular). Per-call ordering of
fragments is kept by the pipeline's session lock.
Calls started on this connection and still open at disconnect are ended (summary archived).
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

from fastapi import WebSocket
from pydantic import ValidationError

from assist.errors import AssistError, FragmentNotFound, SessionNotFound
from assist.models import TranscriptFragment, unix_ms
from assist.schemas.analytics import FragmentOut
from assist.schemas.requests import (
    ChatRequest,
    FragmentRequest,
    SpeakerCorrectionRequest,
    SpeakerLearningRequest,
    StartCallRequest,
)
from assist.services.call_assist import CallAssistService

logger = logging.getLogger(__name__)

# Events handled in a background task instead of inline in the receive loop.
BACKGROUND_EVENTS = frozenset({"newTranscript"})


def _dump(model) -> dict:
    return model.model_dump(mode="json", by_alias=True)


class WebSocketManager:
    def __init__(self, websocket: WebSocket, service: CallAssistService, connection_id: str | None = None) -> None:
        self._ws = websocket
        self._service = service
        self._connection_id = connection_id or "agent"
        self._open_calls: set[str] = set()
        self._closed = False
        self._tasks: set[asyncio.Task] = set()
        self._handlers: dict[str, Callable[[dict], Awaitable[None]]] = {
            "startCall": self._on_start_call,
            "newTranscript": self._on_new_transcript,
            "updateTranscriptSpeaker": self._on_update_speaker,
            "endCall": self._on_end_call,
            "speechStarted": self._on_speech_started,
            "speechStopped": self._on_speech_stopped,
            "chatMessage": self._on_chat_message,
            "toggleSpeakerLearning": self._on_toggle_learning,
            "getSpeakerStats": self._on_speaker_stats,
        }

    @property
    def open_calls(self) -> set[str]:
        return set(self._open_calls)

    async def _send(self, event_type: str, payload: dict[str, Any] | None = None) -> None:
        if self._closed:
            return
        try:
            await self._ws.send_text(json.dumps({"type": event_type, **(payload or {})}))
        except Exception:
            self._closed = True

    async def _send_error(self, message: str, **extra: Any) -> None:
        await self._send("error", {"message": message, **extra})

    async def _on_start_call(self, data: dict) -> None:
        req = StartCallRequest.model_validate({"agentId": self._connection_id, **data})
        session_id = self._service.start_call(req.agent_id, req.caller_id)
        self._open_calls.add(session_id)
        await self._send(
            "callStarted",
            {"sessionId": session_id, "agentId": req.agent_id, "callerId": req.caller_id, "startTime": unix_ms()},
        )

    async def _on_new_transcript(self, data: dict) -> None:
        session_id = _require_session_id(data)
        req = FragmentRequest.model_validate(data)

        async def echo(fragment: TranscriptFragment) -> None:
            await self._send("newTranscript", _dump(FragmentOut.from_fragment(fragment)))

        update = await self._service.submit_fragment(
            session_id, req.text, req.speaker, req.timestamp, req.confidence, on_accepted=echo
        )
        if update is None:
            return
        await self._send("analyticsUpdate", _dump(update))
        if update.escalation_alert is not None:
            await self._send("escalationAlert", _dump(update.escalation_alert))

    async def _on_update_speaker(self, data: dict) -> None:
        session_id = _require_session_id(data)
        fragment_id = data.get("fragmentId") or data.get("transcriptId")
        if not fragment_id:
            raise ValueError("fragmentId is required")
        req = SpeakerCorrectionRequest.model_validate(data)
        fragment = self._service.correct_speaker(session_id, fragment_id, req.speaker)
        await self._send(
            "transcriptUpdated",
            {
                "sessionId": session_id,
                "fragmentId": fragment.id,
                "speaker": fragment.speaker.value,
                "manuallyAssigned": fragment.manually_assigned,
            },
        )

    async def _on_end_call(self, data: dict) -> None:
        session_id = _require_session_id(data)
        self._open_calls.discard(session_id)
        summary = await self._service.end_call(session_id)
        await self._send("callSummary", _dump(summary))
        await self._send("callEnded", {"sessionId": session_id})

    async def _on_speech_started(self, data: dict) -> None:
        self._service.record_voice_activity(_require_session_id(data), "speech_started")

    async def _on_speech_stopped(self, data: dict) -> None:
        self._service.record_voice_activity(_require_session_id(data), "speech_stopped")

    async def _on_chat_message(self, data: dict) -> None:
        req = ChatRequest.model_validate(data)
        reply = await self._service.ask_assistant(req.message, req.session_id)
        await self._send("chatbotResponse", {"response": reply, "timestamp": unix_ms()})

    async def _on_toggle_learning(self, data: dict) -> None:
        req = SpeakerLearningRequest.model_validate(data)
        enabled = self._service.set_speaker_learning(req.enabled)
        await self._send("speakerLearningToggled", {"enabled": enabled})

    async def _on_speaker_stats(self, data: dict) -> None:
        await self._send("speakerStats", self._service.speaker_stats(data.get("sessionId")))

    async def handle(self, raw: str) -> None:
        """Dispatch one text frame. Errors become an `error` event; the connection stays open."""
        try:
            message = json.loads(raw)
        except ValueError:
            await self._send_error("Invalid JSON")
            return
        if not isinstance(message, dict):
            await self._send_error("Event must be a JSON object")
            return
        event_type = message.pop("type", None)
        handler = self._handlers.get(event_type)
        if handler is None:
            await self._send_error(f"Unknown event type: {event_type}")
            return
        if event_type in BACKGROUND_EVENTS:
            task = asyncio.create_task(self._dispatch(event_type, handler, message))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            # Let the task take its place in the call's queue before the next frame is read.
            await asyncio.sleep(0)
            return
        await self._dispatch(event_type, handler, message)

    async def _dispatch(self, event_type: str, handler: Callable[[dict], Awaitable[None]], message: dict) -> None:
        try:
            await handler(message)
        except FragmentNotFound as e:
            await self._send_error("Transcript not found", sessionId=e.session_id, fragmentId=e.fragment_id)
        except SessionNotFound as e:
            await self._send_error("Call not found", sessionId=e.session_id)
        except ValidationError as e:
            await self._send_error(f"Invalid {event_type} payload: {e.errors()[0].get('msg', 'invalid')}")
        except (AssistError, ValueError) as e:
            await self._send_error(str(e))
        except Exception:
            logger.exception("Unhandled error in %s", event_type)
            await self._send_error("Internal error")

    async def run(self) -> None:
        """Receive loop. On disconnect, end every call this connection left open."""
        try:
            while not self._closed:
                try:
                    msg = await self._ws.receive()
                    if msg.get("type") == "websocket.disconnect":
                        break
                    text = msg.get("text")
                    if text is None:
                        continue
                except Exception:
                    break
                await self.handle(text)
        finally:
            self._closed = True
            for session_id in list(self._open_calls):
                self._open_calls.discard(session_id)
                try:
                    await self._service.end_call(session_id)
                    logger.info("Ended call %s after agent disconnect", session_id)
                except SessionNotFound:
                    pass
            if self._tasks:
                await asyncio.gather(*self._tasks, return_exceptions=True)


def _require_session_id(data: dict) -> str:
    session_id = data.get("sessionId")
    if not session_id:
        raise ValueError("sessionId is required")
    return session_id
