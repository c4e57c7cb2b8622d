"""
FastAPI app: WebSocket endpoint for the agent console (JSON events) and an HTTP API
over the same CallAssistService.

WS /ws/assist: {"type": "startCall" | "newTranscript" | ..., ...} in, same envelope out.
HTTP: /api/calls (start, fragments, speaker correction, voice activity, end), /api/chat,
/api/speaker-stats, /api/speaker-learning, /api/stats, /health.
"""
from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, Response, WebSocket, WebSocketDisconnect

from assist.errors import SessionNotFound, SpeakerAlreadyCorrected
from assist.logging_setup import configure_logging, warn_missing_credentials
from assist.models import unix_ms
from assist.schemas.analytics import AnalyticsUpdate, CallSummary
from assist.schemas.requests import (
    ChatRequest,
    ChatResponse,
    FragmentRequest,
    SpeakerCorrectionRequest,
    SpeakerLearningRequest,
    StartCallRequest,
    StartCallResponse,
    VoiceActivityRequest,
)
from assist.services.call_assist import CallAssistService
from assist.websocket_manager import WebSocketManager

logger = logging.getLogger(__name__)


def get_service(request: Request) -> CallAssistService:
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise RuntimeError("App not initialized (lifespan not run?)")
    return service


def _not_found(e: SessionNotFound) -> HTTPException:
    return HTTPException(status_code=404, detail=str(e))


def create_app(service: CallAssistService | None = None) -> FastAPI:
    """Build the app. Pass a service to override the default LLM-backed one (tests)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        if service is None:
            warn_missing_credentials()
        app.state.service = service or CallAssistService()
        yield
        # Calls still open at shutdown are ended so their transcripts are archived
        svc: CallAssistService = app.state.service
        for session in svc.registry.list_sessions():
            try:
                await svc.end_call(session.id)
            except SessionNotFound:
                pass
        app.state.service = None

    app = FastAPI(
        title="Real-time Call Assist",
        description="Live call analytics: speaker attribution, sentiment, escalation, coaching",
        lifespan=lifespan,
    )

    @app.websocket("/ws/assist")
    async def websocket_assist(websocket: WebSocket) -> None:
        """One agent console. JSON events both ways; see WebSocketManager."""
        await websocket.accept()
        svc: CallAssistService = websocket.app.state.service
        manager = WebSocketManager(websocket, svc, connection_id=uuid.uuid4().hex[:12])
        try:
            await manager.run()
        except WebSocketDisconnect:
            pass
        except Exception:
            logger.exception("WebSocket session failed")
            try:
                await websocket.close()
            except Exception:
                pass

    @app.get("/health")
    async def health(request: Request) -> dict:
        return {"status": "ok", "activeCalls": get_service(request).stats()["activeCalls"]}

    @app.get("/api/stats")
    async def stats(request: Request) -> dict:
        svc = get_service(request)
        return {**svc.stats(), "speaker": svc.speaker_stats()}

    @app.post("/api/calls", response_model=StartCallResponse, response_model_by_alias=True)
    async def start_call(body: StartCallRequest, request: Request) -> StartCallResponse:
        session_id = get_service(request).start_call(body.agent_id, body.caller_id)
        return StartCallResponse(session_id=session_id)

    @app.post(
        "/api/calls/{session_id}/fragments",
        response_model=AnalyticsUpdate,
        response_model_by_alias=True,
    )
    async def submit_fragment(session_id: str, body: FragmentRequest, request: Request) -> AnalyticsUpdate:
        try:
            update = await get_service(request).submit_fragment(
                session_id, body.text, body.speaker, body.timestamp, body.confidence
            )
        except SessionNotFound as e:
            raise _not_found(e)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        if update is None:
            raise HTTPException(status_code=409, detail="Fragment arrived out of order and was dropped")
        return update

    @app.post("/api/calls/{session_id}/fragments/{fragment_id}/speaker", status_code=204)
    async def correct_speaker(
        session_id: str, fragment_id: str, body: SpeakerCorrectionRequest, request: Request
    ) -> Response:
        try:
            get_service(request).correct_speaker(session_id, fragment_id, body.speaker)
        except SessionNotFound as e:
            raise _not_found(e)
        except SpeakerAlreadyCorrected as e:
            raise HTTPException(status_code=409, detail=str(e))
        return Response(status_code=204)

    @app.post("/api/calls/{session_id}/voice-activity", status_code=204)
    async def voice_activity(session_id: str, body: VoiceActivityRequest, request: Request) -> Response:
        try:
            get_service(request).record_voice_activity(session_id, body.kind)
        except SessionNotFound as e:
            raise _not_found(e)
        return Response(status_code=204)

    @app.post("/api/calls/{session_id}/end", response_model=CallSummary, response_model_by_alias=True)
    async def end_call(session_id: str, request: Request) -> CallSummary:
        try:
            return await get_service(request).end_call(session_id)
        except SessionNotFound as e:
            raise _not_found(e)

    @app.post("/api/chat", response_model=ChatResponse, response_model_by_alias=True)
    async def chat(body: ChatRequest, request: Request) -> ChatResponse:
        """Agent asks the assistant; the live call (if sessionId given) is used as context."""
        reply = await get_service(request).ask_assistant(body.message, body.session_id)
        return ChatResponse(response=reply, timestamp=unix_ms())

    @app.get("/api/speaker-stats")
    async def speaker_stats(request: Request, sessionId: str | None = None) -> dict:
        try:
            return get_service(request).speaker_stats(sessionId)
        except SessionNotFound as e:
            raise _not_found(e)

    @app.put("/api/speaker-learning")
    async def speaker_learning(body: SpeakerLearningRequest, request: Request) -> dict:
        return {"enabled": get_service(request).set_speaker_learning(body.enabled)}

    return app


app = create_app()
